"""Exception hierarchy for settlement synchronization."""

from typing import Any, Optional


class SettlementSyncError(Exception):
    """Base class for all settlement sync errors."""

    kind = "error"

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.details = details


class SyncValidationError(SettlementSyncError):
    """Raised before any I/O when sync parameters are missing or inconsistent."""

    kind = "validation error"


class ProcessorError(SettlementSyncError):
    """Base class for failures talking to the payment processor."""

    kind = "processor error"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Any = None,
    ):
        super().__init__(message, details=details)
        self.status_code = status_code


class ProcessorConnectionError(ProcessorError):
    """The processor could not be reached or timed out."""

    kind = "processor unavailable"


class ProcessorResponseError(ProcessorError):
    """The processor answered with a non-200 code or a false status flag."""

    kind = "processor rejected request"


class MalformedPayloadError(SettlementSyncError):
    """A single upstream record could not be parsed."""

    kind = "malformed upstream payload"

    def __init__(self, message: str, record_id: Optional[str] = None, details: Any = None):
        super().__init__(message, details=details)
        self.record_id = record_id


def describe_error(exc: BaseException) -> str:
    """Render an exception as a ledger message prefixed with its kind."""
    kind = getattr(exc, "kind", None) or type(exc).__name__
    return f"{kind}: {exc}"
