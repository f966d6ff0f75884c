"""Processor client contract and wire models shared by every implementation."""

import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import MalformedPayloadError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.clickdepago.com/v1"
DEFAULT_TIMEOUT_SECONDS = 30.0

# Substring of NumeroSubente that marks a debit-card settlement
DEBIT_CARD_MARKER = "TARJETA DE DEBITO"

SETTLEMENT_DATE_FORMATS = (
    "%d/%m/%Y",
    "%d/%m/%Y %H:%M:%S",
    "%Y-%m-%d",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
)


@dataclass
class ProcessorConfig:
    """Per-button client configuration. Never shared between buttons."""
    api_key: str
    secret_key: str
    base_url: str = field(default_factory=lambda: os.getenv("CLICPAGO_API_URL", DEFAULT_API_URL))
    timeout: float = field(
        default_factory=lambda: float(os.getenv("CLICPAGO_API_TIMEOUT", DEFAULT_TIMEOUT_SECONDS))
    )
    page_size: int = 100

    @classmethod
    def from_button(cls, button: Any) -> "ProcessorConfig":
        return cls(api_key=button.api_key, secret_key=button.secret_key)


def parse_amount(raw: Any) -> float:
    """Parse a localized amount such as "12 345.67" (all whitespace removed)."""
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return float(raw)
    if not isinstance(raw, str):
        raise ValueError(f"amount must be a string, got {type(raw).__name__}")
    cleaned = re.sub(r"\s", "", raw)
    if not cleaned:
        raise ValueError("amount is empty")
    return float(cleaned)


def parse_settlement_date(raw: Any) -> datetime:
    if isinstance(raw, datetime):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        raise ValueError(f"settlement date missing or not a string: {raw!r}")
    value = raw.strip()
    for fmt in SETTLEMENT_DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ValueError(f"unrecognized settlement date: {raw!r}") from None
    return parsed.replace(tzinfo=None)


# Processor status codes -> canonical TransactionStatus values
TRANSACTION_STATUS_CODES = {
    "CREADA": "created",
    "EN_PAGO": "in_payment",
    "REALIZADA": "completed",
    "RECHAZADA": "rejected",
    "ERROR_VALIDACION_HASH_TOKEN": "hash_token_validation_error",
    "ERROR_VALIDACION_HASH_PAGO": "hash_payment_validation_error",
    "EXPIRADA": "expired",
    "CANCELADA": "cancelled",
    "DEVUELTA": "refunded",
    "PENDIENTE": "pending",
    "VENCIDA": "overdue",
}
CANONICAL_STATUSES = frozenset(TRANSACTION_STATUS_CODES.values())


def normalize_transaction_status(raw: str) -> str:
    """Map a processor status code (or an already canonical value) to the canonical form.

    Unknown codes are kept, lower-cased, so nothing is silently dropped.
    """
    value = (raw or "").strip()
    code = value.upper().replace(" ", "_")
    if code in TRANSACTION_STATUS_CODES:
        return TRANSACTION_STATUS_CODES[code]
    if value.lower() in CANONICAL_STATUSES:
        return value.lower()
    logger.warning(f"Unknown transaction status from processor: {raw!r}")
    return value.lower()


class RemoteTransaction(BaseModel):
    """Transaction record as listed by the processor."""
    model_config = ConfigDict(coerce_numbers_to_str=True, extra="ignore")

    id: str
    date: datetime
    amount: float
    currency: Optional[str] = None
    payment_method: str
    installments: Optional[int] = None
    status: str

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "RemoteTransaction":
        try:
            record = cls.model_validate(payload)
        except ValidationError as e:
            record_id = payload.get("id") if isinstance(payload, dict) else None
            raise MalformedPayloadError(
                f"invalid transaction record {record_id}: {e.error_count()} field error(s)",
                record_id=record_id,
                details=e.errors(),
            ) from e
        if record.date.tzinfo is not None:
            record.date = record.date.replace(tzinfo=None)
        return record


class RemoteLiquidation(BaseModel):
    """Liquidation record as listed by the processor (Spanish wire names)."""
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True, extra="ignore")

    liquidation_id: str = Field(..., alias="liquidacionId")
    net_amount: Any = Field(..., alias="NetoLiquidacion")
    settlement_date: Any = Field(..., alias="FechaLiquidacion")
    sub_entity: str = Field(default="", alias="NumeroSubente")

    @property
    def is_debit_card(self) -> bool:
        return DEBIT_CARD_MARKER in (self.sub_entity or "")

    def parsed_amount(self) -> float:
        try:
            return parse_amount(self.net_amount)
        except ValueError as e:
            raise MalformedPayloadError(
                f"liquidation {self.liquidation_id} has unparseable NetoLiquidacion "
                f"{self.net_amount!r}",
                record_id=self.liquidation_id,
            ) from e

    def parsed_date(self) -> datetime:
        try:
            return parse_settlement_date(self.settlement_date)
        except ValueError as e:
            raise MalformedPayloadError(
                f"liquidation {self.liquidation_id} has unparseable FechaLiquidacion "
                f"{self.settlement_date!r}",
                record_id=self.liquidation_id,
            ) from e

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "RemoteLiquidation":
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            record_id = payload.get("liquidacionId") if isinstance(payload, dict) else None
            raise MalformedPayloadError(
                f"invalid liquidation record {record_id}: {e.error_count()} field error(s)",
                record_id=record_id,
                details=e.errors(),
            ) from e


class LiquidationListResponse(BaseModel):
    """Envelope returned by the liquidations listing."""
    status: bool = False
    code: Optional[int] = None
    message: Optional[str] = None
    liquidaciones: List[Dict[str, Any]] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return bool(self.status) and self.code == 200


class ProcessorClientBase(ABC):
    """
    Async client for the payment processor. Implementations raise
    ProcessorConnectionError for transport failures and
    ProcessorResponseError for non-200 answers; record-level parsing is
    left to the caller so one bad record cannot sink a whole listing.
    """

    @abstractmethod
    async def list_transactions(
        self,
        from_date: datetime,
        to_date: datetime,
    ) -> List[Dict[str, Any]]:
        """Return raw transaction records in the window."""
        raise NotImplementedError

    @abstractmethod
    async def list_liquidations(
        self,
        from_date: datetime,
        to_date: datetime,
    ) -> LiquidationListResponse:
        raise NotImplementedError

    @abstractmethod
    async def get_liquidation_transactions(self, liquidation_id: str) -> List[str]:
        """Return the external transaction ids settled by a liquidation."""
        raise NotImplementedError

    async def close(self) -> None:
        return None

    async def __aenter__(self) -> "ProcessorClientBase":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
