"""Append-only audit trail of sync and match attempts."""

import logging
from typing import Optional, List, Union

from sqlalchemy.ext.asyncio import AsyncSession

from ..database import SyncLog, SyncLogRepository, SyncStatus, SyncType

logger = logging.getLogger(__name__)

TypeLike = Union[SyncType, str]


def _value(item: Union[SyncType, SyncStatus, str]) -> str:
    return item.value if hasattr(item, "value") else str(item)


class SyncLedger:
    """
    Writes and queries sync_logs entries.

    Entries are only ever appended. The most recent SUCCESS entry of a type
    for a button doubles as that button's "sync since" watermark.
    Writes are flushed, not committed; the caller owns the transaction.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = SyncLogRepository(session)

    async def record(
        self,
        type: TypeLike,
        status: Union[SyncStatus, str],
        message: Optional[str] = None,
        payment_button_id: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> SyncLog:
        entry = await self.repo.create(
            type=_value(type),
            status=_value(status),
            message=message,
            payment_button_id=payment_button_id,
            organization_id=organization_id,
        )
        log = logger.error if entry.status == SyncStatus.ERROR.value else logger.info
        log(f"Ledger {entry.type} {entry.status}: {message}")
        return entry

    async def success(
        self,
        type: TypeLike,
        message: Optional[str] = None,
        payment_button_id: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> SyncLog:
        return await self.record(
            type, SyncStatus.SUCCESS, message,
            payment_button_id=payment_button_id,
            organization_id=organization_id,
        )

    async def error(
        self,
        type: TypeLike,
        message: Optional[str] = None,
        payment_button_id: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> SyncLog:
        return await self.record(
            type, SyncStatus.ERROR, message,
            payment_button_id=payment_button_id,
            organization_id=organization_id,
        )

    async def last_success(
        self,
        type: TypeLike,
        payment_button_id: Optional[str] = None,
    ) -> Optional[SyncLog]:
        """Most recent SUCCESS entry of a type, scoped to a button when given."""
        return await self.repo.get_latest(
            type=_value(type),
            status=SyncStatus.SUCCESS.value,
            payment_button_id=payment_button_id,
        )

    async def recent(
        self,
        type: Optional[TypeLike] = None,
        status: Optional[Union[SyncStatus, str]] = None,
        payment_button_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[SyncLog]:
        return await self.repo.list_recent(
            type=_value(type) if type is not None else None,
            status=_value(status) if status is not None else None,
            payment_button_id=payment_button_id,
            limit=limit,
        )

    async def commit_error(
        self,
        type: TypeLike,
        message: str,
        payment_button_id: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> None:
        """Append an ERROR entry and commit it right away.

        Used from failure paths after the caller has rolled back. If the
        store itself is unavailable the failure is logged and dropped so it
        cannot escape the per-button boundary.
        """
        try:
            await self.error(
                type, message,
                payment_button_id=payment_button_id,
                organization_id=organization_id,
            )
            await self.session.commit()
        except Exception:
            logger.exception(f"Could not write {_value(type)} error entry to the ledger")
            await self.session.rollback()
