"""Per-button scope snapshot and mutual-exclusion lease."""

import logging
import os
import socket
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..database import SyncLeaseRepository
from ..database.repository import DEFAULT_LEASE_TTL_SECONDS
from ..errors import SyncValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ButtonScope:
    """
    Plain copy of the payment button fields the engines need.

    ORM instances are expired by a session rollback and cannot be lazily
    reloaded under asyncio, so engines read the button once up front and
    work from this snapshot afterwards.
    """
    id: str
    name: Optional[str]
    organization_id: Optional[str]
    api_key: str
    secret_key: str

    @classmethod
    def from_button(cls, button: Any) -> "ButtonScope":
        if isinstance(button, cls):
            return button
        if button is None or not getattr(button, "id", None):
            raise SyncValidationError("a persisted payment button is required")
        return cls(
            id=button.id,
            name=getattr(button, "name", None),
            organization_id=getattr(button, "organization_id", None),
            api_key=button.api_key,
            secret_key=button.secret_key,
        )


def default_lease_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


def lease_ttl_from_env() -> int:
    return int(os.getenv("SYNC_LEASE_TTL_SECONDS", str(DEFAULT_LEASE_TTL_SECONDS)))


class ButtonLease:
    """Acquire and release the `button:<id>` lease, committing each change."""

    def __init__(
        self,
        session: AsyncSession,
        owner: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
    ):
        self.session = session
        self.repo = SyncLeaseRepository(session)
        self.owner = owner or default_lease_owner()
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else lease_ttl_from_env()

    @staticmethod
    def key(button_id: str) -> str:
        return f"button:{button_id}"

    async def acquire(self, button_id: str) -> bool:
        """Take the lease for a button. Must be called at a transaction boundary."""
        acquired = await self.repo.acquire(self.key(button_id), self.owner, self.ttl_seconds)
        await self.session.commit()
        if not acquired:
            logger.warning(f"Button {button_id} is locked by another worker, skipping")
        return acquired

    async def release(self, button_id: str) -> None:
        """Drop the lease. A failure here is logged; the lease then lapses by TTL."""
        try:
            await self.repo.release(self.key(button_id), self.owner)
            await self.session.commit()
        except Exception:
            logger.exception(f"Failed to release lease for button {button_id}")
            await self.session.rollback()
