"""Repository layer for settlement persistence operations."""

import logging
from datetime import datetime, timedelta
from typing import Optional, List, Sequence

from sqlalchemy import select, and_, or_, delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    PaymentButton,
    Transaction,
    Liquidation,
    SyncLog,
    SyncLease,
    SyncStatus,
    TransactionStatus,
    utcnow,
)

logger = logging.getLogger(__name__)

# Default lease TTL in seconds
DEFAULT_LEASE_TTL_SECONDS = 900


class PaymentButtonRepository:
    """Read access to payment buttons; their lifecycle is managed elsewhere."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, button_id: str) -> Optional[PaymentButton]:
        result = await self.session.execute(
            select(PaymentButton).where(PaymentButton.id == button_id)
        )
        return result.scalar_one_or_none()

    async def list_all(self) -> List[PaymentButton]:
        result = await self.session.execute(
            select(PaymentButton).order_by(PaymentButton.created_at, PaymentButton.id)
        )
        return list(result.scalars().all())

    async def list_by_organization(self, organization_id: str) -> List[PaymentButton]:
        result = await self.session.execute(
            select(PaymentButton)
            .where(PaymentButton.organization_id == organization_id)
            .order_by(PaymentButton.created_at, PaymentButton.id)
        )
        return list(result.scalars().all())


class TransactionRepository:
    """Repository for Transaction operations."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def get_by_external_id(self, transaction_id: str) -> Optional[Transaction]:
        """Get a transaction by the processor's transaction id.

        Args:
            transaction_id: External transaction identifier.

        Returns:
            Transaction instance if found, None otherwise.
        """
        result = await self.session.execute(
            select(Transaction).where(Transaction.transaction_id == transaction_id)
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        transaction_id: str,
        amount: float,
        status: str,
        payment_method: str,
        date: datetime,
        payment_button_id: str,
        quotas: int = 1,
        currency: str = "ARS",
        expected_pay_date: Optional[datetime] = None,
    ) -> Transaction:
        """Create a new transaction record.

        Args:
            transaction_id: External transaction identifier.
            amount: Transaction amount.
            status: Canonical transaction status.
            payment_method: Processor payment method code.
            date: Transaction date.
            payment_button_id: Owning payment button.
            quotas: Installment count.
            currency: Three-letter currency code.
            expected_pay_date: Computed settlement date.

        Returns:
            Created Transaction instance.
        """
        transaction = Transaction(
            transaction_id=transaction_id,
            amount=amount,
            currency=currency.upper(),
            status=status,
            payment_method=payment_method,
            quotas=quotas,
            date=date,
            expected_pay_date=expected_pay_date,
            payment_button_id=payment_button_id,
        )
        self.session.add(transaction)
        await self.session.flush()

        logger.debug(f"Created transaction {transaction_id} with status {status}")
        return transaction

    async def refresh_from_remote(
        self,
        transaction: Transaction,
        status: str,
        amount: float,
        payment_method: str,
        quotas: int,
    ) -> Transaction:
        """Refresh mutable fields; expected_pay_date and liquidation are left alone."""
        transaction.status = status
        transaction.amount = amount
        transaction.payment_method = payment_method
        transaction.quotas = quotas
        transaction.updated_at = utcnow()
        await self.session.flush()
        return transaction

    async def assign_liquidation(
        self,
        transaction: Transaction,
        liquidation: Liquidation,
    ) -> bool:
        """Link a transaction to a liquidation.

        Returns:
            False if the transaction already holds a liquidation; the
            existing link is never replaced.
        """
        if transaction.liquidation_id is not None:
            return False
        transaction.liquidation_id = liquidation.id
        transaction.updated_at = utcnow()
        await self.session.flush()
        logger.debug(
            f"Assigned transaction {transaction.transaction_id} "
            f"to liquidation {liquidation.liquidation_id}"
        )
        return True

    async def set_expected_pay_date(
        self,
        transaction: Transaction,
        expected_pay_date: datetime,
    ) -> Transaction:
        transaction.expected_pay_date = expected_pay_date
        transaction.updated_at = utcnow()
        await self.session.flush()
        return transaction

    async def list_unsettled(
        self,
        payment_button_id: str,
        status: str = TransactionStatus.COMPLETED.value,
    ) -> List[Transaction]:
        """List transactions of a button with the given status and no liquidation."""
        result = await self.session.execute(
            select(Transaction)
            .where(
                and_(
                    Transaction.payment_button_id == payment_button_id,
                    Transaction.status == status,
                    Transaction.liquidation_id.is_(None),
                )
            )
            .order_by(Transaction.date, Transaction.transaction_id)
        )
        return list(result.scalars().all())

    async def list_missing_expected_date(
        self,
        status: str = TransactionStatus.PENDING.value,
    ) -> List[Transaction]:
        result = await self.session.execute(
            select(Transaction).where(
                and_(
                    Transaction.status == status,
                    Transaction.expected_pay_date.is_(None),
                )
            )
        )
        return list(result.scalars().all())

    async def list_in_window(
        self,
        payment_button_ids: Sequence[str],
        start: datetime,
        end: datetime,
        status: str = TransactionStatus.COMPLETED.value,
        settled: Optional[bool] = None,
    ) -> List[Transaction]:
        """List transactions dated within [start, end] for a set of buttons.

        Args:
            payment_button_ids: Buttons to include.
            start: Window start (inclusive).
            end: Window end (inclusive).
            status: Transaction status to filter by.
            settled: True for transactions with a liquidation, False for
                those without, None for both.

        Returns:
            List of Transaction instances ordered by date.
        """
        if not payment_button_ids:
            return []
        conditions = [
            Transaction.payment_button_id.in_(list(payment_button_ids)),
            Transaction.date >= start,
            Transaction.date <= end,
            Transaction.status == status,
        ]
        if settled is True:
            conditions.append(Transaction.liquidation_id.is_not(None))
        elif settled is False:
            conditions.append(Transaction.liquidation_id.is_(None))

        result = await self.session.execute(
            select(Transaction).where(and_(*conditions)).order_by(Transaction.date)
        )
        return list(result.scalars().all())

    async def list_overdue(
        self,
        payment_button_ids: Sequence[str],
        as_of: datetime,
    ) -> List[Transaction]:
        """Completed, unsettled transactions whose expected date has passed."""
        if not payment_button_ids:
            return []
        result = await self.session.execute(
            select(Transaction)
            .where(
                and_(
                    Transaction.payment_button_id.in_(list(payment_button_ids)),
                    Transaction.status == TransactionStatus.COMPLETED.value,
                    Transaction.liquidation_id.is_(None),
                    Transaction.expected_pay_date.is_not(None),
                    Transaction.expected_pay_date < as_of,
                )
            )
            .order_by(Transaction.expected_pay_date)
        )
        return list(result.scalars().all())


class LiquidationRepository:
    """Repository for Liquidation operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_external_id(self, liquidation_id: str) -> Optional[Liquidation]:
        """Get a liquidation by the processor's liquidation id."""
        result = await self.session.execute(
            select(Liquidation).where(Liquidation.liquidation_id == liquidation_id)
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        liquidation_id: str,
        amount: float,
        date: datetime,
        status: str,
        payment_button_id: str,
        currency: str = "ARS",
    ) -> Liquidation:
        """Create a new liquidation record."""
        liquidation = Liquidation(
            liquidation_id=liquidation_id,
            amount=amount,
            currency=currency.upper(),
            date=date,
            status=status,
            payment_button_id=payment_button_id,
        )
        self.session.add(liquidation)
        await self.session.flush()

        logger.debug(f"Created liquidation {liquidation_id} with status {status}")
        return liquidation

    async def refresh_from_remote(
        self,
        liquidation: Liquidation,
        amount: float,
        status: str,
    ) -> Liquidation:
        liquidation.amount = amount
        liquidation.status = status
        liquidation.updated_at = utcnow()
        await self.session.flush()
        return liquidation

    async def list_by_button(
        self,
        payment_button_id: str,
        status: Optional[str] = None,
    ) -> List[Liquidation]:
        """List liquidations of a button in storage order (insertion)."""
        conditions = [Liquidation.payment_button_id == payment_button_id]
        if status is not None:
            conditions.append(Liquidation.status == status)
        result = await self.session.execute(
            select(Liquidation).where(and_(*conditions)).order_by(Liquidation.created_at)
        )
        return list(result.scalars().all())

    async def list_in_window(
        self,
        payment_button_ids: Sequence[str],
        start: datetime,
        end: datetime,
    ) -> List[Liquidation]:
        if not payment_button_ids:
            return []
        result = await self.session.execute(
            select(Liquidation)
            .where(
                and_(
                    Liquidation.payment_button_id.in_(list(payment_button_ids)),
                    Liquidation.date >= start,
                    Liquidation.date <= end,
                )
            )
            .order_by(Liquidation.date)
        )
        return list(result.scalars().all())


class SyncLogRepository:
    """Append-only access to sync ledger entries."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        type: str,
        status: str,
        message: Optional[str] = None,
        payment_button_id: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> SyncLog:
        """Append a ledger entry.

        Args:
            type: Operation type (see SyncType).
            status: SUCCESS or ERROR.
            message: Free-text summary.
            payment_button_id: Button the attempt was scoped to, if any.
            organization_id: Organization the attempt was scoped to, if any.

        Returns:
            Created SyncLog instance.
        """
        entry = SyncLog(
            type=type,
            status=status,
            message=message,
            payment_button_id=payment_button_id,
            organization_id=organization_id,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def get_latest(
        self,
        type: str,
        status: str = SyncStatus.SUCCESS.value,
        payment_button_id: Optional[str] = None,
    ) -> Optional[SyncLog]:
        """Most recent entry of a type and status, optionally for one button."""
        conditions = [SyncLog.type == type, SyncLog.status == status]
        if payment_button_id is not None:
            conditions.append(SyncLog.payment_button_id == payment_button_id)
        result = await self.session.execute(
            select(SyncLog)
            .where(and_(*conditions))
            .order_by(SyncLog.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_recent(
        self,
        type: Optional[str] = None,
        status: Optional[str] = None,
        payment_button_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[SyncLog]:
        conditions = []
        if type is not None:
            conditions.append(SyncLog.type == type)
        if status is not None:
            conditions.append(SyncLog.status == status)
        if payment_button_id is not None:
            conditions.append(SyncLog.payment_button_id == payment_button_id)

        query = select(SyncLog)
        if conditions:
            query = query.where(and_(*conditions))
        result = await self.session.execute(
            query.order_by(SyncLog.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())


class SyncLeaseRepository:
    """Repository for per-button mutual-exclusion leases."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_key(self, lease_key: str) -> Optional[SyncLease]:
        result = await self.session.execute(
            select(SyncLease).where(SyncLease.lease_key == lease_key)
        )
        return result.scalar_one_or_none()

    async def acquire(
        self,
        lease_key: str,
        owner: str,
        ttl_seconds: int = DEFAULT_LEASE_TTL_SECONDS,
    ) -> bool:
        """Try to take the lease.

        An expired lease, or one already held by the same owner, is taken
        over with a single conditional UPDATE, so two workers racing for the
        same expired lease cannot both win. A live lease held by someone
        else is left untouched.

        Returns:
            True if the caller now holds the lease.
        """
        now = utcnow()
        expires_at = now + timedelta(seconds=ttl_seconds)

        result = await self.session.execute(
            update(SyncLease)
            .where(
                and_(
                    SyncLease.lease_key == lease_key,
                    or_(SyncLease.owner == owner, SyncLease.expires_at < now),
                )
            )
            .values(owner=owner, acquired_at=now, expires_at=expires_at)
        )
        if result.rowcount == 1:
            return True

        existing = await self.get_by_key(lease_key)
        if existing is not None:
            logger.info(f"Lease {lease_key} held by {existing.owner} until {existing.expires_at}")
            return False

        self.session.add(
            SyncLease(
                lease_key=lease_key,
                owner=owner,
                acquired_at=now,
                expires_at=expires_at,
            )
        )
        try:
            await self.session.flush()
        except IntegrityError:
            # Another worker inserted the same key first. Callers acquire at a
            # transaction boundary, so the rollback discards nothing else.
            await self.session.rollback()
            logger.info(f"Lease {lease_key} was acquired concurrently by another owner")
            return False
        return True

    async def release(self, lease_key: str, owner: str) -> bool:
        """Drop the lease if the caller still holds it."""
        result = await self.session.execute(
            delete(SyncLease).where(
                and_(SyncLease.lease_key == lease_key, SyncLease.owner == owner)
            )
        )
        await self.session.flush()
        return result.rowcount > 0
