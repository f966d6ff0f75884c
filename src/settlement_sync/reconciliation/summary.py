"""Reconciliation summaries over persisted transactions and liquidations."""

import logging
import math
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from ..database import (
    LiquidationRepository,
    PaymentButtonRepository,
    TransactionRepository,
    as_naive_utc,
    utcnow,
)
from ..errors import SyncValidationError
from .models import PaymentMethodBreakdown, ReconciliationSummary

logger = logging.getLogger(__name__)


def month_to_date(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """First day of the current month at midnight, through now."""
    now = now or utcnow()
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0), now


class SummaryAggregator:
    """Read-only aggregation of reconciliation figures for an organization."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.buttons = PaymentButtonRepository(session)
        self.transactions = TransactionRepository(session)
        self.liquidations = LiquidationRepository(session)

    async def summarize(
        self,
        organization_id: str,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> ReconciliationSummary:
        """Summarize an organization's reconciliation state for a window.

        Transactions are placed in the window by their transaction date and
        liquidations by their settlement date. Only completed transactions
        count: those holding a liquidation are reconciled, the rest pending.
        Amounts are added with math.fsum and are not rounded. Each total is
        correctly rounded on its own, so reconciled + pending can differ from
        the fsum of all completed amounts by one float rounding step.

        Args:
            organization_id: Organization to summarize.
            from_date: Window start; defaults to the first of the current
                month. Aware datetimes are converted to naive UTC.
            to_date: Window end; defaults to now.

        Returns:
            ReconciliationSummary.

        Raises:
            SyncValidationError: If organization_id is empty or the window is
                inverted.
        """
        if not organization_id:
            raise SyncValidationError("organization_id is required")

        default_start, default_end = month_to_date()
        start = as_naive_utc(from_date) or default_start
        end = as_naive_utc(to_date) or default_end
        if start > end:
            raise SyncValidationError("from_date must not be after to_date")

        button_ids = [b.id for b in await self.buttons.list_by_organization(organization_id)]
        reconciled = await self.transactions.list_in_window(button_ids, start, end, settled=True)
        pending = await self.transactions.list_in_window(button_ids, start, end, settled=False)
        liquidations = await self.liquidations.list_in_window(button_ids, start, end)

        now = utcnow()
        overdue = [
            t for t in pending
            if t.expected_pay_date is not None and t.expected_pay_date < now
        ]

        summary = ReconciliationSummary(
            organization_id=organization_id,
            start=start,
            end=end,
            total_reconciled=math.fsum(t.amount for t in reconciled),
            total_pending=math.fsum(t.amount for t in pending),
            total_liquidated=math.fsum(liq.amount for liq in liquidations),
            total_overdue=math.fsum(t.amount for t in overdue),
            reconciled_count=len(reconciled),
            pending_count=len(pending),
            liquidation_count=len(liquidations),
            overdue_count=len(overdue),
        )

        by_method: Dict[str, Dict[str, List[float]]] = defaultdict(
            lambda: {"reconciled": [], "pending": []}
        )
        for t in reconciled:
            by_method[t.payment_method]["reconciled"].append(t.amount)
        for t in pending:
            by_method[t.payment_method]["pending"].append(t.amount)

        for method, amounts in sorted(by_method.items()):
            summary.by_payment_method[method] = PaymentMethodBreakdown(
                reconciled=math.fsum(amounts["reconciled"]),
                pending=math.fsum(amounts["pending"]),
                total=math.fsum(amounts["reconciled"] + amounts["pending"]),
            )

        logger.info(
            f"Summary for organization {organization_id} from {start} to {end}: "
            f"{summary.reconciled_count} reconciled, {summary.pending_count} pending, "
            f"{summary.liquidation_count} liquidations"
        )
        return summary
