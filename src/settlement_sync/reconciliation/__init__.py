"""Reconciliation and synchronization engine.

This module pulls transactions and settlement liquidations from the
payment processor and works out which transactions have been paid out.

Features:
- Expected settlement dates from payment method (business days only)
- Idempotent sync of transactions and liquidations per payment button
- Heuristic and processor-driven matching of transactions to liquidations
- Append-only ledger of every sync and match attempt
- Reconciliation summaries and reports
"""

from .dates import (
    add_business_days,
    expected_payment_date,
    is_business_day,
)
from .models import (
    RecordError,
    EntitySyncResult,
    ProcessorMatchResult,
    ButtonSyncResult,
    BackfillResult,
    FleetSyncResult,
    MatchPolicy,
    MatchRecord,
    ReconcileResult,
    PaymentMethodBreakdown,
    ReconciliationSummary,
)
from .ledger import SyncLedger
from .scope import ButtonLease, ButtonScope
from .matcher import MatchingEngine
from .sync import SyncEngine
from .summary import SummaryAggregator
from .report import ReportGenerator

__all__ = [
    # Dates
    "add_business_days",
    "expected_payment_date",
    "is_business_day",
    # Models
    "RecordError",
    "EntitySyncResult",
    "ProcessorMatchResult",
    "ButtonSyncResult",
    "BackfillResult",
    "FleetSyncResult",
    "MatchPolicy",
    "MatchRecord",
    "ReconcileResult",
    "PaymentMethodBreakdown",
    "ReconciliationSummary",
    # Core Components
    "SyncLedger",
    "ButtonLease",
    "ButtonScope",
    "MatchingEngine",
    "SyncEngine",
    "SummaryAggregator",
    "ReportGenerator",
]
