"""Database module for settlement persistence."""

from .models import (
    Base,
    Organization,
    PaymentButton,
    Transaction,
    Liquidation,
    SyncLog,
    SyncLease,
    TransactionStatus,
    LiquidationStatus,
    SyncType,
    SyncStatus,
    utcnow,
    as_naive_utc,
)
from .session import (
    get_db,
    get_database_url,
    init_db,
    close_db,
    create_async_engine,
    get_async_session_factory,
    DatabaseManager,
)
from .repository import (
    PaymentButtonRepository,
    TransactionRepository,
    LiquidationRepository,
    SyncLogRepository,
    SyncLeaseRepository,
)

__all__ = [
    # Models
    "Base",
    "Organization",
    "PaymentButton",
    "Transaction",
    "Liquidation",
    "SyncLog",
    "SyncLease",
    "TransactionStatus",
    "LiquidationStatus",
    "SyncType",
    "SyncStatus",
    "utcnow",
    "as_naive_utc",
    # Session management
    "get_db",
    "get_database_url",
    "init_db",
    "close_db",
    "create_async_engine",
    "get_async_session_factory",
    "DatabaseManager",
    # Repositories
    "PaymentButtonRepository",
    "TransactionRepository",
    "LiquidationRepository",
    "SyncLogRepository",
    "SyncLeaseRepository",
]
