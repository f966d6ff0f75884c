# settlement_sync package
__version__ = "0.1.0"

from .database import (
    Transaction,
    Liquidation,
    PaymentButton,
    SyncLog,
    TransactionStatus,
    LiquidationStatus,
    SyncType,
    SyncStatus,
    init_db,
    close_db,
    get_db,
)
from .errors import (
    SettlementSyncError,
    SyncValidationError,
    ProcessorError,
    ProcessorConnectionError,
    ProcessorResponseError,
    MalformedPayloadError,
)
from .processor import ProcessorConfig, get_processor_client

# Engine exports
from .reconciliation import (
    SyncEngine,
    MatchingEngine,
    SummaryAggregator,
    SyncLedger,
    MatchPolicy,
    ReportGenerator,
    expected_payment_date,
)
