"""Payment processor clients."""

from .base import (
    ProcessorClientBase,
    ProcessorConfig,
    RemoteTransaction,
    RemoteLiquidation,
    LiquidationListResponse,
    DEBIT_CARD_MARKER,
    parse_amount,
    parse_settlement_date,
    normalize_transaction_status,
)
from .clicpago_client import ClicPagoClient
from .simulator_client import (
    SimulatorProcessorClient,
    SimulatorConfig,
    SimulatorScenario,
)


def get_processor_client(
    config: ProcessorConfig,
    provider: str = "clicpago",
) -> ProcessorClientBase:
    """Factory returning a client bound to one button's configuration.

    Raises:
        ValueError: If the provider is not supported.
    """
    clients = {
        "clicpago": ClicPagoClient,
    }

    client_class = clients.get(provider.lower())
    if not client_class:
        raise ValueError(f"Unsupported processor: {provider}")

    return client_class(config)


__all__ = [
    "ProcessorClientBase",
    "ProcessorConfig",
    "RemoteTransaction",
    "RemoteLiquidation",
    "LiquidationListResponse",
    "DEBIT_CARD_MARKER",
    "parse_amount",
    "parse_settlement_date",
    "normalize_transaction_status",
    "ClicPagoClient",
    "SimulatorProcessorClient",
    "SimulatorConfig",
    "SimulatorScenario",
    "get_processor_client",
]
