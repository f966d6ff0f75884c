"""Shared test fixtures and configuration."""

import os
import pytest
from datetime import datetime
from typing import Callable, Dict

# Set up test environment variables before importing modules
os.environ.setdefault("API_KEY", "test_api_key_12345")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CLICPAGO_API_URL", "https://processor.test/v1")

from settlement_sync.database import (
    Base,
    Organization,
    PaymentButton,
    Transaction,
    Liquidation,
    TransactionStatus,
    LiquidationStatus,
    create_async_engine,
    get_async_session_factory,
)
from settlement_sync.processor import ProcessorConfig, SimulatorProcessorClient
from settlement_sync.reconciliation import ButtonScope


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing."""
    engine = create_async_engine(
        database_url="sqlite+aiosqlite:///:memory:",
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    """Create a database session for testing."""
    session_factory = get_async_session_factory(db_engine)
    async with session_factory() as session:
        yield session


@pytest.fixture
async def organization(db_session) -> str:
    """Persist an organization and return its id."""
    org = Organization(name="Acme Retail")
    db_session.add(org)
    await db_session.commit()
    return org.id


async def _create_button(db_session, organization_id: str, name: str, api_key: str) -> ButtonScope:
    button = PaymentButton(
        name=name,
        api_key=api_key,
        secret_key=f"frase-{api_key}",
        organization_id=organization_id,
    )
    db_session.add(button)
    await db_session.commit()
    # Engines roll back on failure, which expires ORM instances; tests hold snapshots.
    return ButtonScope.from_button(button)


@pytest.fixture
async def button(db_session, organization) -> ButtonScope:
    """A payment button of the test organization."""
    return await _create_button(db_session, organization, "Main store", "guid-a")


@pytest.fixture
async def second_button(db_session, organization) -> ButtonScope:
    """Another payment button of the same organization."""
    return await _create_button(db_session, organization, "Web store", "guid-b")


@pytest.fixture
def simulator() -> SimulatorProcessorClient:
    return SimulatorProcessorClient()


@pytest.fixture
def client_factory(simulator) -> Callable[[ProcessorConfig], SimulatorProcessorClient]:
    """Factory handing out the same simulator for every button."""
    return lambda config: simulator


@pytest.fixture
def factory_by_key():
    """Build a factory that picks a simulator by the button's api key."""

    def _build(clients: Dict[str, SimulatorProcessorClient]):
        return lambda config: clients[config.api_key]

    return _build


@pytest.fixture
def make_transaction(db_session):
    """Insert a transaction row directly."""

    async def _make(
        button: ButtonScope,
        transaction_id: str,
        amount: float = 100.0,
        status: str = TransactionStatus.COMPLETED.value,
        payment_method: str = "DEBIT_CARD",
        date: datetime = datetime(2024, 1, 2, 10, 0),
        expected_pay_date: datetime = datetime(2024, 1, 3, 10, 0),
        liquidation_id: str = None,
        quotas: int = 1,
    ) -> Transaction:
        txn = Transaction(
            transaction_id=transaction_id,
            amount=amount,
            status=status,
            payment_method=payment_method,
            quotas=quotas,
            date=date,
            expected_pay_date=expected_pay_date,
            payment_button_id=button.id,
            liquidation_id=liquidation_id,
        )
        db_session.add(txn)
        await db_session.commit()
        return txn

    return _make


@pytest.fixture
def make_liquidation(db_session):
    """Insert a liquidation row directly."""

    async def _make(
        button: ButtonScope,
        liquidation_id: str,
        date: datetime,
        amount: float = 100.0,
        status: str = LiquidationStatus.PROCESSED.value,
        created_at: datetime = None,
    ) -> Liquidation:
        liquidation = Liquidation(
            liquidation_id=liquidation_id,
            amount=amount,
            date=date,
            status=status,
            payment_button_id=button.id,
        )
        if created_at is not None:
            liquidation.created_at = created_at
        db_session.add(liquidation)
        await db_session.commit()
        return liquidation

    return _make


@pytest.fixture
def auth_headers():
    """Return headers with authentication."""
    return {"Authorization": "Bearer test_api_key_12345"}
