"""Tests for database models, repositories, the ledger and button leases."""

import asyncio
import pytest
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from settlement_sync.database import (
    Base,
    LiquidationRepository,
    PaymentButtonRepository,
    SyncLease,
    SyncLeaseRepository,
    SyncLogRepository,
    SyncStatus,
    SyncType,
    Transaction,
    TransactionRepository,
    TransactionStatus,
    as_naive_utc,
    create_async_engine,
    get_async_session_factory,
    get_database_url,
)
from settlement_sync.errors import SyncValidationError
from settlement_sync.reconciliation import ButtonLease, ButtonScope, SyncLedger


class TestDatabaseUrl:
    """Tests for DATABASE_URL handling."""

    def test_postgres_rewritten_to_asyncpg(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgres://u:p@db/settlements")
        assert get_database_url() == "postgresql+asyncpg://u:p@db/settlements"

    def test_default_is_sqlite(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        assert get_database_url().startswith("sqlite+aiosqlite://")


class TestAsNaiveUtc:
    """Tests for datetime normalization to the stored convention."""

    def test_aware_value_converted_to_utc(self):
        value = datetime(2024, 1, 1, 21, 0, tzinfo=timezone(timedelta(hours=-3)))
        assert as_naive_utc(value) == datetime(2024, 1, 2, 0, 0)

    def test_naive_and_none_pass_through(self):
        assert as_naive_utc(datetime(2024, 1, 1)) == datetime(2024, 1, 1)
        assert as_naive_utc(None) is None


class TestTransactionRepository:
    """Tests for the TransactionRepository."""

    async def test_create_and_get(self, db_session, button):
        repo = TransactionRepository(db_session)
        created = await repo.create(
            transaction_id="tx-1",
            amount=150.0,
            status=TransactionStatus.COMPLETED.value,
            payment_method="DEBIT_CARD",
            date=datetime(2024, 1, 2),
            payment_button_id=button.id,
            currency="ars",
        )

        found = await repo.get_by_external_id("tx-1")
        assert found is created
        assert found.currency == "ARS"
        assert found.quotas == 1
        assert found.liquidation_id is None
        assert not found.is_settled

    async def test_external_id_is_unique(self, db_session, button, make_transaction):
        await make_transaction(button, "tx-dup")
        db_session.add(Transaction(
            transaction_id="tx-dup",
            amount=1.0,
            status="completed",
            payment_method="QR",
            date=datetime(2024, 1, 2),
            payment_button_id=button.id,
        ))
        with pytest.raises(IntegrityError):
            await db_session.flush()
        await db_session.rollback()

    async def test_refresh_keeps_expected_date(self, db_session, button, make_transaction):
        txn = await make_transaction(button, "tx-1", expected_pay_date=datetime(2024, 1, 3))
        repo = TransactionRepository(db_session)

        await repo.refresh_from_remote(
            txn, status="refunded", amount=90.0, payment_method="CREDIT_CARD", quotas=3
        )

        assert txn.status == "refunded"
        assert txn.amount == 90.0
        assert txn.quotas == 3
        assert txn.expected_pay_date == datetime(2024, 1, 3)

    async def test_assign_liquidation_never_replaces(
        self, db_session, button, make_transaction, make_liquidation
    ):
        first = await make_liquidation(button, "liq-1", datetime(2024, 1, 4))
        second = await make_liquidation(button, "liq-2", datetime(2024, 1, 5))
        txn = await make_transaction(button, "tx-1")
        repo = TransactionRepository(db_session)

        assert await repo.assign_liquidation(txn, first)
        assert not await repo.assign_liquidation(txn, second)
        assert txn.liquidation_id == first.id

    async def test_list_unsettled(self, db_session, button, make_transaction, make_liquidation):
        liq = await make_liquidation(button, "liq-1", datetime(2024, 1, 4))
        await make_transaction(button, "tx-open")
        await make_transaction(button, "tx-settled", liquidation_id=liq.id)
        await make_transaction(button, "tx-rejected", status=TransactionStatus.REJECTED.value)

        unsettled = await TransactionRepository(db_session).list_unsettled(button.id)
        assert [t.transaction_id for t in unsettled] == ["tx-open"]

    async def test_list_in_window(self, db_session, button, make_transaction, make_liquidation):
        liq = await make_liquidation(button, "liq-1", datetime(2024, 1, 4))
        await make_transaction(button, "tx-in", date=datetime(2024, 1, 10))
        await make_transaction(button, "tx-settled", date=datetime(2024, 1, 11), liquidation_id=liq.id)
        await make_transaction(button, "tx-out", date=datetime(2024, 2, 10))
        repo = TransactionRepository(db_session)

        window = (datetime(2024, 1, 1), datetime(2024, 1, 31))
        assert len(await repo.list_in_window([button.id], *window)) == 2
        assert [t.transaction_id for t in await repo.list_in_window([button.id], *window, settled=True)] == ["tx-settled"]
        assert [t.transaction_id for t in await repo.list_in_window([button.id], *window, settled=False)] == ["tx-in"]
        assert await repo.list_in_window([], *window) == []


class TestLiquidationRepository:
    """Tests for the LiquidationRepository."""

    async def test_list_by_button_filters_status(self, db_session, button, make_liquidation):
        await make_liquidation(button, "liq-p", datetime(2024, 1, 4))
        await make_liquidation(button, "liq-d", datetime(2024, 1, 4), status="DEBIT")
        repo = LiquidationRepository(db_session)

        assert len(await repo.list_by_button(button.id)) == 2
        processed = await repo.list_by_button(button.id, status="PROCESSED")
        assert [liq.liquidation_id for liq in processed] == ["liq-p"]

    async def test_refresh_from_remote(self, db_session, button, make_liquidation):
        liq = await make_liquidation(button, "liq-1", datetime(2024, 1, 4), amount=10.0)
        await LiquidationRepository(db_session).refresh_from_remote(liq, amount=12.5, status="DEBIT")
        assert liq.amount == 12.5
        assert liq.status == "DEBIT"


class TestPaymentButtonRepository:
    """Tests for the read-only button repository."""

    async def test_list_by_organization(self, db_session, organization, button, second_button):
        repo = PaymentButtonRepository(db_session)
        ids = {b.id for b in await repo.list_by_organization(organization)}
        assert ids == {button.id, second_button.id}
        assert await repo.list_by_organization("nope") == []
        assert (await repo.get_by_id(button.id)).name == "Main store"


class TestSyncLedger:
    """Tests for the append-only sync ledger."""

    async def test_last_success_ignores_errors(self, db_session, button):
        ledger = SyncLedger(db_session)
        ok = await ledger.success(SyncType.TRANSACTION, "first", payment_button_id=button.id)
        await ledger.error(SyncType.TRANSACTION, "boom", payment_button_id=button.id)

        last = await ledger.last_success(SyncType.TRANSACTION, payment_button_id=button.id)
        assert last is ok

    async def test_last_success_is_per_type_and_button(self, db_session, button, second_button):
        ledger = SyncLedger(db_session)
        await ledger.success(SyncType.LIQUIDATION, "liqs", payment_button_id=button.id)

        assert await ledger.last_success(SyncType.TRANSACTION, payment_button_id=button.id) is None
        assert await ledger.last_success(SyncType.LIQUIDATION, payment_button_id=second_button.id) is None

    async def test_last_success_picks_newest(self, db_session, button):
        repo = SyncLogRepository(db_session)
        older = await repo.create("TRANSACTION", "SUCCESS", "old", payment_button_id=button.id)
        newer = await repo.create("TRANSACTION", "SUCCESS", "new", payment_button_id=button.id)
        older.created_at = datetime(2024, 1, 1)
        newer.created_at = datetime(2024, 2, 1)
        await db_session.flush()

        latest = await repo.get_latest("TRANSACTION", payment_button_id=button.id)
        assert latest.message == "new"

    async def test_recent_filters(self, db_session):
        ledger = SyncLedger(db_session)
        await ledger.success(SyncType.MATCHING, "ok")
        await ledger.error(SyncType.MATCHING, "bad")
        await ledger.error(SyncType.RECONCILIATION, "bad")

        errors = await ledger.recent(status=SyncStatus.ERROR)
        assert len(errors) == 2
        matching = await ledger.recent(type=SyncType.MATCHING)
        assert {e.status for e in matching} == {"SUCCESS", "ERROR"}
        assert len(await ledger.recent(limit=1)) == 1

    async def test_commit_error_persists(self, db_session):
        ledger = SyncLedger(db_session)
        await ledger.commit_error(SyncType.EXPECTED_DATES, "store hiccup")
        await db_session.rollback()

        entries = await ledger.recent(type=SyncType.EXPECTED_DATES)
        assert [e.message for e in entries] == ["store hiccup"]


class TestButtonLease:
    """Tests for per-button mutual exclusion."""

    async def test_second_owner_is_refused(self, db_session, button):
        first = ButtonLease(db_session, owner="worker-1")
        second = ButtonLease(db_session, owner="worker-2")

        assert await first.acquire(button.id)
        assert not await second.acquire(button.id)

    async def test_same_owner_reacquires(self, db_session, button):
        lease = ButtonLease(db_session, owner="worker-1")
        assert await lease.acquire(button.id)
        assert await lease.acquire(button.id)

    async def test_release_frees_the_button(self, db_session, button):
        first = ButtonLease(db_session, owner="worker-1")
        second = ButtonLease(db_session, owner="worker-2")

        await first.acquire(button.id)
        await first.release(button.id)
        assert await second.acquire(button.id)

    async def test_expired_lease_taken_over(self, db_session, button):
        stale = ButtonLease(db_session, owner="crashed-worker", ttl_seconds=-60)
        fresh = ButtonLease(db_session, owner="worker-2")

        assert await stale.acquire(button.id)
        assert await fresh.acquire(button.id)

        lease = (await db_session.execute(select(SyncLease))).scalar_one()
        assert lease.owner == "worker-2"
        assert lease.lease_key == f"button:{button.id}"

    async def test_release_by_non_owner_is_noop(self, db_session, button):
        repo = SyncLeaseRepository(db_session)
        await repo.acquire("button:x", "worker-1")
        assert not await repo.release("button:x", "worker-2")
        assert await repo.get_by_key("button:x") is not None

    async def test_ttl_from_env(self, db_session, monkeypatch):
        monkeypatch.setenv("SYNC_LEASE_TTL_SECONDS", "30")
        assert ButtonLease(db_session).ttl_seconds == 30

    async def test_live_lease_of_other_owner_untouched(self, db_session):
        repo = SyncLeaseRepository(db_session)
        await repo.acquire("button:x", "worker-1", ttl_seconds=600)
        before = (await repo.get_by_key("button:x")).expires_at

        assert not await repo.acquire("button:x", "worker-2")
        lease = await repo.get_by_key("button:x")
        assert lease.owner == "worker-1"
        assert lease.expires_at == before

    async def test_racing_workers_share_one_expired_lease(self, tmp_path):
        """Two sessions on separate connections race for the same stale lease."""
        url = f"sqlite+aiosqlite:///{tmp_path / 'leases.db'}"
        engines = [create_async_engine(database_url=url) for _ in range(2)]
        async with engines[0].begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        async with get_async_session_factory(engines[0])() as session:
            session.add(SyncLease(
                lease_key="button:x",
                owner="crashed-worker",
                acquired_at=datetime(2024, 1, 1),
                expires_at=datetime(2024, 1, 1, 0, 15),
            ))
            await session.commit()

        async def take(engine, owner):
            async with get_async_session_factory(engine)() as session:
                acquired = await SyncLeaseRepository(session).acquire("button:x", owner)
                await session.commit()
                return acquired

        try:
            results = await asyncio.gather(
                take(engines[0], "worker-1"),
                take(engines[1], "worker-2"),
            )
            async with get_async_session_factory(engines[0])() as session:
                lease = await SyncLeaseRepository(session).get_by_key("button:x")
        finally:
            for engine in engines:
                await engine.dispose()

        assert sorted(results) == [False, True]
        winner = "worker-1" if results[0] else "worker-2"
        assert lease.owner == winner


class TestButtonScope:
    """Tests for the button snapshot."""

    def test_requires_persisted_button(self):
        with pytest.raises(SyncValidationError):
            ButtonScope.from_button(None)

    def test_scope_passes_through(self):
        scope = ButtonScope(id="b", name="n", organization_id="o", api_key="k", secret_key="s")
        assert ButtonScope.from_button(scope) is scope
