"""Synchronization of transactions and liquidations from the processor."""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from ..database import (
    LiquidationRepository,
    LiquidationStatus,
    PaymentButtonRepository,
    SyncType,
    TransactionRepository,
    as_naive_utc,
    utcnow,
)
from ..errors import MalformedPayloadError, SyncValidationError, describe_error
from ..processor import (
    ProcessorClientBase,
    ProcessorConfig,
    RemoteLiquidation,
    RemoteTransaction,
    get_processor_client,
    normalize_transaction_status,
)
from .dates import expected_payment_date
from .ledger import SyncLedger
from .matcher import MatchingEngine
from .models import (
    ButtonSyncResult,
    EntitySyncResult,
    FleetSyncResult,
    RecordError,
)
from .scope import ButtonLease, ButtonScope

logger = logging.getLogger(__name__)

ClientFactory = Callable[[ProcessorConfig], ProcessorClientBase]

# Lookback used when a button has never synced successfully
TRANSACTION_LOOKBACK_DAYS = 30
LIQUIDATION_LOOKBACK_DAYS = 60


def validate_window(
    from_date: Optional[datetime],
    to_date: Optional[datetime],
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Reject a half-given or inverted window before any I/O happens.

    Returns:
        The bounds as naive UTC, matching the stored columns.
    """
    from_date, to_date = as_naive_utc(from_date), as_naive_utc(to_date)
    if (from_date is None) != (to_date is None):
        raise SyncValidationError("from_date and to_date must be given together")
    if from_date is not None and to_date is not None and from_date >= to_date:
        raise SyncValidationError("from_date must be before to_date")
    return from_date, to_date


class SyncEngine:
    """
    Pulls transactions and liquidations for payment buttons and upserts them.

    Records are keyed by the processor's external id, so running the same
    window twice creates nothing new. Each record is committed on its own:
    a failure halfway through a listing keeps what was already stored.
    Failures never propagate past a single button.
    """

    def __init__(
        self,
        session: AsyncSession,
        client_factory: Optional[ClientFactory] = None,
        lease: Optional[ButtonLease] = None,
        matcher: Optional[MatchingEngine] = None,
        transaction_lookback_days: int = TRANSACTION_LOOKBACK_DAYS,
        liquidation_lookback_days: int = LIQUIDATION_LOOKBACK_DAYS,
    ):
        """Initialize the sync engine.

        Args:
            session: Async database session.
            client_factory: Builds a processor client from a per-button
                configuration. Defaults to get_processor_client.
            lease: Per-button lease helper; a fresh one is created if omitted.
            matcher: Matching engine used after each button sync.
            transaction_lookback_days: Window start for a first transaction sync.
            liquidation_lookback_days: Window start for a first liquidation sync.
        """
        self.session = session
        self.client_factory = client_factory or get_processor_client
        self.lease = lease or ButtonLease(session)
        self.matcher = matcher or MatchingEngine(
            session, client_factory=self.client_factory, lease=self.lease
        )
        self.transaction_lookback_days = transaction_lookback_days
        self.liquidation_lookback_days = liquidation_lookback_days
        self.ledger = SyncLedger(session)
        self.buttons = PaymentButtonRepository(session)
        self.transactions = TransactionRepository(session)
        self.liquidations = LiquidationRepository(session)

    async def resolve_window(
        self,
        type: SyncType,
        payment_button_id: str,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> Tuple[datetime, datetime]:
        """Work out the sync window for one entity type of one button.

        An explicit window wins. Otherwise the window starts at the last
        successful sync of that type for the button, or at the lookback
        default, and ends now.
        """
        from_date, to_date = validate_window(from_date, to_date)
        if from_date is not None and to_date is not None:
            return from_date, to_date

        now = utcnow()
        last = await self.ledger.last_success(type, payment_button_id=payment_button_id)
        if last is not None:
            return last.created_at, now

        days = (
            self.transaction_lookback_days
            if type == SyncType.TRANSACTION
            else self.liquidation_lookback_days
        )
        return now - timedelta(days=days), now

    async def sync_transactions(
        self,
        button: Any,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
        client: Optional[ProcessorClientBase] = None,
    ) -> EntitySyncResult:
        """Upsert the button's transactions for the window.

        Args:
            button: PaymentButton (or ButtonScope) to sync.
            from_date: Window start; requires to_date.
            to_date: Window end; requires from_date.
            client: Processor client to reuse; one is built (and closed)
                from the button credentials when omitted.

        Returns:
            EntitySyncResult with created/updated/failed counts.

        Raises:
            SyncValidationError: If the window is half-given or inverted.
        """
        from_date, to_date = validate_window(from_date, to_date)
        scope = ButtonScope.from_button(button)
        result = EntitySyncResult(entity="transactions", payment_button_id=scope.id)
        owns_client = client is None

        try:
            result.from_date, result.to_date = await self.resolve_window(
                SyncType.TRANSACTION, scope.id, from_date, to_date
            )
            if client is None:
                client = self.client_factory(ProcessorConfig.from_button(scope))

            records = await client.list_transactions(result.from_date, result.to_date)
            result.total = len(records)

            for payload in records:
                try:
                    remote = RemoteTransaction.from_payload(payload)
                except MalformedPayloadError as e:
                    self._record_failure(result, e)
                    continue
                await self._upsert_transaction(scope, remote, result)
                await self.session.commit()

            await self.ledger.success(
                SyncType.TRANSACTION,
                self._summary_message("transactions", result),
                payment_button_id=scope.id,
                organization_id=scope.organization_id,
            )
            await self.session.commit()
            result.success = True
        except Exception as e:
            await self.session.rollback()
            result.success = False
            result.error_message = describe_error(e)
            logger.error(f"Transaction sync failed for button {scope.id}: {e}")
            await self.ledger.commit_error(
                SyncType.TRANSACTION, result.error_message,
                payment_button_id=scope.id, organization_id=scope.organization_id,
            )
        finally:
            if owns_client and client is not None:
                await client.close()

        return result

    async def _upsert_transaction(
        self,
        scope: ButtonScope,
        remote: RemoteTransaction,
        result: EntitySyncResult,
    ) -> None:
        status = normalize_transaction_status(remote.status)
        quotas = remote.installments or 1
        existing = await self.transactions.get_by_external_id(remote.id)

        if existing is None:
            await self.transactions.create(
                transaction_id=remote.id,
                amount=remote.amount,
                currency=remote.currency or "ARS",
                status=status,
                payment_method=remote.payment_method,
                quotas=quotas,
                date=remote.date,
                expected_pay_date=expected_payment_date(
                    remote.date, remote.payment_method, quotas
                ),
                payment_button_id=scope.id,
            )
            result.created += 1
        else:
            await self.transactions.refresh_from_remote(
                existing,
                status=status,
                amount=remote.amount,
                payment_method=remote.payment_method,
                quotas=quotas,
            )
            result.updated += 1

    async def sync_liquidations(
        self,
        button: Any,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
        client: Optional[ProcessorClientBase] = None,
    ) -> EntitySyncResult:
        """Upsert the button's liquidations for the window.

        A record whose amount or date cannot be parsed is skipped and
        reported; the rest of the listing is still stored.

        Raises:
            SyncValidationError: If the window is half-given or inverted.
        """
        from_date, to_date = validate_window(from_date, to_date)
        scope = ButtonScope.from_button(button)
        result = EntitySyncResult(entity="liquidations", payment_button_id=scope.id)
        owns_client = client is None

        try:
            result.from_date, result.to_date = await self.resolve_window(
                SyncType.LIQUIDATION, scope.id, from_date, to_date
            )
            if client is None:
                client = self.client_factory(ProcessorConfig.from_button(scope))

            response = await client.list_liquidations(result.from_date, result.to_date)
            result.total = len(response.liquidaciones)

            for payload in response.liquidaciones:
                try:
                    remote = RemoteLiquidation.from_payload(payload)
                    amount = remote.parsed_amount()
                    settled_on = remote.parsed_date()
                except MalformedPayloadError as e:
                    self._record_failure(result, e)
                    continue

                status = (
                    LiquidationStatus.DEBIT.value
                    if remote.is_debit_card
                    else LiquidationStatus.PROCESSED.value
                )
                existing = await self.liquidations.get_by_external_id(remote.liquidation_id)
                if existing is None:
                    await self.liquidations.create(
                        liquidation_id=remote.liquidation_id,
                        amount=amount,
                        date=settled_on,
                        status=status,
                        payment_button_id=scope.id,
                    )
                    result.created += 1
                else:
                    await self.liquidations.refresh_from_remote(existing, amount=amount, status=status)
                    result.updated += 1
                await self.session.commit()

            await self.ledger.success(
                SyncType.LIQUIDATION,
                self._summary_message("liquidations", result),
                payment_button_id=scope.id,
                organization_id=scope.organization_id,
            )
            await self.session.commit()
            result.success = True
        except Exception as e:
            await self.session.rollback()
            result.success = False
            result.error_message = describe_error(e)
            logger.error(f"Liquidation sync failed for button {scope.id}: {e}")
            await self.ledger.commit_error(
                SyncType.LIQUIDATION, result.error_message,
                payment_button_id=scope.id, organization_id=scope.organization_id,
            )
        finally:
            if owns_client and client is not None:
                await client.close()

        return result

    async def sync_payment_button(
        self,
        button: Any,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> ButtonSyncResult:
        """Full pass for one button: transactions, liquidations, then matching.

        The button lease is held for the whole pass. If another worker holds
        it, nothing is fetched and the result is marked skipped.

        Raises:
            SyncValidationError: If the window is half-given or inverted, or
                the button is not persisted.
        """
        from_date, to_date = validate_window(from_date, to_date)
        scope = ButtonScope.from_button(button)
        result = ButtonSyncResult(payment_button_id=scope.id, payment_button_name=scope.name)
        client: Optional[ProcessorClientBase] = None

        try:
            if not await self.lease.acquire(scope.id):
                result.skipped = True
                return result
        except Exception as e:
            await self.session.rollback()
            result.error_message = describe_error(e)
            logger.error(f"Could not acquire lease for button {scope.id}: {e}")
            return result

        try:
            client = self.client_factory(ProcessorConfig.from_button(scope))
            result.transactions = await self.sync_transactions(
                scope, from_date, to_date, client=client
            )
            result.liquidations = await self.sync_liquidations(
                scope, from_date, to_date, client=client
            )
            result.matching = await self.matcher.match_via_processor(scope, client=client)
        except Exception as e:
            await self.session.rollback()
            result.error_message = describe_error(e)
            logger.error(f"Sync of button {scope.id} failed: {e}")
        finally:
            if client is not None:
                await client.close()
            await self.lease.release(scope.id)

        logger.info(
            f"Button {scope.name or scope.id} synced "
            f"(success={result.success})"
        )
        return result

    async def sync_all(self, buttons: Optional[Iterable[Any]] = None) -> FleetSyncResult:
        """Sync every button one after another, then backfill expected dates.

        Args:
            buttons: Buttons to sync; all registered buttons when omitted.

        Returns:
            FleetSyncResult. A failing button never stops the next one.
        """
        fleet = FleetSyncResult()

        if buttons is None:
            buttons = await self.buttons.list_all()
        scopes = [ButtonScope.from_button(b) for b in buttons]

        if not scopes:
            logger.info("No payment buttons registered, nothing to sync")

        for scope in scopes:
            try:
                fleet.buttons.append(await self.sync_payment_button(scope))
            except Exception as e:
                await self.session.rollback()
                logger.error(f"Unexpected failure syncing button {scope.id}: {e}")
                fleet.buttons.append(
                    ButtonSyncResult(
                        payment_button_id=scope.id,
                        payment_button_name=scope.name,
                        error_message=describe_error(e),
                    )
                )

        fleet.backfill = await self.matcher.backfill_expected_dates()
        fleet.completed_at = utcnow()

        failed = fleet.failed_buttons
        logger.info(
            f"Synced {len(fleet.buttons) - len(failed)}/{len(fleet.buttons)} payment buttons"
        )
        return fleet

    @staticmethod
    def _record_failure(result: EntitySyncResult, error: MalformedPayloadError) -> None:
        result.failed += 1
        result.errors.append(RecordError(record_id=error.record_id, message=str(error)))
        logger.warning(f"Skipping {result.entity} record: {describe_error(error)}")

    @staticmethod
    def _summary_message(entity: str, result: EntitySyncResult) -> str:
        message = (
            f"Synced {result.created + result.updated} {entity} "
            f"({result.created} new, {result.updated} updated)"
        )
        if result.failed:
            ids = ", ".join(e.record_id or "?" for e in result.errors)
            message += (
                f"; {MalformedPayloadError.kind}: {result.failed} record(s) skipped ({ids})"
            )
        return message
