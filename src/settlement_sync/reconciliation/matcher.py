"""Matching of unsettled transactions to liquidations."""

import logging
import math
from datetime import datetime
from typing import Any, Callable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..database import (
    Liquidation,
    LiquidationRepository,
    LiquidationStatus,
    PaymentButtonRepository,
    SyncType,
    Transaction,
    TransactionRepository,
    as_naive_utc,
    utcnow,
)
from ..errors import SettlementSyncError, SyncValidationError, describe_error
from ..processor import ProcessorClientBase, ProcessorConfig, get_processor_client
from .dates import expected_payment_date
from .ledger import SyncLedger
from .models import (
    BackfillResult,
    MatchPolicy,
    MatchRecord,
    ProcessorMatchResult,
    ReconcileResult,
)
from .scope import ButtonLease, ButtonScope

logger = logging.getLogger(__name__)

ClientFactory = Callable[[ProcessorConfig], ProcessorClientBase]


def order_candidates(liquidations: List[Liquidation], policy: MatchPolicy) -> List[Liquidation]:
    """Arrange candidate liquidations according to the match policy."""
    if policy.order == "earliest":
        return sorted(liquidations, key=lambda liq: (liq.date, liq.liquidation_id))
    return list(liquidations)


class MatchingEngine:
    """
    Links completed transactions to the liquidations that paid them out.

    Two strategies are available: a local heuristic based on expected
    settlement dates (reconcile) and a processor-driven one that asks the
    processor which transactions each liquidation contains
    (match_via_processor). Neither ever replaces an existing link.
    """

    def __init__(
        self,
        session: AsyncSession,
        client_factory: Optional[ClientFactory] = None,
        policy: Optional[MatchPolicy] = None,
        lease: Optional[ButtonLease] = None,
    ):
        """Initialize the matching engine.

        Args:
            session: Async database session.
            client_factory: Builds a processor client from a per-button
                configuration. Defaults to get_processor_client.
            policy: Candidate selection policy for reconcile.
            lease: Per-button lease helper; a fresh one is created if omitted.
        """
        self.session = session
        self.client_factory = client_factory or get_processor_client
        self.policy = policy or MatchPolicy()
        self.lease = lease or ButtonLease(session)
        self.ledger = SyncLedger(session)
        self.buttons = PaymentButtonRepository(session)
        self.transactions = TransactionRepository(session)
        self.liquidations = LiquidationRepository(session)

    async def reconcile(
        self,
        organization_id: str,
        policy: Optional[MatchPolicy] = None,
    ) -> ReconcileResult:
        """Run the heuristic match for every button of an organization.

        A transaction is matched to the first candidate liquidation of the
        same button whose settlement date is strictly after the
        transaction's expected settlement date.

        Args:
            organization_id: Organization whose buttons are processed.
            policy: Overrides the engine's policy for this call.

        Returns:
            ReconcileResult; failures are reported in it, not raised.

        Raises:
            SyncValidationError: If organization_id is empty.
        """
        if not organization_id:
            raise SyncValidationError("organization_id is required")

        policy = policy or self.policy
        result = ReconcileResult(organization_id=organization_id)
        matched_amounts: List[float] = []
        pending_amounts: List[float] = []

        logger.info(
            f"Reconciling organization {organization_id} "
            f"(order={policy.order}, exclusive={policy.exclusive})"
        )

        try:
            scopes = [
                ButtonScope.from_button(b)
                for b in await self.buttons.list_by_organization(organization_id)
            ]
            for scope in scopes:
                if not await self.lease.acquire(scope.id):
                    result.skipped_buttons.append(scope.id)
                    continue
                try:
                    await self._reconcile_button(
                        scope, policy, result, matched_amounts, pending_amounts
                    )
                finally:
                    await self.lease.release(scope.id)

            result.total_matched = math.fsum(matched_amounts)
            result.total_pending = math.fsum(pending_amounts)
            result.success = True

            message = (
                f"Reconciled {result.matched} transactions, {result.pending} pending "
                f"(matched {result.total_matched}, pending {result.total_pending})"
            )
            if result.skipped_buttons:
                message += f"; skipped locked buttons: {', '.join(result.skipped_buttons)}"
            await self.ledger.success(
                SyncType.RECONCILIATION, message, organization_id=organization_id
            )
            await self.session.commit()
        except Exception as e:
            await self.session.rollback()
            result.success = False
            result.total_matched = math.fsum(matched_amounts)
            result.total_pending = math.fsum(pending_amounts)
            result.error_message = describe_error(e)
            logger.error(f"Reconciliation for organization {organization_id} failed: {e}")
            await self.ledger.commit_error(
                SyncType.RECONCILIATION, result.error_message, organization_id=organization_id
            )

        return result

    async def _reconcile_button(
        self,
        scope: ButtonScope,
        policy: MatchPolicy,
        result: ReconcileResult,
        matched_amounts: List[float],
        pending_amounts: List[float],
    ) -> None:
        transactions = [
            t for t in await self.transactions.list_unsettled(scope.id)
            if t.expected_pay_date is not None
        ]
        candidates = order_candidates(await self.liquidations.list_by_button(scope.id), policy)

        for txn in transactions:
            liquidation = next(
                (liq for liq in candidates if liq.date > txn.expected_pay_date),
                None,
            )
            if liquidation is None:
                result.pending += 1
                pending_amounts.append(txn.amount)
                continue

            if not await self.transactions.assign_liquidation(txn, liquidation):
                continue
            await self.session.commit()

            result.matched += 1
            matched_amounts.append(txn.amount)
            result.matches.append(
                MatchRecord(
                    transaction_id=txn.transaction_id,
                    liquidation_id=liquidation.liquidation_id,
                    amount=txn.amount,
                )
            )
            if policy.exclusive:
                candidates.remove(liquidation)

    async def match_via_processor(
        self,
        button: Any,
        client: Optional[ProcessorClientBase] = None,
    ) -> ProcessorMatchResult:
        """Assign transactions using the processor's liquidation membership.

        Every PROCESSED liquidation of the button is looked up upstream; a
        lookup failure skips that liquidation only.

        Args:
            button: PaymentButton (or ButtonScope) to match.
            client: Processor client to reuse; one is built (and closed)
                from the button credentials when omitted.

        Returns:
            ProcessorMatchResult with the matched count.
        """
        scope = ButtonScope.from_button(button)
        result = ProcessorMatchResult(payment_button_id=scope.id)
        owns_client = client is None

        try:
            if client is None:
                client = self.client_factory(ProcessorConfig.from_button(scope))
            liquidations = await self.liquidations.list_by_button(
                scope.id, status=LiquidationStatus.PROCESSED.value
            )
        except Exception as e:
            await self.session.rollback()
            result.error_message = describe_error(e)
            logger.error(f"Processor matching setup failed for button {scope.id}: {e}")
            await self.ledger.commit_error(
                SyncType.MATCHING, result.error_message,
                payment_button_id=scope.id, organization_id=scope.organization_id,
            )
            return result

        try:
            for liquidation in liquidations:
                result.liquidations_checked += 1
                external_id = liquidation.liquidation_id
                try:
                    member_ids = await client.get_liquidation_transactions(external_id)
                except SettlementSyncError as e:
                    logger.warning(f"Skipping liquidation {external_id}: {describe_error(e)}")
                    result.skipped_liquidations.append(external_id)
                    continue

                for transaction_id in member_ids:
                    txn = await self.transactions.get_by_external_id(transaction_id)
                    if txn is None:
                        continue
                    if await self.transactions.assign_liquidation(txn, liquidation):
                        result.matched += 1
                await self.session.commit()

            result.success = True
            message = (
                f"Matched {result.matched} transactions across "
                f"{result.liquidations_checked} liquidations"
            )
            if result.skipped_liquidations:
                message += (
                    f"; skipped {len(result.skipped_liquidations)} liquidation(s): "
                    f"{', '.join(result.skipped_liquidations)}"
                )
            await self.ledger.success(
                SyncType.MATCHING, message,
                payment_button_id=scope.id, organization_id=scope.organization_id,
            )
            await self.session.commit()
        except Exception as e:
            await self.session.rollback()
            result.success = False
            result.error_message = describe_error(e)
            logger.error(f"Processor matching failed for button {scope.id}: {e}")
            await self.ledger.commit_error(
                SyncType.MATCHING, result.error_message,
                payment_button_id=scope.id, organization_id=scope.organization_id,
            )
        finally:
            if owns_client and client is not None:
                await client.close()

        return result

    async def backfill_expected_dates(self) -> BackfillResult:
        """Compute expected dates for pending transactions that lack one."""
        result = BackfillResult()
        try:
            pending = await self.transactions.list_missing_expected_date()
            for txn in pending:
                await self.transactions.set_expected_pay_date(
                    txn,
                    expected_payment_date(txn.date, txn.payment_method, txn.quotas),
                )
                result.updated += 1

            await self.ledger.success(
                SyncType.EXPECTED_DATES,
                f"Calculated expected payment dates for {result.updated} transactions",
            )
            await self.session.commit()
            result.success = True
        except Exception as e:
            await self.session.rollback()
            result.updated = 0
            result.error_message = describe_error(e)
            logger.error(f"Expected date backfill failed: {e}")
            await self.ledger.commit_error(SyncType.EXPECTED_DATES, result.error_message)

        return result

    async def find_overdue(
        self,
        organization_id: str,
        as_of: Optional[datetime] = None,
    ) -> List[Transaction]:
        """Completed, unsettled transactions whose expected date has passed."""
        if not organization_id:
            raise SyncValidationError("organization_id is required")
        buttons = await self.buttons.list_by_organization(organization_id)
        return await self.transactions.list_overdue(
            [b.id for b in buttons],
            as_naive_utc(as_of) or utcnow(),
        )

