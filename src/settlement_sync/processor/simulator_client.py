"""Simulator processor client for exercising sync flows without real API calls."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any, List, Optional, Set

from ..errors import ProcessorConnectionError, ProcessorResponseError
from .base import ProcessorClientBase, LiquidationListResponse

logger = logging.getLogger(__name__)


class SimulatorScenario(str, Enum):
    """Failure modes the simulator can inject per operation."""
    SUCCESS = "success"
    TIMEOUT = "timeout"
    REJECTED = "rejected"


@dataclass
class SimulatorConfig:
    """Configuration for simulator behavior."""
    delay_ms: int = 0
    # operation name -> scenario, e.g. {"list_liquidations": SimulatorScenario.TIMEOUT}
    scenarios: Dict[str, SimulatorScenario] = field(default_factory=dict)
    # liquidation ids whose membership lookup fails
    failing_liquidations: Set[str] = field(default_factory=set)


class SimulatorProcessorClient(ProcessorClientBase):
    """
    In-memory processor. Records are held as raw wire payloads so malformed
    data can be injected exactly as the real API would deliver it.
    """

    def __init__(self, config: Optional[SimulatorConfig] = None):
        self.config = config or SimulatorConfig()
        self._transactions: Dict[str, Dict[str, Any]] = {}
        self._liquidations: Dict[str, Dict[str, Any]] = {}
        self._members: Dict[str, List[str]] = {}
        self.calls: List[str] = []

    async def _apply(self, operation: str) -> None:
        self.calls.append(operation)
        if self.config.delay_ms > 0:
            await asyncio.sleep(self.config.delay_ms / 1000.0)
        scenario = self.config.scenarios.get(operation, SimulatorScenario.SUCCESS)
        if scenario == SimulatorScenario.TIMEOUT:
            raise ProcessorConnectionError(f"simulated timeout in {operation}")
        if scenario == SimulatorScenario.REJECTED:
            raise ProcessorResponseError(f"simulated rejection in {operation}", status_code=500)

    def add_transaction(
        self,
        transaction_id: str,
        date: Any,
        amount: Any,
        payment_method: str = "DEBIT_CARD",
        status: str = "REALIZADA",
        installments: Optional[int] = None,
        currency: Optional[str] = None,
        **extra: Any,
    ) -> Dict[str, Any]:
        """Add or replace a transaction record (dates may be datetime or string)."""
        record: Dict[str, Any] = {
            "id": transaction_id,
            "date": date.isoformat() if isinstance(date, datetime) else date,
            "amount": amount,
            "payment_method": payment_method,
            "status": status,
        }
        if installments is not None:
            record["installments"] = installments
        if currency is not None:
            record["currency"] = currency
        record.update(extra)
        self._transactions[transaction_id] = record
        return record

    def add_liquidation(
        self,
        liquidation_id: str,
        net_amount: str,
        settlement_date: str,
        sub_entity: str = "",
        transaction_ids: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """Add or replace a liquidation and the transactions it settles."""
        record = {
            "liquidacionId": liquidation_id,
            "NetoLiquidacion": net_amount,
            "FechaLiquidacion": settlement_date,
            "NumeroSubente": sub_entity,
        }
        self._liquidations[liquidation_id] = record
        self._members[liquidation_id] = list(transaction_ids or [])
        return record

    async def list_transactions(
        self,
        from_date: datetime,
        to_date: datetime,
    ) -> List[Dict[str, Any]]:
        await self._apply("list_transactions")
        return [dict(r) for r in self._transactions.values()]

    async def list_liquidations(
        self,
        from_date: datetime,
        to_date: datetime,
    ) -> LiquidationListResponse:
        await self._apply("list_liquidations")
        return LiquidationListResponse(
            status=True,
            code=200,
            liquidaciones=[dict(r) for r in self._liquidations.values()],
        )

    async def get_liquidation_transactions(self, liquidation_id: str) -> List[str]:
        await self._apply("get_liquidation_transactions")
        if liquidation_id in self.config.failing_liquidations:
            raise ProcessorConnectionError(f"simulated failure for liquidation {liquidation_id}")
        return list(self._members.get(liquidation_id, []))

    def clear(self) -> None:
        """Clear all stored records (for test cleanup)."""
        self._transactions.clear()
        self._liquidations.clear()
        self._members.clear()
        self.calls.clear()
