"""Result models for sync, matching and summaries."""

from datetime import datetime
from typing import Optional, Dict, Any, List, Literal

from pydantic import BaseModel, Field

from ..database.models import utcnow


class RecordError(BaseModel):
    """A single upstream record that could not be stored."""
    record_id: Optional[str] = Field(None, description="External id, when it could be read")
    message: str


class EntitySyncResult(BaseModel):
    """Outcome of syncing one entity type for one payment button."""
    entity: Literal["transactions", "liquidations"]
    payment_button_id: str
    success: bool = False
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    total: int = Field(default=0, description="Records received from the processor")
    created: int = 0
    updated: int = 0
    failed: int = Field(default=0, description="Malformed records skipped")
    errors: List[RecordError] = Field(default_factory=list)
    error_message: Optional[str] = Field(None, description="Set when the whole entity sync failed")


class ProcessorMatchResult(BaseModel):
    """Outcome of matching via liquidation membership lookups."""
    payment_button_id: str
    success: bool = False
    matched: int = 0
    liquidations_checked: int = 0
    skipped_liquidations: List[str] = Field(default_factory=list)
    error_message: Optional[str] = None


class ButtonSyncResult(BaseModel):
    """Everything a single button pass did."""
    payment_button_id: str
    payment_button_name: Optional[str] = None
    skipped: bool = Field(default=False, description="True when another worker held the button lease")
    transactions: Optional[EntitySyncResult] = None
    liquidations: Optional[EntitySyncResult] = None
    matching: Optional[ProcessorMatchResult] = None
    error_message: Optional[str] = None

    @property
    def success(self) -> bool:
        if self.skipped or self.error_message:
            return False
        parts = [p for p in (self.transactions, self.liquidations, self.matching) if p is not None]
        return bool(parts) and all(p.success for p in parts)


class BackfillResult(BaseModel):
    """Outcome of filling missing expected settlement dates."""
    success: bool = False
    updated: int = 0
    error_message: Optional[str] = None


class FleetSyncResult(BaseModel):
    """Outcome of a sync pass across many payment buttons."""
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    buttons: List[ButtonSyncResult] = Field(default_factory=list)
    backfill: Optional[BackfillResult] = None

    @property
    def success(self) -> bool:
        backfill_ok = self.backfill is None or self.backfill.success
        return backfill_ok and all(b.success for b in self.buttons)

    @property
    def failed_buttons(self) -> List[str]:
        return [b.payment_button_id for b in self.buttons if not b.success]

    def to_summary_dict(self) -> Dict[str, Any]:
        """Counts per button without per-record detail."""
        buttons = []
        for b in self.buttons:
            entry: Dict[str, Any] = {
                "payment_button_id": b.payment_button_id,
                "payment_button_name": b.payment_button_name,
                "success": b.success,
                "skipped": b.skipped,
            }
            for name in ("transactions", "liquidations"):
                part = getattr(b, name)
                if part is not None:
                    entry[name] = {
                        "success": part.success,
                        "total": part.total,
                        "created": part.created,
                        "updated": part.updated,
                        "failed": part.failed,
                        "error_message": part.error_message,
                    }
            if b.matching is not None:
                entry["matching"] = {
                    "success": b.matching.success,
                    "matched": b.matching.matched,
                    "error_message": b.matching.error_message,
                }
            buttons.append(entry)
        return {
            "success": self.success,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "buttons": buttons,
            "backfill": self.backfill.model_dump() if self.backfill else None,
        }


class MatchPolicy(BaseModel):
    """How the heuristic matcher picks a liquidation for a transaction.

    order:
        "earliest" sorts candidates by settlement date (then external id);
        "storage" keeps the order rows come back from the database.
    exclusive:
        False lets one liquidation absorb any number of transactions in a
        pass; True removes a liquidation from the candidate list once used.
    """
    order: Literal["earliest", "storage"] = "earliest"
    exclusive: bool = False


class MatchRecord(BaseModel):
    transaction_id: str
    liquidation_id: str
    amount: float


class ReconcileResult(BaseModel):
    """Outcome of the heuristic match for one organization."""
    organization_id: str
    success: bool = False
    matched: int = 0
    pending: int = 0
    total_matched: float = 0.0
    total_pending: float = 0.0
    matches: List[MatchRecord] = Field(default_factory=list)
    skipped_buttons: List[str] = Field(default_factory=list)
    error_message: Optional[str] = None


class PaymentMethodBreakdown(BaseModel):
    reconciled: float = 0.0
    pending: float = 0.0
    total: float = 0.0


class ReconciliationSummary(BaseModel):
    """Aggregated reconciliation figures for an organization and window."""
    organization_id: str
    start: datetime
    end: datetime
    generated_at: datetime = Field(default_factory=utcnow)

    total_reconciled: float = 0.0
    total_pending: float = 0.0
    total_liquidated: float = 0.0
    total_overdue: float = 0.0

    reconciled_count: int = 0
    pending_count: int = 0
    liquidation_count: int = 0
    overdue_count: int = 0

    by_payment_method: Dict[str, PaymentMethodBreakdown] = Field(default_factory=dict)

    @property
    def reconciliation_rate(self) -> str:
        total = self.reconciled_count + self.pending_count
        if total == 0:
            return "N/A"
        return f"{(self.reconciled_count / total * 100):.2f}%"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "organization_id": self.organization_id,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "generated_at": self.generated_at.isoformat(),
            "totals": {
                "reconciled": self.total_reconciled,
                "pending": self.total_pending,
                "liquidated": self.total_liquidated,
                "overdue": self.total_overdue,
            },
            "counts": {
                "reconciled": self.reconciled_count,
                "pending": self.pending_count,
                "liquidations": self.liquidation_count,
                "overdue": self.overdue_count,
            },
            "reconciliation_rate": self.reconciliation_rate,
            "by_payment_method": {
                method: breakdown.model_dump()
                for method, breakdown in self.by_payment_method.items()
            },
        }
