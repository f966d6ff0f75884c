"""API endpoints for sync, matching and summary operations."""

import logging
from datetime import datetime
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import limiter, verify_api_key
from ..database import PaymentButtonRepository, SyncStatus, SyncType, get_db
from ..errors import SyncValidationError
from .ledger import SyncLedger
from .matcher import MatchingEngine
from .models import MatchPolicy
from .report import REPORT_FORMATS, ReportGenerator
from .summary import SummaryAggregator
from .sync import SyncEngine

logger = logging.getLogger(__name__)

sync_router = APIRouter(prefix="/sync", tags=["sync"])
router = APIRouter(prefix="/reconciliation", tags=["reconciliation"])


class SyncRunBody(BaseModel):
    """Request body for a fleet sync pass."""
    organization_id: Optional[str] = Field(None, description="Only sync this organization's buttons")


class SyncWindowBody(BaseModel):
    """Optional explicit window for a single button sync."""
    from_date: Optional[datetime] = Field(None, description="Window start; requires to_date")
    to_date: Optional[datetime] = Field(None, description="Window end; requires from_date")


class ReconcileBody(BaseModel):
    """Match policy for a heuristic reconciliation run."""
    order: Literal["earliest", "storage"] = "earliest"
    exclusive: bool = False


@sync_router.post("/run")
@limiter.limit("10/minute")
async def run_sync(
    request: Request,
    body: Optional[SyncRunBody] = None,
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
) -> Dict[str, Any]:
    """
    Sync every payment button (or one organization's buttons).

    Per-button failures are reported in the body; the endpoint itself only
    fails on bad input.
    """
    body = body or SyncRunBody()
    buttons = None
    if body.organization_id:
        buttons = await PaymentButtonRepository(db).list_by_organization(body.organization_id)

    logger.info(
        f"Starting sync pass for "
        f"{'organization ' + body.organization_id if body.organization_id else 'all buttons'}"
    )
    fleet = await SyncEngine(db).sync_all(buttons)
    return fleet.to_summary_dict()


@sync_router.post("/buttons/{button_id}")
async def sync_button(
    button_id: str,
    body: Optional[SyncWindowBody] = None,
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
) -> Dict[str, Any]:
    """Sync a single payment button, optionally for an explicit window."""
    body = body or SyncWindowBody()
    button = await PaymentButtonRepository(db).get_by_id(button_id)
    if button is None:
        raise HTTPException(status_code=404, detail="Payment button not found")

    try:
        result = await SyncEngine(db).sync_payment_button(button, body.from_date, body.to_date)
    except SyncValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {**result.model_dump(mode="json"), "success": result.success}


@sync_router.get("/logs")
async def list_sync_logs(
    type: Optional[SyncType] = Query(default=None, description="Operation type"),
    status: Optional[SyncStatus] = Query(default=None, description="SUCCESS or ERROR"),
    payment_button_id: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
) -> Dict[str, Any]:
    """Most recent ledger entries, newest first."""
    entries = await SyncLedger(db).recent(
        type=type, status=status, payment_button_id=payment_button_id, limit=limit
    )
    return {"logs": [e.to_dict() for e in entries]}


@router.post("/organizations/{organization_id}/reconcile")
async def reconcile_organization(
    organization_id: str,
    body: Optional[ReconcileBody] = None,
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
) -> Dict[str, Any]:
    """Match an organization's completed transactions to liquidations."""
    body = body or ReconcileBody()
    policy = MatchPolicy(order=body.order, exclusive=body.exclusive)
    try:
        result = await MatchingEngine(db, policy=policy).reconcile(organization_id)
    except SyncValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return result.model_dump(mode="json")


@router.post("/backfill")
async def backfill_expected_dates(
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
) -> Dict[str, Any]:
    """Fill in missing expected settlement dates on pending transactions."""
    result = await MatchingEngine(db).backfill_expected_dates()
    return result.model_dump(mode="json")


@router.get("/organizations/{organization_id}/overdue")
async def list_overdue(
    organization_id: str,
    as_of: Optional[datetime] = Query(default=None, description="Reference time, defaults to now"),
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
) -> Dict[str, Any]:
    """Completed transactions still unpaid after their expected settlement date."""
    transactions = await MatchingEngine(db).find_overdue(organization_id, as_of)
    return {"transactions": [t.to_dict() for t in transactions]}


@router.get("/organizations/{organization_id}/summary")
async def get_summary(
    organization_id: str,
    from_date: Optional[datetime] = Query(default=None, description="Window start"),
    to_date: Optional[datetime] = Query(default=None, description="Window end"),
    format: str = Query(default="json", description="Output format: json, csv, text"),
    db: AsyncSession = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    """
    Reconciled, pending and liquidated totals for an organization.

    Defaults to the current month when no window is given.
    """
    if format not in REPORT_FORMATS:
        raise HTTPException(
            status_code=400,
            detail=f"format must be one of: {', '.join(REPORT_FORMATS)}"
        )

    try:
        summary = await SummaryAggregator(db).summarize(organization_id, from_date, to_date)
    except SyncValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if format == "json":
        return summary.to_dict()

    output = ReportGenerator(summary).render(format)
    content_type = "text/csv" if format == "csv" else "text/plain"
    return PlainTextResponse(content=output, media_type=content_type)


@router.get("/health")
async def reconciliation_health():
    """Health check endpoint for the reconciliation service."""
    return {"status": "healthy", "service": "reconciliation"}
