"""
Opportunity Sync Endpoints.

POST /api/sync/initial      — full sync of the default window
POST /api/sync/incremental  — opportunities updated since the last completed sync
GET  /api/sync/status       — latest sync run
GET  /api/sync/history      — recent sync runs
GET  /api/opportunities     — mirrored opportunities starting from today - 30 days
"""

from datetime import date, datetime, timedelta

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rmswatch.api.deps import get_db
from rmswatch.config import settings
from rmswatch.db.models import Opportunity
from rmswatch.schemas.sync import SyncResult
from rmswatch.services.opportunity_sync import opportunity_sync

router = APIRouter(prefix="/api", tags=["sync"])


def _sync_response(result: SyncResult, label: str) -> JSONResponse:
    body = {
        "success": result.success,
        "message": f"{label} {'completed successfully' if result.success else 'failed'}",
        "syncId": result.sync_id,
        "recordsSynced": result.records_synced,
        "recordsFailed": result.records_failed,
        "duration": result.duration_seconds,
        "logs": result.logs,
        "firstFailure": (
            result.first_failure.model_dump(mode="json", by_alias=True)
            if result.first_failure
            else None
        ),
    }
    if not result.success:
        body["error"] = result.error
    return JSONResponse(status_code=200 if result.success else 500, content=body)


@router.post("/sync/initial")
async def run_initial_sync(db: AsyncSession = Depends(get_db)):
    result = await opportunity_sync.initial_sync(db)
    return _sync_response(result, "Initial sync")


@router.post("/sync/incremental")
async def run_incremental_sync(db: AsyncSession = Depends(get_db)):
    result = await opportunity_sync.incremental_sync(db)
    return _sync_response(result, "Incremental sync")


@router.get("/sync/status")
async def get_sync_status(db: AsyncSession = Depends(get_db)):
    return {"success": True, "lastSync": await opportunity_sync.get_last_sync_status(db)}


@router.get("/sync/history")
async def get_sync_history(
    limit: int = Query(default=10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    history = await opportunity_sync.get_sync_history(db, limit)
    return {"success": True, "history": history, "count": len(history)}


@router.get("/opportunities")
async def list_opportunities(db: AsyncSession = Depends(get_db)):
    floor = date.today() - timedelta(days=settings.forecast_default_lookback_days)
    result = await db.execute(
        select(Opportunity)
        .where(Opportunity.starts_at >= datetime(floor.year, floor.month, floor.day))
        .order_by(Opportunity.starts_at.asc())
    )
    opportunities = [
        {
            "id": o.id,
            "name": o.name,
            "subject": o.subject,
            "organisation_name": o.organisation_name,
            "owner_name": o.owner_name,
            "starts_at": o.starts_at,
            "ends_at": o.ends_at,
            "updated_at": o.updated_at_rms,
            "opportunity_status": o.opportunity_status,
            "charge_total": o.charge_total,
            "data": o.data,
        }
        for o in result.scalars().all()
    ]
    return {"success": True, "opportunities": opportunities, "count": len(opportunities)}
