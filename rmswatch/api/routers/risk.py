"""
Risk Assessment Endpoints.

GET   /api/settings/risk                — factor catalogue + approval thresholds
POST  /api/settings/risk                — save either or both (clears the settings cache)
PATCH /api/opportunities/{id}/risk      — score an opportunity and push it to Current RMS
GET   /api/risk/summary                 — assessed opportunities per risk level
GET   /api/risk/factors                 — the active (cached) catalogue
"""

from datetime import date
from typing import Any, Optional

import structlog
from fastapi import APIRouter, Body, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from rmswatch.api.deps import get_db, get_optional_current_rms_client, get_risk_settings_cache
from rmswatch.engine.risk_settings_cache import RiskSettingsCache
from rmswatch.schemas.risk import RiskAssessmentResult, RiskSettingsUpdate
from rmswatch.services.current_rms_client import (
    CurrentRMSClient,
    CurrentRMSError,
    CurrentRMSNotConfigured,
)
from rmswatch.services.risk_service import InvalidRiskScores, RiskService
from rmswatch.services.risk_settings_store import risk_settings_store, settings_to_json

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api", tags=["risk"])

_service = RiskService()


@router.get("/settings/risk")
async def get_risk_settings(db: AsyncSession = Depends(get_db)):
    merged, is_default = await risk_settings_store.load_raw(db)
    return {"success": True, "settings": merged, "isDefault": is_default}


@router.post("/settings/risk")
async def save_risk_settings(
    body: RiskSettingsUpdate,
    db: AsyncSession = Depends(get_db),
    cache: RiskSettingsCache = Depends(get_risk_settings_cache),
):
    if not body.risk_factors and not body.approval_thresholds:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "No settings provided"},
        )
    try:
        updated = await risk_settings_store.save(
            db,
            risk_factors=body.risk_factors,
            approval_thresholds=body.approval_thresholds,
        )
    except ValidationError as e:
        logger.warning("risk_settings_rejected", error=str(e))
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Invalid settings", "details": str(e)},
        )

    cache.clear()
    return {"success": True, "message": "Settings saved successfully", "updated": updated}


@router.patch("/opportunities/{opportunity_id}/risk", response_model=RiskAssessmentResult)
async def update_opportunity_risk(
    opportunity_id: int,
    data: dict[str, Any] = Body(...),
    db: AsyncSession = Depends(get_db),
    cache: RiskSettingsCache = Depends(get_risk_settings_cache),
    client: Optional[CurrentRMSClient] = Depends(get_optional_current_rms_client),
):
    risk_settings = await cache.get()
    try:
        return await _service.assess(db, client, opportunity_id, data, risk_settings)
    except InvalidRiskScores as e:
        return JSONResponse(
            status_code=400,
            content={"error": str(e), "details": e.details},
        )
    except CurrentRMSNotConfigured:
        raise HTTPException(status_code=503, detail="Current RMS not configured")
    except CurrentRMSError as e:
        return JSONResponse(
            status_code=e.status_code,
            content={
                "error": "Failed to update risk assessment in Current RMS",
                "details": e.body,
            },
        )


@router.get("/risk/summary")
async def get_risk_summary(
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    db: AsyncSession = Depends(get_db),
):
    summary = await _service.get_summary(db, start_date, end_date)
    return {"success": True, "data": summary}


@router.get("/risk/factors")
async def get_risk_factors(cache: RiskSettingsCache = Depends(get_risk_settings_cache)):
    return {"success": True, **settings_to_json(await cache.get())}
