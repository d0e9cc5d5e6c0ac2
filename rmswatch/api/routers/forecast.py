"""
Forecast Endpoints.

GET    /api/forecast/summary           — aggregated forecast over mirrored opportunities
GET    /api/forecast/{opportunity_id}  — forecast annotation for one opportunity
PUT    /api/forecast/{opportunity_id}  — create / update the annotation
DELETE /api/forecast/{opportunity_id}  — remove it (opportunity becomes unreviewed)
"""

from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from rmswatch.api.deps import get_db
from rmswatch.schemas.forecast import ForecastMetadataIn, ForecastSummaryResponse
from rmswatch.services.forecast_service import ForecastService

router = APIRouter(prefix="/api/forecast", tags=["forecast"])

_service = ForecastService()


@router.get("/summary", response_model=ForecastSummaryResponse)
async def get_forecast_summary(
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    owner: Optional[str] = Query(default=None),
    customer: Optional[str] = Query(default=None),
    include_excluded: Optional[str] = Query(default=None, alias="includeExcluded"),
    db: AsyncSession = Depends(get_db),
):
    data = await _service.get_summary(
        db,
        start_date=start_date,
        end_date=end_date,
        owner=owner,
        customer=customer,
        include_excluded=include_excluded == "true",
    )
    return ForecastSummaryResponse(
        data=data,
        count=len(data.opportunities),
        timestamp=datetime.utcnow(),
    )


@router.get("/{opportunity_id}")
async def get_forecast_metadata(opportunity_id: int, db: AsyncSession = Depends(get_db)):
    metadata = await _service.get_metadata(db, opportunity_id)
    if metadata is None:
        raise HTTPException(status_code=404, detail="No forecast for this opportunity")
    return {"success": True, "forecast": metadata}


@router.put("/{opportunity_id}")
async def save_forecast_metadata(
    opportunity_id: int,
    body: ForecastMetadataIn,
    db: AsyncSession = Depends(get_db),
):
    metadata = await _service.save_metadata(db, opportunity_id, body)
    return {"success": True, "forecast": metadata}


@router.delete("/{opportunity_id}")
async def delete_forecast_metadata(opportunity_id: int, db: AsyncSession = Depends(get_db)):
    if not await _service.delete_metadata(db, opportunity_id):
        raise HTTPException(status_code=404, detail="No forecast for this opportunity")
    return {"success": True, "message": "Forecast removed"}
