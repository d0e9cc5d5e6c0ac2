"""GET /api/dashboard — webhook activity overview for the dashboard UI."""

from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from rmswatch.api.deps import get_db
from rmswatch.services.dashboard_service import DashboardService

router = APIRouter(prefix="/api", tags=["dashboard"])

_service = DashboardService()


@router.get("/dashboard", summary="Dashboard metrics")
async def get_dashboard(db: AsyncSession = Depends(get_db)):
    data = await _service.get_dashboard(db)
    return {"success": True, "data": data, "timestamp": datetime.utcnow()}
