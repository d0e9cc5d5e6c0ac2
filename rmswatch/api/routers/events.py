"""
Event Store Endpoints.

GET    /api/events                              — recent events (newest first)
GET    /api/events/opportunity/{opportunity_id} — events for one opportunity
GET    /api/events/{event_id}                   — one event
DELETE /api/events                              — clear the event store
GET    /api/audit?entityType=&entityId=         — audit trail for an entity
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from rmswatch.api.deps import get_db
from rmswatch.config import settings
from rmswatch.schemas.events import AuditTrailResponse, EventsResponse
from rmswatch.services.event_store import event_store

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api", tags=["events"])


@router.get("/events", response_model=EventsResponse)
async def list_events(
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
):
    events = await event_store.get_recent_events(db, limit or settings.events_default_limit)
    return EventsResponse(events=events, count=len(events))


@router.get("/events/opportunity/{opportunity_id}", response_model=EventsResponse)
async def list_opportunity_events(opportunity_id: int, db: AsyncSession = Depends(get_db)):
    events = await event_store.get_events_by_opportunity(db, opportunity_id)
    return EventsResponse(events=events, count=len(events))


@router.get("/events/{event_id}")
async def get_event(event_id: str, db: AsyncSession = Depends(get_db)):
    event = await event_store.get_event_by_id(db, event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return {"success": True, "event": event}


@router.delete("/events")
async def clear_events(db: AsyncSession = Depends(get_db)):
    deleted = await event_store.clear_events(db)
    return {"success": True, "deleted": deleted, "message": "Events cleared"}


@router.get("/audit", response_model=AuditTrailResponse)
async def get_audit_trail(
    entity_type: Optional[str] = Query(default=None, alias="entityType"),
    entity_id: Optional[str] = Query(default=None, alias="entityId"),
    db: AsyncSession = Depends(get_db),
):
    if not entity_type or not entity_id:
        return JSONResponse(
            status_code=400,
            content={"error": "entityType and entityId are required"},
        )
    trail = await event_store.get_audit_trail(db, entity_type, entity_id)
    return AuditTrailResponse(
        entity_type=entity_type,
        entity_id=entity_id,
        count=len(trail),
        audit_trail=trail,
    )
