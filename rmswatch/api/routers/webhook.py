"""
Current RMS Webhook Endpoints.

POST /api/webhook  ← Current RMS pushes opportunity actions here
POST /api/replay   ← re-run a stored event from its raw payload

The webhook answers 200 as soon as the event is stored, even when a
business rule failed (the error is kept on the event). Only a payload
without action / action.subject_id is rejected (400).
"""

import json

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from rmswatch.api.deps import get_db
from rmswatch.schemas.events import ReplayRequest, ReplayResponse
from rmswatch.schemas.webhook import WebhookAck
from rmswatch.services.webhook_service import (
    EventNotFound,
    InvalidWebhookPayload,
    ReplayUnavailable,
    WebhookService,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api", tags=["webhook"])

_service = WebhookService()


def _invalid_payload() -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "Invalid webhook payload"})


@router.post(
    "/webhook",
    response_model=WebhookAck,
    summary="Receive a Current RMS webhook",
    responses={400: {"description": "Missing action or action.subject_id"}},
)
async def receive_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    try:
        raw = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("webhook_body_not_json")
        return _invalid_payload()
    if not isinstance(raw, dict):
        return _invalid_payload()

    try:
        event = await _service.handle(db, raw)
    except InvalidWebhookPayload:
        return _invalid_payload()

    return WebhookAck(event_id=event.id)


@router.post(
    "/replay",
    response_model=ReplayResponse,
    summary="Replay a stored event",
    responses={
        400: {"description": "eventId missing, or no raw payload stored"},
        404: {"description": "Event not found"},
    },
)
async def replay_event(body: ReplayRequest, db: AsyncSession = Depends(get_db)):
    if not body.event_id:
        return JSONResponse(status_code=400, content={"error": "eventId required"})
    try:
        return await _service.replay(db, body.event_id)
    except EventNotFound:
        return JSONResponse(status_code=404, content={"error": "Event not found"})
    except ReplayUnavailable as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
