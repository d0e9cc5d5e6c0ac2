"""
Webhook Service — turns Current RMS notifications into processed events.

Flow:
  payload -> ProcessedEvent -> business rules -> event store -> mirror sync

A rule failure is recorded on the event (error set, processed False) and is
not an ingest failure: Current RMS still gets a 200. Replay rebuilds an
event from a stored raw payload and runs it through the same path.
"""

import time
from datetime import datetime
from typing import Optional

import structlog
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from rmswatch.config import settings
from rmswatch.schemas.events import ProcessedEvent, ReplayResponse
from rmswatch.schemas.webhook import WebhookAction, WebhookPayload
from rmswatch.services.event_store import EventStore, event_store
from rmswatch.services.opportunity_sync import OpportunitySync, opportunity_sync
from rmswatch.services.rules_engine import BusinessRulesEngine, rules_engine

logger = structlog.get_logger(__name__)

# ── Metrics counters (in-memory, exported via /metrics) ──────────────────

_webhook_metrics = {
    "total_received": 0,
    "total_processed": 0,
    "total_failed": 0,
    "total_rejected": 0,
}


def get_webhook_metrics() -> dict:
    """Get current webhook metrics snapshot."""
    return dict(_webhook_metrics)


class InvalidWebhookPayload(ValueError):
    """Payload without an action or without action.subject_id."""


class EventNotFound(LookupError):
    pass


class ReplayUnavailable(ValueError):
    """The stored event has no raw payload to replay from."""


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def build_processed_event(
    action: WebhookAction,
    event_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ProcessedEvent:
    """Extract the dashboard's view of a webhook action."""
    subject = action.subject
    member = action.member
    return ProcessedEvent(
        id=event_id or f"evt_{action.id}_{_epoch_ms()}",
        timestamp=now or datetime.utcnow(),
        opportunity_id=action.subject_id,
        opportunity_name=action.name or (subject.name if subject else None) or "Unknown",
        customer_name=(subject.organisation_name if subject else None) or "Unknown Customer",
        user_id=action.member_id,
        user_name=(member.name if member else None) or f"User {action.member_id}",
        action_type=action.action_type or "",
        previous_status=None,
        new_status=subject.opportunity_status if subject else None,
    )


def build_replay_event(
    original: ProcessedEvent,
    raw_payload: dict,
    now: Optional[datetime] = None,
) -> ProcessedEvent:
    """Rebuild an event from its raw payload, falling back to the stored event."""
    try:
        action = WebhookPayload.model_validate(raw_payload).action
    except ValidationError as e:
        logger.warning("replay_payload_unparseable", event_id=original.id, error=str(e))
        action = None
    subject = action.subject if action else None
    member = action.member if action else None

    return ProcessedEvent(
        id=f"replay_{original.id}_{_epoch_ms()}",
        timestamp=now or datetime.utcnow(),
        opportunity_id=(action.subject_id if action else None) or original.opportunity_id,
        opportunity_name=(
            (action.name if action else None)
            or (subject.name if subject else None)
            or original.opportunity_name
        ),
        customer_name=(subject.organisation_name if subject else None) or original.customer_name,
        user_id=(action.member_id if action else None) or original.user_id,
        user_name=(member.name if member else None) or original.user_name,
        action_type=(action.action_type if action else None) or original.action_type,
        previous_status=None,
        new_status=(subject.opportunity_status if subject else None) or original.new_status,
    )


class WebhookService:
    """Webhook ingest + replay over the event store and rules engine."""

    def __init__(
        self,
        rules: BusinessRulesEngine = rules_engine,
        store: EventStore = event_store,
        sync: Optional[OpportunitySync] = opportunity_sync,
    ) -> None:
        self.rules = rules
        self.store = store
        self.sync = sync

    async def _run_rules(self, event: ProcessedEvent) -> None:
        try:
            await self.rules.execute_rules(event)
            event.processed = True
        except Exception as e:
            event.error = str(e) or type(e).__name__
            logger.error("event_processing_failed", event_id=event.id, error=event.error)

    async def handle(self, session: AsyncSession, raw_payload: dict) -> ProcessedEvent:
        """
        Process one webhook body.

        Raises InvalidWebhookPayload when the body has no action or the
        action has no subject_id.
        """
        _webhook_metrics["total_received"] += 1

        try:
            payload = WebhookPayload.model_validate(raw_payload)
        except ValidationError as e:
            _webhook_metrics["total_rejected"] += 1
            logger.warning("webhook_rejected", reason="unparseable", error=str(e))
            raise InvalidWebhookPayload("Invalid webhook payload") from e

        action = payload.action
        if action is None or not action.subject_id:
            _webhook_metrics["total_rejected"] += 1
            logger.warning("webhook_rejected", reason="missing_action_or_subject")
            raise InvalidWebhookPayload("Invalid webhook payload")

        event = build_processed_event(action)
        logger.info(
            "webhook_received",
            event_id=event.id,
            opportunity_id=event.opportunity_id,
            action_type=event.action_type,
        )

        await self._run_rules(event)
        await self.store.add_event(session, event, raw_payload)

        if event.error:
            _webhook_metrics["total_failed"] += 1
        else:
            _webhook_metrics["total_processed"] += 1

        await self._sync_mirror(session, event.opportunity_id)
        return event

    async def _sync_mirror(self, session: AsyncSession, opportunity_id: int) -> None:
        if self.sync is None or not settings.current_rms_configured:
            return
        try:
            await self.sync.sync_opportunity(session, opportunity_id)
        except Exception as e:
            logger.warning("webhook_sync_failed", opportunity_id=opportunity_id, error=str(e))

    async def replay(self, session: AsyncSession, event_id: str) -> ReplayResponse:
        """
        Re-run a stored event from its raw payload.

        Raises EventNotFound / ReplayUnavailable.
        """
        found = await self.store.get_event_with_raw_payload(session, event_id)
        if found is None:
            raise EventNotFound(event_id)
        original, raw_payload = found
        if not raw_payload:
            raise ReplayUnavailable("No raw payload available for this event")

        event = build_replay_event(original, raw_payload)
        logger.info("event_replaying", original=original.id, replay=event.id)

        await self._run_rules(event)
        await self.store.add_event(session, event, raw_payload)
        await self.store.log_audit(
            session,
            entity_type="event",
            entity_id=original.id,
            action="replay",
            changes={
                "replayEventId": event.id,
                "processed": event.processed,
                "error": event.error,
            },
        )

        return ReplayResponse(
            original_event_id=original.id,
            replay_event_id=event.id,
            processed=event.processed,
            error=event.error,
        )
