"""
Event Store — persistence for processed webhook events and the audit log.

Every webhook (and every replay) becomes one row in webhook_events together
with the raw payload it was built from, so it can be replayed later.
"""

import time
from datetime import datetime
from typing import Any, Optional

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rmswatch.db.models import AuditLog, WebhookEvent
from rmswatch.schemas.events import AuditEntry, HealthMetrics, ProcessedEvent

logger = structlog.get_logger(__name__)


def _to_event(row: WebhookEvent) -> ProcessedEvent:
    return ProcessedEvent.model_validate(row)


class EventStore:
    """Read/write access to webhook_events and audit_log."""

    def __init__(self, started_at: Optional[float] = None) -> None:
        self.started_at = started_at if started_at is not None else time.time()

    @property
    def uptime_seconds(self) -> int:
        return int(time.time() - self.started_at)

    async def add_event(
        self,
        session: AsyncSession,
        event: ProcessedEvent,
        raw_payload: Optional[dict] = None,
    ) -> None:
        session.add(WebhookEvent(
            id=event.id,
            timestamp=event.timestamp,
            opportunity_id=event.opportunity_id,
            opportunity_name=event.opportunity_name,
            customer_name=event.customer_name,
            user_id=event.user_id,
            user_name=event.user_name,
            action_type=event.action_type,
            previous_status=event.previous_status,
            new_status=event.new_status,
            processed=event.processed,
            error=event.error,
            raw_payload=raw_payload,
        ))
        await session.flush()
        logger.info(
            "event_stored",
            event_id=event.id,
            opportunity_id=event.opportunity_id,
            action_type=event.action_type,
            processed=event.processed,
        )

    async def get_recent_events(self, session: AsyncSession, limit: int = 50) -> list[ProcessedEvent]:
        result = await session.execute(
            select(WebhookEvent).order_by(WebhookEvent.timestamp.desc()).limit(limit)
        )
        return [_to_event(r) for r in result.scalars().all()]

    async def get_event_by_id(self, session: AsyncSession, event_id: str) -> Optional[ProcessedEvent]:
        row = await session.get(WebhookEvent, event_id)
        return _to_event(row) if row else None

    async def get_event_with_raw_payload(
        self, session: AsyncSession, event_id: str
    ) -> Optional[tuple[ProcessedEvent, Optional[dict]]]:
        row = await session.get(WebhookEvent, event_id)
        if row is None:
            return None
        return _to_event(row), row.raw_payload

    async def get_events_by_opportunity(
        self, session: AsyncSession, opportunity_id: int
    ) -> list[ProcessedEvent]:
        result = await session.execute(
            select(WebhookEvent)
            .where(WebhookEvent.opportunity_id == opportunity_id)
            .order_by(WebhookEvent.timestamp.desc())
        )
        return [_to_event(r) for r in result.scalars().all()]

    async def clear_events(self, session: AsyncSession) -> int:
        result = await session.execute(delete(WebhookEvent))
        logger.warning("events_cleared", deleted=result.rowcount)
        return result.rowcount or 0

    async def get_metrics(self, session: AsyncSession) -> HealthMetrics:
        """Counts over all stored events. Successful = processed without error."""
        total = await session.scalar(select(func.count()).select_from(WebhookEvent))
        successful = await session.scalar(
            select(func.count()).select_from(WebhookEvent).where(
                WebhookEvent.processed.is_(True), WebhookEvent.error.is_(None)
            )
        )
        failed = await session.scalar(
            select(func.count()).select_from(WebhookEvent).where(WebhookEvent.error.is_not(None))
        )
        last_event_time = await session.scalar(select(func.max(WebhookEvent.timestamp)))

        return HealthMetrics(
            total_events=total or 0,
            successful_events=successful or 0,
            failed_events=failed or 0,
            last_event_time=last_event_time,
            uptime=self.uptime_seconds,
        )

    # ── Audit ─────────────────────────────────────────────────────────

    async def log_audit(
        self,
        session: AsyncSession,
        entity_type: str,
        entity_id: str | int,
        action: str,
        changes: Optional[dict[str, Any]] = None,
    ) -> None:
        session.add(AuditLog(
            timestamp=datetime.utcnow(),
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action,
            changes=changes,
        ))
        await session.flush()
        logger.info("audit_logged", entity_type=entity_type, entity_id=str(entity_id), action=action)

    async def get_audit_trail(
        self, session: AsyncSession, entity_type: str, entity_id: str
    ) -> list[AuditEntry]:
        result = await session.execute(
            select(AuditLog)
            .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == str(entity_id))
            .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        )
        return [AuditEntry.model_validate(r) for r in result.scalars().all()]


event_store = EventStore()
