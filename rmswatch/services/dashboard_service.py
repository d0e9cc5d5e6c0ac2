"""
Dashboard Service — aggregated webhook activity for the dashboard.

All numbers come from webhook_events plus the last completed sync run.
An empty database yields zeros and empty lists.
"""

from datetime import date, datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rmswatch.db.models import SyncMetadata, WebhookEvent
from rmswatch.schemas.dashboard import (
    ActionTypeCount,
    DashboardData,
    DashboardOverview,
    RecentActivity,
    StatusCount,
    SyncInfo,
    TimelinePoint,
    TopOpportunity,
)
from rmswatch.services.event_store import EventStore, event_store

logger = structlog.get_logger(__name__)

TIMELINE_DAYS = 30
TOP_OPPORTUNITIES = 10
RECENT_ACTIVITY = 20


class DashboardService:
    def __init__(self, store: EventStore = event_store) -> None:
        self.store = store

    async def get_dashboard(self, session: AsyncSession, today: Optional[date] = None) -> DashboardData:
        metrics = await self.store.get_metrics(session)
        total_opportunities = await session.scalar(
            select(func.count(func.distinct(WebhookEvent.opportunity_id)))
        )
        success_rate = (
            round(metrics.successful_events / metrics.total_events * 100, 2)
            if metrics.total_events
            else 0.0
        )

        data = DashboardData(
            overview=DashboardOverview(
                total_events=metrics.total_events,
                total_opportunities=total_opportunities or 0,
                success_rate=success_rate,
                failed_events=metrics.failed_events,
                uptime=metrics.uptime,
                last_event_time=metrics.last_event_time,
            ),
            action_type_distribution=await self._action_types(session),
            status_distribution=await self._statuses(session),
            timeline=await self._timeline(session, today or datetime.utcnow().date()),
            top_opportunities=await self._top_opportunities(session),
            recent_activity=await self._recent(session),
            sync_info=await self._sync_info(session),
        )
        logger.debug("dashboard_computed", total_events=metrics.total_events)
        return data

    async def _action_types(self, session: AsyncSession) -> list[ActionTypeCount]:
        result = await session.execute(
            select(WebhookEvent.action_type, func.count().label("cnt"))
            .group_by(WebhookEvent.action_type)
            .order_by(func.count().desc())
        )
        return [ActionTypeCount(action_type=r.action_type, count=r.cnt) for r in result.all()]

    async def _statuses(self, session: AsyncSession) -> list[StatusCount]:
        status = func.coalesce(WebhookEvent.new_status, "unknown")
        result = await session.execute(
            select(status.label("status"), func.count().label("cnt"))
            .group_by(status)
            .order_by(func.count().desc())
        )
        return [StatusCount(status=r.status, count=r.cnt) for r in result.all()]

    async def _timeline(self, session: AsyncSession, today: date) -> list[TimelinePoint]:
        first_day = today - timedelta(days=TIMELINE_DAYS - 1)
        cutoff = datetime(first_day.year, first_day.month, first_day.day)
        day = func.date(WebhookEvent.timestamp)
        result = await session.execute(
            select(day.label("day"), func.count().label("cnt"))
            .where(WebhookEvent.timestamp >= cutoff)
            .group_by(day)
        )
        rows = {str(r.day): r.cnt for r in result.all()}

        # Pad missing days with zeros
        return [
            TimelinePoint(date=str(d), count=rows.get(str(d), 0))
            for d in (first_day + timedelta(days=i) for i in range(TIMELINE_DAYS))
        ]

    async def _top_opportunities(self, session: AsyncSession) -> list[TopOpportunity]:
        counts = await session.execute(
            select(
                WebhookEvent.opportunity_id,
                func.count().label("cnt"),
                func.max(WebhookEvent.timestamp).label("last_activity"),
            )
            .group_by(WebhookEvent.opportunity_id)
            .order_by(func.count().desc(), func.max(WebhookEvent.timestamp).desc())
            .limit(TOP_OPPORTUNITIES)
        )
        top: list[TopOpportunity] = []
        for r in counts.all():
            # names from the most recent event for that opportunity
            latest = await session.scalar(
                select(WebhookEvent)
                .where(WebhookEvent.opportunity_id == r.opportunity_id)
                .order_by(WebhookEvent.timestamp.desc())
                .limit(1)
            )
            top.append(TopOpportunity(
                opportunity_id=r.opportunity_id,
                opportunity_name=latest.opportunity_name,
                customer_name=latest.customer_name,
                event_count=r.cnt,
                last_activity=r.last_activity,
            ))
        return top

    async def _recent(self, session: AsyncSession) -> list[RecentActivity]:
        events = await self.store.get_recent_events(session, RECENT_ACTIVITY)
        return [RecentActivity.model_validate(e.model_dump()) for e in events]

    async def _sync_info(self, session: AsyncSession) -> Optional[SyncInfo]:
        row = await session.scalar(
            select(SyncMetadata)
            .where(SyncMetadata.status == "completed")
            .order_by(SyncMetadata.completed_at.desc())
            .limit(1)
        )
        if row is None or row.completed_at is None:
            return None
        return SyncInfo(
            last_sync_time=row.completed_at,
            records_synced=row.records_synced,
            records_failed=row.records_failed,
        )
