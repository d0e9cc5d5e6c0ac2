"""Dashboard schemas (camelCase JSON)."""

from datetime import datetime
from typing import Optional

from pydantic import Field

from rmswatch.schemas.events import CamelModel


class DashboardOverview(CamelModel):
    total_events: int = 0
    total_opportunities: int = 0
    success_rate: float = 0.0
    failed_events: int = 0
    uptime: int = 0
    last_event_time: Optional[datetime] = None


class ActionTypeCount(CamelModel):
    action_type: str
    count: int


class StatusCount(CamelModel):
    status: str
    count: int


class TimelinePoint(CamelModel):
    date: str
    count: int


class TopOpportunity(CamelModel):
    opportunity_id: int
    opportunity_name: str
    customer_name: str
    event_count: int
    last_activity: datetime


class RecentActivity(CamelModel):
    id: str
    timestamp: datetime
    opportunity_id: int
    opportunity_name: str
    customer_name: str
    user_name: str
    action_type: str
    new_status: Optional[str] = None
    processed: bool
    error: Optional[str] = None


class SyncInfo(CamelModel):
    last_sync_time: datetime
    records_synced: int
    records_failed: int


class DashboardData(CamelModel):
    overview: DashboardOverview
    action_type_distribution: list[ActionTypeCount] = Field(default_factory=list)
    status_distribution: list[StatusCount] = Field(default_factory=list)
    timeline: list[TimelinePoint] = Field(default_factory=list)
    top_opportunities: list[TopOpportunity] = Field(default_factory=list)
    recent_activity: list[RecentActivity] = Field(default_factory=list)
    sync_info: Optional[SyncInfo] = None
