"""
Event / audit schemas.

JSON keys are camelCase (opportunityId, actionType, ...) to match what the
dashboard UI consumes; Python attributes stay snake_case.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ProcessedEvent(CamelModel):
    """A webhook notification after extraction, as stored and returned."""
    id: str
    timestamp: datetime
    opportunity_id: int
    opportunity_name: str
    customer_name: str
    user_id: Optional[int] = None
    user_name: str
    action_type: str
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    processed: bool = False
    error: Optional[str] = None


class HealthMetrics(CamelModel):
    total_events: int = 0
    successful_events: int = 0
    failed_events: int = 0
    last_event_time: Optional[datetime] = None
    uptime: int = 0


class AuditEntry(CamelModel):
    id: int
    timestamp: datetime
    entity_type: str
    entity_id: str
    action: str
    changes: Optional[dict[str, Any]] = None


class EventsResponse(CamelModel):
    success: bool = True
    events: list[ProcessedEvent] = Field(default_factory=list)
    count: int = 0


class AuditTrailResponse(CamelModel):
    success: bool = True
    entity_type: str
    entity_id: str
    count: int
    audit_trail: list[AuditEntry]


class ReplayRequest(CamelModel):
    event_id: Optional[str] = None


class ReplayResponse(CamelModel):
    success: bool = True
    original_event_id: str
    replay_event_id: str
    processed: bool
    error: Optional[str] = None
    message: str = "Event replayed successfully"
