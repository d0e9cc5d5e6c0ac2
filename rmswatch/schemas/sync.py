"""Sync run schemas."""

from datetime import datetime
from typing import Any, Optional

from pydantic import AliasChoices, Field

from rmswatch.schemas.events import CamelModel


class SyncFailure(CamelModel):
    error: str
    opportunity_id: Optional[int] = None
    opportunity_keys: list[str] = Field(default_factory=list)


class SyncResult(CamelModel):
    success: bool
    sync_id: Optional[int] = None
    records_synced: int = 0
    records_failed: int = 0
    error: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    logs: list[str] = Field(default_factory=list)
    first_failure: Optional[SyncFailure] = None

    @property
    def duration_seconds(self) -> Optional[int]:
        if self.completed_at is None:
            return None
        return round((self.completed_at - self.started_at).total_seconds())


class SyncRecord(CamelModel):
    """A sync_metadata row."""
    id: int
    sync_type: str
    status: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    records_synced: int = 0
    records_failed: int = 0
    error: Optional[str] = None
    meta: Optional[dict[str, Any]] = Field(
        default=None,
        validation_alias=AliasChoices("meta", "metadata"),
        serialization_alias="metadata",
    )
