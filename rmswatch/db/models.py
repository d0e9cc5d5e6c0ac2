"""
rmswatch SQLAlchemy Models.

Uses compatibility types for SQLite (dev/tests) + PostgreSQL (prod).
All timestamps are stored as naive UTC.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from rmswatch.db.compat import JSONType
from rmswatch.db.engine import Base


# ──────────────────────────────────────────────────────────────────────────────
# Mirrored Current RMS data
# ──────────────────────────────────────────────────────────────────────────────


class Opportunity(Base):
    """
    Local mirror of a Current RMS opportunity.

    Owned by Current RMS: rows are only written by the sync service.
    Monetary columns keep the raw string Current RMS sends; they are parsed
    with engine.money.parse_money at read time.
    """

    __tablename__ = "opportunities"
    __table_args__ = (
        Index("ix_opportunities_starts_at", "starts_at"),
        Index("ix_opportunities_owner_name", "owner_name"),
        Index("ix_opportunities_organisation_name", "organisation_name"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    subject: Mapped[Optional[str]] = mapped_column(String(500))
    description: Mapped[Optional[str]] = mapped_column(Text)
    starts_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    ends_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    opportunity_status: Mapped[Optional[str]] = mapped_column(String(100))
    created_at_rms: Mapped[Optional[datetime]] = mapped_column(DateTime)
    updated_at_rms: Mapped[Optional[datetime]] = mapped_column(DateTime)
    venue_name: Mapped[Optional[str]] = mapped_column(String(500))
    organisation_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    organisation_name: Mapped[Optional[str]] = mapped_column(String(500))
    owner_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    owner_name: Mapped[Optional[str]] = mapped_column(String(255))

    # Financials (raw strings from Current RMS)
    charge_total: Mapped[Optional[str]] = mapped_column(String(50))
    total_value: Mapped[Optional[str]] = mapped_column(String(50))
    provisional_cost_total: Mapped[Optional[str]] = mapped_column(String(50))
    predicted_cost_total: Mapped[Optional[str]] = mapped_column(String(50))
    actual_cost_total: Mapped[Optional[str]] = mapped_column(String(50))

    data: Mapped[dict] = mapped_column(JSONType(), nullable=False, default=dict)
    synced_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    last_webhook_at: Mapped[Optional[datetime]] = mapped_column(DateTime)


class ForecastMetadata(Base):
    """
    Forecast annotation on an opportunity, owned by this application.

    At most one row per opportunity. Absence means "unreviewed".
    """

    __tablename__ = "forecast_metadata"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    opportunity_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False, index=True)
    probability: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_commit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    revenue_override: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2))
    profit_override: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2))
    is_excluded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    exclusion_reason: Mapped[Optional[str]] = mapped_column(String(100))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    last_reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# ──────────────────────────────────────────────────────────────────────────────
# Webhook events & audit
# ──────────────────────────────────────────────────────────────────────────────


class WebhookEvent(Base):
    """A processed Current RMS webhook notification (or a replay of one)."""

    __tablename__ = "webhook_events"
    __table_args__ = (
        Index("ix_webhook_events_timestamp", "timestamp"),
        Index("ix_webhook_events_opportunity_id", "opportunity_id"),
    )

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    opportunity_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    opportunity_name: Mapped[str] = mapped_column(String(500), nullable=False)
    customer_name: Mapped[str] = mapped_column(String(500), nullable=False)
    user_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    user_name: Mapped[str] = mapped_column(String(255), nullable=False)
    action_type: Mapped[str] = mapped_column(String(100), nullable=False)
    previous_status: Mapped[Optional[str]] = mapped_column(String(100))
    new_status: Mapped[Optional[str]] = mapped_column(String(100))
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    error: Mapped[Optional[str]] = mapped_column(Text)
    raw_payload: Mapped[Optional[dict]] = mapped_column(JSONType())
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class AuditLog(Base):
    """Append-only record of changes made through this application."""

    __tablename__ = "audit_log"
    __table_args__ = (
        Index("ix_audit_log_entity", "entity_type", "entity_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(128), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    changes: Mapped[Optional[dict]] = mapped_column(JSONType())


# ──────────────────────────────────────────────────────────────────────────────
# Settings & sync bookkeeping
# ──────────────────────────────────────────────────────────────────────────────


class RiskSetting(Base):
    """Key/value JSON store for risk factors and approval thresholds."""

    __tablename__ = "risk_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    setting_key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    setting_value: Mapped[dict | list] = mapped_column(JSONType(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class SyncMetadata(Base):
    """One row per sync run (initial or incremental)."""

    __tablename__ = "sync_metadata"
    __table_args__ = (
        Index("ix_sync_metadata_started_at", "started_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sync_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="running")
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    records_synced: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error: Mapped[Optional[str]] = mapped_column(Text)
    # "metadata" is reserved on declarative classes
    meta: Mapped[Optional[dict]] = mapped_column("metadata", JSONType())
