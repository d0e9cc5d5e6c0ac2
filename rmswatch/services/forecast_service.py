"""
Forecast Service — loads mirrored opportunities with their forecast
annotations and runs them through the forecast engine.

Row selection (by starts_at):
  - start and end:  start <= starts_at <= end (both at midnight)
  - start only:     starts_at >= start
  - neither:        starts_at >= today - FORECAST_DEFAULT_LOOKBACK_DAYS

Filters are applied after enrichment: owner, customer, then excluded rows
are dropped unless include_excluded. Owner / customer filter lists are
built from what remains.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rmswatch.config import settings
from rmswatch.db.models import ForecastMetadata as ForecastMetadataRow
from rmswatch.db.models import Opportunity
from rmswatch.engine import forecast as engine
from rmswatch.schemas.forecast import (
    ForecastData,
    ForecastFilters,
    ForecastMetadataIn,
    ForecastMetadataOut,
)
from rmswatch.services.event_store import EventStore, event_store

logger = structlog.get_logger(__name__)


def _midnight(day: date) -> datetime:
    return datetime(day.year, day.month, day.day)


def to_record(row: Opportunity) -> engine.OpportunityRecord:
    return engine.OpportunityRecord(
        id=row.id,
        name=row.name,
        subject=row.subject,
        organisation_name=row.organisation_name,
        owner_name=row.owner_name,
        starts_at=row.starts_at,
        ends_at=row.ends_at,
        opportunity_status=row.opportunity_status,
        charge_total=row.charge_total,
        provisional_cost_total=row.provisional_cost_total,
        predicted_cost_total=row.predicted_cost_total,
        actual_cost_total=row.actual_cost_total,
    )


def to_metadata(row: Optional[ForecastMetadataRow]) -> Optional[engine.ForecastMetadata]:
    if row is None:
        return None
    return engine.ForecastMetadata(
        opportunity_id=row.opportunity_id,
        probability=row.probability or 0,
        is_commit=bool(row.is_commit),
        revenue_override=row.revenue_override,
        profit_override=row.profit_override,
        is_excluded=bool(row.is_excluded),
        exclusion_reason=row.exclusion_reason,
        notes=row.notes,
        last_reviewed_at=row.last_reviewed_at,
        reviewed_by=row.reviewed_by,
    )


class ForecastService:
    def __init__(self, store: EventStore = event_store) -> None:
        self.store = store

    async def load_opportunities(
        self,
        session: AsyncSession,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        today: Optional[date] = None,
    ) -> list[engine.EnrichedOpportunity]:
        stmt = (
            select(Opportunity, ForecastMetadataRow)
            .outerjoin(ForecastMetadataRow, ForecastMetadataRow.opportunity_id == Opportunity.id)
            .order_by(Opportunity.starts_at.asc())
        )
        if start_date is not None:
            stmt = stmt.where(Opportunity.starts_at >= _midnight(start_date))
            if end_date is not None:
                stmt = stmt.where(Opportunity.starts_at <= _midnight(end_date))
        else:
            floor = (today or date.today()) - timedelta(days=settings.forecast_default_lookback_days)
            stmt = stmt.where(Opportunity.starts_at >= _midnight(floor))

        result = await session.execute(stmt)
        return [
            engine.enrich_opportunity_with_forecast(to_record(opp), to_metadata(meta))
            for opp, meta in result.all()
        ]

    async def get_summary(
        self,
        session: AsyncSession,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        owner: Optional[str] = None,
        customer: Optional[str] = None,
        include_excluded: bool = False,
        today: Optional[date] = None,
    ) -> ForecastData:
        opportunities = await self.load_opportunities(session, start_date, end_date, today)

        if owner:
            opportunities = [o for o in opportunities if o.owner_name == owner]
        if customer:
            opportunities = [o for o in opportunities if o.organisation_name == customer]
        if not include_excluded:
            opportunities = [o for o in opportunities if not o.is_excluded]

        group_by_week = engine.should_group_by_week(
            start_date, end_date, settings.forecast_weekly_max_days
        )

        logger.info(
            "forecast_summary_calculated",
            count=len(opportunities),
            group_by_week=group_by_week,
            owner=owner,
            customer=customer,
        )

        return ForecastData.model_validate({
            "summary": engine.calculate_forecast_summary(opportunities),
            "by_owner": engine.calculate_forecast_by_owner(opportunities),
            "by_customer": engine.calculate_forecast_by_customer(opportunities),
            "by_probability_band": engine.calculate_forecast_by_probability_band(opportunities),
            "time_series": engine.calculate_forecast_time_series(opportunities, group_by_week),
            "group_by_week": group_by_week,
            "opportunities": opportunities,
            "filters": ForecastFilters(
                owners=sorted({o.owner_name for o in opportunities if o.owner_name}),
                customers=sorted({o.organisation_name for o in opportunities if o.organisation_name}),
            ),
        })

    # ── Forecast metadata ──────────────────────────────────────────────

    async def get_metadata(self, session: AsyncSession, opportunity_id: int) -> Optional[ForecastMetadataOut]:
        row = await self._get_row(session, opportunity_id)
        return ForecastMetadataOut.model_validate(row) if row else None

    async def _get_row(self, session: AsyncSession, opportunity_id: int) -> Optional[ForecastMetadataRow]:
        return await session.scalar(
            select(ForecastMetadataRow).where(ForecastMetadataRow.opportunity_id == opportunity_id)
        )

    async def save_metadata(
        self,
        session: AsyncSession,
        opportunity_id: int,
        body: ForecastMetadataIn,
    ) -> ForecastMetadataOut:
        """Upsert the annotation and audit what changed."""
        values = body.model_dump()
        if not values["is_excluded"]:
            values["exclusion_reason"] = None
        for key in ("revenue_override", "profit_override"):
            if values[key] is not None:
                values[key] = Decimal(str(values[key]))

        row = await self._get_row(session, opportunity_id)
        action = "update" if row else "create"
        before = ForecastMetadataOut.model_validate(row).model_dump(mode="json") if row else None
        if row is None:
            row = ForecastMetadataRow(opportunity_id=opportunity_id)
            session.add(row)
        for key, value in values.items():
            setattr(row, key, value)
        row.last_reviewed_at = datetime.utcnow()
        await session.flush()
        await session.refresh(row)

        saved = ForecastMetadataOut.model_validate(row)
        await self.store.log_audit(
            session,
            entity_type="forecast",
            entity_id=opportunity_id,
            action=action,
            changes={"before": before, "after": saved.model_dump(mode="json")},
        )
        logger.info("forecast_metadata_saved", opportunity_id=opportunity_id, action=action)
        return saved

    async def delete_metadata(self, session: AsyncSession, opportunity_id: int) -> bool:
        row = await self._get_row(session, opportunity_id)
        if row is None:
            return False
        before = ForecastMetadataOut.model_validate(row).model_dump(mode="json")
        await session.delete(row)
        await session.flush()
        await self.store.log_audit(
            session,
            entity_type="forecast",
            entity_id=opportunity_id,
            action="delete",
            changes={"before": before},
        )
        logger.info("forecast_metadata_deleted", opportunity_id=opportunity_id)
        return True
