"""
Risk Service — writes risk assessments back to Current RMS and summarises
the assessments held on mirrored opportunities.

Assessments live in Current RMS as opportunity custom fields (one field per
factor plus risk_score / risk_level). The score and level are always
recomputed here from the submitted factor scores with the active catalogue,
whatever the client sent.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rmswatch.db.models import Opportunity
from rmswatch.engine.money import ZERO, parse_money
from rmswatch.engine.risk_factors import RiskLevel, RiskSettings
from rmswatch.engine.risk_scoring import (
    RiskScores,
    calculate_risk_score_with_factors,
    get_approval_level_with_thresholds,
    validate_risk_scores,
)
from rmswatch.schemas.risk import (
    ApprovalOut,
    RiskAssessmentOut,
    RiskAssessmentResult,
    RiskSummaryItem,
)
from rmswatch.services.current_rms_client import CurrentRMSClient, CurrentRMSNotConfigured
from rmswatch.services.event_store import EventStore, event_store

logger = structlog.get_logger(__name__)


class InvalidRiskScores(ValueError):
    details = "All risk scores must be integers between 1 and 5"


def _midnight(day: date) -> datetime:
    return datetime(day.year, day.month, day.day)


class RiskService:
    def __init__(self, store: EventStore = event_store) -> None:
        self.store = store

    async def assess(
        self,
        session: AsyncSession,
        client: Optional[CurrentRMSClient],
        opportunity_id: int,
        data: dict[str, Any],
        risk_settings: RiskSettings,
    ) -> RiskAssessmentResult:
        """
        Validate, score and push an assessment.

        Raises InvalidRiskScores before anything else, then
        CurrentRMSNotConfigured when there is no client. CurrentRMSError from
        the PATCH propagates unchanged.
        """
        scores = RiskScores.from_mapping(data)
        if not validate_risk_scores(scores):
            logger.warning("risk_scores_invalid", opportunity_id=opportunity_id)
            raise InvalidRiskScores("Invalid risk scores")
        if client is None:
            raise CurrentRMSNotConfigured("Current RMS credentials not configured")

        score = calculate_risk_score_with_factors(scores, risk_settings.risk_factors)
        decision = get_approval_level_with_thresholds(score, risk_settings.approval_thresholds)

        custom_fields = dict(data)
        custom_fields["risk_score"] = score
        custom_fields["risk_level"] = decision.level.value if decision.level else ""
        custom_fields["risk_last_updated"] = datetime.now(timezone.utc).isoformat()

        updated = await client.update_opportunity_custom_fields(opportunity_id, custom_fields)
        await self._mirror(session, opportunity_id, custom_fields)
        await self.store.log_audit(
            session,
            entity_type="opportunity",
            entity_id=opportunity_id,
            action="risk_assessment",
            changes=custom_fields,
        )
        logger.info(
            "risk_assessment_saved",
            opportunity_id=opportunity_id,
            risk_score=score,
            risk_level=custom_fields["risk_level"],
        )

        return RiskAssessmentResult(
            opportunity=updated.get("opportunity") or updated,
            assessment=RiskAssessmentOut(
                risk_score=score,
                risk_level=decision.level,
                custom_fields=custom_fields,
            ),
            approval=ApprovalOut(
                level=decision.level,
                max_score=decision.approver.max_score,
                approver=decision.approver.approver,
                approver_name=decision.approver.approver_name,
            ),
        )

    async def _mirror(self, session: AsyncSession, opportunity_id: int, custom_fields: dict) -> None:
        row = await session.get(Opportunity, opportunity_id)
        if row is None:
            return
        data = dict(row.data or {})
        merged = dict(data.get("custom_fields") or {})
        merged.update(custom_fields)
        data["custom_fields"] = merged
        # reassign so the JSON column is flagged dirty
        row.data = data
        await session.flush()

    async def get_summary(
        self,
        session: AsyncSession,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[RiskSummaryItem]:
        """Count and charge_total per risk level over assessed opportunities."""
        stmt = select(Opportunity)
        if start_date is not None:
            stmt = stmt.where(Opportunity.starts_at >= _midnight(start_date))
        if end_date is not None:
            stmt = stmt.where(Opportunity.starts_at <= _midnight(end_date))
        rows = (await session.execute(stmt)).scalars().all()

        counts = {level: 0 for level in RiskLevel}
        totals: dict[RiskLevel, Decimal] = {level: ZERO for level in RiskLevel}
        for row in rows:
            raw_level = ((row.data or {}).get("custom_fields") or {}).get("risk_level")
            if not isinstance(raw_level, str) or raw_level not in RiskLevel.__members__:
                continue
            level = RiskLevel(raw_level)
            counts[level] += 1
            totals[level] += parse_money(row.charge_total)

        return [
            RiskSummaryItem(level=level, count=counts[level], total_value=float(totals[level]))
            for level in RiskLevel
        ]
