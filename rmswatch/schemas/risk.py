"""Risk assessment / settings schemas."""

from typing import Any, Optional

from pydantic import BaseModel, Field

from rmswatch.engine.risk_factors import RiskLevel
from rmswatch.schemas.events import CamelModel


class RiskSettingsUpdate(BaseModel):
    """Body of POST /api/settings/risk; either key may be omitted."""
    risk_factors: Optional[list[dict[str, Any]]] = None
    approval_thresholds: Optional[dict[str, Any]] = None


class ApprovalOut(CamelModel):
    level: Optional[RiskLevel] = None
    max_score: float
    approver: Optional[int] = None
    approver_name: str


class RiskAssessmentOut(CamelModel):
    risk_score: float
    risk_level: Optional[RiskLevel] = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class RiskAssessmentResult(CamelModel):
    success: bool = True
    opportunity: dict[str, Any]
    assessment: RiskAssessmentOut
    approval: ApprovalOut


class RiskSummaryItem(CamelModel):
    level: RiskLevel
    count: int = 0
    total_value: float = 0.0
