"""
Risk factor catalogue and approval thresholds.

The catalogue (labels, weights, 5-point scales) and the approval tiers are
configuration: persisted in the risk_settings table and falling back to the
built-in defaults below. Factor identifiers form a closed set.
"""

from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RiskFactorId(StrEnum):
    PROJECT_NOVELTY = "risk_project_novelty"
    TECHNICAL_COMPLEXITY = "risk_technical_complexity"
    RESOURCE_UTILIZATION = "risk_resource_utilization"
    CLIENT_SOPHISTICATION = "risk_client_sophistication"
    BUDGET_SIZE = "risk_budget_size"
    TIMEFRAME_CONSTRAINT = "risk_timeframe_constraint"
    TEAM_EXPERIENCE = "risk_team_experience"
    SUBHIRE_AVAILABILITY = "risk_subhire_availability"


class RiskLevel(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ScaleLevel(BaseModel):
    value: int = Field(ge=1, le=5)
    label: str
    description: str


class RiskFactor(BaseModel):
    """One scored dimension of a risk assessment."""
    id: RiskFactorId
    label: str
    weight: float = Field(gt=0)
    scale: list[ScaleLevel] = Field(default_factory=list)


class ApprovalThreshold(BaseModel):
    """Upper score boundary of a tier and who signs it off."""
    model_config = ConfigDict(populate_by_name=True)

    max_score: float = Field(alias="maxScore")
    approver: Optional[int] = None
    approver_name: str = Field(alias="approverName")


class ApprovalThresholds(BaseModel):
    low: ApprovalThreshold
    medium: ApprovalThreshold
    high: ApprovalThreshold
    critical: ApprovalThreshold

    @model_validator(mode="after")
    def _check_monotonic(self) -> "ApprovalThresholds":
        bounds = [
            self.low.max_score,
            self.medium.max_score,
            self.high.max_score,
            self.critical.max_score,
        ]
        if any(a >= b for a, b in zip(bounds, bounds[1:])):
            raise ValueError(
                "approval thresholds must increase: low < medium < high < critical "
                f"(got {bounds})"
            )
        return self


class RiskSettings(BaseModel):
    risk_factors: list[RiskFactor]
    approval_thresholds: ApprovalThresholds


def _scale(*levels: tuple[str, str]) -> list[ScaleLevel]:
    return [
        ScaleLevel(value=i, label=label, description=description)
        for i, (label, description) in enumerate(levels, start=1)
    ]


DEFAULT_RISK_FACTORS: tuple[RiskFactor, ...] = (
    RiskFactor(
        id=RiskFactorId.PROJECT_NOVELTY,
        label="Project Type Familiarity",
        weight=1.2,
        scale=_scale(
            ("Routine", "Standard project we do regularly"),
            ("Familiar", "Similar to past projects"),
            ("Moderate", "Some new elements"),
            ("Novel", "Significantly different from usual"),
            ("Entirely New", "Never done before"),
        ),
    ),
    RiskFactor(
        id=RiskFactorId.TECHNICAL_COMPLEXITY,
        label="Technical Complexity",
        weight=1.3,
        scale=_scale(
            ("Simple", "Basic setup, standard equipment"),
            ("Straightforward", "Minor technical challenges"),
            ("Moderate", "Some complex systems"),
            ("Complex", "Advanced technical requirements"),
            ("Bleeding Edge", "Cutting-edge/experimental tech"),
        ),
    ),
    RiskFactor(
        id=RiskFactorId.RESOURCE_UTILIZATION,
        label="Resource Utilization",
        weight=1.1,
        scale=_scale(
            ("0-25%", "Minimal resource commitment"),
            ("25-50%", "Moderate resource use"),
            ("50-65%", "Significant resource allocation"),
            ("65-75%", "High resource utilization"),
            ("75%+", "Near maximum capacity"),
        ),
    ),
    RiskFactor(
        id=RiskFactorId.CLIENT_SOPHISTICATION,
        label="Client Experience Level",
        weight=0.9,
        scale=_scale(
            ("Highly Experienced", "Knows exactly what they want"),
            ("Experienced", "Familiar with events"),
            ("Moderate", "Some event experience"),
            ("Limited", "First few events"),
            ("First-Time", "Never organized event before"),
        ),
    ),
    RiskFactor(
        id=RiskFactorId.BUDGET_SIZE,
        label="Budget Scale",
        weight=1.0,
        scale=_scale(
            ("<$5,000", "Small budget"),
            ("$5k-$20k", "Medium budget"),
            ("$20k-$50k", "Large budget"),
            ("$50k-$100k", "Very large budget"),
            ("$100k+", "Major project"),
        ),
    ),
    RiskFactor(
        id=RiskFactorId.TIMEFRAME_CONSTRAINT,
        label="Timeline Pressure",
        weight=1.2,
        scale=_scale(
            ("Ample Time", "Plenty of lead time"),
            ("Normal", "Standard timeline"),
            ("Tight", "Limited preparation time"),
            ("Very Tight", "Minimal lead time"),
            ("Rush/Emergency", "Last minute request"),
        ),
    ),
    RiskFactor(
        id=RiskFactorId.TEAM_EXPERIENCE,
        label="Team Capability",
        weight=1.3,
        scale=_scale(
            ("Expert", "Highly experienced team"),
            ("Experienced", "Competent team"),
            ("Adequate", "Mixed experience levels"),
            ("Limited", "Newer team members"),
            ("Inexperienced", "Largely untrained team"),
        ),
    ),
    RiskFactor(
        id=RiskFactorId.SUBHIRE_AVAILABILITY,
        label="Sub-hire Availability",
        weight=1.1,
        scale=_scale(
            ("Multiple Vendors", "Many options available"),
            ("Several Options", "Good availability"),
            ("Limited Options", "Few vendors available"),
            ("Very Limited", "Scarce availability"),
            ("None Available", "No sub-hire options"),
        ),
    ),
)

DEFAULT_APPROVAL_THRESHOLDS = ApprovalThresholds(
    low=ApprovalThreshold(max_score=2.0, approver=None, approver_name="Project Manager"),
    medium=ApprovalThreshold(max_score=3.0, approver=None, approver_name="Senior Manager"),
    high=ApprovalThreshold(max_score=4.0, approver=None, approver_name="Operations Director"),
    critical=ApprovalThreshold(max_score=5.0, approver=None, approver_name="Executive Approval Required"),
)

NOT_ASSESSED = ApprovalThreshold(max_score=0, approver=None, approver_name="Not assessed")


def default_risk_settings() -> RiskSettings:
    """Fresh copy of the built-in catalogue and thresholds."""
    return RiskSettings(
        risk_factors=[f.model_copy(deep=True) for f in DEFAULT_RISK_FACTORS],
        approval_thresholds=DEFAULT_APPROVAL_THRESHOLDS.model_copy(deep=True),
    )
