"""
Forecast API schemas.

Engine results are Decimal dataclasses; these models render them as JSON
numbers. Field names stay snake_case as the forecast UI expects, except
periodLabel and the response envelope keys.
"""

from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from rmswatch.engine.forecast import EXCLUSION_REASONS
from rmswatch.schemas.events import CamelModel


class _FromEngine(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class ForecastMetadataOut(_FromEngine):
    opportunity_id: int
    probability: int
    is_commit: bool
    revenue_override: Optional[float] = None
    profit_override: Optional[float] = None
    is_excluded: bool
    exclusion_reason: Optional[str] = None
    notes: Optional[str] = None
    last_reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ForecastMetadataIn(BaseModel):
    """Body of PUT /api/forecast/{opportunity_id}."""
    probability: int = Field(ge=0, le=100)
    is_commit: bool = False
    revenue_override: Optional[float] = None
    profit_override: Optional[float] = None
    is_excluded: bool = False
    exclusion_reason: Optional[str] = None
    notes: Optional[str] = None
    reviewed_by: Optional[str] = None

    @field_validator("exclusion_reason")
    @classmethod
    def _known_reason(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in EXCLUSION_REASONS:
            raise ValueError(f"exclusion_reason must be one of {list(EXCLUSION_REASONS)}")
        return v

    @model_validator(mode="after")
    def _reason_when_excluded(self) -> "ForecastMetadataIn":
        if self.is_excluded and not self.exclusion_reason:
            raise ValueError("exclusion_reason is required when is_excluded is true")
        return self


class EnrichedOpportunityOut(_FromEngine):
    id: int
    name: str
    subject: Optional[str] = None
    organisation_name: Optional[str] = None
    owner_name: Optional[str] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    opportunity_status: Optional[str] = None
    charge_total: float
    provisional_cost_total: float
    predicted_cost_total: float
    actual_cost_total: float
    base_profit: float
    base_margin: float
    forecast: Optional[ForecastMetadataOut] = None
    effective_revenue: float
    effective_profit: float
    weighted_revenue: float
    weighted_profit: float


class ForecastSummaryOut(_FromEngine):
    total_pipeline_revenue: float
    total_pipeline_profit: float
    total_pipeline_count: int
    weighted_revenue: float
    weighted_profit: float
    commit_revenue: float
    commit_profit: float
    commit_count: int
    upside_revenue: float
    upside_profit: float
    upside_count: int
    excluded_count: int
    excluded_revenue: float
    unreviewed_count: int
    unreviewed_revenue: float


class OwnerForecastOut(_FromEngine):
    owner_name: str
    pipeline_revenue: float
    pipeline_profit: float
    weighted_revenue: float
    weighted_profit: float
    commit_revenue: float
    upside_revenue: float
    opportunity_count: int
    avg_probability: float


class CustomerForecastOut(_FromEngine):
    organisation_name: str
    pipeline_revenue: float
    weighted_revenue: float
    opportunity_count: int
    avg_probability: float


class ProbabilityBandOut(_FromEngine):
    band: str
    min_probability: int
    max_probability: int
    revenue: float
    profit: float
    count: int


class PeriodForecastOut(_FromEngine):
    period: str
    period_label: str = Field(
        validation_alias=AliasChoices("period_label", "periodLabel"),
        serialization_alias="periodLabel",
    )
    commit_revenue: float
    upside_revenue: float
    unreviewed_revenue: float
    commit_profit: float
    upside_profit: float
    unreviewed_profit: float


class ForecastFilters(BaseModel):
    owners: list[str] = Field(default_factory=list)
    customers: list[str] = Field(default_factory=list)


class ForecastData(CamelModel):
    summary: ForecastSummaryOut
    by_owner: list[OwnerForecastOut]
    by_customer: list[CustomerForecastOut]
    by_probability_band: list[ProbabilityBandOut]
    time_series: list[PeriodForecastOut]
    group_by_week: bool
    opportunities: list[EnrichedOpportunityOut]
    filters: ForecastFilters


class ForecastSummaryResponse(CamelModel):
    success: bool = True
    data: ForecastData
    count: int
    timestamp: datetime
