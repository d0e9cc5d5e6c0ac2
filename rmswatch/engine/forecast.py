"""
Forecast Aggregation Engine — weighted pipeline rollups.

Pure, synchronous functions over already-fetched rows:
- enrich_opportunity_with_forecast: derived values for one opportunity
- calculate_forecast_summary: excluded / unreviewed / commit / upside partition
- calculate_forecast_by_owner, calculate_forecast_by_customer: grouped totals
- calculate_forecast_by_probability_band: fixed 4-band distribution
- calculate_forecast_time_series: weekly or monthly buckets

Every opportunity lands in exactly one of excluded, unreviewed or
pipeline (commit | upside). Derived values are never stored.
"""

import math
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Iterable, Optional

from rmswatch.engine.money import ZERO, optional_money, parse_money

HUNDRED = Decimal(100)

MONTH_ABBREVIATIONS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)

UNASSIGNED_OWNER = "Unassigned"
UNKNOWN_CUSTOMER = "Unknown Customer"


@dataclass(frozen=True)
class ProbabilityBand:
    label: str
    min: int
    max: int


PROBABILITY_BANDS: tuple[ProbabilityBand, ...] = (
    ProbabilityBand("0-25%", 0, 25),
    ProbabilityBand("26-50%", 26, 50),
    ProbabilityBand("51-75%", 51, 75),
    ProbabilityBand("76-100%", 76, 100),
)

EXCLUSION_REASONS: tuple[str, ...] = (
    "Duplicate",
    "Test record",
    "Unlikely to close",
    "Lost to competitor",
    "Customer cancelled",
    "Out of scope",
    "Other",
)


# ── Inputs ────────────────────────────────────────────────────────────────


@dataclass
class ForecastMetadata:
    """Human forecast annotation. Absence on an opportunity means unreviewed."""
    opportunity_id: int
    probability: int = 0
    is_commit: bool = False
    revenue_override: Optional[Decimal] = None
    profit_override: Optional[Decimal] = None
    is_excluded: bool = False
    exclusion_reason: Optional[str] = None
    notes: Optional[str] = None
    last_reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None


@dataclass
class OpportunityRecord:
    """
    The opportunity fields the engine consumes.

    Monetary fields accept whatever the data source hands over (raw strings,
    numbers, None); they are parsed with parse_money during enrichment.
    """
    id: int
    name: str
    subject: Optional[str] = None
    organisation_name: Optional[str] = None
    owner_name: Optional[str] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    opportunity_status: Optional[str] = None
    charge_total: Any = None
    provisional_cost_total: Any = None
    predicted_cost_total: Any = None
    actual_cost_total: Any = None


# ── Outputs ───────────────────────────────────────────────────────────────


@dataclass
class EnrichedOpportunity:
    id: int
    name: str
    subject: Optional[str]
    organisation_name: Optional[str]
    owner_name: Optional[str]
    starts_at: Optional[datetime]
    ends_at: Optional[datetime]
    opportunity_status: Optional[str]

    charge_total: Decimal
    provisional_cost_total: Decimal
    predicted_cost_total: Decimal
    actual_cost_total: Decimal

    base_profit: Decimal               # charge_total - provisional_cost_total
    base_margin: Decimal               # base_profit / charge_total (0 if no revenue)

    forecast: Optional[ForecastMetadata]

    effective_revenue: Decimal         # revenue_override or charge_total
    effective_profit: Decimal          # profit_override or base_profit
    weighted_revenue: Decimal          # effective_revenue * probability / 100
    weighted_profit: Decimal           # effective_profit * probability / 100

    @property
    def is_excluded(self) -> bool:
        return self.forecast is not None and self.forecast.is_excluded

    @property
    def is_reviewed(self) -> bool:
        return self.forecast is not None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ForecastSummary:
    total_pipeline_revenue: Decimal = ZERO
    total_pipeline_profit: Decimal = ZERO
    total_pipeline_count: int = 0
    weighted_revenue: Decimal = ZERO
    weighted_profit: Decimal = ZERO
    commit_revenue: Decimal = ZERO
    commit_profit: Decimal = ZERO
    commit_count: int = 0
    upside_revenue: Decimal = ZERO
    upside_profit: Decimal = ZERO
    upside_count: int = 0
    excluded_count: int = 0
    excluded_revenue: Decimal = ZERO
    unreviewed_count: int = 0
    unreviewed_revenue: Decimal = ZERO


@dataclass
class OwnerForecast:
    owner_name: str
    pipeline_revenue: Decimal = ZERO
    pipeline_profit: Decimal = ZERO
    weighted_revenue: Decimal = ZERO
    weighted_profit: Decimal = ZERO
    commit_revenue: Decimal = ZERO
    upside_revenue: Decimal = ZERO
    opportunity_count: int = 0
    avg_probability: float = 0.0
    _probability_total: int = field(default=0, repr=False)


@dataclass
class CustomerForecast:
    organisation_name: str
    pipeline_revenue: Decimal = ZERO
    weighted_revenue: Decimal = ZERO
    opportunity_count: int = 0
    avg_probability: float = 0.0
    _probability_total: int = field(default=0, repr=False)


@dataclass
class ProbabilityBandForecast:
    band: str
    min_probability: int
    max_probability: int
    revenue: Decimal = ZERO
    profit: Decimal = ZERO
    count: int = 0


@dataclass
class PeriodForecast:
    period: str                        # "2025-W02" or "2025-01"
    period_label: str                  # "Jan 6" or "Jan"
    commit_revenue: Decimal = ZERO
    upside_revenue: Decimal = ZERO
    unreviewed_revenue: Decimal = ZERO
    commit_profit: Decimal = ZERO
    upside_profit: Decimal = ZERO
    unreviewed_profit: Decimal = ZERO


# ── Enrichment ────────────────────────────────────────────────────────────


def calculate_weighted_value(value: Decimal, probability: int) -> Decimal:
    return value * Decimal(probability) / HUNDRED


def calculate_margin(profit: Decimal, revenue: Decimal) -> Decimal:
    if revenue == 0:
        return ZERO
    return profit / revenue


def enrich_opportunity_with_forecast(
    opportunity: OpportunityRecord,
    forecast: Optional[ForecastMetadata],
) -> EnrichedOpportunity:
    """
    Attach derived forecast values to an opportunity.

    Overrides only apply when forecast metadata exists and the override is
    set. Without metadata the probability is 0, so weighted values are 0.
    """
    charge_total = parse_money(opportunity.charge_total)
    provisional = parse_money(opportunity.provisional_cost_total)
    predicted = parse_money(opportunity.predicted_cost_total)
    actual = parse_money(opportunity.actual_cost_total)

    base_profit = charge_total - provisional
    base_margin = calculate_margin(base_profit, charge_total)

    effective_revenue = charge_total
    effective_profit = base_profit
    probability = 0
    if forecast is not None:
        revenue_override = optional_money(forecast.revenue_override)
        profit_override = optional_money(forecast.profit_override)
        if revenue_override is not None:
            effective_revenue = revenue_override
        if profit_override is not None:
            effective_profit = profit_override
        probability = forecast.probability or 0

    return EnrichedOpportunity(
        id=opportunity.id,
        name=opportunity.name,
        subject=opportunity.subject,
        organisation_name=opportunity.organisation_name,
        owner_name=opportunity.owner_name,
        starts_at=opportunity.starts_at,
        ends_at=opportunity.ends_at,
        opportunity_status=opportunity.opportunity_status,
        charge_total=charge_total,
        provisional_cost_total=provisional,
        predicted_cost_total=predicted,
        actual_cost_total=actual,
        base_profit=base_profit,
        base_margin=base_margin,
        forecast=forecast,
        effective_revenue=effective_revenue,
        effective_profit=effective_profit,
        weighted_revenue=calculate_weighted_value(effective_revenue, probability),
        weighted_profit=calculate_weighted_value(effective_profit, probability),
    )


# ── Aggregations ──────────────────────────────────────────────────────────


def calculate_forecast_summary(opportunities: Iterable[EnrichedOpportunity]) -> ForecastSummary:
    """Single pass: excluded first, then unreviewed, then commit/upside."""
    summary = ForecastSummary()

    for opp in opportunities:
        if opp.is_excluded:
            summary.excluded_count += 1
            summary.excluded_revenue += opp.effective_revenue
            continue

        if opp.forecast is None:
            # No probability to weight by
            summary.unreviewed_count += 1
            summary.unreviewed_revenue += opp.charge_total
            continue

        summary.total_pipeline_count += 1
        summary.total_pipeline_revenue += opp.effective_revenue
        summary.total_pipeline_profit += opp.effective_profit
        summary.weighted_revenue += opp.weighted_revenue
        summary.weighted_profit += opp.weighted_profit

        if opp.forecast.is_commit:
            summary.commit_count += 1
            summary.commit_revenue += opp.weighted_revenue
            summary.commit_profit += opp.weighted_profit
        else:
            summary.upside_count += 1
            summary.upside_revenue += opp.weighted_revenue
            summary.upside_profit += opp.weighted_profit

    return summary


def _probability(opp: EnrichedOpportunity) -> int:
    return opp.forecast.probability if opp.forecast is not None else 0


def _is_commit(opp: EnrichedOpportunity) -> bool:
    return opp.forecast is not None and opp.forecast.is_commit


def calculate_forecast_by_owner(opportunities: Iterable[EnrichedOpportunity]) -> list[OwnerForecast]:
    """
    Group by owner, skipping excluded opportunities.

    Unreviewed opportunities stay in (probability 0, counted as upside).
    Sorted by weighted_revenue, highest first.
    """
    by_owner: dict[str, OwnerForecast] = {}

    for opp in opportunities:
        if opp.is_excluded:
            continue

        name = opp.owner_name or UNASSIGNED_OWNER
        owner = by_owner.get(name)
        if owner is None:
            owner = by_owner[name] = OwnerForecast(owner_name=name)

        owner.opportunity_count += 1
        owner.pipeline_revenue += opp.effective_revenue
        owner.pipeline_profit += opp.effective_profit
        owner.weighted_revenue += opp.weighted_revenue
        owner.weighted_profit += opp.weighted_profit
        if _is_commit(opp):
            owner.commit_revenue += opp.weighted_revenue
        else:
            owner.upside_revenue += opp.weighted_revenue
        owner._probability_total += _probability(opp)

    for owner in by_owner.values():
        if owner.opportunity_count:
            owner.avg_probability = owner._probability_total / owner.opportunity_count

    return sorted(by_owner.values(), key=lambda o: o.weighted_revenue, reverse=True)


def calculate_forecast_by_customer(
    opportunities: Iterable[EnrichedOpportunity],
) -> list[CustomerForecast]:
    """Group by organisation, skipping excluded. Highest weighted revenue first."""
    by_customer: dict[str, CustomerForecast] = {}

    for opp in opportunities:
        if opp.is_excluded:
            continue

        name = opp.organisation_name or UNKNOWN_CUSTOMER
        customer = by_customer.get(name)
        if customer is None:
            customer = by_customer[name] = CustomerForecast(organisation_name=name)

        customer.opportunity_count += 1
        customer.pipeline_revenue += opp.effective_revenue
        customer.weighted_revenue += opp.weighted_revenue
        customer._probability_total += _probability(opp)

    for customer in by_customer.values():
        if customer.opportunity_count:
            customer.avg_probability = customer._probability_total / customer.opportunity_count

    return sorted(by_customer.values(), key=lambda c: c.weighted_revenue, reverse=True)


def calculate_forecast_by_probability_band(
    opportunities: Iterable[EnrichedOpportunity],
) -> list[ProbabilityBandForecast]:
    """Distribute reviewed, non-excluded opportunities over the fixed bands."""
    bands = [
        ProbabilityBandForecast(band=b.label, min_probability=b.min, max_probability=b.max)
        for b in PROBABILITY_BANDS
    ]

    for opp in opportunities:
        if opp.forecast is None or opp.forecast.is_excluded:
            continue

        prob = opp.forecast.probability
        for band in bands:
            if band.min_probability <= prob <= band.max_probability:
                band.count += 1
                band.revenue += opp.effective_revenue
                band.profit += opp.effective_profit
                break

    return bands


# ── Time series ───────────────────────────────────────────────────────────


def week_start(day: date) -> date:
    """Monday of the ISO week containing `day`."""
    return day - timedelta(days=day.weekday())


def period_key(moment: datetime | date, group_by_week: bool) -> tuple[str, str]:
    """Return (sortable period key, display label) for a start timestamp."""
    day = moment.date() if isinstance(moment, datetime) else moment
    if group_by_week:
        iso_year, iso_week, _ = day.isocalendar()
        monday = week_start(day)
        return (
            f"{iso_year}-W{iso_week:02d}",
            f"{MONTH_ABBREVIATIONS[monday.month - 1]} {monday.day}",
        )
    return f"{day.year}-{day.month:02d}", MONTH_ABBREVIATIONS[day.month - 1]


def calculate_forecast_time_series(
    opportunities: Iterable[EnrichedOpportunity],
    group_by_week: bool,
) -> list[PeriodForecast]:
    """
    Bucket opportunities by start date into weeks or months.

    Rows without a start are skipped. An excluded row still opens its period
    (so the period shows up empty) but contributes nothing. Unreviewed rows
    feed the unweighted unreviewed series; reviewed rows feed commit or
    upside with weighted values.
    """
    periods: dict[str, PeriodForecast] = {}

    for opp in opportunities:
        if opp.starts_at is None:
            continue

        key, label = period_key(opp.starts_at, group_by_week)
        entry = periods.get(key)
        if entry is None:
            entry = periods[key] = PeriodForecast(period=key, period_label=label)

        if opp.is_excluded:
            continue

        if opp.forecast is None:
            entry.unreviewed_revenue += opp.charge_total
            entry.unreviewed_profit += opp.base_profit
        elif opp.forecast.is_commit:
            entry.commit_revenue += opp.weighted_revenue
            entry.commit_profit += opp.weighted_profit
        else:
            entry.upside_revenue += opp.weighted_revenue
            entry.upside_profit += opp.weighted_profit

    return [periods[k] for k in sorted(periods)]


def should_group_by_week(
    start: Optional[date | datetime],
    end: Optional[date | datetime],
    weekly_max_days: int = 89,
) -> bool:
    """
    Caller-side display policy: weekly buckets for short ranges.

    Without both bounds the range counts as 90 days (monthly).
    """
    span_days = 90
    if start is not None and end is not None:
        span = _as_datetime(end) - _as_datetime(start)
        span_days = math.ceil(span.total_seconds() / 86400)
    return span_days <= weekly_max_days


def _as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    return datetime(value.year, value.month, value.day)
