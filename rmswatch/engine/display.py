"""Display helpers for forecast values (labels and compact currency)."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from rmswatch.engine.forecast import ForecastMetadata
from rmswatch.engine.money import parse_money


def get_forecast_status_label(forecast: Optional[ForecastMetadata]) -> str:
    if forecast is None:
        return "Unreviewed"
    if forecast.is_excluded:
        return "Excluded"
    if forecast.is_commit:
        return "Commit"
    return "Upside"


def _fixed(value: Decimal, places: int) -> str:
    quantum = Decimal(1).scaleb(-places)
    return str(value.quantize(quantum, rounding=ROUND_HALF_UP))


def format_currency(value) -> str:
    """$1.2M above a million, $12k above a thousand, whole dollars otherwise."""
    amount = parse_money(value)
    if amount >= 1_000_000:
        return f"${_fixed(amount / 1_000_000, 1)}M"
    if amount >= 1_000:
        return f"${_fixed(amount / 1_000, 0)}k"
    return f"${_fixed(amount, 0)}"


def format_percentage(value) -> str:
    return f"{_fixed(parse_money(value), 0)}%"


def format_margin(margin) -> str:
    """Margin is a 0-1 fraction; rendered as a percentage with one decimal."""
    return f"{_fixed(parse_money(margin) * 100, 1)}%"
