"""
Money parsing — the one place loose monetary input becomes a Decimal.

Current RMS sends totals as strings ("1234.50"), the database may hand back
None, and overrides arrive as numbers. Everything goes through parse_money,
which never raises: anything that is not a finite number is treated as zero.
"Genuinely zero" and "missing" are not distinguished.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any

ZERO = Decimal("0")

# Leading numeric prefix, the way a lenient float parser reads "12.5abc".
_NUMERIC_PREFIX = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def parse_money(value: Any) -> Decimal:
    """
    Coerce a monetary value to Decimal with a zero default.

    >>> parse_money("1500.25")
    Decimal('1500.25')
    >>> parse_money(None)
    Decimal('0')
    >>> parse_money("n/a")
    Decimal('0')
    """
    if value is None or isinstance(value, bool):
        return ZERO

    if isinstance(value, Decimal):
        return value if value.is_finite() else ZERO

    if isinstance(value, (int, float)):
        text = str(value)
    elif isinstance(value, str):
        match = _NUMERIC_PREFIX.match(value)
        if not match:
            return ZERO
        text = match.group(1)
    else:
        return ZERO

    try:
        parsed = Decimal(text)
    except InvalidOperation:
        return ZERO
    return parsed if parsed.is_finite() else ZERO


def optional_money(value: Any) -> Decimal | None:
    """Like parse_money, but keeps None as None (used for overrides)."""
    if value is None:
        return None
    return parse_money(value)
