"""
Risk Scoring Engine — weighted multi-factor score, level and approval tier.

The score is the weighted mean over the factors that HAVE been scored:

    score = Σ(score_i × weight_i) / Σ(weight_i)     for scored factors only

so a partially assessed opportunity already has a meaningful score. Unscored
factors add nothing to either sum. The result is rounded to 2 dp; 0 means
"not assessed".

Levels (inclusive upper bounds):  0 → None, ≤2 LOW, ≤3 MEDIUM, ≤4 HIGH, else CRITICAL
"""

import math
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from numbers import Real
from typing import Any, Optional, Union

from rmswatch.engine.risk_factors import (
    DEFAULT_APPROVAL_THRESHOLDS,
    DEFAULT_RISK_FACTORS,
    NOT_ASSESSED,
    ApprovalThreshold,
    ApprovalThresholds,
    RiskFactor,
    RiskFactorId,
    RiskLevel,
)

MIN_SCORE = 1
MAX_SCORE = 5

Score = Union[int, float]


class RiskScores(Mapping):
    """
    Mapping of every RiskFactorId to a score or None.

    None is the explicit "unscored" variant; every factor id is always a key.
    Values are kept as given so validate_risk_scores can reject bad input.
    """

    __slots__ = ("_scores",)

    def __init__(self, scores: Optional[Mapping[RiskFactorId, Optional[Score]]] = None):
        self._scores: dict[RiskFactorId, Optional[Score]] = {fid: None for fid in RiskFactorId}
        for key, value in (scores or {}).items():
            self._scores[RiskFactorId(key)] = value

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RiskScores":
        """Pick factor scores out of a loose dict (e.g. custom fields); other keys are ignored."""
        known = {fid.value for fid in RiskFactorId}
        return cls({RiskFactorId(k): v for k, v in data.items() if k in known})

    def __getitem__(self, key: RiskFactorId | str) -> Optional[Score]:
        return self._scores[RiskFactorId(key)]

    def __iter__(self) -> Iterator[RiskFactorId]:
        return iter(self._scores)

    def __len__(self) -> int:
        return len(self._scores)

    def scored(self) -> dict[RiskFactorId, Score]:
        return {k: v for k, v in self._scores.items() if v is not None}

    def to_dict(self) -> dict[str, Optional[Score]]:
        return {k.value: v for k, v in self._scores.items()}

    def __repr__(self) -> str:
        return f"RiskScores({self.scored()!r})"


@dataclass
class ApprovalDecision:
    level: Optional[RiskLevel]
    approver: ApprovalThreshold


def _as_scores(scores: RiskScores | Mapping[str, Any]) -> RiskScores:
    if isinstance(scores, RiskScores):
        return scores
    return RiskScores.from_mapping(scores)


def _round2(value: float) -> float:
    return float(Decimal(repr(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def calculate_risk_score_with_factors(
    scores: RiskScores | Mapping[str, Any],
    factors: Iterable[RiskFactor],
) -> float:
    """Weighted partial mean using a custom factor catalogue."""
    scores = _as_scores(scores)
    weighted_total = 0.0
    weight_total = 0.0

    for factor in factors:
        score = scores[factor.id]
        if score is None or isinstance(score, bool) or not isinstance(score, Real):
            continue
        weighted_total += score * factor.weight
        weight_total += factor.weight

    if weight_total == 0:
        return 0.0
    return _round2(weighted_total / weight_total)


def calculate_risk_score(scores: RiskScores | Mapping[str, Any]) -> float:
    """Weighted partial mean using the built-in catalogue."""
    return calculate_risk_score_with_factors(scores, DEFAULT_RISK_FACTORS)


def get_risk_level(
    score: float,
    thresholds: ApprovalThresholds = DEFAULT_APPROVAL_THRESHOLDS,
) -> Optional[RiskLevel]:
    if score == 0:
        return None
    if score <= thresholds.low.max_score:
        return RiskLevel.LOW
    if score <= thresholds.medium.max_score:
        return RiskLevel.MEDIUM
    if score <= thresholds.high.max_score:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


def get_approval_level_with_thresholds(
    score: float,
    thresholds: ApprovalThresholds,
) -> ApprovalDecision:
    """Level plus the full approver record of the matching tier."""
    level = get_risk_level(score, thresholds)
    if level is None:
        return ApprovalDecision(level=None, approver=NOT_ASSESSED)
    tier = {
        RiskLevel.LOW: thresholds.low,
        RiskLevel.MEDIUM: thresholds.medium,
        RiskLevel.HIGH: thresholds.high,
        RiskLevel.CRITICAL: thresholds.critical,
    }[level]
    return ApprovalDecision(level=level, approver=tier)


def get_approval_level(score: float) -> str:
    """Approver label for a score under the default thresholds."""
    return get_approval_level_with_thresholds(score, DEFAULT_APPROVAL_THRESHOLDS).approver.approver_name


def _is_valid_score(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, Real):
        return False
    if not math.isfinite(value) or value != int(value):
        return False
    return MIN_SCORE <= value <= MAX_SCORE


def validate_risk_scores(scores: RiskScores | Mapping[str, Any]) -> bool:
    """
    True when every present score is an integer in [1, 5].

    One bad factor rejects the whole assessment. An empty mapping is valid.
    """
    scores = _as_scores(scores)
    return all(_is_valid_score(v) for v in scores.scored().values())


def _to_utc(value: datetime | str) -> datetime:
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def needs_risk_review(
    opportunity_updated_at: datetime | str,
    risk_last_updated: Optional[datetime | str],
) -> bool:
    """True when never assessed, or the opportunity changed after the last assessment."""
    if not risk_last_updated:
        return True
    return _to_utc(opportunity_updated_at) > _to_utc(risk_last_updated)
