"""
Risk Scoring Engine Tests.
"""

from datetime import datetime, timezone

import pytest
from hypothesis import given, settings as hyp_settings
from hypothesis import strategies as st
from pydantic import ValidationError

from rmswatch.engine.risk_factors import (
    DEFAULT_APPROVAL_THRESHOLDS,
    ApprovalThreshold,
    ApprovalThresholds,
    RiskFactor,
    RiskFactorId,
    RiskLevel,
    default_risk_settings,
)
from rmswatch.engine.risk_scoring import (
    RiskScores,
    calculate_risk_score,
    calculate_risk_score_with_factors,
    get_approval_level,
    get_approval_level_with_thresholds,
    get_risk_level,
    needs_risk_review,
    validate_risk_scores,
)


class TestRiskScores:
    def test_every_factor_is_a_key(self):
        scores = RiskScores()
        assert len(scores) == len(RiskFactorId)
        assert all(scores[fid] is None for fid in RiskFactorId)

    def test_from_mapping_ignores_unknown_keys(self):
        scores = RiskScores.from_mapping({"risk_budget_size": 3, "notes": "hello"})
        assert scores.scored() == {RiskFactorId.BUDGET_SIZE: 3}

    def test_unknown_factor_rejected(self):
        with pytest.raises(ValueError):
            RiskScores({"risk_weather": 2})


class TestCalculateScore:
    def test_nothing_scored_is_zero(self):
        assert calculate_risk_score({}) == 0.0

    def test_single_factor_equals_its_score(self):
        assert calculate_risk_score({"risk_team_experience": 4}) == 4.0

    def test_weighted_partial_mean(self):
        # (5 × 1.2 + 1 × 0.9) / (1.2 + 0.9) = 6.9 / 2.1 = 3.2857…
        score = calculate_risk_score({"risk_project_novelty": 5, "risk_client_sophistication": 1})
        assert score == 3.29

    def test_all_factors_equal(self):
        scores = {fid.value: 3 for fid in RiskFactorId}
        assert calculate_risk_score(scores) == 3.0

    def test_custom_catalogue(self):
        factors = [
            RiskFactor(id=RiskFactorId.BUDGET_SIZE, label="Budget", weight=3),
            RiskFactor(id=RiskFactorId.TEAM_EXPERIENCE, label="Team", weight=1),
        ]
        score = calculate_risk_score_with_factors(
            {"risk_budget_size": 1, "risk_team_experience": 5}, factors
        )
        assert score == 2.0

    @pytest.mark.parametrize("value", [True, False, "3", [2]])
    def test_non_numeric_scores_are_ignored(self, value):
        assert calculate_risk_score({"risk_budget_size": value}) == 0.0
        assert calculate_risk_score({"risk_budget_size": value, "risk_team_experience": 4}) == 4.0


class TestRiskLevel:
    @pytest.mark.parametrize(
        "score,level",
        [
            (0, None),
            (1.0, RiskLevel.LOW),
            (2.0, RiskLevel.LOW),
            (2.01, RiskLevel.MEDIUM),
            (3.0, RiskLevel.MEDIUM),
            (4.0, RiskLevel.HIGH),
            (4.01, RiskLevel.CRITICAL),
            (5.0, RiskLevel.CRITICAL),
        ],
    )
    def test_inclusive_upper_bounds(self, score, level):
        assert get_risk_level(score) == level

    def test_approval_uses_tier(self):
        decision = get_approval_level_with_thresholds(3.5, DEFAULT_APPROVAL_THRESHOLDS)
        assert decision.level == RiskLevel.HIGH
        assert decision.approver.approver_name == "Operations Director"

    def test_not_assessed(self):
        decision = get_approval_level_with_thresholds(0, DEFAULT_APPROVAL_THRESHOLDS)
        assert decision.level is None
        assert decision.approver.approver_name == "Not assessed"
        assert get_approval_level(0) == "Not assessed"

    def test_custom_thresholds(self):
        thresholds = ApprovalThresholds(
            low=ApprovalThreshold(max_score=1.5, approver=7, approver_name="Lead"),
            medium=ApprovalThreshold(max_score=2.5, approver_name="Manager"),
            high=ApprovalThreshold(max_score=3.5, approver_name="Director"),
            critical=ApprovalThreshold(max_score=5, approver_name="CEO"),
        )
        assert get_risk_level(2.0, thresholds) == RiskLevel.MEDIUM
        assert get_approval_level_with_thresholds(1.2, thresholds).approver.approver == 7

    def test_thresholds_must_increase(self):
        with pytest.raises(ValidationError):
            ApprovalThresholds(
                low=ApprovalThreshold(max_score=3, approver_name="a"),
                medium=ApprovalThreshold(max_score=2, approver_name="b"),
                high=ApprovalThreshold(max_score=4, approver_name="c"),
                critical=ApprovalThreshold(max_score=5, approver_name="d"),
            )


class TestValidation:
    def test_empty_is_valid(self):
        assert validate_risk_scores({})

    def test_integers_in_range(self):
        assert validate_risk_scores({"risk_budget_size": 1, "risk_team_experience": 5})
        assert validate_risk_scores({"risk_budget_size": 3.0})

    @pytest.mark.parametrize("bad", [0, 6, 2.5, True, "3", float("nan")])
    def test_one_bad_score_rejects_all(self, bad):
        assert not validate_risk_scores({"risk_budget_size": 3, "risk_team_experience": bad})


class TestNeedsReview:
    def test_never_assessed(self):
        assert needs_risk_review(datetime(2025, 1, 1), None)
        assert needs_risk_review(datetime(2025, 1, 1), "")

    def test_updated_after_assessment(self):
        assert needs_risk_review("2025-01-02T00:00:00Z", "2025-01-01T00:00:00Z")
        assert not needs_risk_review("2025-01-01T00:00:00Z", "2025-01-02T00:00:00Z")

    def test_mixed_timezones(self):
        updated = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert not needs_risk_review(updated, "2025-01-01T13:30:00+01:00")


class TestDefaults:
    def test_default_catalogue(self):
        defaults = default_risk_settings()
        assert {f.id for f in defaults.risk_factors} == set(RiskFactorId)
        assert all(len(f.scale) == 5 for f in defaults.risk_factors)

    def test_defaults_are_independent_copies(self):
        first = default_risk_settings()
        first.risk_factors[0].weight = 99
        assert default_risk_settings().risk_factors[0].weight != 99


_score_values = st.integers(min_value=1, max_value=5)


@st.composite
def _partial_scores(draw):
    chosen = draw(st.lists(st.sampled_from(list(RiskFactorId)), unique=True))
    return {fid.value: draw(_score_values) for fid in chosen}


class TestScoringProperties:
    @given(_partial_scores())
    @hyp_settings(max_examples=200)
    def test_score_within_bounds(self, scores):
        score = calculate_risk_score(scores)
        if scores:
            assert 1.0 <= score <= 5.0
            assert get_risk_level(score) is not None
        else:
            assert score == 0.0

    @given(_partial_scores())
    @hyp_settings(max_examples=200)
    def test_score_between_min_and_max_input(self, scores):
        if not scores:
            return
        score = calculate_risk_score(scores)
        assert min(scores.values()) <= score <= max(scores.values())

    @given(_partial_scores())
    def test_valid_scores_validate(self, scores):
        assert validate_risk_scores(scores)
