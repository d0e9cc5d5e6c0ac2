"""
Forecast Aggregation Engine Tests.
"""

from datetime import date, datetime
from decimal import Decimal

from hypothesis import given, settings as hyp_settings
from hypothesis import strategies as st

from rmswatch.engine.forecast import (
    ForecastMetadata,
    OpportunityRecord,
    calculate_forecast_by_customer,
    calculate_forecast_by_owner,
    calculate_forecast_by_probability_band,
    calculate_forecast_summary,
    calculate_forecast_time_series,
    enrich_opportunity_with_forecast,
    period_key,
    should_group_by_week,
)


def _opp(opp_id=1, charge="1000", cost="400", owner="Alice", org="Acme", starts_at=None):
    return OpportunityRecord(
        id=opp_id,
        name=f"Opportunity {opp_id}",
        owner_name=owner,
        organisation_name=org,
        starts_at=starts_at or datetime(2025, 1, 8, 9, 0),
        charge_total=charge,
        provisional_cost_total=cost,
    )


def _meta(opp_id=1, probability=50, commit=False, excluded=False, revenue=None, profit=None):
    return ForecastMetadata(
        opportunity_id=opp_id,
        probability=probability,
        is_commit=commit,
        is_excluded=excluded,
        exclusion_reason="Duplicate" if excluded else None,
        revenue_override=revenue,
        profit_override=profit,
    )


class TestEnrichment:
    def test_unreviewed_has_zero_weighted_values(self):
        enriched = enrich_opportunity_with_forecast(_opp(), None)
        assert enriched.charge_total == Decimal("1000")
        assert enriched.base_profit == Decimal("600")
        assert enriched.base_margin == Decimal("0.6")
        assert enriched.effective_revenue == Decimal("1000")
        assert enriched.weighted_revenue == Decimal("0")
        assert enriched.weighted_profit == Decimal("0")
        assert not enriched.is_reviewed

    def test_probability_weights_effective_values(self):
        enriched = enrich_opportunity_with_forecast(_opp(), _meta(probability=75))
        assert enriched.weighted_revenue == Decimal("750")
        assert enriched.weighted_profit == Decimal("450")

    def test_overrides_replace_base_values(self):
        meta = _meta(probability=50, revenue=Decimal("2000"), profit=Decimal("500"))
        enriched = enrich_opportunity_with_forecast(_opp(), meta)
        assert enriched.effective_revenue == Decimal("2000")
        assert enriched.effective_profit == Decimal("500")
        assert enriched.weighted_revenue == Decimal("1000")
        assert enriched.weighted_profit == Decimal("250")

    def test_zero_override_is_applied(self):
        meta = _meta(probability=100, revenue=Decimal("0"))
        enriched = enrich_opportunity_with_forecast(_opp(), meta)
        assert enriched.effective_revenue == Decimal("0")

    def test_zero_revenue_margin_is_zero(self):
        enriched = enrich_opportunity_with_forecast(_opp(charge=None, cost="50"), None)
        assert enriched.base_margin == Decimal("0")
        assert enriched.base_profit == Decimal("-50")

    def test_garbage_money_is_zero(self):
        enriched = enrich_opportunity_with_forecast(_opp(charge="TBC", cost=""), None)
        assert enriched.charge_total == Decimal("0")
        assert enriched.provisional_cost_total == Decimal("0")


class TestSummary:
    def test_partition(self):
        rows = [
            enrich_opportunity_with_forecast(_opp(1), _meta(1, 100, commit=True)),
            enrich_opportunity_with_forecast(_opp(2), _meta(2, 50)),
            enrich_opportunity_with_forecast(_opp(3), _meta(3, 90, excluded=True)),
            enrich_opportunity_with_forecast(_opp(4, charge="300"), None),
        ]
        summary = calculate_forecast_summary(rows)

        assert summary.commit_count == 1
        assert summary.upside_count == 1
        assert summary.excluded_count == 1
        assert summary.unreviewed_count == 1
        assert summary.total_pipeline_count == 2

        assert summary.total_pipeline_revenue == Decimal("2000")
        assert summary.weighted_revenue == Decimal("1500")
        assert summary.commit_revenue == Decimal("1000")
        assert summary.upside_revenue == Decimal("500")
        assert summary.excluded_revenue == Decimal("1000")
        assert summary.unreviewed_revenue == Decimal("300")

    def test_empty(self):
        summary = calculate_forecast_summary([])
        assert summary.total_pipeline_count == 0
        assert summary.weighted_revenue == Decimal("0")


class TestGrouping:
    def test_by_owner_skips_excluded_and_sorts(self):
        rows = [
            enrich_opportunity_with_forecast(_opp(1, owner="Alice"), _meta(1, 20)),
            enrich_opportunity_with_forecast(_opp(2, owner="Bob"), _meta(2, 80, commit=True)),
            enrich_opportunity_with_forecast(_opp(3, owner="Bob"), None),
            enrich_opportunity_with_forecast(_opp(4, owner="Carol"), _meta(4, 90, excluded=True)),
            enrich_opportunity_with_forecast(_opp(5, owner=None), _meta(5, 10)),
        ]
        owners = calculate_forecast_by_owner(rows)

        assert [o.owner_name for o in owners] == ["Bob", "Alice", "Unassigned"]
        bob = owners[0]
        assert bob.opportunity_count == 2
        assert bob.weighted_revenue == Decimal("800")
        assert bob.commit_revenue == Decimal("800")
        assert bob.upside_revenue == Decimal("0")
        assert bob.pipeline_revenue == Decimal("2000")
        assert bob.avg_probability == 40.0

    def test_by_customer(self):
        rows = [
            enrich_opportunity_with_forecast(_opp(1, org="Acme"), _meta(1, 60)),
            enrich_opportunity_with_forecast(_opp(2, org=None), _meta(2, 100)),
        ]
        customers = calculate_forecast_by_customer(rows)
        assert [c.organisation_name for c in customers] == ["Unknown Customer", "Acme"]
        assert customers[1].avg_probability == 60.0

    def test_probability_bands(self):
        rows = [
            enrich_opportunity_with_forecast(_opp(1), _meta(1, 0)),
            enrich_opportunity_with_forecast(_opp(2), _meta(2, 26)),
            enrich_opportunity_with_forecast(_opp(3), _meta(3, 75)),
            enrich_opportunity_with_forecast(_opp(4), _meta(4, 100)),
            enrich_opportunity_with_forecast(_opp(5), _meta(5, 50, excluded=True)),
            enrich_opportunity_with_forecast(_opp(6), None),
        ]
        bands = calculate_forecast_by_probability_band(rows)
        assert [b.band for b in bands] == ["0-25%", "26-50%", "51-75%", "76-100%"]
        assert [b.count for b in bands] == [1, 1, 1, 1]
        assert bands[0].revenue == Decimal("1000")

    def test_band_seam_between_75_and_76(self):
        rows = [
            enrich_opportunity_with_forecast(_opp(1, charge="100"), _meta(1, 75)),
            enrich_opportunity_with_forecast(_opp(2, charge="200"), _meta(2, 76)),
        ]
        bands = {b.band: b for b in calculate_forecast_by_probability_band(rows)}
        assert bands["51-75%"].count == 1
        assert bands["51-75%"].revenue == Decimal("100")
        assert bands["76-100%"].count == 1
        assert bands["76-100%"].revenue == Decimal("200")

    def test_bands_always_present(self):
        bands = calculate_forecast_by_probability_band([])
        assert len(bands) == 4
        assert all(b.count == 0 for b in bands)


class TestTimeSeries:
    def test_period_keys(self):
        assert period_key(datetime(2025, 1, 8), True) == ("2025-W02", "Jan 6")
        assert period_key(datetime(2025, 1, 8), False) == ("2025-01", "Jan")
        # ISO week year differs from calendar year
        assert period_key(date(2024, 12, 30), True) == ("2025-W01", "Dec 30")

    def test_monthly_buckets(self):
        rows = [
            enrich_opportunity_with_forecast(
                _opp(1, starts_at=datetime(2025, 2, 3)), _meta(1, 50, commit=True)
            ),
            enrich_opportunity_with_forecast(_opp(2, starts_at=datetime(2025, 1, 20)), None),
            enrich_opportunity_with_forecast(
                _opp(3, starts_at=datetime(2025, 3, 1)), _meta(3, 50, excluded=True)
            ),
        ]
        series = calculate_forecast_time_series(rows, group_by_week=False)

        assert [p.period for p in series] == ["2025-01", "2025-02", "2025-03"]
        assert series[0].unreviewed_revenue == Decimal("1000")
        assert series[0].unreviewed_profit == Decimal("600")
        assert series[1].commit_revenue == Decimal("500")
        assert series[2].commit_revenue == Decimal("0")
        assert series[2].unreviewed_revenue == Decimal("0")

    def test_weekly_bucket_feeds_every_series(self):
        rows = [
            enrich_opportunity_with_forecast(
                _opp(1, charge="1000", cost="400", starts_at=datetime(2025, 1, 6, 9)),
                _meta(1, 80, commit=True),
            ),
            enrich_opportunity_with_forecast(
                _opp(2, charge="2000", cost="500", starts_at=datetime(2025, 1, 8, 14)),
                _meta(2, 40),
            ),
            enrich_opportunity_with_forecast(
                _opp(3, charge="500", cost="100", starts_at=datetime(2025, 1, 12, 18)),
                None,
            ),
        ]
        series = calculate_forecast_time_series(rows, group_by_week=True)

        assert len(series) == 1
        week = series[0]
        assert week.period == "2025-W02"
        assert week.period_label == "Jan 6"
        assert week.commit_revenue == Decimal("800")
        assert week.commit_profit == Decimal("480")
        assert week.upside_revenue == Decimal("800")
        assert week.upside_profit == Decimal("600")
        assert week.unreviewed_revenue == Decimal("500")
        assert week.unreviewed_profit == Decimal("400")

    def test_rows_without_start_are_skipped(self):
        opp = _opp(1)
        opp.starts_at = None
        series = calculate_forecast_time_series(
            [enrich_opportunity_with_forecast(opp, None)], group_by_week=True
        )
        assert series == []

    def test_group_by_week_policy(self):
        assert should_group_by_week(date(2025, 1, 1), date(2025, 2, 1))
        assert should_group_by_week(date(2025, 1, 1), date(2025, 3, 31))
        assert not should_group_by_week(date(2025, 1, 1), date(2025, 4, 1))
        assert not should_group_by_week(None, date(2025, 4, 1))


_probabilities = st.integers(min_value=0, max_value=100)
_amounts = st.decimals(min_value=0, max_value=1_000_000, places=2)


@st.composite
def _enriched_rows(draw):
    rows = []
    for i in range(draw(st.integers(min_value=0, max_value=12))):
        opp = _opp(i, charge=str(draw(_amounts)), cost=str(draw(_amounts)))
        kind = draw(st.sampled_from(["unreviewed", "commit", "upside", "excluded"]))
        meta = None
        if kind != "unreviewed":
            meta = _meta(
                i,
                draw(_probabilities),
                commit=kind == "commit",
                excluded=kind == "excluded",
            )
        rows.append(enrich_opportunity_with_forecast(opp, meta))
    return rows


class TestForecastProperties:
    @given(_enriched_rows())
    @hyp_settings(max_examples=100)
    def test_every_row_in_exactly_one_bucket(self, rows):
        summary = calculate_forecast_summary(rows)
        assert (
            summary.excluded_count
            + summary.unreviewed_count
            + summary.commit_count
            + summary.upside_count
        ) == len(rows)
        assert summary.total_pipeline_count == summary.commit_count + summary.upside_count

    @given(_enriched_rows())
    @hyp_settings(max_examples=100)
    def test_weighted_never_exceeds_pipeline(self, rows):
        summary = calculate_forecast_summary(rows)
        assert summary.weighted_revenue <= summary.total_pipeline_revenue
        assert summary.commit_revenue + summary.upside_revenue == summary.weighted_revenue

    @given(_enriched_rows())
    @hyp_settings(max_examples=100)
    def test_owner_counts_match_non_excluded(self, rows):
        owners = calculate_forecast_by_owner(rows)
        assert sum(o.opportunity_count for o in owners) == sum(
            1 for r in rows if not r.is_excluded
        )
