from __future__ import annotations

import pytest

from capacity_engine.domain.models import Bottleneck, PeriodUtilization, UtilizationProfile
from capacity_engine.services.trend_service import TrendAnalyzer, fit_linear_trend


def _profile(values: list[float], start_year: int = 2025) -> UtilizationProfile:
    periods = []
    for index, value in enumerate(values):
        year = start_year + index // 12
        month = index % 12 + 1
        periods.append(
            PeriodUtilization(
                period=f"{year:04d}-{month:02d}",
                average_utilization=value,
                total_available=100.0,
                total_allocated=100.0 * value,
                entity_count=1,
                reporting_entities=1,
                entries_count=1,
            )
        )
    return UtilizationProfile(scope_id="organization", granularity="monthly", periods=tuple(periods))


def _time_bottleneck(period: str) -> Bottleneck:
    return Bottleneck(
        type="time",
        affected_resource=period,
        severity="high",
        impact_score=15.0,
        shortfall_hours=15.0,
        shortfall_per_resource=15.0,
        affected_projects=(),
        estimated_duration_days=30,
        root_causes=(),
        recommended_actions=("reallocation",),
        status="resolved",
        period=period,
    )


def test_linear_fit_recovers_slope_and_intercept():
    fit = fit_linear_trend([0, 1, 2, 3], [0.5, 0.6, 0.7, 0.8])

    assert fit.slope == pytest.approx(0.1)
    assert fit.intercept == pytest.approx(0.5)
    assert fit.residual_std == pytest.approx(0.0, abs=1e-9)


def test_increasing_and_stable_directions(settings):
    analyzer = TrendAnalyzer(settings)

    rising = analyzer.analyze(_profile([0.5 + 0.05 * i for i in range(8)]))
    flat = analyzer.analyze(_profile([0.8] * 8))

    assert rising.direction == "increasing"
    assert rising.rate == pytest.approx(0.05)
    assert flat.direction == "stable"


def test_fewer_than_two_periods_have_zero_confidence(settings):
    result = TrendAnalyzer(settings).analyze(_profile([0.9]))

    assert result.confidence == 0.0
    assert result.direction == "stable"
    assert result.observations == 1


def test_confidence_is_bounded_and_falls_with_variance(settings):
    analyzer = TrendAnalyzer(settings)
    spreads = [0.0, 0.01, 0.05, 0.2, 1.0]

    values = [analyzer.confidence(12, spread) for spread in spreads]

    assert all(0.0 <= value <= 1.0 for value in values)
    assert values == sorted(values, reverse=True)
    assert values[0] == pytest.approx(1.0)


def test_noisier_history_lowers_trend_confidence(settings):
    analyzer = TrendAnalyzer(settings)
    calm = analyzer.analyze(_profile([0.8, 0.81, 0.8, 0.81, 0.8, 0.81, 0.8, 0.81]))
    noisy = analyzer.analyze(_profile([0.8, 0.95, 0.7, 0.9, 0.65, 1.0, 0.75, 0.9]))

    assert noisy.confidence < calm.confidence


def test_spike_is_flagged_and_explained_by_concurrent_bottleneck(settings):
    values = [0.8] * 12
    values[6] = 1.5
    analyzer = TrendAnalyzer(settings)

    trend = analyzer.analyze(_profile(values))

    assert [anomaly.period for anomaly in trend.anomalies] == ["2025-07"]
    assert trend.anomalies[0].possible_causes == ("unexplained",)

    explained = analyzer.attach_anomaly_causes(trend, [_time_bottleneck("2025-07")])
    assert explained.anomalies[0].possible_causes[0].startswith("high time bottleneck")
    assert trend.anomalies[0].possible_causes == ("unexplained",)


def test_seasonality_detected_from_month_groups(settings):
    values = [0.5] * 6 + [1.0] * 6

    seasonality = TrendAnalyzer(settings).detect_seasonality(_profile(values))

    assert seasonality.has_seasonality is True
    assert seasonality.strength == pytest.approx(1.0 / 3.0)


def test_flat_history_has_no_seasonality(settings):
    seasonality = TrendAnalyzer(settings).detect_seasonality(_profile([0.8] * 12))

    assert seasonality.has_seasonality is False


def test_utilization_patterns_split_peaks_and_lows(settings):
    analyzer = TrendAnalyzer(settings)
    profile = _profile([0.5, 1.0, 0.75, 0.75])

    patterns = analyzer.utilization_patterns(profile, analyzer.analyze(profile))

    assert patterns.average_utilization == pytest.approx(0.75)
    assert [item.period for item in patterns.peak_periods] == ["2025-02"]
    assert [item.period for item in patterns.low_utilization_periods] == ["2025-01"]
