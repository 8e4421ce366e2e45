from __future__ import annotations

from dataclasses import replace

import pytest

from capacity_engine.domain.models import PeriodUtilization, UtilizationProfile
from capacity_engine.services.forecast_service import ForecastEngine, ForecastValidationError


def _profile(capacity: list[float], demand: list[float]) -> UtilizationProfile:
    periods = []
    for index, (available, allocated) in enumerate(zip(capacity, demand)):
        periods.append(
            PeriodUtilization(
                period=f"2025-{index + 1:02d}",
                average_utilization=allocated / available,
                total_available=available,
                total_allocated=allocated,
                entity_count=2,
                reporting_entities=2,
                entries_count=2,
            )
        )
    return UtilizationProfile(scope_id="organization", granularity="monthly", periods=tuple(periods))


def _steady_profile(periods: int = 8) -> UtilizationProfile:
    return _profile([320.0] * periods, [240.0 + 5.0 * i for i in range(periods)])


def test_confidence_never_increases_with_distance(settings):
    predictions = ForecastEngine(settings).forecast(
        _steady_profile(),
        horizon="6m",
        scenarios=("optimistic", "realistic", "pessimistic"),
    )

    for scenario in ("optimistic", "realistic", "pessimistic"):
        series = [item for item in predictions if item.scenario == scenario]
        assert [item.periods_ahead for item in series] == [1, 2, 3, 4, 5, 6]
        confidences = [item.confidence for item in series]
        assert confidences == sorted(confidences, reverse=True)
        assert all(0.0 <= value <= 1.0 for value in confidences)


def test_labels_continue_from_last_observed_period(settings):
    predictions = ForecastEngine(settings).forecast(_steady_profile(), horizon="next_quarter")

    assert [item.period for item in predictions] == ["2025-09", "2025-10", "2025-11"]


def test_realistic_extrapolates_demand_line(settings):
    predictions = ForecastEngine(settings).forecast(_steady_profile(), horizon="1m")

    assert predictions[0].demand_forecast == pytest.approx(280.0)
    assert predictions[0].predicted_capacity == pytest.approx(320.0)
    assert predictions[0].utilization_rate == pytest.approx(280.0 / 320.0)


def test_scenario_multipliers_scale_capacity(settings):
    predictions = ForecastEngine(settings).forecast(
        _steady_profile(),
        horizon="1m",
        scenarios=("optimistic", "realistic", "pessimistic"),
    )
    by_scenario = {item.scenario: item for item in predictions}

    realistic = by_scenario["realistic"].predicted_capacity
    assert by_scenario["optimistic"].predicted_capacity == pytest.approx(realistic * 1.15)
    assert by_scenario["pessimistic"].predicted_capacity == pytest.approx(realistic * 0.85)
    assert by_scenario["optimistic"].demand_forecast == pytest.approx(
        by_scenario["pessimistic"].demand_forecast
    )


def test_multipliers_are_configurable(settings):
    engine = ForecastEngine(replace(settings, forecast_optimistic_multiplier=1.5))

    predictions = engine.forecast(_steady_profile(), horizon="1m", scenarios=("optimistic", "realistic"))
    by_scenario = {item.scenario: item for item in predictions}

    assert by_scenario["optimistic"].predicted_capacity == pytest.approx(
        by_scenario["realistic"].predicted_capacity * 1.5
    )


def test_two_periods_of_history_are_flagged_with_low_confidence(settings):
    profile = _profile([320.0, 320.0], [300.0, 310.0])

    predictions = ForecastEngine(settings).forecast(
        profile,
        horizon="3m",
        scenarios=("optimistic", "realistic", "pessimistic"),
    )

    assert len(predictions) == 9
    assert all(item.insufficient_history for item in predictions)
    assert all(item.confidence <= settings.forecast_insufficient_history_confidence for item in predictions)
    assert any("insufficient history" in factor for factor in predictions[0].key_factors)


def test_threshold_drops_low_confidence_predictions(settings):
    engine = ForecastEngine(settings)

    kept = engine.forecast(_steady_profile(), horizon="6m", confidence_threshold=0.99)

    assert kept == []


def test_threshold_does_not_hide_insufficient_history(settings):
    profile = _profile([320.0, 320.0], [300.0, 310.0])

    kept = ForecastEngine(settings).forecast(profile, horizon="2m", confidence_threshold=0.99)

    assert len(kept) == 2


def test_unknown_horizon_is_rejected(settings):
    with pytest.raises(ForecastValidationError):
        ForecastEngine(settings).forecast(_steady_profile(), horizon="fortnight")


def test_unknown_scenario_is_rejected(settings):
    with pytest.raises(ForecastValidationError):
        ForecastEngine(settings).forecast(_steady_profile(), scenarios=("best_case",))


def test_horizon_conversion_follows_granularity(settings):
    engine = ForecastEngine(settings)

    assert engine.resolve_horizon("3m", "monthly") == 3
    assert engine.resolve_horizon("next_year", "monthly") == 12
    assert engine.resolve_horizon("2w", "daily") == 14
    assert engine.resolve_horizon("1m", "weekly") == 4


def test_empty_profile_yields_no_predictions(settings):
    empty = UtilizationProfile(scope_id="organization", granularity="monthly")

    assert ForecastEngine(settings).forecast(empty) == []
