"""Capacity and demand projection under named scenarios."""

from __future__ import annotations

from typing import Iterable, Optional, Union

from capacity_engine.domain.constraints import ForecastConfig, forecast_config_from
from capacity_engine.domain.models import (
    SCENARIO_TAGS,
    Prediction,
    TrendResult,
    UtilizationProfile,
)
from capacity_engine.services.trend_service import TrendAnalyzer, fit_linear_trend
from capacity_engine.utils.cancellation import CancellationToken
from capacity_engine.utils.config import Settings, get_settings
from capacity_engine.utils.logger import get_logger
from capacity_engine.utils.periods import PeriodSpecError, parse_horizon, shift_label


logger = get_logger(__name__)


class ForecastError(Exception):
    """Base exception for forecast failures."""


class ForecastValidationError(ForecastError, ValueError):
    """Raised for unknown horizons, scenario tags or thresholds."""


class ForecastEngine:
    """Extrapolates capacity and demand lines forward from observed periods.

    The realistic scenario follows the least-squares lines unchanged. The
    optimistic and pessimistic scenarios scale projected capacity by the
    configured multipliers. Confidence starts from the utilization trend
    confidence and decays geometrically with every period ahead.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        trend_analyzer: Optional[TrendAnalyzer] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._config: ForecastConfig = forecast_config_from(self._settings)
        self._trend_analyzer = trend_analyzer or TrendAnalyzer(self._settings)

    @property
    def config(self) -> ForecastConfig:
        return self._config

    def resolve_horizon(self, horizon: Union[str, int, None], granularity: str) -> int:
        if horizon is None:
            horizon = self._settings.forecast_default_horizon
        if isinstance(horizon, int):
            if horizon <= 0:
                raise ForecastValidationError("horizon must cover at least one period")
            return horizon
        try:
            return parse_horizon(horizon, granularity)
        except PeriodSpecError as exc:
            raise ForecastValidationError(str(exc)) from exc

    @staticmethod
    def _validate_scenarios(scenarios: Iterable[str]) -> tuple[str, ...]:
        requested = tuple(dict.fromkeys(scenarios))
        if not requested:
            raise ForecastValidationError("at least one scenario must be requested")
        unknown = [item for item in requested if item not in SCENARIO_TAGS]
        if unknown:
            raise ForecastValidationError(
                f"unknown scenario(s) {unknown}; expected one of {list(SCENARIO_TAGS)}"
            )
        return tuple(item for item in SCENARIO_TAGS if item in requested)

    def base_confidence(self, trend_confidence: float) -> float:
        return min(
            self._config.confidence_ceiling,
            max(self._config.confidence_floor, trend_confidence),
        )

    def forecast(
        self,
        profile: UtilizationProfile,
        horizon: Union[str, int, None] = None,
        scenarios: Iterable[str] = ("realistic",),
        confidence_threshold: Optional[float] = None,
        trend: Optional[TrendResult] = None,
        token: Optional[CancellationToken] = None,
    ) -> list[Prediction]:
        token = token or CancellationToken.none()
        requested = self._validate_scenarios(scenarios)
        if confidence_threshold is not None and not 0.0 <= confidence_threshold <= 1.0:
            raise ForecastValidationError("confidence threshold must be between 0 and 1")
        periods_ahead = self.resolve_horizon(horizon, profile.granularity)
        token.raise_if_cancelled("forecast")

        positions = [index for index, item in enumerate(profile.periods) if item.observed]
        if not positions:
            logger.info("Forecast skipped, no observed periods | scope=%s", profile.scope_id)
            return []

        observed = [profile.periods[index] for index in positions]
        capacity_fit = fit_linear_trend(positions, [item.total_available for item in observed])
        demand_fit = fit_linear_trend(positions, [item.total_allocated for item in observed])

        insufficient = len(observed) < self._config.min_history_periods
        if insufficient:
            base = self._config.insufficient_history_confidence
        else:
            if trend is None:
                trend = self._trend_analyzer.analyze(profile, token)
            base = self.base_confidence(trend.confidence)

        last_position = positions[-1]
        last_label = observed[-1].period
        predictions: list[Prediction] = []
        for step in range(1, periods_ahead + 1):
            token.raise_if_cancelled("forecast")
            index = last_position + step
            label = shift_label(last_label, profile.granularity, step)
            baseline_capacity = max(0.0, capacity_fit.intercept + capacity_fit.slope * index)
            demand = max(0.0, demand_fit.intercept + demand_fit.slope * index)
            confidence = base * self._config.decay_factor ** step

            for scenario in requested:
                capacity = baseline_capacity * self._config.multiplier_for(scenario)
                factors = [
                    f"capacity trend {capacity_fit.slope:+.1f}h per period",
                    f"demand trend {demand_fit.slope:+.1f}h per period",
                ]
                if scenario != "realistic":
                    factors.append(
                        f"{scenario} capacity multiplier x{self._config.multiplier_for(scenario):.2f}"
                    )
                if insufficient:
                    factors.append(f"insufficient history: {len(observed)} observed period(s)")
                predictions.append(
                    Prediction(
                        period=label,
                        periods_ahead=step,
                        predicted_capacity=capacity,
                        demand_forecast=demand,
                        utilization_rate=demand / capacity if capacity > 0.0 else 0.0,
                        confidence=confidence,
                        scenario=scenario,
                        key_factors=tuple(factors),
                        insufficient_history=insufficient,
                    )
                )

        if confidence_threshold is not None and not insufficient:
            predictions = [item for item in predictions if item.confidence >= confidence_threshold]

        logger.info(
            "Forecast generated | scope=%s | periods_ahead=%s | scenarios=%s | predictions=%s | insufficient_history=%s",
            profile.scope_id,
            periods_ahead,
            ",".join(requested),
            len(predictions),
            insufficient,
        )
        return predictions
