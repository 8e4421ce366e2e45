"""Trend, seasonality and anomaly extraction over utilization profiles."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, replace
from typing import Optional, Sequence

import numpy as np
from sklearn.linear_model import LinearRegression

from capacity_engine.domain.models import (
    Anomaly,
    Bottleneck,
    PeriodStat,
    Seasonality,
    TrendResult,
    UtilizationPatterns,
    UtilizationProfile,
)
from capacity_engine.utils.cancellation import CancellationToken
from capacity_engine.utils.config import Settings, get_settings
from capacity_engine.utils.logger import get_logger
from capacity_engine.utils.periods import seasonal_key


logger = get_logger(__name__)

UNEXPLAINED_CAUSE = "unexplained"


@dataclass(frozen=True)
class LinearFit:
    slope: float
    intercept: float
    residual_std: float
    residuals: tuple[float, ...]


def fit_linear_trend(indices: Sequence[float], values: Sequence[float]) -> LinearFit:
    """Ordinary least squares of `values` over `indices`.

    Fewer than two points cannot define a slope; the fit degrades to a flat
    line through the single value (or zero).
    """
    if len(values) < 2:
        intercept = float(values[0]) if values else 0.0
        return LinearFit(slope=0.0, intercept=intercept, residual_std=0.0, residuals=(0.0,) * len(values))

    features = np.asarray(indices, dtype=float).reshape(-1, 1)
    target = np.asarray(values, dtype=float)
    model = LinearRegression()
    model.fit(features, target)
    residuals = target - model.predict(features)
    return LinearFit(
        slope=float(model.coef_[0]),
        intercept=float(model.intercept_),
        residual_std=float(np.std(residuals)),
        residuals=tuple(float(value) for value in residuals),
    )


class TrendAnalyzer:
    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    def confidence(self, observations: int, residual_std: float) -> float:
        """Heuristic trend confidence in [0, 1], falling as residual spread grows."""
        if observations < 2:
            return 0.0
        coverage = min(1.0, observations / self._settings.trend_full_confidence_periods)
        fit_quality = 1.0 / (1.0 + max(residual_std, 0.0) / self._settings.trend_residual_scale)
        return float(min(1.0, max(0.0, coverage * fit_quality)))

    def direction(self, slope: float) -> str:
        if abs(slope) < self._settings.trend_stable_slope_threshold:
            return "stable"
        return "increasing" if slope > 0 else "decreasing"

    def detect_seasonality(self, profile: UtilizationProfile) -> Seasonality:
        observed = profile.observed_periods
        if len(observed) < self._settings.seasonality_min_periods:
            return Seasonality(has_seasonality=False)

        grouped: dict[str, list[float]] = defaultdict(list)
        for item in observed:
            grouped[seasonal_key(item.period, profile.granularity)].append(item.average_utilization)
        if len(grouped) < 2:
            return Seasonality(has_seasonality=False)

        means = {key: float(np.mean(values)) for key, values in grouped.items()}
        mean_values = np.asarray(list(means.values()), dtype=float)
        overall = float(mean_values.mean())
        if overall <= 0.0:
            return Seasonality(has_seasonality=False)

        spread = float(mean_values.std())
        strength = spread / overall
        ordered = sorted(means, key=lambda key: (-means[key], key))
        peaks = tuple(key for key in ordered if means[key] >= overall + spread)
        lows = tuple(key for key in reversed(ordered) if means[key] <= overall - spread)
        return Seasonality(
            has_seasonality=strength > self._settings.seasonality_cv_threshold,
            peak_periods=peaks,
            low_periods=lows,
            strength=float(strength),
        )

    def analyze(
        self,
        profile: UtilizationProfile,
        token: Optional[CancellationToken] = None,
    ) -> TrendResult:
        token = token or CancellationToken.none()
        token.raise_if_cancelled("trend analysis")

        # Regress over positions in the full period grid so gaps keep their spacing.
        positions = [index for index, item in enumerate(profile.periods) if item.observed]
        values = [profile.periods[index].average_utilization for index in positions]
        fit = fit_linear_trend(positions, values)

        anomalies: list[Anomaly] = []
        if len(values) >= 3 and fit.residual_std > 0.0:
            limit = self._settings.anomaly_std_threshold * fit.residual_std
            for index, residual in zip(positions, fit.residuals):
                if abs(residual) > limit:
                    item = profile.periods[index]
                    anomalies.append(
                        Anomaly(
                            period=item.period,
                            actual_utilization=item.average_utilization,
                            expected_utilization=fit.intercept + fit.slope * index,
                            deviation=float(residual),
                            possible_causes=(UNEXPLAINED_CAUSE,),
                        )
                    )

        token.raise_if_cancelled("trend analysis")
        result = TrendResult(
            direction=self.direction(fit.slope),
            rate=fit.slope,
            confidence=self.confidence(len(values), fit.residual_std),
            intercept=fit.intercept,
            observations=len(values),
            seasonality=self.detect_seasonality(profile),
            anomalies=tuple(anomalies),
        )
        logger.info(
            "Trend analyzed | scope=%s | direction=%s | rate=%.4f | confidence=%.3f | anomalies=%s",
            profile.scope_id,
            result.direction,
            result.rate,
            result.confidence,
            len(result.anomalies),
        )
        return result

    @staticmethod
    def attach_anomaly_causes(
        trend: TrendResult,
        bottlenecks: Sequence[Bottleneck],
    ) -> TrendResult:
        """Explain anomalies with bottlenecks that occurred in the same period."""
        if not trend.anomalies:
            return trend
        by_period: dict[str, list[str]] = defaultdict(list)
        for bottleneck in bottlenecks:
            by_period[bottleneck.period].append(bottleneck.describe())
        anomalies = tuple(
            replace(
                anomaly,
                possible_causes=tuple(by_period[anomaly.period]) or (UNEXPLAINED_CAUSE,),
            )
            for anomaly in trend.anomalies
        )
        return replace(trend, anomalies=anomalies)

    def utilization_patterns(
        self,
        profile: UtilizationProfile,
        trend: TrendResult,
    ) -> UtilizationPatterns:
        observed = profile.observed_periods
        if not observed:
            return UtilizationPatterns(
                peak_periods=(),
                low_utilization_periods=(),
                average_utilization=0.0,
                seasonality=trend.seasonality,
                trend=trend,
                anomalies=trend.anomalies,
            )

        average = float(np.mean([item.average_utilization for item in observed]))
        band = self._settings.pattern_band_ratio
        peaks = sorted(
            (item for item in observed if item.average_utilization >= average * (1.0 + band)),
            key=lambda item: (-item.average_utilization, item.period),
        )
        lows = sorted(
            (item for item in observed if item.average_utilization <= average * (1.0 - band)),
            key=lambda item: (item.average_utilization, item.period),
        )
        return UtilizationPatterns(
            peak_periods=tuple(PeriodStat(item.period, item.average_utilization) for item in peaks),
            low_utilization_periods=tuple(
                PeriodStat(item.period, item.average_utilization) for item in lows
            ),
            average_utilization=average,
            seasonality=trend.seasonality,
            trend=trend,
            anomalies=trend.anomalies,
        )
