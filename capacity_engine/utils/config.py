"""Environment-driven runtime settings."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping


PROJECT_ROOT = Path(__file__).resolve().parents[2]


@dataclass(frozen=True)
class ActionRate:
    """Per-action base rates used to cost and score recommendations."""

    base_cost: float
    unit_cost: float
    implementation_weeks: int
    resolution_factor: float


DEFAULT_ACTION_RATES: dict[str, ActionRate] = {
    "hiring": ActionRate(base_cost=5000.0, unit_cost=25000.0, implementation_weeks=12, resolution_factor=0.8),
    "training": ActionRate(base_cost=2000.0, unit_cost=4000.0, implementation_weeks=8, resolution_factor=0.6),
    "reallocation": ActionRate(base_cost=500.0, unit_cost=1000.0, implementation_weeks=2, resolution_factor=0.5),
    "process_improvement": ActionRate(base_cost=3000.0, unit_cost=2000.0, implementation_weeks=6, resolution_factor=0.3),
    "schedule_shift": ActionRate(base_cost=250.0, unit_cost=500.0, implementation_weeks=1, resolution_factor=0.4),
    "tool_adoption": ActionRate(base_cost=8000.0, unit_cost=1500.0, implementation_weeks=10, resolution_factor=0.25),
}


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


def _load_action_rates() -> dict[str, ActionRate]:
    """Merge `CAPACITY_ACTION_RATES_JSON` overrides onto the default rates."""
    rates = dict(DEFAULT_ACTION_RATES)
    raw = os.getenv("CAPACITY_ACTION_RATES_JSON")
    if not raw:
        return rates

    overrides: Mapping[str, Mapping[str, Any]] = json.loads(raw)
    for action, values in overrides.items():
        current = rates.get(action)
        if current is None:
            rates[action] = ActionRate(
                base_cost=float(values.get("base_cost", 0.0)),
                unit_cost=float(values.get("unit_cost", 0.0)),
                implementation_weeks=int(values.get("implementation_weeks", 1)),
                resolution_factor=float(values.get("resolution_factor", 0.0)),
            )
            continue
        rates[action] = ActionRate(
            base_cost=float(values.get("base_cost", current.base_cost)),
            unit_cost=float(values.get("unit_cost", current.unit_cost)),
            implementation_weeks=int(
                values.get("implementation_weeks", current.implementation_weeks)
            ),
            resolution_factor=float(
                values.get("resolution_factor", current.resolution_factor)
            ),
        )
    return rates


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    database_path: Path

    # Synthetic seed
    synthetic_random_seed: int
    synthetic_seed_months: int
    synthetic_departments: tuple[str, ...]
    synthetic_employees_per_department: int

    # Aggregation
    default_granularity: str
    default_timeframe: str
    standard_hours_per_period: float
    skill_min_proficiency: int

    # Trend analysis
    trend_stable_slope_threshold: float
    trend_full_confidence_periods: int
    trend_residual_scale: float
    anomaly_std_threshold: float
    seasonality_cv_threshold: float
    seasonality_min_periods: int
    pattern_band_ratio: float

    # Bottleneck detection
    severity_medium_ratio: float
    severity_high_ratio: float
    severity_critical_ratio: float
    severity_project_escalation_count: int
    bottleneck_forecast_periods: int
    historical_bottleneck_limit: int

    # Forecasting
    forecast_default_horizon: str
    forecast_min_history_periods: int
    forecast_insufficient_history_confidence: float
    forecast_decay_factor: float
    forecast_confidence_floor: float
    forecast_confidence_ceiling: float
    forecast_optimistic_multiplier: float
    forecast_pessimistic_multiplier: float

    # Scenario simulation
    scenario_volatility_threshold: float
    resource_hourly_cost: float

    # Recommendations
    value_per_recovered_hour: float
    recommendation_payback_periods: int
    roi_epsilon: float
    skill_gap_medium: float
    skill_gap_high: float
    skill_gap_critical: float
    complex_skill_categories: tuple[str, ...]

    # Execution
    analysis_timeout_seconds: float
    analysis_max_workers: int
    scenario_cache_size: int

    action_rates: Mapping[str, ActionRate] = field(
        default_factory=lambda: dict(DEFAULT_ACTION_RATES)
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings(
        app_name=_env_str("APP_NAME", "Capacity Intelligence Engine"),
        app_version=_env_str("APP_VERSION", "1.0.0"),
        log_level=_env_str("LOG_LEVEL", "INFO"),
        database_path=Path(
            _env_str("DATABASE_PATH", str(PROJECT_ROOT / "data" / "capacity.db"))
        ),
        synthetic_random_seed=_env_int("SYNTHETIC_RANDOM_SEED", 42),
        synthetic_seed_months=_env_int("SYNTHETIC_SEED_MONTHS", 12),
        synthetic_departments=tuple(
            item.strip()
            for item in _env_str(
                "SYNTHETIC_DEPARTMENTS", "Engineering,Design,Data"
            ).split(",")
            if item.strip()
        ),
        synthetic_employees_per_department=_env_int("SYNTHETIC_EMPLOYEES_PER_DEPARTMENT", 4),
        default_granularity=_env_str("DEFAULT_GRANULARITY", "monthly"),
        default_timeframe=_env_str("DEFAULT_TIMEFRAME", "last_year"),
        standard_hours_per_period=_env_float("STANDARD_HOURS_PER_PERIOD", 160.0),
        skill_min_proficiency=_env_int("SKILL_MIN_PROFICIENCY", 3),
        trend_stable_slope_threshold=_env_float("TREND_STABLE_SLOPE_THRESHOLD", 0.01),
        trend_full_confidence_periods=_env_int("TREND_FULL_CONFIDENCE_PERIODS", 12),
        trend_residual_scale=_env_float("TREND_RESIDUAL_SCALE", 0.05),
        anomaly_std_threshold=_env_float("ANOMALY_STD_THRESHOLD", 2.0),
        seasonality_cv_threshold=_env_float("SEASONALITY_CV_THRESHOLD", 0.1),
        seasonality_min_periods=_env_int("SEASONALITY_MIN_PERIODS", 6),
        pattern_band_ratio=_env_float("PATTERN_BAND_RATIO", 0.1),
        severity_medium_ratio=_env_float("SEVERITY_MEDIUM_RATIO", 0.05),
        severity_high_ratio=_env_float("SEVERITY_HIGH_RATIO", 0.10),
        severity_critical_ratio=_env_float("SEVERITY_CRITICAL_RATIO", 0.20),
        severity_project_escalation_count=_env_int("SEVERITY_PROJECT_ESCALATION_COUNT", 5),
        bottleneck_forecast_periods=_env_int("BOTTLENECK_FORECAST_PERIODS", 3),
        historical_bottleneck_limit=_env_int("HISTORICAL_BOTTLENECK_LIMIT", 10),
        forecast_default_horizon=_env_str("FORECAST_DEFAULT_HORIZON", "6m"),
        forecast_min_history_periods=_env_int("FORECAST_MIN_HISTORY_PERIODS", 3),
        forecast_insufficient_history_confidence=_env_float(
            "FORECAST_INSUFFICIENT_HISTORY_CONFIDENCE", 0.2
        ),
        forecast_decay_factor=_env_float("FORECAST_DECAY_FACTOR", 0.9),
        forecast_confidence_floor=_env_float("FORECAST_CONFIDENCE_FLOOR", 0.05),
        forecast_confidence_ceiling=_env_float("FORECAST_CONFIDENCE_CEILING", 0.95),
        forecast_optimistic_multiplier=_env_float("FORECAST_OPTIMISTIC_MULTIPLIER", 1.15),
        forecast_pessimistic_multiplier=_env_float("FORECAST_PESSIMISTIC_MULTIPLIER", 0.85),
        scenario_volatility_threshold=_env_float("SCENARIO_VOLATILITY_THRESHOLD", 0.25),
        resource_hourly_cost=_env_float("RESOURCE_HOURLY_COST", 75.0),
        value_per_recovered_hour=_env_float("VALUE_PER_RECOVERED_HOUR", 85.0),
        recommendation_payback_periods=_env_int("RECOMMENDATION_PAYBACK_PERIODS", 12),
        roi_epsilon=_env_float("ROI_EPSILON", 1e-9),
        skill_gap_medium=_env_float("SKILL_GAP_MEDIUM", 1.0),
        skill_gap_high=_env_float("SKILL_GAP_HIGH", 3.0),
        skill_gap_critical=_env_float("SKILL_GAP_CRITICAL", 5.0),
        complex_skill_categories=tuple(
            item.strip()
            for item in _env_str(
                "COMPLEX_SKILL_CATEGORIES", "Machine Learning,DevOps,Architecture"
            ).split(",")
            if item.strip()
        ),
        analysis_timeout_seconds=_env_float("ANALYSIS_TIMEOUT_SECONDS", 30.0),
        analysis_max_workers=_env_int("ANALYSIS_MAX_WORKERS", 4),
        scenario_cache_size=_env_int("SCENARIO_CACHE_SIZE", 64),
        action_rates=_load_action_rates(),
    )
