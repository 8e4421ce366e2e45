"""Validated threshold groups derived from runtime settings."""

from __future__ import annotations

from dataclasses import dataclass

from capacity_engine.utils.config import Settings


@dataclass(frozen=True)
class SeverityBreakpoints:
    medium_ratio: float
    high_ratio: float
    critical_ratio: float
    project_escalation_count: int


@dataclass(frozen=True)
class ForecastConfig:
    min_history_periods: int
    insufficient_history_confidence: float
    decay_factor: float
    confidence_floor: float
    confidence_ceiling: float
    optimistic_multiplier: float
    pessimistic_multiplier: float

    def multiplier_for(self, scenario: str) -> float:
        if scenario == "optimistic":
            return self.optimistic_multiplier
        if scenario == "pessimistic":
            return self.pessimistic_multiplier
        return 1.0


def validate_severity_breakpoints(config: SeverityBreakpoints) -> None:
    if config.medium_ratio <= 0.0:
        raise ValueError("medium_ratio must be > 0")
    if not config.medium_ratio < config.high_ratio < config.critical_ratio:
        raise ValueError("severity ratios must be strictly increasing")
    if config.project_escalation_count <= 0:
        raise ValueError("project_escalation_count must be > 0")


def validate_forecast_config(config: ForecastConfig) -> None:
    if config.min_history_periods < 1:
        raise ValueError("min_history_periods must be >= 1")
    if not 0.0 < config.decay_factor <= 1.0:
        raise ValueError("decay_factor must be in (0, 1]")
    if not 0.0 <= config.confidence_floor <= config.confidence_ceiling <= 1.0:
        raise ValueError("confidence floor/ceiling must satisfy 0 <= floor <= ceiling <= 1")
    if not 0.0 <= config.insufficient_history_confidence <= 1.0:
        raise ValueError("insufficient_history_confidence must be between 0 and 1")
    if config.optimistic_multiplier < 1.0:
        raise ValueError("optimistic_multiplier must be >= 1")
    if not 0.0 < config.pessimistic_multiplier <= 1.0:
        raise ValueError("pessimistic_multiplier must be in (0, 1]")


def severity_breakpoints_from(settings: Settings) -> SeverityBreakpoints:
    config = SeverityBreakpoints(
        medium_ratio=settings.severity_medium_ratio,
        high_ratio=settings.severity_high_ratio,
        critical_ratio=settings.severity_critical_ratio,
        project_escalation_count=settings.severity_project_escalation_count,
    )
    validate_severity_breakpoints(config)
    return config


def forecast_config_from(settings: Settings) -> ForecastConfig:
    config = ForecastConfig(
        min_history_periods=settings.forecast_min_history_periods,
        insufficient_history_confidence=settings.forecast_insufficient_history_confidence,
        decay_factor=settings.forecast_decay_factor,
        confidence_floor=settings.forecast_confidence_floor,
        confidence_ceiling=settings.forecast_confidence_ceiling,
        optimistic_multiplier=settings.forecast_optimistic_multiplier,
        pessimistic_multiplier=settings.forecast_pessimistic_multiplier,
    )
    validate_forecast_config(config)
    return config
