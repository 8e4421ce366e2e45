"""Detect capacity shortfalls by skill, department, resource and time window."""

from __future__ import annotations

from typing import Iterator, Mapping, Optional

from capacity_engine.domain.constraints import SeverityBreakpoints, severity_breakpoints_from
from capacity_engine.domain.models import (
    SEVERITY_ORDER,
    Bottleneck,
    BottleneckReport,
    CapacityDataset,
    PeriodUtilization,
    UtilizationProfile,
)
from capacity_engine.domain.playbook import playbook_for
from capacity_engine.services.forecast_service import ForecastEngine
from capacity_engine.utils.cancellation import CancellationToken
from capacity_engine.utils.config import Settings, get_settings
from capacity_engine.utils.logger import get_logger, log_stage
from capacity_engine.utils.periods import period_days


logger = get_logger(__name__)


def _rank(bottlenecks: list[Bottleneck]) -> tuple[Bottleneck, ...]:
    return tuple(
        sorted(
            bottlenecks,
            key=lambda item: (-item.impact_score, item.type, item.affected_resource),
        )
    )


class BottleneckDetector:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        forecast_engine: Optional[ForecastEngine] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._breakpoints: SeverityBreakpoints = severity_breakpoints_from(self._settings)
        self._forecast_engine = forecast_engine or ForecastEngine(self._settings)

    @staticmethod
    def shortfall_ratio(shortfall: float, available: float) -> float:
        if shortfall <= 0.0:
            return 0.0
        if available <= 0.0:
            return 1.0
        return shortfall / available

    def classify_severity(
        self,
        shortfall: float,
        available: float,
        project_count: int = 0,
    ) -> Optional[str]:
        """Severity tier of a shortfall, or None when demand fits in capacity."""
        if shortfall <= 0.0:
            return None
        ratio = self.shortfall_ratio(shortfall, available)
        if ratio >= self._breakpoints.critical_ratio:
            tier = 3
        elif ratio >= self._breakpoints.high_ratio:
            tier = 2
        elif ratio >= self._breakpoints.medium_ratio:
            tier = 1
        else:
            tier = 0
        if project_count >= self._breakpoints.project_escalation_count:
            tier = min(tier + 1, len(SEVERITY_ORDER) - 1)
        return SEVERITY_ORDER[tier]

    def _build(
        self,
        bottleneck_type: str,
        affected_resource: str,
        *,
        period: str,
        available: float,
        allocated: float,
        resource_count: int,
        project_ids: tuple[int, ...],
        duration_periods: int,
        granularity: str,
        status: str,
    ) -> Optional[Bottleneck]:
        shortfall = allocated - available
        severity = self.classify_severity(shortfall, available, len(project_ids))
        if severity is None:
            return None
        entry = playbook_for(bottleneck_type)
        ratio = self.shortfall_ratio(shortfall, available)
        return Bottleneck(
            type=bottleneck_type,
            affected_resource=affected_resource,
            severity=severity,
            impact_score=round(min(100.0, 100.0 * ratio), 2),
            shortfall_hours=shortfall,
            shortfall_per_resource=shortfall / max(1, resource_count),
            affected_projects=project_ids,
            estimated_duration_days=max(1, duration_periods) * period_days(granularity),
            root_causes=entry.root_causes,
            recommended_actions=entry.actions,
            status=status,
            period=period,
        )

    def _from_period(
        self,
        bottleneck_type: str,
        affected_resource: str,
        item: PeriodUtilization,
        granularity: str,
        duration_periods: int,
        status: str,
    ) -> Optional[Bottleneck]:
        return self._build(
            bottleneck_type,
            affected_resource,
            period=item.period,
            available=item.total_available,
            allocated=item.total_allocated,
            resource_count=item.reporting_entities or item.entity_count,
            project_ids=item.project_ids,
            duration_periods=duration_periods,
            granularity=granularity,
            status=status,
        )

    @staticmethod
    def _dimensions(
        dataset: CapacityDataset,
    ) -> Iterator[tuple[str, Mapping[str, UtilizationProfile]]]:
        yield "skill", dataset.skills
        yield "department", dataset.departments
        yield "resource", dataset.resources

    @staticmethod
    def _trailing_run(observed: tuple[PeriodUtilization, ...]) -> int:
        run = 0
        for item in reversed(observed):
            if item.shortfall <= 0.0:
                break
            run += 1
        return run

    def detect_current(self, dataset: CapacityDataset) -> list[Bottleneck]:
        found: list[Bottleneck] = []
        for bottleneck_type, profiles in self._dimensions(dataset):
            for key, profile in profiles.items():
                latest = profile.latest
                if latest is None:
                    continue
                bottleneck = self._from_period(
                    bottleneck_type,
                    key,
                    latest,
                    profile.granularity,
                    self._trailing_run(profile.observed_periods),
                    "active",
                )
                if bottleneck is not None:
                    found.append(bottleneck)

        latest = dataset.overall.latest
        if latest is not None:
            bottleneck = self._from_period(
                "time", latest.period, latest, dataset.granularity, 1, "active"
            )
            if bottleneck is not None:
                found.append(bottleneck)
        return found

    def _predict_profile(
        self,
        bottleneck_type: str,
        key: str,
        profile: UtilizationProfile,
        token: CancellationToken,
    ) -> Optional[Bottleneck]:
        window = self._settings.bottleneck_forecast_periods
        predictions = self._forecast_engine.forecast(
            profile,
            horizon=window,
            scenarios=("realistic",),
            token=token,
        )
        if len(predictions) < window or any(item.shortfall <= 0.0 for item in predictions):
            return None

        latest = profile.latest
        current_shortfall = max(0.0, latest.shortfall) if latest is not None else 0.0
        projected = predictions[-1]
        if bottleneck_type == "time":
            affected = f"{predictions[0].period}..{projected.period}"
        else:
            affected = key
        return self._build(
            bottleneck_type,
            affected,
            period=projected.period,
            available=projected.predicted_capacity,
            allocated=projected.demand_forecast,
            resource_count=(latest.reporting_entities or latest.entity_count) if latest else 1,
            project_ids=latest.project_ids if latest else (),
            duration_periods=window,
            granularity=profile.granularity,
            status="mitigated" if projected.shortfall < current_shortfall else "active",
        )

    def detect_predicted(
        self,
        dataset: CapacityDataset,
        token: Optional[CancellationToken] = None,
    ) -> list[Bottleneck]:
        """Shortfalls the realistic forecast expects to persist over the window."""
        token = token or CancellationToken.none()
        found: list[Bottleneck] = []
        for bottleneck_type, profiles in self._dimensions(dataset):
            for key, profile in profiles.items():
                token.raise_if_cancelled("bottleneck prediction")
                bottleneck = self._predict_profile(bottleneck_type, key, profile, token)
                if bottleneck is not None:
                    found.append(bottleneck)
        bottleneck = self._predict_profile("time", dataset.overall.scope_id, dataset.overall, token)
        if bottleneck is not None:
            found.append(bottleneck)
        return found

    @staticmethod
    def _closed_episodes(
        observed: tuple[PeriodUtilization, ...],
    ) -> list[tuple[PeriodUtilization, int]]:
        """Shortfall runs followed by a period without one, as (last period, run length)."""
        episodes: list[tuple[PeriodUtilization, int]] = []
        run = 0
        for index, item in enumerate(observed):
            if item.shortfall > 0.0:
                run += 1
                continue
            if run:
                episodes.append((observed[index - 1], run))
            run = 0
        return episodes

    def detect_historical(
        self,
        dataset: CapacityDataset,
        current: list[Bottleneck],
    ) -> list[Bottleneck]:
        """Past shortfall episodes absent from the latest period, newest first.

        Consecutive short periods of one key merge into a single entry dated
        at the episode's last period. A run still open in the latest period
        is current, not historical, for every type including time windows.
        """
        active_keys = {item.key for item in current}
        candidates: list[tuple[str, str, UtilizationProfile]] = [
            (bottleneck_type, key, profile)
            for bottleneck_type, profiles in self._dimensions(dataset)
            for key, profile in profiles.items()
            if (bottleneck_type, key) not in active_keys
        ]
        found: list[Bottleneck] = []
        for bottleneck_type, key, profile in candidates:
            for item, run in self._closed_episodes(profile.observed_periods):
                bottleneck = self._from_period(
                    bottleneck_type, key, item, profile.granularity, run, "resolved"
                )
                if bottleneck is not None:
                    found.append(bottleneck)

        for item, run in self._closed_episodes(dataset.overall.observed_periods):
            bottleneck = self._from_period(
                "time", item.period, item, dataset.granularity, run, "resolved"
            )
            if bottleneck is not None:
                found.append(bottleneck)

        found.sort(key=lambda item: (item.period, item.impact_score), reverse=True)
        return found[: self._settings.historical_bottleneck_limit]

    def detect(
        self,
        dataset: CapacityDataset,
        token: Optional[CancellationToken] = None,
        *,
        include_predicted: bool = True,
        include_historical: bool = True,
        severity: Optional[str] = None,
    ) -> BottleneckReport:
        token = token or CancellationToken.none()
        if severity is not None and severity not in SEVERITY_ORDER:
            raise ValueError(f"severity must be one of {list(SEVERITY_ORDER)}")

        with log_stage(logger, "bottleneck detection", scope=dataset.overall.scope_id):
            token.raise_if_cancelled("bottleneck detection")
            current = self.detect_current(dataset)
            predicted = self.detect_predicted(dataset, token) if include_predicted else []
            token.raise_if_cancelled("bottleneck detection")
            historical = self.detect_historical(dataset, current) if include_historical else []

        report = BottleneckReport(
            current=_rank(current),
            predicted=_rank(predicted),
            historical=tuple(historical),
        ).filter_severity(severity)
        logger.info(
            "Bottlenecks detected | scope=%s | current=%s | predicted=%s | historical=%s",
            dataset.overall.scope_id,
            len(report.current),
            len(report.predicted),
            len(report.historical),
        )
        return report
