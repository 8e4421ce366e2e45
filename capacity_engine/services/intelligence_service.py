"""Public entry points of the capacity intelligence engine.

`CapacityIntelligenceService` owns no data. It receives the data collaborator
by injection, fetches once per request scope, and passes the resulting frozen
`CapacityDataset` through the analysis stages.
"""

from __future__ import annotations

import math
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timezone
from typing import Callable, Iterable, Optional, Sequence

from capacity_engine.domain.models import (
    GRANULARITIES,
    SCENARIO_TAGS,
    BottleneckReport,
    CapacityDataset,
    CapacityIntelligence,
    CapacityTrendPoint,
    CurrentUtilization,
    DepartmentUtilization,
    HiringRecommendation,
    Prediction,
    Recommendation,
    RiskFactor,
    ScenarioResult,
    ScopeFilter,
    SkillDemand,
    SkillDemandForecast,
    SkillGap,
    SkillUtilization,
    TrainingRecommendation,
    TrendResult,
    UtilizationPatterns,
)
from capacity_engine.domain.playbook import mitigation_for
from capacity_engine.domain.scenario import AnalysisOptions, Scenario
from capacity_engine.repository.data_repository import CapacityDataSource
from capacity_engine.services.aggregation_service import DataAggregator, ScopeValidationError
from capacity_engine.services.bottleneck_service import BottleneckDetector
from capacity_engine.services.forecast_service import ForecastEngine
from capacity_engine.services.recommendation_service import (
    RecommendationGenerator,
    classify_skill_gap,
    rank_recommendations,
)
from capacity_engine.services.scenario_cache import ScenarioResultCache
from capacity_engine.services.simulation_service import ScenarioSimulator
from capacity_engine.services.trend_service import TrendAnalyzer, fit_linear_trend
from capacity_engine.utils.cancellation import CancellationToken
from capacity_engine.utils.config import Settings, get_settings
from capacity_engine.utils.logger import get_logger, log_stage
from capacity_engine.utils.periods import PeriodSpecError, timeframe_to_range


logger = get_logger(__name__)


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


class CapacityIntelligenceService:
    def __init__(
        self,
        data_source: CapacityDataSource,
        settings: Optional[Settings] = None,
        *,
        cache: Optional[ScenarioResultCache] = None,
        today: Callable[[], date] = _utc_today,
    ) -> None:
        self._settings = settings or get_settings()
        self._data_source = data_source
        self._cache = cache
        self._today = today

        self._aggregator = DataAggregator(self._settings)
        self._trend_analyzer = TrendAnalyzer(self._settings)
        self._forecast_engine = ForecastEngine(self._settings, self._trend_analyzer)
        self._detector = BottleneckDetector(self._settings, self._forecast_engine)
        self._recommendations = RecommendationGenerator(self._settings)
        self._simulator = ScenarioSimulator(self._settings, self._detector, self._recommendations)

    @property
    def cache(self) -> Optional[ScenarioResultCache]:
        return self._cache

    def _token(self, token: Optional[CancellationToken]) -> CancellationToken:
        if token is not None:
            return token
        return CancellationToken(timeout_seconds=self._settings.analysis_timeout_seconds)

    def build_scope(
        self,
        *,
        department: Optional[str] = None,
        skill: Optional[str] = None,
        employee_id: Optional[int] = None,
        timeframe: Optional[str] = None,
        granularity: Optional[str] = None,
        as_of: Optional[date] = None,
    ) -> ScopeFilter:
        resolved_granularity = granularity or self._settings.default_granularity
        if resolved_granularity not in GRANULARITIES:
            raise ScopeValidationError(f"granularity must be one of {list(GRANULARITIES)}")
        try:
            start, end = timeframe_to_range(
                timeframe or self._settings.default_timeframe,
                as_of or self._today(),
                resolved_granularity,
            )
        except PeriodSpecError as exc:
            raise ScopeValidationError(str(exc)) from exc
        return ScopeFilter(
            department=department,
            skill=skill,
            employee_id=employee_id,
            start_date=start,
            end_date=end,
            granularity=resolved_granularity,
        )

    def load_dataset(
        self,
        scope: ScopeFilter,
        token: Optional[CancellationToken] = None,
    ) -> CapacityDataset:
        """One read per request scope; collaborator errors propagate unchanged."""
        token = self._token(token)
        with log_stage(logger, "data fetch", department=scope.department, granularity=scope.granularity):
            allocations = self._data_source.fetch_allocations(scope)
            snapshots = self._data_source.fetch_capacity_snapshots(scope)
            skills = self._data_source.fetch_skills(scope)
        token.raise_if_cancelled("data fetch")
        return self._aggregator.aggregate(scope, allocations, snapshots, skills, token)

    def _analyze(
        self,
        dataset: CapacityDataset,
        token: CancellationToken,
        *,
        include_predicted: bool = True,
    ) -> tuple[TrendResult, BottleneckReport]:
        """Trend analysis and bottleneck detection share only the frozen dataset."""
        with ThreadPoolExecutor(max_workers=2) as executor:
            trend_future = executor.submit(self._trend_analyzer.analyze, dataset.overall, token)
            report_future = executor.submit(
                self._detector.detect,
                dataset,
                token,
                include_predicted=include_predicted,
            )
            trend = trend_future.result()
            report = report_future.result()
        trend = self._trend_analyzer.attach_anomaly_causes(
            trend, (*report.current, *report.historical)
        )
        return trend, report

    @staticmethod
    def _current_utilization(dataset: CapacityDataset) -> CurrentUtilization:
        latest = dataset.overall.latest
        by_department = []
        for department, profile in sorted(dataset.departments.items()):
            item = profile.latest
            if item is None:
                continue
            by_department.append(
                DepartmentUtilization(
                    department=department,
                    utilization=item.average_utilization,
                    available=item.total_available,
                    committed=item.total_allocated,
                )
            )
        by_skill = []
        for skill, profile in sorted(dataset.skills.items()):
            item = profile.latest
            by_skill.append(
                SkillUtilization(
                    skill=skill,
                    utilization=item.average_utilization if item is not None else 0.0,
                    available_resources=len(dataset.skill_holders.get(skill, ())),
                )
            )
        return CurrentUtilization(
            overall=latest.average_utilization if latest is not None else 0.0,
            by_department=tuple(by_department),
            by_skill=tuple(by_skill),
        )

    @staticmethod
    def _risk_factors(
        dataset: CapacityDataset,
        trend: TrendResult,
        report: BottleneckReport,
        predictions: Sequence[Prediction],
    ) -> tuple[RiskFactor, ...]:
        factors = [
            RiskFactor(
                factor=bottleneck.describe(),
                severity=bottleneck.severity,
                impact=f"{bottleneck.shortfall_hours:.0f} hours short in {bottleneck.period}",
                mitigation=mitigation_for(bottleneck.type),
            )
            for bottleneck in report.current
        ]
        latest = dataset.overall.latest
        if trend.direction == "increasing" and latest is not None and latest.average_utilization >= 0.9:
            factors.append(
                RiskFactor(
                    factor="Utilization rising toward full capacity",
                    severity="high" if latest.average_utilization >= 1.0 else "medium",
                    impact=f"Utilization {latest.average_utilization:.0%} and rising {trend.rate:+.3f} per period",
                    mitigation=mitigation_for("time"),
                )
            )
        if any(item.insufficient_history for item in predictions):
            factors.append(
                RiskFactor(
                    factor="Insufficient history for forecasting",
                    severity="low",
                    impact="Forecast confidence is capped",
                    mitigation="Collect more periods of capacity snapshots",
                )
            )
        return tuple(factors)

    def get_capacity_intelligence(
        self,
        department: Optional[str] = None,
        timeframe: Optional[str] = None,
        *,
        as_of: Optional[date] = None,
        token: Optional[CancellationToken] = None,
    ) -> CapacityIntelligence:
        token = self._token(token)
        scope = self.build_scope(department=department, timeframe=timeframe, as_of=as_of)
        dataset = self.load_dataset(scope, token)
        trend, report = self._analyze(dataset, token)
        predictions = self._forecast_engine.forecast(
            dataset.overall,
            scenarios=SCENARIO_TAGS,
            trend=trend,
            token=token,
        )
        recommendations = self._recommendations.generate(
            report.current, report.predicted, predictions, dataset
        )
        capacity_trends = tuple(
            CapacityTrendPoint(
                period=item.period,
                utilization=item.average_utilization,
                capacity=item.total_available,
                demand=item.total_allocated,
            )
            for item in dataset.overall.observed_periods
        )
        logger.info(
            "Capacity intelligence assembled | department=%s | bottlenecks=%s | recommendations=%s",
            department,
            len(report.current),
            len(recommendations),
        )
        return CapacityIntelligence(
            current_utilization=self._current_utilization(dataset),
            capacity_trends=capacity_trends,
            trend=trend,
            bottleneck_analysis=report,
            predictions=tuple(predictions),
            recommendations=recommendations,
            risk_factors=self._risk_factors(dataset, trend, report, predictions),
        )

    def get_capacity_predictions(
        self,
        horizon: Optional[str] = None,
        confidence: Optional[float] = None,
        scenarios: Optional[Iterable[str]] = None,
        *,
        department: Optional[str] = None,
        granularity: Optional[str] = None,
        as_of: Optional[date] = None,
        token: Optional[CancellationToken] = None,
    ) -> list[Prediction]:
        token = self._token(token)
        scope = self.build_scope(department=department, granularity=granularity, as_of=as_of)
        dataset = self.load_dataset(scope, token)
        return self._forecast_engine.forecast(
            dataset.overall,
            horizon=horizon,
            scenarios=tuple(scenarios) if scenarios else SCENARIO_TAGS,
            confidence_threshold=confidence,
            token=token,
        )

    def identify_bottlenecks(
        self,
        severity: Optional[str] = None,
        *,
        department: Optional[str] = None,
        timeframe: Optional[str] = None,
        as_of: Optional[date] = None,
        token: Optional[CancellationToken] = None,
    ) -> BottleneckReport:
        token = self._token(token)
        scope = self.build_scope(department=department, timeframe=timeframe, as_of=as_of)
        dataset = self.load_dataset(scope, token)
        return self._detector.detect(dataset, token, severity=severity)

    def run_scenario_analysis(
        self,
        scenario: Scenario,
        analysis_options: Optional[AnalysisOptions] = None,
        *,
        department: Optional[str] = None,
        timeframe: Optional[str] = None,
        as_of: Optional[date] = None,
        token: Optional[CancellationToken] = None,
    ) -> ScenarioResult:
        return self.compare_scenarios(
            [scenario],
            analysis_options,
            department=department,
            timeframe=timeframe,
            as_of=as_of,
            token=token,
        )[0]

    def compare_scenarios(
        self,
        scenarios: Sequence[Scenario],
        analysis_options: Optional[AnalysisOptions] = None,
        *,
        department: Optional[str] = None,
        timeframe: Optional[str] = None,
        as_of: Optional[date] = None,
        token: Optional[CancellationToken] = None,
    ) -> list[ScenarioResult]:
        """Simulate each scenario against the same baseline, in parallel.

        Results come back in input order. A cached result is reused only when
        scope, horizon, change set and options all match.
        """
        options = analysis_options or AnalysisOptions()
        token = self._token(token)
        scope = self.build_scope(department=department, timeframe=timeframe, as_of=as_of)
        horizon = self._settings.forecast_default_horizon

        results: list[Optional[ScenarioResult]] = [None] * len(scenarios)
        pending: list[int] = []
        for index, scenario in enumerate(scenarios):
            if self._cache is not None:
                cached = self._cache.get(ScenarioResultCache.key_for(scope, horizon, scenario, options))
                if cached is not None:
                    results[index] = cached
                    continue
            pending.append(index)

        if pending:
            baseline = self.load_dataset(scope, token)
            workers = max(1, min(self._settings.analysis_max_workers, len(pending)))
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures = {
                    index: executor.submit(
                        self._simulator.simulate, baseline, scenarios[index], options, token
                    )
                    for index in pending
                }
                for index, future in futures.items():
                    result = future.result()
                    results[index] = result
                    if self._cache is not None:
                        self._cache.put(
                            ScenarioResultCache.key_for(scope, horizon, scenarios[index], options),
                            result,
                        )

        logger.info(
            "Scenario comparison completed | scenarios=%s | simulated=%s | cached=%s",
            len(scenarios),
            len(pending),
            len(scenarios) - len(pending),
        )
        return [result for result in results if result is not None]

    def analyze_utilization_patterns(
        self,
        period: Optional[str] = None,
        granularity: Optional[str] = None,
        *,
        department: Optional[str] = None,
        as_of: Optional[date] = None,
        token: Optional[CancellationToken] = None,
    ) -> UtilizationPatterns:
        token = self._token(token)
        scope = self.build_scope(
            department=department,
            timeframe=period,
            granularity=granularity,
            as_of=as_of,
        )
        dataset = self.load_dataset(scope, token)
        trend, _ = self._analyze(dataset, token, include_predicted=False)
        return self._trend_analyzer.utilization_patterns(dataset.overall, trend)

    def _training_candidates(self, dataset: CapacityDataset, skill: str) -> int:
        category = dataset.skill_categories.get(skill)
        holders = dataset.skill_holders.get(skill, frozenset())
        adjacent: set[int] = set()
        for other, other_holders in dataset.skill_holders.items():
            if other != skill and dataset.skill_categories.get(other) == category:
                adjacent |= set(other_holders)
        return len(adjacent - set(holders))

    def forecast_skill_demand(
        self,
        horizon: Optional[str] = None,
        *,
        department: Optional[str] = None,
        as_of: Optional[date] = None,
        token: Optional[CancellationToken] = None,
    ) -> SkillDemandForecast:
        token = self._token(token)
        scope = self.build_scope(department=department, as_of=as_of)
        dataset = self.load_dataset(scope, token)
        hours = self._settings.standard_hours_per_period

        demands: list[SkillDemand] = []
        gaps: list[SkillGap] = []
        hiring: list[HiringRecommendation] = []
        training: list[TrainingRecommendation] = []
        recommendations: list[Recommendation] = []
        for skill, profile in sorted(dataset.skills.items()):
            token.raise_if_cancelled("skill demand forecast")
            predictions = self._forecast_engine.forecast(
                profile, horizon=horizon, scenarios=("realistic",), token=token
            )
            if not predictions:
                continue
            final = predictions[-1]
            supply = len(dataset.skill_holders.get(skill, ()))
            forecasted = final.demand_forecast / hours
            gap = round(forecasted - supply, 2)

            observed = profile.observed_periods
            positions = [index for index, item in enumerate(profile.periods) if item.observed]
            demand_fit = fit_linear_trend(positions, [item.total_allocated / hours for item in observed])
            demands.append(
                SkillDemand(
                    skill=skill,
                    current_supply=supply,
                    forecasted_demand=round(forecasted, 2),
                    gap=gap,
                    confidence=final.confidence,
                    trend_direction=self._trend_analyzer.direction(demand_fit.slope),
                )
            )
            if gap <= 0.0:
                continue

            severity = classify_skill_gap(gap, self._settings)
            skill_gap = SkillGap(
                skill=skill,
                severity=severity,
                gap=gap,
                time_to_fill_weeks=max(4, math.ceil(gap * 6)),
                business_impact=f"{gap * hours:.0f} hours per period of {skill} demand unstaffed",
            )
            gaps.append(skill_gap)

            hire = None
            if severity in ("high", "critical"):
                hire = HiringRecommendation(
                    skill=skill,
                    recommended_hires=math.ceil(gap),
                    urgency=severity,
                    justification=(
                        f"Forecast demand of {forecasted:.1f} FTE against {supply} qualified employee(s)"
                    ),
                )
                hiring.append(hire)

            train = None
            candidates = self._training_candidates(dataset, skill)
            if candidates > 0:
                category = dataset.skill_categories.get(skill, "")
                train = TrainingRecommendation(
                    skill=skill,
                    candidate_employees=candidates,
                    estimated_time_weeks=12 if category in self._settings.complex_skill_categories else 8,
                    priority=severity,
                )
                training.append(train)
            recommendations.extend(self._recommendations.for_skill_gap(skill_gap, hire, train))

        demands.sort(key=lambda item: (-item.gap, item.skill))
        logger.info(
            "Skill demand forecast completed | skills=%s | gaps=%s | hires=%s | trainings=%s",
            len(demands),
            len(gaps),
            sum(item.recommended_hires for item in hiring),
            len(training),
        )
        return SkillDemandForecast(
            skill_demand=tuple(demands),
            skill_gaps=tuple(gaps),
            hiring_recommendations=tuple(hiring),
            training_recommendations=tuple(training),
            recommendations=rank_recommendations(recommendations),
        )
