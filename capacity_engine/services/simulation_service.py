"""What-if simulation over an immutable capacity snapshot.

The simulator never touches the data collaborator. Every change is applied
with `dataclasses.replace` to produce a new `CapacityDataset`, so the baseline
passed in by the caller is left exactly as it was and can be reused for the
next scenario in a comparison batch.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, Mapping, Optional
from uuid import NAMESPACE_URL, uuid5

from capacity_engine.domain.models import (
    Bottleneck,
    CapacityDataset,
    CapacityImpact,
    CostImpact,
    DepartmentImpact,
    PeriodUtilization,
    Risk,
    RiskAssessment,
    ScenarioResult,
    UtilizationProfile,
)
from capacity_engine.domain.playbook import mitigation_for
from capacity_engine.domain.scenario import (
    AddProject,
    AddResources,
    AnalysisOptions,
    ChangeDemand,
    RemoveResources,
    Scenario,
    ScenarioChange,
)
from capacity_engine.services.aggregation_service import utilization_rate
from capacity_engine.services.bottleneck_service import BottleneckDetector
from capacity_engine.services.recommendation_service import RecommendationGenerator
from capacity_engine.utils.cancellation import CancellationToken
from capacity_engine.utils.config import Settings, get_settings
from capacity_engine.utils.logger import get_logger
from capacity_engine.utils.periods import build_periods, period_label


logger = get_logger(__name__)

FLOAT_TOLERANCE = 1e-9

SEVERITY_PROBABILITY = {
    "low": 0.25,
    "medium": 0.45,
    "high": 0.65,
    "critical": 0.85,
}


def risk_level_for(probability: float) -> str:
    if probability >= 0.8:
        return "critical"
    if probability >= 0.6:
        return "high"
    if probability >= 0.3:
        return "medium"
    return "low"


@dataclass(frozen=True)
class PeriodDelta:
    """Hours and head count moved in one target period."""

    available: float = 0.0
    allocated: float = 0.0
    entities: int = 0


@dataclass(frozen=True)
class AppliedChange:
    """A change after clamping, with the hours it moved in each target period."""

    change: ScenarioChange
    labels: tuple[str, ...]
    capacity_deltas: tuple[float, ...]
    demand_deltas: tuple[float, ...]
    notes: tuple[str, ...] = ()

    @property
    def capacity_delta(self) -> float:
        return sum(self.capacity_deltas)

    @property
    def demand_delta(self) -> float:
        return sum(self.demand_deltas)

    @property
    def magnitude(self) -> float:
        """Largest shift applied to any single period."""
        shifts = [abs(value) for value in (*self.capacity_deltas, *self.demand_deltas)]
        return max(shifts, default=0.0)


def _uniform(labels: Iterable[str], **fields) -> dict[str, PeriodDelta]:
    delta = PeriodDelta(**fields)
    return {label: delta for label in labels}


def _adjust_profile(
    profile: UtilizationProfile,
    deltas: Mapping[str, PeriodDelta],
    project_ids: tuple[int, ...],
    notes: list[str],
) -> UtilizationProfile:
    periods: list[PeriodUtilization] = []
    for item in profile.periods:
        delta = deltas.get(item.period)
        if delta is None:
            periods.append(item)
            continue
        available = item.total_available + delta.available
        allocated = item.total_allocated + delta.allocated
        for field_name, value in (("capacity", available), ("demand", allocated)):
            if value < -FLOAT_TOLERANCE:
                notes.append(
                    f"{profile.scope_id} {item.period}: {field_name} would fall to {value:.1f}h, clamped to 0"
                )
        available = max(0.0, available)
        allocated = max(0.0, allocated)
        periods.append(
            replace(
                item,
                total_available=available,
                total_allocated=allocated,
                average_utilization=utilization_rate(allocated, available),
                entity_count=max(0, item.entity_count + delta.entities),
                reporting_entities=max(0, item.reporting_entities + delta.entities),
                project_ids=tuple(sorted(set(item.project_ids) | set(project_ids))),
            )
        )
    return replace(profile, periods=tuple(periods))


def _period_map(profile: UtilizationProfile) -> dict[str, PeriodUtilization]:
    return {item.period: item for item in profile.periods}


class ScenarioSimulator:
    """Applies typed change sets and diffs bottlenecks against the baseline."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        detector: Optional[BottleneckDetector] = None,
        recommendation_generator: Optional[RecommendationGenerator] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._detector = detector or BottleneckDetector(self._settings)
        self._recommendations = recommendation_generator or RecommendationGenerator(self._settings)

    @staticmethod
    def scenario_id(scenario: Scenario, dataset: CapacityDataset) -> str:
        content = repr((dataset.scope, scenario.name, scenario.changes))
        return str(uuid5(NAMESPACE_URL, f"capacity-scenario:{content}"))

    def _target_labels(
        self,
        dataset: CapacityDataset,
        change: ScenarioChange,
        notes: list[str],
    ) -> tuple[str, ...]:
        latest = dataset.overall.latest
        fallback = (latest.period,) if latest is not None else ()
        if change.start_date is None and change.end_date is None:
            return fallback

        start = change.start_date or change.end_date
        end = change.end_date or change.start_date
        if end < start:
            notes.append(f"{change.kind}: end_date precedes start_date, dates swapped")
            start, end = end, start
        requested = {
            period_label(period, dataset.granularity)
            for period in build_periods(start, end, dataset.granularity)
        }
        labels = tuple(item.period for item in dataset.overall.periods if item.period in requested)
        if not labels:
            notes.append(f"{change.kind}: date range outside the analysed periods, applied to latest period")
            return fallback
        return labels

    def _resolve_department(
        self,
        dataset: CapacityDataset,
        department: Optional[str],
        kind: str,
        notes: list[str],
    ) -> Optional[str]:
        if department is None or department in dataset.departments:
            return department
        notes.append(f"{kind}: unknown department '{department}', applied to overall capacity only")
        return None

    def _resolve_skill(
        self,
        dataset: CapacityDataset,
        skill: Optional[str],
        kind: str,
        notes: list[str],
    ) -> Optional[str]:
        if skill is None or skill in dataset.skills:
            return skill
        notes.append(f"{kind}: unknown skill '{skill}', skill profile not adjusted")
        return None

    def _apply_to_profiles(
        self,
        dataset: CapacityDataset,
        deltas: Mapping[str, PeriodDelta],
        department: Optional[str],
        skill: Optional[str],
        notes: list[str],
        project_ids: tuple[int, ...] = (),
    ) -> CapacityDataset:
        overall = _adjust_profile(dataset.overall, deltas, project_ids, notes)
        departments = dict(dataset.departments)
        if department is not None:
            departments[department] = _adjust_profile(departments[department], deltas, project_ids, notes)
        skills = dict(dataset.skills)
        if skill is not None:
            skills[skill] = _adjust_profile(skills[skill], deltas, project_ids, notes)
        return replace(dataset, overall=overall, departments=departments, skills=skills)

    def _add_project(
        self, dataset: CapacityDataset, change: AddProject, labels: tuple[str, ...], notes: list[str]
    ) -> tuple[CapacityDataset, dict[str, PeriodDelta]]:
        demand = change.demand_hours_per_period
        if demand < 0:
            notes.append(f"add_project '{change.name}': negative demand clamped to 0")
            demand = 0.0
        department = self._resolve_department(dataset, change.department, change.kind, notes)
        skill = self._resolve_skill(dataset, change.required_skill, change.kind, notes)
        project_ids = (change.project_id,) if change.project_id is not None else ()
        deltas = _uniform(labels, allocated=demand)
        modified = self._apply_to_profiles(dataset, deltas, department, skill, notes, project_ids)
        return modified, deltas

    def _add_resources(
        self, dataset: CapacityDataset, change: AddResources, labels: tuple[str, ...], notes: list[str]
    ) -> tuple[CapacityDataset, dict[str, PeriodDelta]]:
        count = change.count
        if count < 0:
            notes.append("add_resources: negative count clamped to 0")
            count = 0
        hours = change.hours_per_resource
        if hours is None or hours < 0:
            if hours is not None:
                notes.append("add_resources: negative hours_per_resource replaced by the standard period hours")
            hours = self._settings.standard_hours_per_period
        department = self._resolve_department(dataset, change.department, change.kind, notes)
        skill = self._resolve_skill(dataset, change.skill, change.kind, notes)
        deltas = _uniform(labels, available=count * hours, entities=count)
        modified = self._apply_to_profiles(dataset, deltas, department, skill, notes)
        return modified, deltas

    def _remove_resources(
        self, dataset: CapacityDataset, change: RemoveResources, labels: tuple[str, ...], notes: list[str]
    ) -> tuple[CapacityDataset, dict[str, PeriodDelta]]:
        count = change.count
        if count < 0:
            notes.append("remove_resources: negative count clamped to 0")
            count = 0
        department = self._resolve_department(dataset, change.department, change.kind, notes)
        skill = self._resolve_skill(dataset, change.skill, change.kind, notes)
        if skill is not None:
            source = dataset.skills[skill]
        elif department is not None:
            source = dataset.departments[department]
        else:
            source = dataset.overall

        # Each period loses the per-head average of the narrowest matching profile.
        periods = _period_map(source)
        deltas: dict[str, PeriodDelta] = {}
        for label in labels:
            period = periods[label]
            existing = period.reporting_entities
            removed = count
            if removed > existing:
                notes.append(
                    f"remove_resources: requested {count} but only {existing} exist in {label}, "
                    f"clamped to {existing}"
                )
                removed = existing
            if removed == 0:
                continue
            per_head = period.total_available / existing
            deltas[label] = PeriodDelta(available=-removed * per_head, entities=-removed)
        if not deltas:
            return dataset, deltas
        modified = self._apply_to_profiles(dataset, deltas, department, skill, notes)
        return modified, deltas

    def _change_demand(
        self, dataset: CapacityDataset, change: ChangeDemand, labels: tuple[str, ...], notes: list[str]
    ) -> tuple[CapacityDataset, dict[str, PeriodDelta]]:
        department = self._resolve_department(dataset, change.department, change.kind, notes)
        source = dataset.departments[department] if department is not None else dataset.overall
        periods = _period_map(source)
        factor = 1.0 + (change.percent_change or 0.0) / 100.0
        deltas: dict[str, PeriodDelta] = {}
        floored: list[str] = []
        for label in labels:
            current = periods[label].total_allocated
            target = current * factor + change.hours_delta
            if target < 0.0:
                floored.append(label)
                target = 0.0
            deltas[label] = PeriodDelta(allocated=target - current)
        if floored:
            notes.append(
                f"change_demand: demand would fall below zero in {', '.join(floored)}, clamped to 0"
            )
        modified = self._apply_to_profiles(dataset, deltas, department, None, notes)
        return modified, deltas

    def apply_changes(
        self,
        baseline: CapacityDataset,
        changes: Iterable[ScenarioChange],
        token: Optional[CancellationToken] = None,
    ) -> tuple[CapacityDataset, list[AppliedChange]]:
        """Apply changes in order, returning a new dataset and what each did."""
        token = token or CancellationToken.none()
        handlers = {
            AddProject: self._add_project,
            AddResources: self._add_resources,
            RemoveResources: self._remove_resources,
            ChangeDemand: self._change_demand,
        }
        dataset = baseline
        applied: list[AppliedChange] = []
        for change in changes:
            token.raise_if_cancelled("scenario simulation")
            notes: list[str] = []
            labels = self._target_labels(dataset, change, notes)
            dataset, deltas = handlers[type(change)](dataset, change, labels, notes)
            moved = [deltas.get(label, PeriodDelta()) for label in labels]
            applied.append(
                AppliedChange(
                    change=change,
                    labels=labels,
                    capacity_deltas=tuple(item.available for item in moved),
                    demand_deltas=tuple(item.allocated for item in moved),
                    notes=tuple(notes),
                )
            )
        return dataset, applied

    @staticmethod
    def _bottleneck_index(current: Iterable[Bottleneck], predicted: Iterable[Bottleneck]) -> dict:
        index: dict[tuple[str, str], Bottleneck] = {}
        for bottleneck in (*current, *predicted):
            index.setdefault(bottleneck.key, bottleneck)
        return index

    @staticmethod
    def capacity_impact(baseline: CapacityDataset, modified: CapacityDataset) -> CapacityImpact:
        def totals(profile: UtilizationProfile) -> tuple[float, float]:
            return (
                sum(item.total_available for item in profile.periods),
                sum(item.total_allocated for item in profile.periods),
            )

        def latest_utilization(profile: UtilizationProfile) -> float:
            latest = profile.latest
            return latest.average_utilization if latest is not None else 0.0

        base_capacity, base_demand = totals(baseline.overall)
        new_capacity, new_demand = totals(modified.overall)
        impacts = []
        for department in sorted(baseline.departments):
            before = baseline.departments[department]
            after = modified.departments[department]
            before_capacity, before_demand = totals(before)
            after_capacity, after_demand = totals(after)
            impacts.append(
                DepartmentImpact(
                    department=department,
                    capacity_change=after_capacity - before_capacity,
                    demand_change=after_demand - before_demand,
                    utilization_change=latest_utilization(after) - latest_utilization(before),
                )
            )
        return CapacityImpact(
            total_capacity_change=new_capacity - base_capacity,
            total_demand_change=new_demand - base_demand,
            department_impacts=tuple(impacts),
        )

    def assess_risk(
        self,
        baseline: CapacityDataset,
        new_bottlenecks: Iterable[Bottleneck],
        applied: Iterable[AppliedChange],
    ) -> RiskAssessment:
        risks: list[Risk] = []
        for bottleneck in new_bottlenecks:
            risks.append(
                Risk(
                    risk=f"New {bottleneck.describe()}",
                    probability=SEVERITY_PROBABILITY[bottleneck.severity],
                    impact=(
                        f"{bottleneck.shortfall_hours:.0f} hours of demand unmet in {bottleneck.period}"
                    ),
                    mitigation=mitigation_for(bottleneck.type),
                )
            )

        latest = baseline.overall.latest
        base_capacity = latest.total_available if latest is not None else 0.0
        for item in applied:
            if item.magnitude <= 0.0:
                continue
            ratio = item.magnitude / base_capacity if base_capacity > 0.0 else 1.0
            if ratio <= self._settings.scenario_volatility_threshold:
                continue
            mitigation_type = "time" if item.demand_delta else "department"
            risks.append(
                Risk(
                    risk=f"High volatility {item.change.kind} change",
                    probability=min(1.0, ratio),
                    impact=f"Shifts {item.magnitude:.0f} hours, {ratio:.0%} of current capacity",
                    mitigation=mitigation_for(mitigation_type),
                )
            )

        top = max((risk.probability for risk in risks), default=0.0)
        risks.sort(key=lambda risk: -risk.probability)
        return RiskAssessment(risk_level=risk_level_for(top), risks=tuple(risks))

    def _resource_cost_delta(self, applied: Iterable[AppliedChange]) -> float:
        total = 0.0
        for item in applied:
            if isinstance(item.change, (AddResources, RemoveResources)):
                total += item.capacity_delta * self._settings.resource_hourly_cost
        return total

    def simulate(
        self,
        baseline: CapacityDataset,
        scenario: Scenario,
        options: Optional[AnalysisOptions] = None,
        token: Optional[CancellationToken] = None,
    ) -> ScenarioResult:
        options = options or AnalysisOptions()
        token = token or CancellationToken.none()
        scenario_id = self.scenario_id(scenario, baseline)
        logger.info(
            "Scenario simulation started | scenario_id=%s | name=%s | changes=%s",
            scenario_id,
            scenario.name,
            len(scenario.changes),
        )

        modified, applied = self.apply_changes(baseline, scenario.changes, token)
        before = self._detector.detect(baseline, token, include_historical=False)
        token.raise_if_cancelled("scenario simulation")
        after = self._detector.detect(modified, token, include_historical=False)

        before_index = self._bottleneck_index(before.current, before.predicted)
        after_index = self._bottleneck_index(after.current, after.predicted)
        new_bottlenecks = tuple(
            item for key, item in after_index.items() if key not in before_index
        )
        resolved_bottlenecks = tuple(
            replace(item, status="resolved")
            for key, item in before_index.items()
            if key not in after_index
        )
        impact = self.capacity_impact(baseline, modified)

        new_current = [item for item in after.current if item.key not in before_index]
        new_predicted = [item for item in after.predicted if item.key not in before_index]
        recommendations = ()
        if options.optimization_suggestions or options.cost_impact:
            recommendations = self._recommendations.generate(new_current, new_predicted, dataset=modified)

        risk_assessment = (
            self.assess_risk(baseline, new_bottlenecks, applied)
            if options.include_risk_analysis
            else None
        )
        cost_impact = None
        if options.cost_impact:
            cost_impact = CostImpact(
                resource_cost_delta=self._resource_cost_delta(applied),
                recommended_actions_cost=sum(item.implementation_cost for item in recommendations),
            )

        summary = (
            f"Scenario '{scenario.name}': capacity {impact.total_capacity_change:+.0f}h, "
            f"demand {impact.total_demand_change:+.0f}h, {len(new_bottlenecks)} new and "
            f"{len(resolved_bottlenecks)} resolved bottleneck(s)"
        )
        notes = tuple(note for item in applied for note in item.notes)
        logger.info(
            "Scenario simulation completed | scenario_id=%s | new=%s | resolved=%s | notes=%s",
            scenario_id,
            len(new_bottlenecks),
            len(resolved_bottlenecks),
            len(notes),
        )
        return ScenarioResult(
            scenario_id=scenario_id,
            scenario_name=scenario.name,
            capacity_impact=impact,
            new_bottlenecks=new_bottlenecks,
            resolved_bottlenecks=resolved_bottlenecks,
            impact_summary=summary,
            recommendations=recommendations if options.optimization_suggestions else (),
            risk_assessment=risk_assessment,
            cost_impact=cost_impact,
            notes=notes,
        )
