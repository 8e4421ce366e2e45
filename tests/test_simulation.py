from __future__ import annotations

import copy
from datetime import date

import pytest

from capacity_engine.domain.models import ScopeFilter
from capacity_engine.domain.scenario import (
    AddProject,
    AddResources,
    AnalysisOptions,
    ChangeDemand,
    RemoveResources,
    Scenario,
)
from capacity_engine.services.aggregation_service import DataAggregator
from capacity_engine.services.simulation_service import ScenarioSimulator, risk_level_for
from capacity_engine.utils.cancellation import AnalysisCancelledError, CancellationToken

MONTHS = ["2026-01", "2026-02", "2026-03", "2026-04", "2026-05", "2026-06"]


@pytest.fixture()
def baseline(settings, snapshot_factory):
    snapshots = snapshot_factory(1, "Engineering", MONTHS, 160.0, 120.0, first_id=1)
    snapshots += snapshot_factory(2, "Engineering", MONTHS, 160.0, 120.0, first_id=100)
    scope = ScopeFilter(start_date=date(2026, 1, 1), end_date=date(2026, 6, 30))
    return DataAggregator(settings).aggregate(scope, allocations=[], snapshots=snapshots)


def _new_project(hours: float = 100.0, department: str = "Engineering") -> Scenario:
    return Scenario(
        name="New client",
        changes=(AddProject(name="Apollo", demand_hours_per_period=hours, department=department),),
    )


def test_added_project_creates_bottlenecks(settings, baseline):
    result = ScenarioSimulator(settings).simulate(baseline, _new_project())

    assert result.capacity_impact.total_capacity_change == pytest.approx(0.0)
    assert result.capacity_impact.total_demand_change == pytest.approx(100.0)
    assert len(result.new_bottlenecks) >= 1
    assert ("department", "Engineering") in {item.key for item in result.new_bottlenecks}
    assert result.resolved_bottlenecks == ()
    engineering = result.capacity_impact.department_impacts[0]
    assert engineering.department == "Engineering"
    assert engineering.demand_change == pytest.approx(100.0)


def test_simulation_leaves_baseline_untouched(settings, baseline):
    before = copy.deepcopy(baseline)

    ScenarioSimulator(settings).simulate(baseline, _new_project())

    assert baseline == before


def test_same_inputs_give_identical_results(settings, baseline):
    simulator = ScenarioSimulator(settings)

    first = simulator.simulate(baseline, _new_project())
    second = simulator.simulate(baseline, _new_project())

    assert first == second
    assert first.scenario_id == second.scenario_id
    assert first.scenario_id != simulator.simulate(baseline, _new_project(hours=50.0)).scenario_id


def test_extra_capacity_resolves_overload(settings, snapshot_factory):
    snapshots = snapshot_factory(1, "Engineering", MONTHS, 160.0, 200.0, first_id=1)
    scope = ScopeFilter(start_date=date(2026, 1, 1), end_date=date(2026, 6, 30))
    overloaded = DataAggregator(settings).aggregate(scope, allocations=[], snapshots=snapshots)
    scenario = Scenario(name="Contractor", changes=(AddResources(count=1, department="Engineering"),))

    result = ScenarioSimulator(settings).simulate(overloaded, scenario)

    assert result.capacity_impact.total_capacity_change == pytest.approx(160.0)
    resolved = {item.key for item in result.resolved_bottlenecks}
    assert ("department", "Engineering") in resolved
    assert all(item.status == "resolved" for item in result.resolved_bottlenecks)


def test_removing_more_resources_than_exist_is_clamped(settings, baseline):
    scenario = Scenario(name="Attrition", changes=(RemoveResources(count=5, department="Engineering"),))

    result = ScenarioSimulator(settings).simulate(baseline, scenario)

    assert any("only 2 exist" in note for note in result.notes)
    assert result.capacity_impact.total_capacity_change == pytest.approx(-320.0)


def test_negative_count_is_clamped_to_zero(settings, baseline):
    scenario = Scenario(name="Typo", changes=(AddResources(count=-2),))

    result = ScenarioSimulator(settings).simulate(baseline, scenario)

    assert any("negative count" in note for note in result.notes)
    assert result.capacity_impact.total_capacity_change == 0.0
    assert result.new_bottlenecks == ()


def test_unknown_department_applies_to_overall_only(settings, baseline):
    result = ScenarioSimulator(settings).simulate(baseline, _new_project(department="Marketing"))

    assert any("unknown department 'Marketing'" in note for note in result.notes)
    assert result.capacity_impact.total_demand_change == pytest.approx(100.0)
    assert result.capacity_impact.department_impacts[0].demand_change == 0.0


def test_dated_change_targets_matching_periods(settings, baseline):
    change = ChangeDemand(hours_delta=40.0, start_date=date(2026, 2, 1), end_date=date(2026, 3, 31))

    modified, applied = ScenarioSimulator(settings).apply_changes(baseline, [change])

    assert applied[0].labels == ("2026-02", "2026-03")
    totals = {item.period: item.total_allocated for item in modified.overall.periods}
    assert totals["2026-02"] == pytest.approx(280.0)
    assert totals["2026-04"] == pytest.approx(240.0)


def test_demand_cannot_go_negative(settings, baseline):
    scenario = Scenario(name="Collapse", changes=(ChangeDemand(percent_change=-150.0),))

    result = ScenarioSimulator(settings).simulate(baseline, scenario)

    assert any("clamped to 0" in note for note in result.notes)
    assert result.capacity_impact.total_demand_change == pytest.approx(-240.0)


def _uneven_baseline(settings, snapshot_factory, allocated_by_month):
    snapshots = []
    for offset, (month, allocated) in enumerate(allocated_by_month.items()):
        snapshots += snapshot_factory(1, "Engineering", [month], 300.0, allocated, first_id=offset + 1)
    scope = ScopeFilter(start_date=date(2026, 1, 1), end_date=date(2026, 3, 31))
    return DataAggregator(settings).aggregate(scope, allocations=[], snapshots=snapshots)


def _allocated(dataset):
    return {item.period: item.total_allocated for item in dataset.overall.periods}


def test_demand_cut_is_clamped_and_noted_per_period(settings, snapshot_factory):
    dataset = _uneven_baseline(
        settings, snapshot_factory, {"2026-01": 200.0, "2026-02": 100.0, "2026-03": 150.0}
    )
    change = ChangeDemand(hours_delta=-150.0, start_date=date(2026, 1, 1), end_date=date(2026, 2, 28))

    modified, applied = ScenarioSimulator(settings).apply_changes(dataset, [change])

    assert _allocated(modified) == pytest.approx({"2026-01": 50.0, "2026-02": 0.0, "2026-03": 150.0})
    assert applied[0].demand_deltas == pytest.approx((-150.0, -100.0))
    assert applied[0].demand_delta == pytest.approx(-250.0)
    assert len(applied[0].notes) == 1
    assert "2026-02" in applied[0].notes[0]
    assert "2026-01" not in applied[0].notes[0]


def test_percent_change_scales_each_period(settings, snapshot_factory):
    dataset = _uneven_baseline(
        settings, snapshot_factory, {"2026-01": 100.0, "2026-02": 200.0, "2026-03": 150.0}
    )
    change = ChangeDemand(percent_change=50.0, start_date=date(2026, 1, 1), end_date=date(2026, 2, 28))

    modified, applied = ScenarioSimulator(settings).apply_changes(dataset, [change])

    assert _allocated(modified) == pytest.approx({"2026-01": 150.0, "2026-02": 300.0, "2026-03": 150.0})
    assert applied[0].notes == ()


def test_removal_is_checked_in_every_target_period(settings, snapshot_factory):
    snapshots = snapshot_factory(1, "Engineering", MONTHS[:2], 160.0, 100.0, first_id=1)
    snapshots += snapshot_factory(2, "Engineering", MONTHS[:1], 160.0, 100.0, first_id=50)
    scope = ScopeFilter(start_date=date(2026, 1, 1), end_date=date(2026, 2, 28))
    dataset = DataAggregator(settings).aggregate(scope, allocations=[], snapshots=snapshots)
    change = RemoveResources(count=2, start_date=date(2026, 1, 1), end_date=date(2026, 2, 28))

    modified, applied = ScenarioSimulator(settings).apply_changes(dataset, [change])

    assert applied[0].capacity_deltas == pytest.approx((-320.0, -160.0))
    assert [note for note in applied[0].notes if "only 1 exist in 2026-02" in note]
    assert all(item.total_available == 0.0 for item in modified.overall.periods)


def test_risk_level_tracks_worst_new_bottleneck(settings, baseline):
    simulator = ScenarioSimulator(settings)

    moderate = simulator.simulate(baseline, _new_project(100.0))
    severe = simulator.simulate(baseline, _new_project(200.0))

    assert moderate.risk_assessment.risk_level == "medium"
    assert severe.risk_assessment.risk_level == "critical"
    assert any("volatility" in risk.risk for risk in severe.risk_assessment.risks)
    assert risk_level_for(0.1) == "low"


def test_options_control_optional_sections(settings, baseline):
    options = AnalysisOptions(include_risk_analysis=False, optimization_suggestions=False, cost_impact=True)

    result = ScenarioSimulator(settings).simulate(baseline, _new_project(), options)

    assert result.risk_assessment is None
    assert result.recommendations == ()
    assert result.cost_impact is not None
    assert result.cost_impact.recommended_actions_cost > 0.0


def test_resource_cost_follows_capacity_delta(settings, baseline):
    scenario = Scenario(name="Hire", changes=(AddResources(count=1, hours_per_resource=100.0),))

    result = ScenarioSimulator(settings).simulate(
        baseline, scenario, AnalysisOptions(cost_impact=True)
    )

    assert result.cost_impact.resource_cost_delta == pytest.approx(100.0 * settings.resource_hourly_cost)


def test_cancelled_token_stops_simulation(settings, baseline):
    token = CancellationToken()
    token.cancel()

    with pytest.raises(AnalysisCancelledError):
        ScenarioSimulator(settings).simulate(baseline, _new_project(), token=token)
