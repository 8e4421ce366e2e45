from __future__ import annotations

from datetime import date

import pytest

from capacity_engine.domain.models import ScopeFilter, severity_rank
from capacity_engine.services.aggregation_service import DataAggregator
from capacity_engine.services.bottleneck_service import BottleneckDetector

MONTHS = ["2026-01", "2026-02", "2026-03", "2026-04", "2026-05", "2026-06"]


def _scope() -> ScopeFilter:
    return ScopeFilter(start_date=date(2026, 1, 1), end_date=date(2026, 6, 30), granularity="monthly")


def _overloaded_department(settings, snapshot_factory):
    snapshots = snapshot_factory(1, "Engineering", MONTHS, 160.0, 200.0, first_id=1)
    snapshots += snapshot_factory(2, "Engineering", MONTHS, 160.0, 200.0, first_id=100)
    snapshots += snapshot_factory(3, "Design", MONTHS, 160.0, 100.0, first_id=200)
    return DataAggregator(settings).aggregate(_scope(), allocations=[], snapshots=snapshots)


def test_severity_is_monotonic_in_shortfall(settings):
    detector = BottleneckDetector(settings)
    shortfalls = [0.5, 4.0, 5.0, 9.9, 10.0, 15.0, 20.0, 60.0, 500.0]

    tiers = [severity_rank(detector.classify_severity(value, 100.0)) for value in shortfalls]

    assert tiers == sorted(tiers)
    assert detector.classify_severity(0.0, 100.0) is None
    assert detector.classify_severity(500.0, 100.0) == "critical"


def test_unsupplied_demand_is_critical(settings):
    assert BottleneckDetector(settings).classify_severity(10.0, 0.0) == "critical"


def test_many_projects_escalate_one_tier(settings):
    detector = BottleneckDetector(settings)

    assert detector.classify_severity(6.0, 100.0, project_count=0) == "medium"
    assert detector.classify_severity(6.0, 100.0, project_count=5) == "high"


def test_overloaded_department_is_reported_critical(settings, snapshot_factory):
    dataset = _overloaded_department(settings, snapshot_factory)

    report = BottleneckDetector(settings).detect(dataset)

    department = next(
        item for item in report.current
        if item.type == "department" and item.affected_resource == "Engineering"
    )
    assert department.severity == "critical"
    assert department.shortfall_hours == pytest.approx(80.0)
    assert department.shortfall_per_resource == pytest.approx(40.0)
    assert department.impact_score == pytest.approx(25.0)
    assert department.recommended_actions == ("reallocation", "hiring")
    assert department.period == "2026-06"
    assert department.estimated_duration_days == 6 * 30
    assert not any(
        item.type == "department" and item.affected_resource == "Design" for item in report.current
    )


def test_resource_bottlenecks_cover_each_overloaded_employee(settings, snapshot_factory):
    report = BottleneckDetector(settings).detect(_overloaded_department(settings, snapshot_factory))

    resources = sorted(item.affected_resource for item in report.current if item.type == "resource")
    assert resources == ["1", "2"]


def test_current_sets_are_ranked_by_impact(settings, snapshot_factory):
    report = BottleneckDetector(settings).detect(_overloaded_department(settings, snapshot_factory))

    scores = [item.impact_score for item in report.current]
    assert scores == sorted(scores, reverse=True)


def test_persistent_shortfall_is_predicted(settings, snapshot_factory):
    report = BottleneckDetector(settings).detect(_overloaded_department(settings, snapshot_factory))

    predicted = {(item.type, item.affected_resource) for item in report.predicted}
    assert ("department", "Engineering") in predicted
    assert all(item.status in ("active", "mitigated") for item in report.predicted)


def test_resolved_shortfalls_are_historical(settings, snapshot_factory):
    snapshots = snapshot_factory(1, "Engineering", MONTHS[:3], 160.0, 200.0, first_id=1)
    snapshots += snapshot_factory(1, "Engineering", MONTHS[3:], 160.0, 120.0, first_id=50)
    dataset = DataAggregator(settings).aggregate(_scope(), allocations=[], snapshots=snapshots)

    report = BottleneckDetector(settings).detect(dataset)

    assert report.current == ()
    assert report.historical
    assert all(item.status == "resolved" for item in report.historical)
    periods = [item.period for item in report.historical]
    assert periods == sorted(periods, reverse=True)
    assert len(report.historical) <= settings.historical_bottleneck_limit


def test_past_episode_is_reported_once_per_key(settings, snapshot_factory):
    snapshots = snapshot_factory(1, "Engineering", MONTHS[:3], 160.0, 200.0, first_id=1)
    snapshots += snapshot_factory(1, "Engineering", MONTHS[3:], 160.0, 120.0, first_id=50)
    dataset = DataAggregator(settings).aggregate(_scope(), allocations=[], snapshots=snapshots)

    report = BottleneckDetector(settings).detect(dataset)

    keys = [item.key for item in report.historical]
    assert sorted(keys) == [("department", "Engineering"), ("resource", "1"), ("time", "2026-03")]
    assert all(item.period == "2026-03" for item in report.historical)
    assert all(item.estimated_duration_days == 90 for item in report.historical)


def test_ongoing_time_overload_is_not_historical(settings, snapshot_factory):
    snapshots = snapshot_factory(1, "Engineering", MONTHS[:3], 160.0, 200.0, first_id=1)
    scope = ScopeFilter(start_date=date(2026, 1, 1), end_date=date(2026, 3, 31))
    dataset = DataAggregator(settings).aggregate(scope, allocations=[], snapshots=snapshots)

    report = BottleneckDetector(settings).detect(dataset)

    assert ("time", "2026-03") in {item.key for item in report.current}
    assert report.historical == ()


def test_severity_filter_applies_to_every_set(settings, snapshot_factory):
    report = BottleneckDetector(settings).detect(
        _overloaded_department(settings, snapshot_factory), severity="low"
    )

    assert all(item.severity == "low" for item in report.current + report.predicted + report.historical)


def test_unknown_severity_filter_is_rejected(settings, snapshot_factory):
    with pytest.raises(ValueError):
        BottleneckDetector(settings).detect(
            _overloaded_department(settings, snapshot_factory), severity="extreme"
        )
