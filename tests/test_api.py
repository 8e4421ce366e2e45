from __future__ import annotations

from dataclasses import replace
from datetime import date

from fastapi import FastAPI
from fastapi.testclient import TestClient

from capacity_engine.controllers.intelligence_controller import router
from capacity_engine.domain.models import CapacitySnapshot
from capacity_engine.repository.data_repository import DataRepository
from capacity_engine.services.intelligence_service import CapacityIntelligenceService
from capacity_engine.services.scenario_cache import ScenarioResultCache

AS_OF = "2026-06-15"
MONTHS = ["2026-01", "2026-02", "2026-03", "2026-04", "2026-05", "2026-06"]


def _build_test_app(service: CapacityIntelligenceService | None = None) -> FastAPI:
    app = FastAPI()
    app.include_router(router)
    app.state.repository = None
    app.state.intelligence_service = service
    return app


def _client(settings, source) -> TestClient:
    service = CapacityIntelligenceService(
        source,
        settings,
        cache=ScenarioResultCache(8),
        today=lambda: date(2026, 6, 15),
    )
    return TestClient(_build_test_app(service))


def _overloaded(source_factory, snapshot_factory):
    snapshots = snapshot_factory(1, "Engineering", MONTHS, 160.0, 200.0, first_id=1)
    snapshots += snapshot_factory(2, "Engineering", MONTHS, 160.0, 200.0, first_id=100)
    return source_factory(snapshots=snapshots)


def test_intelligence_endpoint_returns_full_view(settings, source_factory, snapshot_factory):
    client = _client(settings, _overloaded(source_factory, snapshot_factory))

    response = client.get("/capacity/intelligence", params={"timeframe": "last_6_months", "as_of": AS_OF})

    assert response.status_code == 200
    body = response.json()
    assert body["current_utilization"]["overall"] == 1.25
    assert len(body["capacity_trends"]) == 6
    assert body["bottleneck_analysis"]["current"]
    assert body["recommendations"]


def test_bottlenecks_endpoint_filters_by_severity(settings, source_factory, snapshot_factory):
    client = _client(settings, _overloaded(source_factory, snapshot_factory))

    response = client.get(
        "/capacity/bottlenecks",
        params={"severity": "critical", "timeframe": "6m", "as_of": AS_OF},
    )

    assert response.status_code == 200
    current = response.json()["current"]
    department = next(item for item in current if item["type"] == "department")
    assert department["affected_resource"] == "Engineering"
    assert department["shortfall_hours"] == 80.0
    assert department["shortfall_per_resource"] == 40.0
    assert all(item["severity"] == "critical" for item in current)


def test_predictions_endpoint(settings, source_factory, snapshot_factory):
    client = _client(settings, _overloaded(source_factory, snapshot_factory))

    response = client.post(
        "/capacity/predictions",
        json={"horizon": "next_quarter", "scenarios": ["realistic"], "as_of": AS_OF},
    )

    assert response.status_code == 200
    assert [item["period"] for item in response.json()] == ["2026-07", "2026-08", "2026-09"]


def test_zero_length_horizon_is_a_bad_request(settings, source_factory, snapshot_factory):
    client = _client(settings, _overloaded(source_factory, snapshot_factory))

    response = client.post("/capacity/predictions", json={"horizon": "0m"})

    assert response.status_code == 400


def test_malformed_timeframe_fails_validation(settings, source_factory):
    client = _client(settings, source_factory())

    response = client.get("/capacity/bottlenecks", params={"timeframe": "forever"})

    assert response.status_code == 422


def test_scenario_endpoint_reports_new_bottlenecks(settings, source_factory, snapshot_factory):
    snapshots = snapshot_factory(1, "Engineering", MONTHS, 160.0, 120.0, first_id=1)
    snapshots += snapshot_factory(2, "Engineering", MONTHS, 160.0, 120.0, first_id=100)
    client = _client(settings, source_factory(snapshots=snapshots))

    response = client.post(
        "/capacity/scenarios",
        json={
            "scenario": {
                "name": "New client",
                "changes": [
                    {"type": "add_project", "name": "Apollo", "demand_hours_per_period": 100, "department": "Engineering"}
                ],
            },
            "timeframe": "6m",
            "as_of": AS_OF,
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["capacity_impact"]["total_demand_change"] == 100.0
    assert body["capacity_impact"]["total_capacity_change"] == 0.0
    assert body["new_bottlenecks"]


def test_compare_endpoint_preserves_order(settings, source_factory, snapshot_factory):
    client = _client(settings, _overloaded(source_factory, snapshot_factory))

    response = client.post(
        "/capacity/scenarios/compare",
        json={
            "scenarios": [
                {"name": "B", "changes": [{"type": "add_resources", "count": 1}]},
                {"name": "A", "changes": [{"type": "change_demand", "percent_change": -20}]},
            ],
            "as_of": AS_OF,
        },
    )

    assert response.status_code == 200
    assert [item["scenario_name"] for item in response.json()] == ["B", "A"]


def test_unknown_change_type_fails_validation(settings, source_factory):
    client = _client(settings, source_factory())

    response = client.post(
        "/capacity/scenarios",
        json={"scenario": {"name": "Odd", "changes": [{"type": "merge_teams"}]}},
    )

    assert response.status_code == 422


def test_reversed_change_dates_fail_validation(settings, source_factory):
    client = _client(settings, source_factory())

    response = client.post(
        "/capacity/scenarios",
        json={
            "scenario": {
                "name": "Backwards",
                "changes": [
                    {
                        "type": "add_resources",
                        "count": 1,
                        "start_date": "2026-05-01",
                        "end_date": "2026-04-01",
                    }
                ],
            }
        },
    )

    assert response.status_code == 422


def test_invalid_record_is_unprocessable(settings, source_factory):
    bad = CapacitySnapshot(
        snapshot_id=9,
        employee_id=1,
        department="Engineering",
        snapshot_date=date(2026, 6, 1),
        available_hours=-5.0,
        allocated_hours=10.0,
    )
    client = _client(settings, source_factory(snapshots=[bad]))

    response = client.get("/capacity/intelligence", params={"as_of": AS_OF})

    assert response.status_code == 422
    assert "snapshot 9" in response.json()["detail"]


def test_unavailable_data_source_returns_503(settings):
    client = _client(settings, DataRepository(settings))

    response = client.get("/capacity/bottlenecks")

    assert response.status_code == 503


def test_missing_service_returns_503():
    client = TestClient(_build_test_app())

    response = client.get("/capacity/intelligence")

    assert response.status_code == 503


def test_timeout_returns_504(settings, source_factory, snapshot_factory):
    client = _client(
        replace(settings, analysis_timeout_seconds=0.0),
        _overloaded(source_factory, snapshot_factory),
    )

    response = client.get("/capacity/intelligence", params={"as_of": AS_OF})

    assert response.status_code == 504


def test_utilization_patterns_and_skill_demand_endpoints(settings, source_factory, snapshot_factory):
    client = _client(settings, _overloaded(source_factory, snapshot_factory))

    patterns = client.get("/capacity/utilization-patterns", params={"period": "6m", "as_of": AS_OF})
    skills = client.get("/capacity/skill-demand", params={"horizon": "3m", "as_of": AS_OF})

    assert patterns.status_code == 200
    assert patterns.json()["average_utilization"] == 1.25
    assert skills.status_code == 200
    assert skills.json()["skill_gaps"] == []
