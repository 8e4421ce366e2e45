#!/usr/bin/env python3
"""Validate local capacity engine environment readiness.

Runs the engine end to end against a throwaway SQLite file seeded with
synthetic history, then prints one PASS/FAIL line per check.
"""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from importlib.metadata import version
from pathlib import Path
from typing import Callable

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from capacity_engine.domain.scenario import AddProject, AnalysisOptions, Scenario
from capacity_engine.repository.data_repository import DataRepository
from capacity_engine.services.intelligence_service import CapacityIntelligenceService
from capacity_engine.utils.config import Settings, get_settings

SEPARATOR_LINE = "=" * 44
MIN_PYTHON = (3, 10)
REQUIRED_DISTRIBUTIONS = {
    "fastapi": "fastapi",
    "uvicorn": "uvicorn",
    "pydantic": "pydantic",
    "numpy": "numpy",
    "pandas": "pandas",
    "sklearn": "scikit-learn",
    "httpx": "httpx",
    "pytest": "pytest",
}


class CheckFailed(RuntimeError):
    pass


def check_python() -> str:
    found = sys.version.split()[0]
    if sys.version_info < MIN_PYTHON:
        raise CheckFailed(f"need Python >= {MIN_PYTHON[0]}.{MIN_PYTHON[1]}, found {found}")
    return f"Python {found}"


def check_packages() -> str:
    missing = []
    for module_name, dist_name in REQUIRED_DISTRIBUTIONS.items():
        try:
            importlib.import_module(module_name)
            version(dist_name)
        except Exception as exc:  # pragma: no cover - runtime guard
            missing.append(f"{module_name} ({exc})")
    if missing:
        raise CheckFailed("missing/unimportable -> " + "; ".join(missing))
    return f"Required packages: {len(REQUIRED_DISTRIBUTIONS)} importable"


class EngineChecks:
    """Checks that share one seeded repository, run in declaration order."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.repository = DataRepository(settings)
        self.service = CapacityIntelligenceService(self.repository, settings)

    def database(self) -> str:
        self.repository.initialize_database()
        return "Database initialization"

    def seed(self) -> str:
        self.repository.seed_synthetic_data()
        expected = (
            len(self.settings.synthetic_departments)
            * self.settings.synthetic_employees_per_department
            * self.settings.synthetic_seed_months
        )
        seeded = self.repository.count_snapshots()
        if seeded != expected:
            raise CheckFailed(f"expected {expected} snapshots, got {seeded}")
        return f"Synthetic dataset: {seeded} snapshots"

    def intelligence(self) -> str:
        intelligence = self.service.get_capacity_intelligence()
        if not intelligence.capacity_trends:
            raise CheckFailed("no capacity trend points produced")
        return (
            f"Capacity intelligence: utilization={intelligence.current_utilization.overall:.3f} "
            f"bottlenecks={len(intelligence.bottleneck_analysis.current)}"
        )

    def skill_demand(self) -> str:
        forecast = self.service.forecast_skill_demand("3m")
        if not forecast.skill_demand:
            raise CheckFailed("no skills forecast")
        return f"Skill demand: {len(forecast.skill_demand)} skills, {len(forecast.skill_gaps)} gaps"

    def scenario(self) -> str:
        scenario = Scenario(
            name="validation",
            changes=(AddProject(name="Validation project", demand_hours_per_period=160.0),),
        )
        result = self.service.run_scenario_analysis(scenario, AnalysisOptions(cost_impact=True))
        if result.capacity_impact.total_demand_change <= 0.0:
            raise CheckFailed("scenario did not add demand")
        return f"Scenario simulation: new_bottlenecks={len(result.new_bottlenecks)}"

    def all(self) -> list[Callable[[], str]]:
        return [self.database, self.seed, self.intelligence, self.skill_demand, self.scenario]


def _run(check: Callable[[], str]) -> tuple[bool, str]:
    name = check.__name__.replace("_", " ")
    try:
        return True, f"[PASS] {check()}"
    except Exception as exc:
        return False, f"[FAIL] {name}: {exc}"


def main() -> int:
    outcomes = [_run(check_python), _run(check_packages)]
    temp_dir = tempfile.mkdtemp(prefix="capacity-env-")
    try:
        settings = replace(get_settings(), database_path=Path(temp_dir) / "capacity_validation.db")
        for check in EngineChecks(settings).all():
            outcome = _run(check)
            outcomes.append(outcome)
            # Later checks read what earlier ones wrote.
            if not outcome[0]:
                break
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Capacity Engine Environment Validation")
    print(SEPARATOR_LINE)
    for _, line in outcomes:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all(ok for ok, _ in outcomes):
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
