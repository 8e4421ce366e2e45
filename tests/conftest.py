from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date

import pytest

from capacity_engine.domain.models import (
    AllocationRecord,
    CapacitySnapshot,
    ScopeFilter,
    SkillRecord,
)
from capacity_engine.utils.config import get_settings


@dataclass
class InMemoryDataSource:
    """Data collaborator double that records how often it was read."""

    allocations: list[AllocationRecord] = field(default_factory=list)
    snapshots: list[CapacitySnapshot] = field(default_factory=list)
    skills: list[SkillRecord] = field(default_factory=list)
    fetch_count: int = 0

    def fetch_allocations(self, scope: ScopeFilter) -> list[AllocationRecord]:
        self.fetch_count += 1
        return list(self.allocations)

    def fetch_capacity_snapshots(self, scope: ScopeFilter) -> list[CapacitySnapshot]:
        return list(self.snapshots)

    def fetch_skills(self, scope: ScopeFilter) -> list[SkillRecord]:
        return list(self.skills)


def monthly_snapshots(
    employee_id: int,
    department: str,
    months: list[str],
    available: float,
    allocated: float,
    first_id: int = 1,
) -> list[CapacitySnapshot]:
    snapshots = []
    for offset, month in enumerate(months):
        year, month_number = (int(part) for part in month.split("-"))
        snapshots.append(
            CapacitySnapshot(
                snapshot_id=first_id + offset,
                employee_id=employee_id,
                department=department,
                snapshot_date=date(year, month_number, 1),
                available_hours=available,
                allocated_hours=allocated,
            )
        )
    return snapshots


@pytest.fixture()
def settings(tmp_path):
    get_settings.cache_clear()
    return replace(get_settings(), database_path=tmp_path / "capacity.db")


@pytest.fixture()
def snapshot_factory():
    return monthly_snapshots


@pytest.fixture()
def source_factory():
    return InMemoryDataSource
