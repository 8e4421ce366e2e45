"""Reduce raw allocation and availability records into utilization profiles."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Iterable, Optional, Sequence

import pandas as pd

from capacity_engine.domain.models import (
    ALLOCATION_STATUSES,
    GRANULARITIES,
    AllocationRecord,
    CapacityDataset,
    CapacitySnapshot,
    PeriodUtilization,
    ScopeFilter,
    SkillRecord,
    UtilizationProfile,
)
from capacity_engine.utils.cancellation import CancellationToken
from capacity_engine.utils.config import Settings, get_settings
from capacity_engine.utils.logger import get_logger, log_stage
from capacity_engine.utils.periods import build_periods, overlap_days, period_label


logger = get_logger(__name__)

_SNAPSHOT_COLUMNS = [
    "employee_id",
    "department",
    "period",
    "available",
    "allocated",
    "defaulted",
]
_SHARE_COLUMNS = [
    "employee_id",
    "project_id",
    "period",
    "hours",
    "required_skill",
    "defaulted",
]


class AggregationError(Exception):
    """Base exception for aggregation failures."""


class RecordValidationError(AggregationError):
    """Raised when an input record violates the data contract."""


class ScopeValidationError(AggregationError, ValueError):
    """Raised when the requested scope itself is malformed."""


def validate_scope(scope: ScopeFilter) -> None:
    if scope.granularity not in GRANULARITIES:
        raise ScopeValidationError(f"granularity must be one of {list(GRANULARITIES)}")
    if (
        scope.start_date is not None
        and scope.end_date is not None
        and scope.end_date < scope.start_date
    ):
        raise ScopeValidationError("scope end_date must not precede start_date")


def validate_records(
    allocations: Iterable[AllocationRecord],
    snapshots: Iterable[CapacitySnapshot],
) -> None:
    """Reject records that would silently corrupt aggregate statistics."""
    for record in allocations:
        if record.end_date < record.start_date:
            raise RecordValidationError(
                f"allocation {record.allocation_id}: end_date {record.end_date} "
                f"precedes start_date {record.start_date}"
            )
        if record.allocated_hours is not None and record.allocated_hours < 0:
            raise RecordValidationError(
                f"allocation {record.allocation_id}: allocated_hours must be >= 0"
            )
        if record.status not in ALLOCATION_STATUSES:
            raise RecordValidationError(
                f"allocation {record.allocation_id}: unknown status '{record.status}'"
            )
    for snapshot in snapshots:
        if snapshot.available_hours is not None and snapshot.available_hours < 0:
            raise RecordValidationError(
                f"snapshot {snapshot.snapshot_id}: available_hours must be >= 0"
            )
        if snapshot.allocated_hours is not None and snapshot.allocated_hours < 0:
            raise RecordValidationError(
                f"snapshot {snapshot.snapshot_id}: allocated_hours must be >= 0"
            )


def utilization_rate(allocated: float, available: float) -> float:
    if available <= 0.0:
        return 0.0
    return float(allocated / available)


class DataAggregator:
    """Builds the immutable `CapacityDataset` every later stage reads."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    def _resolve_range(
        self,
        scope: ScopeFilter,
        allocations: Sequence[AllocationRecord],
        snapshots: Sequence[CapacitySnapshot],
    ) -> tuple[date, date] | None:
        if snapshots:
            data_start = min(item.snapshot_date for item in snapshots)
            data_end = max(item.snapshot_date for item in snapshots)
        elif allocations:
            data_start = min(item.start_date for item in allocations)
            data_end = max(item.end_date for item in allocations)
        else:
            return None
        start = scope.start_date or data_start
        end = scope.end_date or data_end
        if end < start:
            return None
        return start, end

    def _snapshot_frame(
        self,
        snapshots: Sequence[CapacitySnapshot],
        labels_by_day: dict[date, str],
    ) -> pd.DataFrame:
        rows = []
        for snapshot in snapshots:
            label = labels_by_day.get(snapshot.snapshot_date)
            if label is None:
                continue
            rows.append(
                {
                    "employee_id": snapshot.employee_id,
                    "department": snapshot.department,
                    "period": label,
                    "available": snapshot.available_hours or 0.0,
                    "allocated": snapshot.allocated_hours or 0.0,
                    "defaulted": int(snapshot.available_hours is None)
                    + int(snapshot.allocated_hours is None),
                }
            )
        return pd.DataFrame(rows, columns=_SNAPSHOT_COLUMNS)

    def _share_frame(
        self,
        allocations: Sequence[AllocationRecord],
        periods: list[pd.Period],
        granularity: str,
        start: date,
        end: date,
    ) -> pd.DataFrame:
        """Prorate each allocation's hours onto the periods it overlaps."""
        rows = []
        for record in allocations:
            if record.status == "cancelled":
                continue
            span_days = (record.end_date - record.start_date).days + 1
            hours = record.allocated_hours or 0.0
            for period in periods:
                days = overlap_days(
                    period,
                    max(record.start_date, start),
                    min(record.end_date, end),
                )
                if days <= 0:
                    continue
                rows.append(
                    {
                        "employee_id": record.employee_id,
                        "project_id": record.project_id,
                        "period": period_label(period, granularity),
                        "hours": hours * days / span_days,
                        "required_skill": record.required_skill,
                        "defaulted": int(record.allocated_hours is None),
                    }
                )
        return pd.DataFrame(rows, columns=_SHARE_COLUMNS)

    def _build_profile(
        self,
        scope_id: str,
        granularity: str,
        labels: list[str],
        snapshots: pd.DataFrame,
        shares: pd.DataFrame,
        entity_ids: set[int],
        *,
        demand_from_snapshots: bool = True,
    ) -> UtilizationProfile:
        entity_count = len(entity_ids)
        snapshots = snapshots[snapshots["employee_id"].isin(entity_ids)]
        if demand_from_snapshots:
            shares = shares[shares["employee_id"].isin(entity_ids)]

        snapshot_groups = {key: group for key, group in snapshots.groupby("period")}
        share_groups = {key: group for key, group in shares.groupby("period")}
        empty_snapshots = snapshots.iloc[0:0]
        empty_shares = shares.iloc[0:0]

        periods: list[PeriodUtilization] = []
        for label in labels:
            period_snapshots = snapshot_groups.get(label, empty_snapshots)
            period_shares = share_groups.get(label, empty_shares)
            reporting_ids = set(int(value) for value in period_snapshots["employee_id"])

            total_available = float(period_snapshots["available"].sum())
            if demand_from_snapshots:
                # Employees without a snapshot fall back to their prorated allocations.
                fallback = period_shares[~period_shares["employee_id"].isin(reporting_ids)]
                total_allocated = float(period_snapshots["allocated"].sum()) + float(
                    fallback["hours"].sum()
                )
                entries = len(period_snapshots) + len(fallback)
                defaulted = int(period_snapshots["defaulted"].sum()) + int(
                    fallback["defaulted"].sum()
                )
            else:
                total_allocated = float(period_shares["hours"].sum())
                entries = len(period_snapshots) + len(period_shares)
                defaulted = int(period_snapshots["defaulted"].sum()) + int(
                    period_shares["defaulted"].sum()
                )

            periods.append(
                PeriodUtilization(
                    period=label,
                    average_utilization=utilization_rate(total_allocated, total_available),
                    total_available=total_available,
                    total_allocated=total_allocated,
                    entity_count=entity_count,
                    reporting_entities=len(reporting_ids),
                    entries_count=entries,
                    defaulted_fields=defaulted,
                    project_ids=tuple(sorted({int(value) for value in period_shares["project_id"]})),
                )
            )
        return UtilizationProfile(scope_id=scope_id, granularity=granularity, periods=tuple(periods))

    @staticmethod
    def _scope_id(scope: ScopeFilter) -> str:
        parts = []
        if scope.department is not None:
            parts.append(f"department:{scope.department}")
        if scope.skill is not None:
            parts.append(f"skill:{scope.skill}")
        if scope.employee_id is not None:
            parts.append(f"employee:{scope.employee_id}")
        return "|".join(parts) or "organization"

    def _skill_holders(
        self,
        skills: Sequence[SkillRecord],
        in_scope: set[int] | None,
    ) -> dict[str, frozenset[int]]:
        holders: dict[str, frozenset[int]] = {}
        for skill in skills:
            qualified = {
                employee_id
                for employee_id, level in skill.proficiencies.items()
                if level >= self._settings.skill_min_proficiency
            }
            if in_scope is not None:
                qualified &= in_scope
            holders[skill.name] = frozenset(qualified)
        return holders

    def aggregate(
        self,
        scope: ScopeFilter,
        allocations: Sequence[AllocationRecord],
        snapshots: Sequence[CapacitySnapshot],
        skills: Sequence[SkillRecord] = (),
        token: Optional[CancellationToken] = None,
    ) -> CapacityDataset:
        """Aggregate one scope; an empty scope yields an empty profile."""
        token = token or CancellationToken.none()
        validate_scope(scope)
        validate_records(allocations, snapshots)
        token.raise_if_cancelled("aggregation")

        granularity = scope.granularity
        scope_id = self._scope_id(scope)

        # Latest snapshot wins; allocations only fill in employees never snapshotted.
        employee_departments: dict[int, str] = {}
        for snapshot in sorted(snapshots, key=lambda item: item.snapshot_date):
            if snapshot.department is not None:
                employee_departments[snapshot.employee_id] = snapshot.department
        for allocation in allocations:
            if allocation.department is not None:
                employee_departments.setdefault(allocation.employee_id, allocation.department)

        snapshots = [
            item
            for item in snapshots
            if (scope.department is None or item.department == scope.department)
            and (scope.employee_id is None or item.employee_id == scope.employee_id)
        ]
        allocations = [
            item
            for item in allocations
            if (scope.employee_id is None or item.employee_id == scope.employee_id)
            and (
                scope.department is None
                or employee_departments.get(item.employee_id) == scope.department
            )
        ]

        skill_categories = {skill.name: skill.category for skill in skills}
        scope_employees = {item.employee_id for item in snapshots} | {
            item.employee_id for item in allocations
        }
        employee_departments = {
            employee_id: name
            for employee_id, name in employee_departments.items()
            if employee_id in scope_employees
        }
        holders = self._skill_holders(
            skills,
            scope_employees if scope.department is not None or scope.employee_id is not None else None,
        )
        if scope.skill is not None:
            skilled = holders.get(scope.skill, frozenset())
            snapshots = [item for item in snapshots if item.employee_id in skilled]
            allocations = [item for item in allocations if item.employee_id in skilled]

        resolved = self._resolve_range(scope, allocations, snapshots)
        if resolved is None:
            logger.info("Aggregation produced empty profile | scope=%s", scope_id)
            return CapacityDataset(
                scope=scope,
                overall=UtilizationProfile(scope_id=scope_id, granularity=granularity),
                skill_holders=holders,
                skill_categories=skill_categories,
            )

        start, end = resolved
        with log_stage(logger, "aggregation", scope=scope_id, granularity=granularity):
            periods = build_periods(start, end, granularity)
            labels = [period_label(period, granularity) for period in periods]
            labels_by_day: dict[date, str] = {}
            for period, label in zip(periods, labels):
                day = max(period.start_time.date(), start)
                last = min(period.end_time.date(), end)
                while day <= last:
                    labels_by_day[day] = label
                    day += timedelta(days=1)

            snapshot_frame = self._snapshot_frame(snapshots, labels_by_day)
            share_frame = self._share_frame(allocations, periods, granularity, start, end)
            entity_ids = set(int(value) for value in snapshot_frame["employee_id"]) | set(
                int(value) for value in share_frame["employee_id"]
            )

            overall = self._build_profile(
                scope_id, granularity, labels, snapshot_frame, share_frame, entity_ids
            )
            token.raise_if_cancelled("aggregation")

            departments: dict[str, UtilizationProfile] = {}
            for department in sorted(set(employee_departments.values())):
                members = {
                    employee_id
                    for employee_id, name in employee_departments.items()
                    if name == department and employee_id in entity_ids
                }
                departments[department] = self._build_profile(
                    f"department:{department}",
                    granularity,
                    labels,
                    snapshot_frame,
                    share_frame,
                    members,
                )
            token.raise_if_cancelled("aggregation")

            resources: dict[str, UtilizationProfile] = {}
            for employee_id in sorted(entity_ids):
                resources[str(employee_id)] = self._build_profile(
                    f"employee:{employee_id}",
                    granularity,
                    labels,
                    snapshot_frame,
                    share_frame,
                    {employee_id},
                )
            token.raise_if_cancelled("aggregation")

            skill_profiles: dict[str, UtilizationProfile] = {}
            skill_names = set(holders) | {
                str(value) for value in share_frame["required_skill"].dropna()
            }
            for skill_name in sorted(skill_names):
                skill_shares = share_frame[share_frame["required_skill"] == skill_name]
                skill_profiles[skill_name] = self._build_profile(
                    f"skill:{skill_name}",
                    granularity,
                    labels,
                    snapshot_frame,
                    skill_shares,
                    set(holders.get(skill_name, frozenset())),
                    demand_from_snapshots=False,
                )

        logger.info(
            "Aggregation completed | scope=%s | periods=%s | entities=%s | departments=%s | skills=%s",
            scope_id,
            len(labels),
            len(entity_ids),
            len(departments),
            len(skill_profiles),
        )
        return CapacityDataset(
            scope=scope,
            overall=overall,
            departments=departments,
            resources=resources,
            skills=skill_profiles,
            employee_departments=employee_departments,
            skill_holders=holders,
            skill_categories=skill_categories,
        )
