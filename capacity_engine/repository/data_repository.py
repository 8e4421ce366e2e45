"""Read-side data access for the capacity engine."""

from __future__ import annotations

import random
import sqlite3
from collections import defaultdict
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from capacity_engine.domain.models import (
    AllocationRecord,
    CapacitySnapshot,
    ScopeFilter,
    SkillRecord,
)
from capacity_engine.utils.config import Settings, get_settings
from capacity_engine.utils.logger import get_logger
from capacity_engine.utils.periods import to_period


logger = get_logger(__name__)


class DataUnavailableError(Exception):
    """Raised when the backing store cannot serve a read."""


class CapacityDataSource(Protocol):
    """Read-only contract the engine expects from its data collaborator."""

    def fetch_allocations(self, scope: ScopeFilter) -> list[AllocationRecord]:
        ...

    def fetch_capacity_snapshots(self, scope: ScopeFilter) -> list[CapacitySnapshot]:
        ...

    def fetch_skills(self, scope: ScopeFilter) -> list[SkillRecord]:
        ...


_SYNTHETIC_SKILLS = [
    ("Python", "Backend"),
    ("React", "Frontend"),
    ("Figma", "Design"),
    ("SQL", "Data"),
    ("Machine Learning", "Machine Learning"),
    ("Kubernetes", "DevOps"),
]

_DEPARTMENT_PROFILES = {
    "Engineering": (0.92, 0.012),
    "Design": (0.78, -0.004),
    "Data": (0.85, 0.006),
}


def _parse_date(value: str) -> date:
    return datetime.strptime(value, "%Y-%m-%d").date()


def _optional_float(value: object) -> Optional[float]:
    return None if value is None else float(value)


class DataRepository:
    """SQLite-backed implementation of `CapacityDataSource`."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._db_path)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    def initialize_database(self) -> None:
        """Create tables used by the read queries."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Employees (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL,
                        department TEXT NOT NULL,
                        is_active INTEGER NOT NULL DEFAULT 1
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Projects (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'active'
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Skills (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL UNIQUE,
                        category TEXT NOT NULL
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS EmployeeSkills (
                        employee_id INTEGER NOT NULL,
                        skill_id INTEGER NOT NULL,
                        proficiency INTEGER NOT NULL CHECK (proficiency BETWEEN 1 AND 5),
                        PRIMARY KEY (employee_id, skill_id),
                        FOREIGN KEY (employee_id) REFERENCES Employees(id),
                        FOREIGN KEY (skill_id) REFERENCES Skills(id)
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Allocations (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        employee_id INTEGER NOT NULL,
                        project_id INTEGER NOT NULL,
                        allocated_hours REAL,
                        start_date TEXT NOT NULL,
                        end_date TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'active',
                        required_skill TEXT,
                        FOREIGN KEY (employee_id) REFERENCES Employees(id),
                        FOREIGN KEY (project_id) REFERENCES Projects(id)
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS CapacitySnapshots (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        employee_id INTEGER NOT NULL,
                        snapshot_date TEXT NOT NULL,
                        available_hours REAL,
                        allocated_hours REAL,
                        FOREIGN KEY (employee_id) REFERENCES Employees(id)
                    );
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_snapshots_employee_date
                    ON CapacitySnapshots(employee_id, snapshot_date);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_allocations_dates
                    ON Allocations(start_date, end_date);
                    """
                )
                conn.commit()
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_synthetic_data(self) -> None:
        """Seed deterministic monthly history only when the store is empty."""
        rng = random.Random(self._settings.synthetic_random_seed)
        months = self._settings.synthetic_seed_months
        current_month = to_period(datetime.now(timezone.utc).date(), "monthly")
        first_month = current_month - (months - 1)
        month_starts = [(first_month + offset).start_time.date() for offset in range(months)]
        range_end = current_month.end_time.date()

        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT COUNT(*) AS count FROM Employees;")
                if int(cursor.fetchone()["count"]) > 0:
                    logger.info("Synthetic data already present; skipping seed")
                    return

                skill_ids: dict[str, int] = {}
                for name, category in _SYNTHETIC_SKILLS:
                    cursor.execute(
                        "INSERT INTO Skills (name, category) VALUES (?, ?);",
                        (name, category),
                    )
                    skill_ids[name] = int(cursor.lastrowid)

                project_ids: list[tuple[int, str]] = []
                for index, (skill_name, _) in enumerate(_SYNTHETIC_SKILLS, start=1):
                    cursor.execute(
                        "INSERT INTO Projects (name, status) VALUES (?, 'active');",
                        (f"Project {index:02d}",),
                    )
                    project_ids.append((int(cursor.lastrowid), skill_name))

                snapshot_rows = []
                allocation_rows = []
                skill_rows = []
                for department in self._settings.synthetic_departments:
                    base_utilization, monthly_drift = _DEPARTMENT_PROFILES.get(
                        department, (0.85, 0.0)
                    )
                    for position in range(self._settings.synthetic_employees_per_department):
                        cursor.execute(
                            "INSERT INTO Employees (name, department) VALUES (?, ?);",
                            (f"{department} Employee {position + 1}", department),
                        )
                        employee_id = int(cursor.lastrowid)

                        for skill_name, _ in rng.sample(_SYNTHETIC_SKILLS, k=2):
                            skill_rows.append(
                                (employee_id, skill_ids[skill_name], rng.randint(2, 5))
                            )

                        total_allocated = 0.0
                        for month_index, month_start in enumerate(month_starts):
                            available = self._settings.standard_hours_per_period
                            if rng.random() < 0.15:
                                available -= 8.0 * rng.randint(1, 5)
                            seasonal = 0.05 if month_start.month in (3, 9) else 0.0
                            utilization = (
                                base_utilization
                                + monthly_drift * month_index
                                + seasonal
                                + rng.uniform(-0.04, 0.04)
                            )
                            allocated = round(max(0.0, available * utilization), 1)
                            total_allocated += allocated
                            snapshot_rows.append(
                                (employee_id, month_start.isoformat(), available, allocated)
                            )

                        for project_id, skill_name in rng.sample(project_ids, k=2):
                            allocation_rows.append(
                                (
                                    employee_id,
                                    project_id,
                                    round(total_allocated / 2.0, 1),
                                    month_starts[0].isoformat(),
                                    range_end.isoformat(),
                                    "active",
                                    skill_name,
                                )
                            )

                cursor.executemany(
                    """
                    INSERT INTO EmployeeSkills (employee_id, skill_id, proficiency)
                    VALUES (?, ?, ?);
                    """,
                    skill_rows,
                )
                cursor.executemany(
                    """
                    INSERT INTO CapacitySnapshots (
                        employee_id, snapshot_date, available_hours, allocated_hours
                    )
                    VALUES (?, ?, ?, ?);
                    """,
                    snapshot_rows,
                )
                cursor.executemany(
                    """
                    INSERT INTO Allocations (
                        employee_id, project_id, allocated_hours, start_date,
                        end_date, status, required_skill
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?);
                    """,
                    allocation_rows,
                )
                conn.commit()
            logger.info(
                "Synthetic seed completed | snapshots=%s | allocations=%s",
                len(snapshot_rows),
                len(allocation_rows),
            )
        except sqlite3.Error as exc:
            raise RuntimeError(f"Synthetic data seeding failed: {exc}") from exc

    def _scope_clauses(
        self,
        scope: ScopeFilter,
        *,
        date_column: str | None = None,
        start_column: str | None = None,
        end_column: str | None = None,
    ) -> tuple[str, list[object]]:
        clauses = ["e.is_active = 1"]
        params: list[object] = []
        if scope.department is not None:
            clauses.append("e.department = ?")
            params.append(scope.department)
        if scope.employee_id is not None:
            clauses.append("e.id = ?")
            params.append(scope.employee_id)
        if date_column is not None:
            if scope.start_date is not None:
                clauses.append(f"{date_column} >= ?")
                params.append(scope.start_date.isoformat())
            if scope.end_date is not None:
                clauses.append(f"{date_column} <= ?")
                params.append(scope.end_date.isoformat())
        if start_column is not None and end_column is not None:
            if scope.start_date is not None:
                clauses.append(f"{end_column} >= ?")
                params.append(scope.start_date.isoformat())
            if scope.end_date is not None:
                clauses.append(f"{start_column} <= ?")
                params.append(scope.end_date.isoformat())
        return " AND ".join(clauses), params

    def fetch_allocations(self, scope: ScopeFilter) -> list[AllocationRecord]:
        """Allocations of in-scope employees overlapping the scope range."""
        where, params = self._scope_clauses(
            scope,
            start_column="a.start_date",
            end_column="a.end_date",
        )
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    f"""
                    SELECT
                        a.id,
                        a.employee_id,
                        a.project_id,
                        a.allocated_hours,
                        a.start_date,
                        a.end_date,
                        a.status,
                        a.required_skill,
                        e.department
                    FROM Allocations AS a
                    INNER JOIN Employees AS e ON e.id = a.employee_id
                    WHERE {where}
                    ORDER BY a.start_date ASC, a.id ASC;
                    """,
                    params,
                )
                rows = cursor.fetchall()
        except sqlite3.Error as exc:
            raise DataUnavailableError(f"Allocation fetch failed: {exc}") from exc

        return [
            AllocationRecord(
                allocation_id=int(row["id"]),
                employee_id=int(row["employee_id"]),
                project_id=int(row["project_id"]),
                allocated_hours=_optional_float(row["allocated_hours"]),
                start_date=_parse_date(row["start_date"]),
                end_date=_parse_date(row["end_date"]),
                status=str(row["status"]),
                required_skill=row["required_skill"],
                department=row["department"],
            )
            for row in rows
        ]

    def fetch_capacity_snapshots(self, scope: ScopeFilter) -> list[CapacitySnapshot]:
        """Snapshots of in-scope employees dated inside the scope range."""
        where, params = self._scope_clauses(scope, date_column="s.snapshot_date")
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    f"""
                    SELECT
                        s.id,
                        s.employee_id,
                        e.department,
                        s.snapshot_date,
                        s.available_hours,
                        s.allocated_hours
                    FROM CapacitySnapshots AS s
                    INNER JOIN Employees AS e ON e.id = s.employee_id
                    WHERE {where}
                    ORDER BY s.snapshot_date ASC, s.employee_id ASC;
                    """,
                    params,
                )
                rows = cursor.fetchall()
        except sqlite3.Error as exc:
            raise DataUnavailableError(f"Capacity snapshot fetch failed: {exc}") from exc

        return [
            CapacitySnapshot(
                snapshot_id=int(row["id"]),
                employee_id=int(row["employee_id"]),
                department=row["department"],
                snapshot_date=_parse_date(row["snapshot_date"]),
                available_hours=_optional_float(row["available_hours"]),
                allocated_hours=_optional_float(row["allocated_hours"]),
            )
            for row in rows
        ]

    def fetch_skills(self, scope: ScopeFilter) -> list[SkillRecord]:
        """Skills with proficiencies restricted to in-scope employees."""
        where, params = self._scope_clauses(scope)
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT name, category FROM Skills ORDER BY name ASC;")
                skills = [(str(row["name"]), str(row["category"])) for row in cursor.fetchall()]
                cursor.execute(
                    f"""
                    SELECT sk.name AS skill, es.employee_id, es.proficiency
                    FROM EmployeeSkills AS es
                    INNER JOIN Skills AS sk ON sk.id = es.skill_id
                    INNER JOIN Employees AS e ON e.id = es.employee_id
                    WHERE {where}
                    ORDER BY sk.name ASC, es.employee_id ASC;
                    """,
                    params,
                )
                rows = cursor.fetchall()
        except sqlite3.Error as exc:
            raise DataUnavailableError(f"Skill fetch failed: {exc}") from exc

        proficiencies: dict[str, dict[int, int]] = defaultdict(dict)
        for row in rows:
            proficiencies[str(row["skill"])][int(row["employee_id"])] = int(row["proficiency"])

        return [
            SkillRecord(name=name, category=category, proficiencies=dict(proficiencies[name]))
            for name, category in skills
        ]

    # Write helpers used by seeding scripts and tests.

    def create_employee(self, name: str, department: str) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "INSERT INTO Employees (name, department) VALUES (?, ?);",
                (name, department),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def create_project(self, name: str, status: str = "active") -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "INSERT INTO Projects (name, status) VALUES (?, ?);",
                (name, status),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def create_skill(self, name: str, category: str) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "INSERT INTO Skills (name, category) VALUES (?, ?);",
                (name, category),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def assign_skill(self, employee_id: int, skill_id: int, proficiency: int) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO EmployeeSkills (employee_id, skill_id, proficiency)
                VALUES (?, ?, ?);
                """,
                (employee_id, skill_id, proficiency),
            )
            conn.commit()

    def create_allocation(
        self,
        employee_id: int,
        project_id: int,
        allocated_hours: Optional[float],
        start_date: str,
        end_date: str,
        status: str = "active",
        required_skill: Optional[str] = None,
    ) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO Allocations (
                    employee_id, project_id, allocated_hours, start_date,
                    end_date, status, required_skill
                )
                VALUES (?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    employee_id,
                    project_id,
                    allocated_hours,
                    start_date,
                    end_date,
                    status,
                    required_skill,
                ),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def record_capacity_snapshot(
        self,
        employee_id: int,
        snapshot_date: str,
        available_hours: Optional[float],
        allocated_hours: Optional[float],
    ) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO CapacitySnapshots (
                    employee_id, snapshot_date, available_hours, allocated_hours
                )
                VALUES (?, ?, ?, ?);
                """,
                (employee_id, snapshot_date, available_hours, allocated_hours),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def count_snapshots(self) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) AS count FROM CapacitySnapshots;")
            return int(cursor.fetchone()["count"])

    def count_allocations(self) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) AS count FROM Allocations;")
            return int(cursor.fetchone()["count"])
