"""Typed what-if change set applied by the scenario simulator."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional, Union


@dataclass(frozen=True)
class AddProject:
    name: str
    demand_hours_per_period: float
    department: Optional[str] = None
    required_skill: Optional[str] = None
    project_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    kind = "add_project"


@dataclass(frozen=True)
class AddResources:
    count: int
    department: Optional[str] = None
    skill: Optional[str] = None
    hours_per_resource: Optional[float] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    kind = "add_resources"


@dataclass(frozen=True)
class RemoveResources:
    count: int
    department: Optional[str] = None
    skill: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    kind = "remove_resources"


@dataclass(frozen=True)
class ChangeDemand:
    hours_delta: float = 0.0
    percent_change: Optional[float] = None
    department: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    kind = "change_demand"


ScenarioChange = Union[AddProject, AddResources, RemoveResources, ChangeDemand]


@dataclass(frozen=True)
class Scenario:
    name: str
    changes: tuple[ScenarioChange, ...]
    description: str = ""


@dataclass(frozen=True)
class AnalysisOptions:
    include_risk_analysis: bool = True
    optimization_suggestions: bool = True
    cost_impact: bool = False
