"""Domain models for capacity aggregation, analytics and recommendations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Literal, Mapping, Optional


Granularity = Literal["daily", "weekly", "monthly"]
Severity = Literal["low", "medium", "high", "critical"]
BottleneckType = Literal["skill", "department", "resource", "time"]
BottleneckStatus = Literal["active", "mitigated", "resolved"]
TrendDirection = Literal["increasing", "decreasing", "stable"]
ScenarioTag = Literal["optimistic", "realistic", "pessimistic"]
AllocationStatus = Literal["planned", "active", "completed", "cancelled"]

GRANULARITIES: tuple[str, ...] = ("daily", "weekly", "monthly")
SEVERITY_ORDER: tuple[str, ...] = ("low", "medium", "high", "critical")
BOTTLENECK_TYPES: tuple[str, ...] = ("skill", "department", "resource", "time")
SCENARIO_TAGS: tuple[str, ...] = ("optimistic", "realistic", "pessimistic")
ALLOCATION_STATUSES: tuple[str, ...] = ("planned", "active", "completed", "cancelled")


def severity_rank(severity: str) -> int:
    return SEVERITY_ORDER.index(severity)


# --- Inputs owned by the data layer -----------------------------------------


@dataclass(frozen=True)
class AllocationRecord:
    allocation_id: int
    employee_id: int
    project_id: int
    allocated_hours: Optional[float]
    start_date: date
    end_date: date
    status: str = "active"
    required_skill: Optional[str] = None
    department: Optional[str] = None


@dataclass(frozen=True)
class CapacitySnapshot:
    snapshot_id: int
    employee_id: int
    department: Optional[str]
    snapshot_date: date
    available_hours: Optional[float]
    allocated_hours: Optional[float]

    @property
    def utilization_rate(self) -> float:
        available = self.available_hours or 0.0
        if available <= 0.0:
            return 0.0
        return float((self.allocated_hours or 0.0) / available)


@dataclass(frozen=True)
class SkillRecord:
    name: str
    category: str
    proficiencies: Mapping[int, int] = field(default_factory=dict)


@dataclass(frozen=True)
class ScopeFilter:
    """Request scope handed to the data collaborator and the aggregator."""

    department: Optional[str] = None
    skill: Optional[str] = None
    employee_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    granularity: str = "monthly"


# --- Aggregated views ---------------------------------------------------------


@dataclass(frozen=True)
class PeriodUtilization:
    period: str
    average_utilization: float
    total_available: float
    total_allocated: float
    entity_count: int
    reporting_entities: int = 0
    entries_count: int = 0
    defaulted_fields: int = 0
    project_ids: tuple[int, ...] = ()

    @property
    def shortfall(self) -> float:
        return self.total_allocated - self.total_available

    @property
    def observed(self) -> bool:
        return self.reporting_entities > 0 or self.total_allocated > 0.0


@dataclass(frozen=True)
class UtilizationProfile:
    scope_id: str
    granularity: str
    periods: tuple[PeriodUtilization, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.periods

    @property
    def latest(self) -> Optional[PeriodUtilization]:
        observed = self.observed_periods
        return observed[-1] if observed else None

    @property
    def observed_periods(self) -> tuple[PeriodUtilization, ...]:
        return tuple(item for item in self.periods if item.observed)

    def utilization_series(self) -> list[float]:
        return [item.average_utilization for item in self.observed_periods]


@dataclass(frozen=True)
class CapacityDataset:
    """Immutable aggregator output consumed by every downstream stage."""

    scope: ScopeFilter
    overall: UtilizationProfile
    departments: Mapping[str, UtilizationProfile] = field(default_factory=dict)
    resources: Mapping[str, UtilizationProfile] = field(default_factory=dict)
    skills: Mapping[str, UtilizationProfile] = field(default_factory=dict)
    employee_departments: Mapping[int, str] = field(default_factory=dict)
    skill_holders: Mapping[str, frozenset[int]] = field(default_factory=dict)
    skill_categories: Mapping[str, str] = field(default_factory=dict)

    @property
    def granularity(self) -> str:
        return self.overall.granularity


# --- Trend analysis -----------------------------------------------------------


@dataclass(frozen=True)
class Seasonality:
    has_seasonality: bool
    peak_periods: tuple[str, ...] = ()
    low_periods: tuple[str, ...] = ()
    strength: float = 0.0


@dataclass(frozen=True)
class Anomaly:
    period: str
    actual_utilization: float
    expected_utilization: float
    deviation: float
    possible_causes: tuple[str, ...] = ()


@dataclass(frozen=True)
class TrendResult:
    direction: str
    rate: float
    confidence: float
    intercept: float
    observations: int
    seasonality: Seasonality
    anomalies: tuple[Anomaly, ...] = ()

    def expected_at(self, index: float) -> float:
        return self.intercept + self.rate * index


@dataclass(frozen=True)
class PeriodStat:
    period: str
    utilization_rate: float


@dataclass(frozen=True)
class UtilizationPatterns:
    peak_periods: tuple[PeriodStat, ...]
    low_utilization_periods: tuple[PeriodStat, ...]
    average_utilization: float
    seasonality: Seasonality
    trend: TrendResult
    anomalies: tuple[Anomaly, ...]


# --- Bottlenecks --------------------------------------------------------------


@dataclass(frozen=True)
class Bottleneck:
    type: str
    affected_resource: str
    severity: str
    impact_score: float
    shortfall_hours: float
    shortfall_per_resource: float
    affected_projects: tuple[int, ...]
    estimated_duration_days: int
    root_causes: tuple[str, ...]
    recommended_actions: tuple[str, ...]
    status: str
    period: str

    @property
    def key(self) -> tuple[str, str]:
        return (self.type, self.affected_resource)

    def describe(self) -> str:
        return (
            f"{self.severity} {self.type} bottleneck on {self.affected_resource} "
            f"({self.shortfall_hours:.1f}h short)"
        )


@dataclass(frozen=True)
class BottleneckReport:
    current: tuple[Bottleneck, ...] = ()
    predicted: tuple[Bottleneck, ...] = ()
    historical: tuple[Bottleneck, ...] = ()

    def filter_severity(self, severity: Optional[str]) -> "BottleneckReport":
        if severity is None:
            return self
        return BottleneckReport(
            current=tuple(item for item in self.current if item.severity == severity),
            predicted=tuple(item for item in self.predicted if item.severity == severity),
            historical=tuple(item for item in self.historical if item.severity == severity),
        )


# --- Forecasting --------------------------------------------------------------


@dataclass(frozen=True)
class Prediction:
    period: str
    periods_ahead: int
    predicted_capacity: float
    demand_forecast: float
    utilization_rate: float
    confidence: float
    scenario: str
    key_factors: tuple[str, ...] = ()
    insufficient_history: bool = False

    @property
    def shortfall(self) -> float:
        return self.demand_forecast - self.predicted_capacity


# --- Recommendations ----------------------------------------------------------


@dataclass(frozen=True)
class Recommendation:
    type: str
    priority: str
    description: str
    expected_impact: float
    impact_score_resolved: float
    implementation_cost: float
    implementation_time_weeks: int
    affected_departments: tuple[str, ...]
    affected_skills: tuple[str, ...]
    success_metrics: tuple[str, ...]
    roi: float


@dataclass(frozen=True)
class SkillGap:
    skill: str
    severity: str
    gap: float
    time_to_fill_weeks: int
    business_impact: str


@dataclass(frozen=True)
class SkillDemand:
    skill: str
    current_supply: int
    forecasted_demand: float
    gap: float
    confidence: float
    trend_direction: str


@dataclass(frozen=True)
class HiringRecommendation:
    skill: str
    recommended_hires: int
    urgency: str
    justification: str


@dataclass(frozen=True)
class TrainingRecommendation:
    skill: str
    candidate_employees: int
    estimated_time_weeks: int
    priority: str


@dataclass(frozen=True)
class SkillDemandForecast:
    skill_demand: tuple[SkillDemand, ...]
    skill_gaps: tuple[SkillGap, ...]
    hiring_recommendations: tuple[HiringRecommendation, ...]
    training_recommendations: tuple[TrainingRecommendation, ...]
    recommendations: tuple[Recommendation, ...] = ()


# --- Scenario analysis --------------------------------------------------------


@dataclass(frozen=True)
class DepartmentImpact:
    department: str
    capacity_change: float
    demand_change: float
    utilization_change: float


@dataclass(frozen=True)
class CapacityImpact:
    total_capacity_change: float
    total_demand_change: float
    department_impacts: tuple[DepartmentImpact, ...] = ()


@dataclass(frozen=True)
class Risk:
    risk: str
    probability: float
    impact: str
    mitigation: str


@dataclass(frozen=True)
class RiskAssessment:
    risk_level: str
    risks: tuple[Risk, ...] = ()


@dataclass(frozen=True)
class CostImpact:
    resource_cost_delta: float
    recommended_actions_cost: float

    @property
    def total(self) -> float:
        return self.resource_cost_delta + self.recommended_actions_cost


@dataclass(frozen=True)
class ScenarioResult:
    scenario_id: str
    scenario_name: str
    capacity_impact: CapacityImpact
    new_bottlenecks: tuple[Bottleneck, ...]
    resolved_bottlenecks: tuple[Bottleneck, ...]
    impact_summary: str
    recommendations: tuple[Recommendation, ...] = ()
    risk_assessment: Optional[RiskAssessment] = None
    cost_impact: Optional[CostImpact] = None
    notes: tuple[str, ...] = ()


# --- Composite view -----------------------------------------------------------


@dataclass(frozen=True)
class DepartmentUtilization:
    department: str
    utilization: float
    available: float
    committed: float


@dataclass(frozen=True)
class SkillUtilization:
    skill: str
    utilization: float
    available_resources: int


@dataclass(frozen=True)
class CurrentUtilization:
    overall: float
    by_department: tuple[DepartmentUtilization, ...]
    by_skill: tuple[SkillUtilization, ...]


@dataclass(frozen=True)
class CapacityTrendPoint:
    period: str
    utilization: float
    capacity: float
    demand: float


@dataclass(frozen=True)
class RiskFactor:
    factor: str
    severity: str
    impact: str
    mitigation: str


@dataclass(frozen=True)
class CapacityIntelligence:
    current_utilization: CurrentUtilization
    capacity_trends: tuple[CapacityTrendPoint, ...]
    trend: TrendResult
    bottleneck_analysis: BottleneckReport
    predictions: tuple[Prediction, ...]
    recommendations: tuple[Recommendation, ...]
    risk_factors: tuple[RiskFactor, ...]
