"""HTTP controller layer for capacity intelligence."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date
from typing import Annotated, Iterator, Literal, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, model_validator

from capacity_engine.domain.models import (
    BottleneckReport,
    CapacityIntelligence,
    Prediction,
    ScenarioResult,
    SkillDemandForecast,
    UtilizationPatterns,
)
from capacity_engine.domain.scenario import (
    AddProject,
    AddResources,
    AnalysisOptions,
    ChangeDemand,
    RemoveResources,
    Scenario,
    ScenarioChange,
)
from capacity_engine.controllers.dependencies import get_intelligence_service
from capacity_engine.repository.data_repository import DataUnavailableError
from capacity_engine.services.aggregation_service import RecordValidationError, ScopeValidationError
from capacity_engine.services.forecast_service import ForecastValidationError
from capacity_engine.services.intelligence_service import CapacityIntelligenceService
from capacity_engine.utils.cancellation import AnalysisCancelledError
from capacity_engine.utils.logger import get_logger
from capacity_engine.utils.periods import HORIZON_REGEX, TIMEFRAME_REGEX


logger = get_logger(__name__)

router = APIRouter(prefix="/capacity", tags=["capacity"])

GranularityParam = Literal["daily", "weekly", "monthly"]
SeverityParam = Literal["low", "medium", "high", "critical"]
ScenarioTagParam = Literal["optimistic", "realistic", "pessimistic"]


class _DatedChange(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @model_validator(mode="after")
    def validate_date_order(self) -> "_DatedChange":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not precede start_date")
        return self


class AddProjectChange(_DatedChange):
    type: Literal["add_project"]
    name: str = Field(min_length=1)
    demand_hours_per_period: float
    department: Optional[str] = None
    required_skill: Optional[str] = None
    project_id: Optional[int] = Field(default=None, gt=0)

    def to_domain(self) -> AddProject:
        return AddProject(
            name=self.name,
            demand_hours_per_period=self.demand_hours_per_period,
            department=self.department,
            required_skill=self.required_skill,
            project_id=self.project_id,
            start_date=self.start_date,
            end_date=self.end_date,
        )


class AddResourcesChange(_DatedChange):
    type: Literal["add_resources"]
    count: int
    department: Optional[str] = None
    skill: Optional[str] = None
    hours_per_resource: Optional[float] = None

    def to_domain(self) -> AddResources:
        return AddResources(
            count=self.count,
            department=self.department,
            skill=self.skill,
            hours_per_resource=self.hours_per_resource,
            start_date=self.start_date,
            end_date=self.end_date,
        )


class RemoveResourcesChange(_DatedChange):
    type: Literal["remove_resources"]
    count: int
    department: Optional[str] = None
    skill: Optional[str] = None

    def to_domain(self) -> RemoveResources:
        return RemoveResources(
            count=self.count,
            department=self.department,
            skill=self.skill,
            start_date=self.start_date,
            end_date=self.end_date,
        )


class ChangeDemandChange(_DatedChange):
    type: Literal["change_demand"]
    hours_delta: float = 0.0
    percent_change: Optional[float] = None
    department: Optional[str] = None

    def to_domain(self) -> ChangeDemand:
        return ChangeDemand(
            hours_delta=self.hours_delta,
            percent_change=self.percent_change,
            department=self.department,
            start_date=self.start_date,
            end_date=self.end_date,
        )


ChangeRequest = Annotated[
    Union[AddProjectChange, AddResourcesChange, RemoveResourcesChange, ChangeDemandChange],
    Field(discriminator="type"),
]


class AnalysisOptionsRequest(BaseModel):
    include_risk_analysis: bool = True
    optimization_suggestions: bool = True
    cost_impact: bool = False

    def to_domain(self) -> AnalysisOptions:
        return AnalysisOptions(
            include_risk_analysis=self.include_risk_analysis,
            optimization_suggestions=self.optimization_suggestions,
            cost_impact=self.cost_impact,
        )


class ScenarioRequest(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    changes: list[ChangeRequest] = Field(default_factory=list)

    def to_domain(self) -> Scenario:
        changes: tuple[ScenarioChange, ...] = tuple(item.to_domain() for item in self.changes)
        return Scenario(name=self.name, changes=changes, description=self.description)


class ScenarioAnalysisRequest(BaseModel):
    scenario: ScenarioRequest
    analysis_options: AnalysisOptionsRequest = Field(default_factory=AnalysisOptionsRequest)
    department: Optional[str] = None
    timeframe: Optional[str] = Field(default=None, pattern=TIMEFRAME_REGEX)
    as_of: Optional[date] = None


class ScenarioComparisonRequest(BaseModel):
    scenarios: list[ScenarioRequest] = Field(min_length=1)
    analysis_options: AnalysisOptionsRequest = Field(default_factory=AnalysisOptionsRequest)
    department: Optional[str] = None
    timeframe: Optional[str] = Field(default=None, pattern=TIMEFRAME_REGEX)
    as_of: Optional[date] = None


class PredictionsRequest(BaseModel):
    horizon: Optional[str] = Field(default=None, pattern=HORIZON_REGEX)
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    scenarios: Optional[list[ScenarioTagParam]] = Field(default=None, min_length=1)
    department: Optional[str] = None
    granularity: Optional[GranularityParam] = None
    as_of: Optional[date] = None


@contextmanager
def _engine_errors(action: str) -> Iterator[None]:
    """Map engine exceptions onto HTTP status codes."""
    try:
        yield
    except (ForecastValidationError, ScopeValidationError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except RecordValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc
    except DataUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    except AnalysisCancelledError as exc:
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=str(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:  # pragma: no cover - unexpected failure
        logger.exception("Unexpected failure | action=%s", action)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to {action}",
        ) from exc


@router.get("/intelligence", response_model=CapacityIntelligence)
def get_capacity_intelligence(
    department: Optional[str] = None,
    timeframe: Optional[str] = Query(default=None, pattern=TIMEFRAME_REGEX),
    as_of: Optional[date] = None,
    service: CapacityIntelligenceService = Depends(get_intelligence_service),
) -> CapacityIntelligence:
    with _engine_errors("build capacity intelligence"):
        return service.get_capacity_intelligence(department, timeframe, as_of=as_of)


@router.post("/predictions", response_model=list[Prediction])
def get_capacity_predictions(
    payload: PredictionsRequest,
    service: CapacityIntelligenceService = Depends(get_intelligence_service),
) -> list[Prediction]:
    with _engine_errors("forecast capacity"):
        return service.get_capacity_predictions(
            payload.horizon,
            payload.confidence,
            payload.scenarios,
            department=payload.department,
            granularity=payload.granularity,
            as_of=payload.as_of,
        )


@router.get("/bottlenecks", response_model=BottleneckReport)
def identify_bottlenecks(
    severity: Optional[SeverityParam] = None,
    department: Optional[str] = None,
    timeframe: Optional[str] = Query(default=None, pattern=TIMEFRAME_REGEX),
    as_of: Optional[date] = None,
    service: CapacityIntelligenceService = Depends(get_intelligence_service),
) -> BottleneckReport:
    with _engine_errors("identify bottlenecks"):
        return service.identify_bottlenecks(
            severity,
            department=department,
            timeframe=timeframe,
            as_of=as_of,
        )


@router.post("/scenarios", response_model=ScenarioResult)
def run_scenario_analysis(
    payload: ScenarioAnalysisRequest,
    service: CapacityIntelligenceService = Depends(get_intelligence_service),
) -> ScenarioResult:
    """Run a what-if scenario in memory; nothing is persisted."""
    with _engine_errors("run scenario analysis"):
        return service.run_scenario_analysis(
            payload.scenario.to_domain(),
            payload.analysis_options.to_domain(),
            department=payload.department,
            timeframe=payload.timeframe,
            as_of=payload.as_of,
        )


@router.post("/scenarios/compare", response_model=list[ScenarioResult])
def compare_scenarios(
    payload: ScenarioComparisonRequest,
    service: CapacityIntelligenceService = Depends(get_intelligence_service),
) -> list[ScenarioResult]:
    with _engine_errors("compare scenarios"):
        return service.compare_scenarios(
            [item.to_domain() for item in payload.scenarios],
            payload.analysis_options.to_domain(),
            department=payload.department,
            timeframe=payload.timeframe,
            as_of=payload.as_of,
        )


@router.get("/utilization-patterns", response_model=UtilizationPatterns)
def analyze_utilization_patterns(
    period: Optional[str] = Query(default=None, pattern=TIMEFRAME_REGEX),
    granularity: Optional[GranularityParam] = None,
    department: Optional[str] = None,
    as_of: Optional[date] = None,
    service: CapacityIntelligenceService = Depends(get_intelligence_service),
) -> UtilizationPatterns:
    with _engine_errors("analyze utilization patterns"):
        return service.analyze_utilization_patterns(
            period,
            granularity,
            department=department,
            as_of=as_of,
        )


@router.get("/skill-demand", response_model=SkillDemandForecast)
def forecast_skill_demand(
    horizon: Optional[str] = Query(default=None, pattern=HORIZON_REGEX),
    department: Optional[str] = None,
    as_of: Optional[date] = None,
    service: CapacityIntelligenceService = Depends(get_intelligence_service),
) -> SkillDemandForecast:
    with _engine_errors("forecast skill demand"):
        return service.forecast_skill_demand(horizon, department=department, as_of=as_of)
