"""Turn bottlenecks, forecasts and skill gaps into ranked, costed actions."""

from __future__ import annotations

import math
from typing import Iterable, Mapping, Optional, Sequence

from capacity_engine.domain.models import (
    SEVERITY_ORDER,
    Bottleneck,
    CapacityDataset,
    HiringRecommendation,
    Prediction,
    Recommendation,
    SkillGap,
    TrainingRecommendation,
    severity_rank,
)
from capacity_engine.domain.playbook import ACTION_MITIGATIONS, ACTION_SUCCESS_METRICS
from capacity_engine.utils.config import ActionRate, Settings, get_settings
from capacity_engine.utils.logger import get_logger


logger = get_logger(__name__)


def rank_recommendations(recommendations: Iterable[Recommendation]) -> tuple[Recommendation, ...]:
    """Descending ROI, then priority, then ascending implementation time.

    `sorted` is stable, so full ties keep their generation order.
    """
    return tuple(
        sorted(
            recommendations,
            key=lambda item: (
                -item.roi,
                -severity_rank(item.priority),
                item.implementation_time_weeks,
            ),
        )
    )


class RecommendationGenerator:
    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    def _rate(self, action: str) -> ActionRate:
        try:
            return self._settings.action_rates[action]
        except KeyError as exc:
            raise ValueError(f"no action rate configured for '{action}'") from exc

    def roi(self, expected_impact: float, implementation_cost: float) -> float:
        return (expected_impact - implementation_cost) / max(
            implementation_cost, self._settings.roi_epsilon
        )

    def build(
        self,
        action: str,
        *,
        priority: str,
        description: str,
        shortfall_hours: float,
        impact_score: float,
        departments: Sequence[str] = (),
        skills: Sequence[str] = (),
    ) -> Recommendation:
        """Cost and score one candidate action against the hours it should recover."""
        rate = self._rate(action)
        shortfall_hours = max(0.0, shortfall_hours)
        units = max(1, math.ceil(shortfall_hours / self._settings.standard_hours_per_period))
        cost = rate.base_cost + rate.unit_cost * units
        expected_impact = (
            rate.resolution_factor
            * shortfall_hours
            * self._settings.value_per_recovered_hour
            * self._settings.recommendation_payback_periods
        )
        return Recommendation(
            type=action,
            priority=priority,
            description=description,
            expected_impact=round(expected_impact, 2),
            impact_score_resolved=round(rate.resolution_factor * impact_score, 2),
            implementation_cost=round(cost, 2),
            implementation_time_weeks=rate.implementation_weeks,
            affected_departments=tuple(departments),
            affected_skills=tuple(skills),
            success_metrics=ACTION_SUCCESS_METRICS.get(action, ()),
            roi=round(self.roi(expected_impact, cost), 4),
        )

    @staticmethod
    def _scope_of(
        bottleneck: Bottleneck,
        employee_departments: Mapping[int, str],
    ) -> tuple[tuple[str, ...], tuple[str, ...]]:
        if bottleneck.type == "department":
            return (bottleneck.affected_resource,), ()
        if bottleneck.type == "skill":
            return (), (bottleneck.affected_resource,)
        if bottleneck.type == "resource" and bottleneck.affected_resource.isdigit():
            department = employee_departments.get(int(bottleneck.affected_resource))
            return ((department,) if department else ()), ()
        return (), ()

    def for_bottleneck(
        self,
        bottleneck: Bottleneck,
        employee_departments: Optional[Mapping[int, str]] = None,
    ) -> list[Recommendation]:
        departments, skills = self._scope_of(bottleneck, employee_departments or {})
        return [
            self.build(
                action,
                priority=bottleneck.severity,
                description=(
                    f"{ACTION_MITIGATIONS[action]} for {bottleneck.type} "
                    f"'{bottleneck.affected_resource}' ({bottleneck.shortfall_hours:.0f}h short)"
                ),
                shortfall_hours=bottleneck.shortfall_hours,
                impact_score=bottleneck.impact_score,
                departments=departments,
                skills=skills,
            )
            for action in bottleneck.recommended_actions
        ]

    def for_prediction(self, prediction: Prediction, departments: Sequence[str] = ()) -> Recommendation:
        shortfall = prediction.shortfall
        capacity = prediction.predicted_capacity
        impact_score = min(100.0, 100.0 * shortfall / capacity) if capacity > 0.0 else 100.0
        return self.build(
            "process_improvement",
            priority="high" if prediction.utilization_rate >= 1.2 else "medium",
            description=(
                f"{ACTION_MITIGATIONS['process_improvement']} before {prediction.period} "
                f"(forecast utilization {prediction.utilization_rate:.0%})"
            ),
            shortfall_hours=shortfall,
            impact_score=impact_score,
            departments=departments,
        )

    def for_skill_gap(
        self,
        gap: SkillGap,
        hiring: Optional[HiringRecommendation] = None,
        training: Optional[TrainingRecommendation] = None,
    ) -> list[Recommendation]:
        shortfall_hours = gap.gap * self._settings.standard_hours_per_period
        impact_score = min(100.0, 20.0 * gap.gap)
        candidates: list[Recommendation] = []
        if hiring is not None:
            candidates.append(
                self.build(
                    "hiring",
                    priority=gap.severity,
                    description=f"Hire {hiring.recommended_hires} {gap.skill} specialist(s)",
                    shortfall_hours=shortfall_hours,
                    impact_score=impact_score,
                    skills=(gap.skill,),
                )
            )
        if training is not None:
            candidates.append(
                self.build(
                    "training",
                    priority=gap.severity,
                    description=(
                        f"Train {training.candidate_employees} employee(s) with adjacent skills in {gap.skill}"
                    ),
                    shortfall_hours=shortfall_hours,
                    impact_score=impact_score,
                    skills=(gap.skill,),
                )
            )
        return candidates

    def generate(
        self,
        current: Sequence[Bottleneck],
        predicted: Sequence[Bottleneck] = (),
        predictions: Sequence[Prediction] = (),
        dataset: Optional[CapacityDataset] = None,
        extra: Iterable[Recommendation] = (),
    ) -> tuple[Recommendation, ...]:
        employee_departments = dataset.employee_departments if dataset is not None else {}
        candidates: list[Recommendation] = []
        seen: set[tuple[str, str, str]] = set()
        for bottleneck in (*current, *predicted):
            if bottleneck.status == "resolved":
                continue
            for recommendation in self.for_bottleneck(bottleneck, employee_departments):
                key = (recommendation.type, bottleneck.type, bottleneck.affected_resource)
                if key in seen:
                    continue
                seen.add(key)
                candidates.append(recommendation)

        if not current:
            overloaded = next(
                (
                    item
                    for item in predictions
                    if item.scenario == "realistic" and item.utilization_rate > 1.0
                ),
                None,
            )
            if overloaded is not None:
                candidates.append(self.for_prediction(overloaded))

        candidates.extend(extra)
        ranked = rank_recommendations(candidates)
        logger.info(
            "Recommendations generated | candidates=%s | top=%s",
            len(ranked),
            ranked[0].type if ranked else None,
        )
        return ranked


def classify_skill_gap(gap: float, settings: Settings) -> str:
    if gap > settings.skill_gap_critical:
        return "critical"
    if gap > settings.skill_gap_high:
        return "high"
    if gap > settings.skill_gap_medium:
        return "medium"
    return SEVERITY_ORDER[0]
