from __future__ import annotations

import pytest

from capacity_engine.domain.models import Bottleneck, Prediction, Recommendation
from capacity_engine.services.recommendation_service import (
    RecommendationGenerator,
    classify_skill_gap,
    rank_recommendations,
)


def _bottleneck(bottleneck_type="department", resource="Engineering", shortfall=80.0, status="active"):
    return Bottleneck(
        type=bottleneck_type,
        affected_resource=resource,
        severity="critical",
        impact_score=25.0,
        shortfall_hours=shortfall,
        shortfall_per_resource=shortfall / 2,
        affected_projects=(),
        estimated_duration_days=30,
        root_causes=(),
        recommended_actions=("reallocation", "hiring"),
        status=status,
        period="2026-06",
    )


def _recommendation(label: str, roi: float, priority: str = "high", weeks: int = 4) -> Recommendation:
    return Recommendation(
        type="reallocation",
        priority=priority,
        description=label,
        expected_impact=0.0,
        impact_score_resolved=0.0,
        implementation_cost=0.0,
        implementation_time_weeks=weeks,
        affected_departments=(),
        affected_skills=(),
        success_metrics=(),
        roi=roi,
    )


def test_roi_is_net_impact_over_cost(settings):
    recommendation = RecommendationGenerator(settings).build(
        "reallocation",
        priority="high",
        description="Move hours",
        shortfall_hours=80.0,
        impact_score=25.0,
    )

    assert recommendation.implementation_cost == pytest.approx(1500.0)
    assert recommendation.expected_impact == pytest.approx(0.5 * 80.0 * 85.0 * 12)
    assert recommendation.roi == pytest.approx((40800.0 - 1500.0) / 1500.0)
    assert recommendation.impact_score_resolved == pytest.approx(12.5)


def test_cost_grows_with_each_block_of_standard_hours(settings):
    generator = RecommendationGenerator(settings)

    small = generator.build("hiring", priority="high", description="", shortfall_hours=100.0, impact_score=10.0)
    large = generator.build("hiring", priority="high", description="", shortfall_hours=400.0, impact_score=10.0)

    assert small.implementation_cost == pytest.approx(5000.0 + 25000.0)
    assert large.implementation_cost == pytest.approx(5000.0 + 3 * 25000.0)


def test_unknown_action_is_rejected(settings):
    with pytest.raises(ValueError):
        RecommendationGenerator(settings).build(
            "outsourcing", priority="low", description="", shortfall_hours=1.0, impact_score=1.0
        )


def test_ranking_orders_by_roi_then_priority_then_weeks():
    ranked = rank_recommendations(
        [
            _recommendation("slow", 2.0, weeks=10),
            _recommendation("best", 5.0),
            _recommendation("fast", 2.0, weeks=1),
            _recommendation("urgent", 2.0, priority="critical", weeks=10),
        ]
    )

    assert [item.description for item in ranked] == ["best", "urgent", "fast", "slow"]


def test_full_ties_keep_generation_order():
    first = _recommendation("first", 1.0)
    second = _recommendation("second", 1.0)

    assert rank_recommendations([first, second]) == (first, second)
    assert rank_recommendations([second, first]) == (second, first)


def test_department_bottleneck_yields_scoped_actions(settings):
    recommendations = RecommendationGenerator(settings).generate([_bottleneck()])

    assert {item.type for item in recommendations} == {"reallocation", "hiring"}
    assert all(item.affected_departments == ("Engineering",) for item in recommendations)
    assert all(item.priority == "critical" for item in recommendations)
    assert recommendations[0].roi >= recommendations[-1].roi


def test_resource_bottleneck_is_scoped_to_its_department(settings):
    recommendations = RecommendationGenerator(settings).for_bottleneck(
        _bottleneck("resource", "7"), {7: "Design"}
    )

    assert all(item.affected_departments == ("Design",) for item in recommendations)


def test_resolved_bottlenecks_are_not_actioned(settings):
    assert RecommendationGenerator(settings).generate([_bottleneck(status="resolved")]) == ()


def test_forecast_overload_suggests_process_improvement_when_nothing_is_current(settings):
    prediction = Prediction(
        period="2026-08",
        periods_ahead=2,
        predicted_capacity=320.0,
        demand_forecast=400.0,
        utilization_rate=1.25,
        confidence=0.7,
        scenario="realistic",
    )
    generator = RecommendationGenerator(settings)

    quiet = generator.generate([], predictions=[prediction])
    busy = generator.generate([_bottleneck()], predictions=[prediction])

    assert [item.type for item in quiet] == ["process_improvement"]
    assert quiet[0].priority == "high"
    assert "process_improvement" not in {item.type for item in busy}


def test_skill_gap_tiers(settings):
    assert classify_skill_gap(0.5, settings) == "low"
    assert classify_skill_gap(2.0, settings) == "medium"
    assert classify_skill_gap(4.0, settings) == "high"
    assert classify_skill_gap(6.0, settings) == "critical"
