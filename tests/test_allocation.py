from __future__ import annotations

import asyncio
import math

import pytest

from campaign_autopilot import (
    BudgetAllocator,
    ConfigurationError,
    EffortEstimate,
    Level,
    budget_report,
    build_allocation_plan,
    rebalance,
)
from campaign_autopilot.settings import RuntimeSettings
from conftest import FixedEstimator, make_item


def _estimate(item_id: str, hours: float, roi: float, iterations: int = 1, risk: Level = Level.MEDIUM) -> EffortEstimate:
    return EffortEstimate(
        item_id=item_id,
        title=f"Item {item_id}",
        estimated_hours=hours,
        roi=roi,
        recommended_iterations=iterations,
        risk_level=risk,
    )


def test_allocator_funds_highest_roi_per_hour_first(settings: RuntimeSettings) -> None:
    items = [make_item("ratio5"), make_item("ratio2"), make_item("ratio8")]
    estimator = FixedEstimator(
        {
            "ratio5": _estimate("ratio5", hours=2, roi=10),
            "ratio2": _estimate("ratio2", hours=2, roi=4),
            "ratio8": _estimate("ratio8", hours=1, roi=8),
        }
    )
    plan = asyncio.run(BudgetAllocator(estimator, settings=settings).allocate_budget(items, total_hours=3))

    assert plan.priority_order == ["ratio8", "ratio5", "ratio2"]
    assert [allocation.roi_per_hour for allocation in plan.allocations] == [8.0, 5.0, 2.0]
    assert [allocation.funded for allocation in plan.allocations] == [True, True, False]
    assert plan.allocations[1].remaining_after == 0
    assert plan.allocations[2].allocated_hours == 2
    assert plan.budget_remaining == -2


def test_allocation_is_deterministic(settings: RuntimeSettings) -> None:
    items = [make_item("A"), make_item("B"), make_item("C")]
    estimator = FixedEstimator(
        {
            "A": _estimate("A", hours=3, roi=6, iterations=2),
            "B": _estimate("B", hours=2, roi=6, iterations=3),
            "C": _estimate("C", hours=4, roi=9, iterations=1),
        }
    )
    allocator = BudgetAllocator(estimator, settings=settings)

    first = asyncio.run(allocator.allocate_budget(items, total_hours=12))
    second = asyncio.run(allocator.allocate_budget(items, total_hours=12))

    assert first == second
    assert first.fingerprint == second.fingerprint
    assert len(first.fingerprint) == 64


def test_equal_ratios_keep_backlog_order() -> None:
    plan = build_allocation_plan(
        [_estimate("first", hours=2, roi=6), _estimate("second", hours=2, roi=6), _estimate("third", hours=1, roi=3)],
        total_hours=10,
    )

    assert plan.priority_order == ["first", "second", "third"]


@pytest.mark.parametrize("ceiling", [0, -5, math.nan, math.inf])
def test_invalid_ceiling_raises(ceiling: float) -> None:
    with pytest.raises(ConfigurationError):
        build_allocation_plan([_estimate("A", hours=1, roi=5)], total_hours=ceiling)


def test_estimator_failure_uses_safe_default_and_writes_hours(settings: RuntimeSettings) -> None:
    items = [make_item("A", hours=1), make_item("B", hours=1)]
    estimator = FixedEstimator({"A": _estimate("A", hours=5, roi=7)}, failing=["B"])

    plan = asyncio.run(BudgetAllocator(estimator, settings=settings).allocate_budget(items, total_hours=40))

    fallback = next(allocation for allocation in plan.allocations if allocation.item_id == "B")
    assert fallback.estimate.estimated_hours == 3.0
    assert fallback.estimate.recommended_iterations == 2
    assert fallback.estimate.roi == 5.0
    assert [item.estimated_hours for item in items] == [5.0, 3.0]


def test_out_of_range_estimates_are_clamped(settings: RuntimeSettings) -> None:
    wild = EffortEstimate.model_construct(
        item_id="A",
        title="",
        estimated_hours=2.0,
        complexity=Level.HIGH,
        risk_level=Level.HIGH,
        recommended_iterations=9,
        roi=42.0,
    )
    plan = asyncio.run(
        BudgetAllocator(FixedEstimator({"A": wild}), settings=settings).allocate_budget([make_item("A")], total_hours=20)
    )

    estimate = plan.allocations[0].estimate
    assert estimate.recommended_iterations == 3
    assert estimate.roi == 10.0
    assert estimate.title == "Item A"


def test_rebalance_lowers_iterations_from_lowest_priority() -> None:
    plan = build_allocation_plan(
        [
            _estimate("top", hours=2, roi=10, iterations=3),
            _estimate("mid", hours=2, roi=6, iterations=3),
            _estimate("low", hours=2, roi=2, iterations=3),
        ],
        total_hours=14,
    )
    assert plan.budget_remaining == -4

    balanced = rebalance(plan)

    assert balanced.budget_remaining == 0
    assert [allocation.estimate.recommended_iterations for allocation in balanced.allocations] == [3, 3, 1]
    assert all(allocation.funded for allocation in balanced.allocations)
    assert plan.budget_remaining == -4


def test_rebalance_stops_at_iteration_floor() -> None:
    plan = build_allocation_plan([_estimate("A", hours=5, roi=5, iterations=2)], total_hours=1)

    balanced = rebalance(plan)

    assert balanced.allocations[0].estimate.recommended_iterations == 1
    assert balanced.budget_remaining == -4


def test_budget_report_and_high_risk_mitigation() -> None:
    plan = build_allocation_plan(
        [
            _estimate("A", hours=3, roi=8, risk=Level.HIGH),
            _estimate("B", hours=2, roi=5),
            _estimate("C", hours=1, roi=2),
        ],
        total_hours=20,
    )
    report = budget_report(plan)

    assert report.total_estimated_hours == 6
    assert (report.high_roi, report.medium_roi, report.low_roi) == (1, 1, 1)
    assert report.high_risk_count == 1
    assert report.buffer_recommended_hours == 2
    assert plan.risk_mitigation == ["Item A: Allocate +2h buffer & early testing"]
