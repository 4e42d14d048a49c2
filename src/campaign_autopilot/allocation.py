from __future__ import annotations

import logging
import math
from collections.abc import Sequence

from .capabilities import EffortEstimator, call_capability
from .errors import CapabilityError, ConfigurationError
from .models import (
    AllocationPlan,
    BudgetReport,
    EffortEstimate,
    ItemAllocation,
    Level,
    WorkItem,
)
from .settings import RuntimeSettings

logger = logging.getLogger(__name__)

_MIN_ITERATIONS = 1
_MAX_ITERATIONS = 3


def default_estimate(item: WorkItem) -> EffortEstimate:
    """Safe estimate used when the estimation capability fails."""
    return EffortEstimate(
        item_id=item.item_id,
        title=item.title,
        estimated_hours=3.0,
        complexity=Level.MEDIUM,
        risk_level=Level.MEDIUM,
        recommended_iterations=2,
        roi=5.0,
    )


def _coerce_estimate(item: WorkItem, estimate: EffortEstimate) -> EffortEstimate:
    return estimate.model_copy(
        update={
            "item_id": item.item_id,
            "title": estimate.title or item.title,
            "estimated_hours": max(float(estimate.estimated_hours), 0.0),
            "recommended_iterations": min(max(estimate.recommended_iterations, _MIN_ITERATIONS), _MAX_ITERATIONS),
            "roi": min(max(float(estimate.roi), 1.0), 10.0),
        }
    )


def _validate_ceiling(total_hours: float) -> float:
    try:
        ceiling = float(total_hours)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Budget ceiling must be a number, got: {total_hours!r}") from exc
    if not math.isfinite(ceiling) or ceiling <= 0:
        raise ConfigurationError(f"Budget ceiling must be a positive finite number of hours, got: {total_hours!r}")
    return ceiling


def build_allocation_plan(
    estimates: Sequence[EffortEstimate],
    total_hours: float,
    *,
    settings: RuntimeSettings | None = None,
) -> AllocationPlan:
    """Prioritize estimates by ROI per hour and spend the hour ceiling in that order.

    Every item is allocated its nominal ``hours * iterations``; once the ceiling
    is crossed later items are marked unfunded and the remaining budget goes
    negative rather than being clipped.

    Raises:
        ConfigurationError: If ``total_hours`` is not a positive finite number.
    """
    ceiling = _validate_ceiling(total_hours)
    cfg = settings if settings is not None else RuntimeSettings()

    # sorted() is stable, so equal ratios keep backlog order.
    prioritized = sorted(estimates, key=lambda estimate: -estimate.roi_per_hour)

    allocations: list[ItemAllocation] = []
    remaining = ceiling
    for priority, estimate in enumerate(prioritized, start=1):
        cost = estimate.estimated_hours * estimate.recommended_iterations
        funded = remaining >= cost
        remaining -= cost
        allocations.append(
            ItemAllocation(
                estimate=estimate,
                priority=priority,
                roi_per_hour=estimate.roi_per_hour,
                allocated_hours=cost,
                funded=funded,
                remaining_after=remaining,
            )
        )

    mitigation = [
        f"{allocation.estimate.title or allocation.item_id}: Allocate "
        f"+{math.ceil(allocation.estimate.estimated_hours * cfg.high_risk_hour_buffer_ratio)}h buffer & early testing"
        for allocation in allocations
        if allocation.estimate.risk_level == Level.HIGH
    ]
    return AllocationPlan(
        total_budget_hours=ceiling,
        allocations=allocations,
        priority_order=[allocation.item_id for allocation in allocations],
        risk_mitigation=mitigation,
        budget_remaining=remaining,
    )


def rebalance(plan: AllocationPlan) -> AllocationPlan:
    """Cover a negative remaining budget by dropping low-priority items to one iteration.

    Walks from the lowest priority upward; stops as soon as the deficit is
    covered or every item is at the one-iteration floor. Returns a new plan.
    """
    if plan.budget_remaining >= 0:
        return plan

    reduced: dict[str, int] = {}
    remaining = plan.budget_remaining
    for allocation in reversed(plan.allocations):
        if remaining >= 0:
            break
        iterations = allocation.estimate.recommended_iterations
        if iterations <= _MIN_ITERATIONS:
            continue
        remaining += allocation.estimate.estimated_hours * (iterations - _MIN_ITERATIONS)
        reduced[allocation.item_id] = _MIN_ITERATIONS

    # Re-run the funding walk so per-item flags reflect the reduced iterations.
    estimates = [
        allocation.estimate.model_copy(update={"recommended_iterations": reduced[allocation.item_id]})
        if allocation.item_id in reduced
        else allocation.estimate
        for allocation in plan.allocations
    ]
    allocations: list[ItemAllocation] = []
    running = plan.total_budget_hours
    for allocation, estimate in zip(plan.allocations, estimates):
        cost = estimate.estimated_hours * estimate.recommended_iterations
        funded = running >= cost
        running -= cost
        allocations.append(
            allocation.model_copy(
                update={
                    "estimate": estimate,
                    "allocated_hours": cost,
                    "funded": funded,
                    "remaining_after": running,
                }
            )
        )
    logger.info(
        "Rebalanced allocation: %d items reduced to one iteration, remaining %.2fh -> %.2fh",
        len(reduced),
        plan.budget_remaining,
        running,
    )
    return plan.model_copy(update={"allocations": allocations, "budget_remaining": running})


def budget_report(plan: AllocationPlan, *, settings: RuntimeSettings | None = None) -> BudgetReport:
    cfg = settings if settings is not None else RuntimeSettings()
    estimates = [allocation.estimate for allocation in plan.allocations]
    base_hours = sum(estimate.estimated_hours for estimate in estimates)
    return BudgetReport(
        total_estimated_hours=base_hours,
        high_roi=sum(1 for estimate in estimates if estimate.roi >= 7),
        medium_roi=sum(1 for estimate in estimates if 4 <= estimate.roi < 7),
        low_roi=sum(1 for estimate in estimates if estimate.roi < 4),
        high_risk_count=sum(1 for estimate in estimates if estimate.risk_level == Level.HIGH),
        buffer_recommended_hours=math.ceil(base_hours * cfg.budget_buffer_ratio),
    )


class BudgetAllocator:
    """Estimates effort through a pluggable capability and turns it into an allocation plan."""

    def __init__(self, estimator: EffortEstimator, *, settings: RuntimeSettings | None = None) -> None:
        self.estimator = estimator
        self.settings = settings if settings is not None else RuntimeSettings.from_env()

    async def estimate(self, item: WorkItem) -> EffortEstimate:
        try:
            estimate = await call_capability(
                "estimator",
                self.estimator.estimate(item),
                timeout=self.settings.capability_timeout_seconds,
            )
        except CapabilityError as exc:
            logger.warning("Effort estimation failed for %s, using safe default: %s", item.item_id, exc)
            return default_estimate(item)
        return _coerce_estimate(item, estimate)

    async def estimate_all(self, items: Sequence[WorkItem]) -> list[EffortEstimate]:
        # Sequential on purpose: estimates feed a deterministic plan and stay in backlog order.
        return [await self.estimate(item) for item in items]

    async def allocate_budget(
        self,
        items: Sequence[WorkItem],
        total_hours: float,
        *,
        apply_estimates: bool = True,
    ) -> AllocationPlan:
        """Estimate every item and allocate the hour ceiling by ROI per hour.

        When ``apply_estimates`` is set, each item's ``estimated_hours`` is
        updated from its estimate.

        Raises:
            ConfigurationError: If ``total_hours`` is not a positive finite number.
        """
        _validate_ceiling(total_hours)
        estimates = await self.estimate_all(items)
        if apply_estimates:
            for item, estimate in zip(items, estimates):
                item.estimated_hours = estimate.estimated_hours
        plan = build_allocation_plan(estimates, total_hours, settings=self.settings)
        logger.info(
            "Allocated %.2fh across %d items, remaining %.2fh",
            plan.total_budget_hours,
            len(plan.allocations),
            plan.budget_remaining,
        )
        return plan
