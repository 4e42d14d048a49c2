from __future__ import annotations

import logging
import math
from collections import Counter
from collections.abc import Sequence

from .capabilities import PreventionPlanner, RiskAssessor, call_capability
from .errors import CapabilityError
from .models import Level, RiskAssessment, RiskFactor, RiskReport, WorkItem
from .settings import RuntimeSettings

logger = logging.getLogger(__name__)


def bucket_for_score(score: int, settings: RuntimeSettings) -> Level:
    if score > settings.risk_high_threshold:
        return Level.HIGH
    if score > settings.risk_medium_threshold:
        return Level.MEDIUM
    return Level.LOW


def default_assessment(item: WorkItem) -> RiskAssessment:
    return RiskAssessment(
        item_id=item.item_id,
        title=item.title,
        risk_score=50,
        bucket=Level.MEDIUM,
        factors=[
            RiskFactor(
                name="Unknown complexity",
                severity=Level.MEDIUM,
                description="Could not fully analyze item",
                mitigation="Allocate extra iteration attempts",
            )
        ],
        preventive_measures=["Allocate +1 iteration", "Early validation"],
        recommended_iterations=2,
        fallback=True,
    )


class RiskPredictor:
    """Scores failure likelihood per item. Advisory only; never blocks execution."""

    def __init__(
        self,
        assessor: RiskAssessor,
        *,
        planner: PreventionPlanner | None = None,
        settings: RuntimeSettings | None = None,
    ) -> None:
        self.assessor = assessor
        self.planner = planner
        self.settings = settings if settings is not None else RuntimeSettings.from_env()

    async def assess(self, item: WorkItem) -> RiskAssessment:
        try:
            assessment = await call_capability(
                "risk",
                self.assessor.assess_risk(item),
                timeout=self.settings.capability_timeout_seconds,
            )
        except CapabilityError as exc:
            logger.warning("Risk assessment failed for %s, using safe default: %s", item.item_id, exc)
            return default_assessment(item)
        # Bucket is always derived locally so thresholds stay configurable.
        return assessment.model_copy(
            update={
                "item_id": item.item_id,
                "title": assessment.title or item.title,
                "bucket": bucket_for_score(assessment.risk_score, self.settings),
            }
        )

    async def assess_backlog_risk(self, items: Sequence[WorkItem]) -> RiskReport:
        assessments = [await self.assess(item) for item in items]
        return summarize_risk(assessments, settings=self.settings)

    async def apply_preventive_measures(self, item: WorkItem, assessment: RiskAssessment) -> WorkItem:
        """Return a copy of ``item`` rewritten to address the assessment's preventive measures.

        The description, criteria and notes come from the prevention capability;
        any field it leaves empty keeps the item's value. The item comes back
        unchanged when there is nothing to apply or the capability fails.
        """
        if not assessment.preventive_measures or self.planner is None:
            return item
        try:
            plan = await call_capability(
                "risk",
                self.planner.plan_prevention(item, assessment),
                timeout=self.settings.capability_timeout_seconds,
            )
        except CapabilityError as exc:
            logger.warning("Preventive rewrite failed for %s, keeping item as is: %s", item.item_id, exc)
            return item
        return item.model_copy(
            update={
                "description": plan.improved_description or item.description,
                "acceptance_criteria": list(plan.improved_criteria) or list(item.acceptance_criteria),
                "notes": plan.approach_notes or item.notes,
            }
        )


def summarize_risk(assessments: Sequence[RiskAssessment], *, settings: RuntimeSettings | None = None) -> RiskReport:
    """Aggregate per-item assessments into a backlog-level report.

    Args:
        assessments: One assessment per item, in backlog order.
        settings: Thresholds and buffer multipliers; defaults when omitted.

    Returns:
        A report with the average score, high-risk item ids, the most frequent
        risk factor and the recommended iteration/hour buffer.
    """
    cfg = settings if settings is not None else RuntimeSettings()
    if not assessments:
        return RiskReport(assessments=[], average_risk_score=0, high_risk_items=[])

    average = round(sum(assessment.risk_score for assessment in assessments) / len(assessments))
    high = [assessment for assessment in assessments if assessment.bucket == Level.HIGH]

    factor_counts = Counter(factor.name for assessment in assessments for factor in assessment.factors)
    most_common: tuple[str, int] | None = factor_counts.most_common(1)[0] if factor_counts else None

    buffer_iterations = math.ceil(len(high) * cfg.risk_buffer_multiplier)
    mitigation: list[str] = []
    if high:
        mitigation.append(f"Start {len(high)} high-risk item(s) early and review them first")
    if most_common is not None:
        mitigation.append(f"Address '{most_common[0]}' across {most_common[1]} item(s)")
    if average > cfg.risk_high_threshold:
        mitigation.append("Consider increasing budget by 30%")

    return RiskReport(
        assessments=list(assessments),
        average_risk_score=average,
        high_risk_items=[assessment.item_id for assessment in high],
        most_common_factor=most_common[0] if most_common else None,
        most_common_factor_count=most_common[1] if most_common else 0,
        recommended_buffer_iterations=buffer_iterations,
        recommended_buffer_hours=buffer_iterations * cfg.buffer_hours_per_iteration,
        mitigation=mitigation,
        overall_level=bucket_for_score(average, cfg),
    )
