from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Sequence

from .capabilities import QualityEvaluator, call_capability
from .errors import CapabilityError
from .models import (
    SCORED_DIMENSIONS,
    Artifact,
    BrandConstraints,
    IssueSeverity,
    QualityDimension,
    QualityEvaluation,
    Suggestion,
    ValidationIssue,
    ValidationReport,
    ValidationResult,
)
from .settings import RuntimeSettings

logger = logging.getLogger(__name__)


def fallback_result(settings: RuntimeSettings, reason: str = "") -> ValidationResult:
    """Conservative result used whenever the evaluator cannot be trusted."""
    detail = f" ({reason})" if reason else ""
    return ValidationResult(
        passed=False,
        score=settings.fallback_score,
        issues=(
            ValidationIssue(
                dimension=QualityDimension.GENERAL,
                severity=IssueSeverity.MAJOR,
                description=f"Automated quality review unavailable{detail}",
            ),
        ),
        suggestions=(Suggestion(issue_ref="general", fix="Review the content against the brand guidelines manually"),),
        fallback=True,
    )


def _weakest(scores: dict[QualityDimension, int]) -> QualityDimension | None:
    weakest: QualityDimension | None = None
    for dimension in SCORED_DIMENSIONS:
        if dimension not in scores:
            continue
        if weakest is None or scores[dimension] < scores[weakest]:
            weakest = dimension
    return weakest


def apply_policy(evaluation: QualityEvaluation, settings: RuntimeSettings) -> ValidationResult:
    """Turn a raw evaluation into a pass/fail result.

    With per-dimension scores the overall score is their rounded mean and the
    lowest dimension becomes the focus for the next healing round. An explicit
    verdict from the evaluator wins over the score threshold.

    Raises:
        CapabilityError: If the evaluation carries neither a score, dimension scores nor a verdict.
    """
    scored = {dimension: value for dimension, value in evaluation.dimension_scores.items() if dimension in SCORED_DIMENSIONS}
    if scored:
        score = round(sum(scored.values()) / len(scored))
    elif evaluation.score is not None:
        score = evaluation.score
    elif evaluation.verdict is not None:
        score = settings.pass_threshold if evaluation.verdict else settings.fallback_score
    else:
        raise CapabilityError("evaluator", "evaluation returned no score, dimension scores or verdict")

    passed = evaluation.verdict if evaluation.verdict is not None else score >= settings.pass_threshold
    weakest = _weakest(scored)
    issues = tuple(evaluation.issues)
    if not passed and not issues:
        issues = (
            ValidationIssue(
                dimension=weakest or QualityDimension.GENERAL,
                severity=IssueSeverity.MAJOR,
                description=f"Quality score {score} is below the pass threshold {settings.pass_threshold}",
            ),
        )
    return ValidationResult(
        passed=passed,
        score=max(0, min(100, score)),
        issues=issues,
        suggestions=tuple(evaluation.suggestions),
        dimension_scores=dict(evaluation.dimension_scores),
        weakest_dimension=weakest,
    )


class QualityValidator:
    """Scores artifacts through the evaluation capability.

    Evaluator exceptions, timeouts and malformed output never escape: they are
    logged and replaced with :func:`fallback_result`.
    """

    def __init__(self, evaluator: QualityEvaluator, *, settings: RuntimeSettings | None = None) -> None:
        self.evaluator = evaluator
        self.settings = settings if settings is not None else RuntimeSettings.from_env()

    async def validate(
        self,
        artifact: Artifact,
        brand: BrandConstraints,
        criteria: list[str] | None = None,
    ) -> ValidationResult:
        try:
            evaluation = await call_capability(
                "evaluator",
                self.evaluator.evaluate(artifact, brand, list(criteria or [])),
                timeout=self.settings.capability_timeout_seconds,
            )
            if not isinstance(evaluation, QualityEvaluation):
                raise CapabilityError(
                    "evaluator", f"expected QualityEvaluation, got {type(evaluation).__name__}"
                )
            result = apply_policy(evaluation, self.settings)
        except CapabilityError as exc:
            logger.warning("Validation of %s fell back to default score: %s", artifact.artifact_id, exc)
            return fallback_result(self.settings, str(exc))

        logger.debug(
            "Validated %s for %s: score=%d passed=%s",
            artifact.artifact_id,
            artifact.item_id,
            result.score,
            result.passed,
        )
        return result


def validation_report(results: Sequence[ValidationResult]) -> ValidationReport:
    """Roll many validation results up into one consistency report.

    Consistency is the rounded mean score. Issues are counted per dimension and
    critical ones are collected so they can be fixed before publishing.
    """
    consistency = round(sum(result.score for result in results) / len(results)) if results else 0
    by_dimension: Counter[QualityDimension] = Counter()
    critical: list[ValidationIssue] = []
    for result in results:
        for issue in result.issues:
            by_dimension[issue.dimension] += 1
            if issue.severity == IssueSeverity.CRITICAL:
                critical.append(issue)

    recommendations: list[str] = []
    if results and consistency < 70:
        recommendations.append("Consider a brand voice refresher for the content team")
    if by_dimension[QualityDimension.BRAND_ALIGNMENT] > 3:
        recommendations.append("Strengthen key messaging alignment across all artifacts")
    if critical:
        recommendations.append(f"Address {len(critical)} critical issues before publishing")
    return ValidationReport(
        overall_consistency=consistency,
        issues_by_dimension=dict(by_dimension),
        critical_issues=critical,
        recommendations=recommendations,
    )
