from __future__ import annotations

import asyncio
from dataclasses import replace

from campaign_autopilot import (
    Artifact,
    BrandConstraints,
    QualityDimension,
    QualityEvaluation,
    QualityValidator,
    ValidationIssue,
    ValidationResult,
    validation_report,
)
from campaign_autopilot.models import IssueSeverity
from campaign_autopilot.settings import RuntimeSettings
from conftest import ScriptedEvaluator


def _artifact() -> Artifact:
    return Artifact(item_id="A", title="Spring teaser", body="Meet the spring collection.")


def _validate(evaluator: object, settings: RuntimeSettings) -> object:
    return asyncio.run(QualityValidator(evaluator, settings=settings).validate(_artifact(), BrandConstraints(), []))


def test_score_threshold_decides_pass(settings: RuntimeSettings) -> None:
    assert _validate(ScriptedEvaluator([80]), settings).passed
    assert not _validate(ScriptedEvaluator([79]), settings).passed

    lenient = replace(settings, pass_threshold=60)
    assert _validate(ScriptedEvaluator([65]), lenient).passed


def test_failing_score_without_issues_gets_a_generic_issue(settings: RuntimeSettings) -> None:
    result = _validate(ScriptedEvaluator([40]), settings)

    assert not result.passed
    assert len(result.issues) == 1
    assert "below the pass threshold" in result.issues[0].description


def test_explicit_verdict_overrides_score(settings: RuntimeSettings) -> None:
    rejected = _validate(ScriptedEvaluator([QualityEvaluation(score=95, verdict=False)]), settings)
    accepted = _validate(ScriptedEvaluator([QualityEvaluation(score=20, verdict=True)]), settings)

    assert not rejected.passed
    assert rejected.score == 95
    assert accepted.passed


def test_dimension_scores_average_and_pick_weakest(settings: RuntimeSettings) -> None:
    evaluation = QualityEvaluation(
        dimension_scores={
            QualityDimension.CLARITY: 90,
            QualityDimension.ENGAGEMENT: 85,
            QualityDimension.BRAND_ALIGNMENT: 60,
            QualityDimension.CTA_STRENGTH: 70,
        }
    )
    result = _validate(ScriptedEvaluator([evaluation]), settings)

    assert result.score == 76
    assert not result.passed
    assert result.weakest_dimension == QualityDimension.BRAND_ALIGNMENT
    assert result.issues[0].dimension == QualityDimension.BRAND_ALIGNMENT


def test_evaluator_exception_falls_back(settings: RuntimeSettings) -> None:
    result = _validate(ScriptedEvaluator([RuntimeError("rate limited")]), settings)

    assert result.fallback
    assert not result.passed
    assert result.score == 50
    assert len(result.issues) == 1
    assert len(result.suggestions) == 1


def test_evaluator_timeout_falls_back(settings: RuntimeSettings) -> None:
    class _SlowEvaluator:
        async def evaluate(self, artifact: Artifact, brand: BrandConstraints, criteria: list[str]) -> QualityEvaluation:
            await asyncio.sleep(1)
            return QualityEvaluation(score=100)

    result = _validate(_SlowEvaluator(), replace(settings, capability_timeout_seconds=0.01))

    assert result.fallback
    assert "timed out" in result.issues[0].description


def test_malformed_evaluation_falls_back(settings: RuntimeSettings) -> None:
    class _LooseEvaluator:
        async def evaluate(self, artifact: Artifact, brand: BrandConstraints, criteria: list[str]) -> dict[str, int]:
            return {"score": 99}

    assert _validate(_LooseEvaluator(), settings).fallback
    assert _validate(ScriptedEvaluator([QualityEvaluation()]), settings).fallback


def test_validation_report_rolls_up_issues() -> None:
    banned = ValidationIssue(
        dimension=QualityDimension.BRAND_ALIGNMENT,
        severity=IssueSeverity.CRITICAL,
        description="Uses banned phrase 'cheap'",
    )
    vague = ValidationIssue(dimension=QualityDimension.CLARITY, severity=IssueSeverity.MINOR, description="Vague")
    results = [
        ValidationResult(passed=True, score=90),
        ValidationResult(passed=False, score=40, issues=(banned, vague)),
        ValidationResult(passed=False, score=55, issues=(vague,)),
    ]

    report = validation_report(results)

    assert report.overall_consistency == 62
    assert report.issues_by_dimension == {QualityDimension.BRAND_ALIGNMENT: 1, QualityDimension.CLARITY: 2}
    assert report.critical_issues == [banned]
    assert report.recommendations == [
        "Consider a brand voice refresher for the content team",
        "Address 1 critical issues before publishing",
    ]


def test_validation_report_for_no_results_is_empty() -> None:
    report = validation_report([])

    assert report.overall_consistency == 0
    assert report.issues_by_dimension == {}
    assert report.recommendations == []
