from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Any

import pytest

from campaign_autopilot import (
    Artifact,
    BrandConstraints,
    CapabilityError,
    GenerationContext,
    HealingFeedback,
    Level,
    PreventionPlan,
    QualityDimension,
    QualityValidator,
    RiskAssessment,
    Suggestion,
    ValidationIssue,
    WorkItem,
    WorkItemType,
)
from campaign_autopilot.llm import StructuredOutputAdapter, normalize_structured_output
from campaign_autopilot.providers import (
    ArtifactDraft,
    EffortReview,
    HeuristicEffortEstimator,
    HeuristicPreventionPlanner,
    HeuristicQualityEvaluator,
    HeuristicRiskAssessor,
    LLMArtifactGenerator,
    LLMEffortEstimator,
    LLMPreventionPlanner,
    LLMQualityEvaluator,
    QualityReview,
    TemplateArtifactGenerator,
)
from campaign_autopilot.settings import RuntimeSettings
from conftest import make_item


class _FakeRunnable:
    def __init__(self, payload: Any) -> None:
        self.payload = payload
        self.messages: list[Any] = []

    async def ainvoke(self, input: Any) -> Any:  # noqa: A002
        self.messages.append(input)
        return self.payload


def _rich_item() -> WorkItem:
    return make_item(
        "post",
        title="Launch teaser post",
        description="Announce the spring collection launch to returning customers with a playful teaser",
        acceptance_criteria=["Mentions the spring collection", "Includes a preorder call to action"],
    )


def test_template_draft_passes_heuristic_review(brand: BrandConstraints, settings: RuntimeSettings) -> None:
    item = _rich_item()
    context = GenerationContext(item=item, brand=brand, campaign_goal="Drive spring collection preorders")
    artifact = asyncio.run(TemplateArtifactGenerator().generate(context))

    result = asyncio.run(
        QualityValidator(HeuristicQualityEvaluator(), settings=settings).validate(artifact, brand, item.acceptance_criteria)
    )

    assert result.passed, result.issues
    assert set(result.dimension_scores) == {
        QualityDimension.CLARITY,
        QualityDimension.ENGAGEMENT,
        QualityDimension.BRAND_ALIGNMENT,
        QualityDimension.CTA_STRENGTH,
    }


def test_banned_phrase_fails_review(brand: BrandConstraints) -> None:
    artifact = Artifact(
        item_id="post",
        title="Spring deals",
        body="Our cheap spring collection is here for you! Sustainable style for everyday life.",
        call_to_action="Shop now",
    )
    evaluation = asyncio.run(HeuristicQualityEvaluator().evaluate(artifact, brand, []))

    assert evaluation.verdict is False
    assert any("cheap" in issue.description for issue in evaluation.issues)
    assert evaluation.dimension_scores[QualityDimension.BRAND_ALIGNMENT] == 30


def test_uncovered_criterion_fails_review(brand: BrandConstraints) -> None:
    artifact = Artifact(item_id="post", title="Spring teaser", body="Sustainable style for everyday life.", call_to_action="Get it")
    evaluation = asyncio.run(HeuristicQualityEvaluator().evaluate(artifact, brand, ["Quotes the founder's sustainability pledge"]))

    assert evaluation.verdict is False
    acceptance = [issue for issue in evaluation.issues if issue.dimension == QualityDimension.ACCEPTANCE]
    assert len(acceptance) == 1


def test_heuristic_estimates_and_risk_scale_with_item_shape() -> None:
    simple = make_item("s", type=WorkItemType.SOCIAL, acceptance_criteria=["one"], description="A short social post for the launch week")
    video = make_item("v", "s", type=WorkItemType.VIDEO, acceptance_criteria=["a", "b", "c", "d", "e"])

    simple_estimate = asyncio.run(HeuristicEffortEstimator().estimate(simple))
    video_estimate = asyncio.run(HeuristicEffortEstimator().estimate(video))
    simple_risk = asyncio.run(HeuristicRiskAssessor().assess_risk(simple))
    video_risk = asyncio.run(HeuristicRiskAssessor().assess_risk(video))

    assert simple_estimate.estimated_hours == 1.5
    assert simple_estimate.recommended_iterations == 1
    assert video_estimate.estimated_hours == 7.5
    assert video_estimate.risk_level == Level.HIGH
    assert video_estimate.recommended_iterations == 3
    assert simple_risk.risk_score < video_risk.risk_score
    assert "Complex format" in [factor.name for factor in video_risk.factors]


def test_llm_evaluator_maps_review_to_dimensions(brand: BrandConstraints) -> None:
    runnable = _FakeRunnable(
        {
            "clarity": 88,
            "engagement": 72,
            "brand_alignment": 91,
            "cta_strength": 64,
            "issues": [{"dimension": "cta_strength", "severity": "minor", "description": "CTA is passive"}],
            "suggestions": [{"issue_ref": "cta_strength", "fix": "Lead with a verb"}],
        }
    )
    evaluator = LLMQualityEvaluator(StructuredOutputAdapter("evaluator", QualityReview, runnable, "system"))
    artifact = Artifact(item_id="post", title="Teaser", body="Body", call_to_action="More")

    evaluation = asyncio.run(evaluator.evaluate(artifact, brand, ["Mentions spring"]))

    assert evaluation.dimension_scores[QualityDimension.CTA_STRENGTH] == 64
    assert evaluation.issues[0].description == "CTA is passive"
    system, user = runnable.messages[0]
    assert system == ("system", "system")
    assert "Mentions spring" in user[1]


def test_llm_estimator_clamps_review() -> None:
    runnable = _FakeRunnable(EffortReview(estimated_hours=4, recommended_iterations=8, roi=0.2))
    estimator = LLMEffortEstimator(StructuredOutputAdapter("estimator", EffortReview, runnable))

    estimate = asyncio.run(estimator.estimate(make_item("A")))

    assert estimate.recommended_iterations == 3
    assert estimate.roi == 1.0
    assert estimate.estimated_hours == 4


def test_llm_generator_prompt_carries_healing_feedback(brand: BrandConstraints) -> None:
    item = _rich_item()
    feedback = HealingFeedback(
        round_number=1,
        score=55,
        focus_dimension=QualityDimension.ENGAGEMENT,
        issues=(ValidationIssue(description="Opening line is flat"),),
        suggestions=(Suggestion(fix="Open with a question"),),
    )
    context = GenerationContext(
        item=item,
        brand=brand,
        attempt=2,
        prior_artifact=Artifact(item_id=item.item_id, title=item.title, body="Old body"),
        feedback=feedback,
    )
    runnable = _FakeRunnable({"title": "New", "body": "Better body", "call_to_action": "Preorder now"})
    generator = LLMArtifactGenerator(StructuredOutputAdapter("generator", ArtifactDraft, runnable), model_name="gpt-4o")

    artifact = asyncio.run(generator.generate(context))

    assert artifact.body == "Better body"
    assert artifact.provenance == "llm:gpt-4o"
    assert "Opening line is flat" in artifact.prompt_used
    assert "Open with a question" in artifact.prompt_used
    assert "focus on engagement" in artifact.prompt_used


def test_normalize_structured_output_rejects_bad_payloads() -> None:
    with pytest.raises(CapabilityError):
        normalize_structured_output(raw_output="free text", schema=QualityReview, capability="evaluator")
    with pytest.raises(CapabilityError):
        normalize_structured_output(raw_output={"clarity": 500}, schema=QualityReview, capability="evaluator")
    with pytest.raises(CapabilityError):
        normalize_structured_output(
            raw_output={"parsed": None, "parsing_error": "bad json", "raw": None},
            schema=QualityReview,
        )


def test_sub_second_timeout_reaches_chat_model(monkeypatch: pytest.MonkeyPatch, settings: RuntimeSettings) -> None:
    captured: dict[str, Any] = {}

    def fake_structured_chat_model(**kwargs: Any) -> StructuredOutputAdapter:
        captured.update(kwargs)
        return StructuredOutputAdapter(kwargs["capability"], kwargs["schema"], _FakeRunnable({}))

    monkeypatch.setattr("campaign_autopilot.providers.get_structured_chat_model", fake_structured_chat_model)

    LLMQualityEvaluator.from_settings(replace(settings, capability_timeout_seconds=0.5))

    assert captured["timeout"] == 0.5
    assert captured["model_name"] == "gpt-4o-mini"


def test_copy_that_ignores_the_audience_loses_engagement(brand: BrandConstraints) -> None:
    body = "Sustainable style for everyday life. Your spring collection preorder is open now!"
    generic = Artifact(item_id="post", title="Spring teaser", body=body, call_to_action="Shop now")
    targeted = generic.model_copy(update={"body": f"{body} Welcome back, returning customers."})

    generic_review = asyncio.run(HeuristicQualityEvaluator().evaluate(generic, brand, []))
    targeted_review = asyncio.run(HeuristicQualityEvaluator().evaluate(targeted, brand, []))

    engagement = QualityDimension.ENGAGEMENT
    assert generic_review.dimension_scores[engagement] == targeted_review.dimension_scores[engagement] - 15
    assert any("returning customers" in issue.description for issue in generic_review.issues)
    assert not any("audience" in issue.description for issue in targeted_review.issues)


def test_prevention_planners_produce_plans() -> None:
    item = make_item("V", type=WorkItemType.VIDEO, notes="Shoot outdoors")
    assessment = RiskAssessment(item_id="V", risk_score=80, preventive_measures=["Allocate extra iteration attempts"])

    heuristic = asyncio.run(HeuristicPreventionPlanner().plan_prevention(item, assessment))
    runnable = _FakeRunnable({"improved_description": "A 30 second teaser", "improved_criteria": ["Under 30 seconds"]})
    llm = asyncio.run(
        LLMPreventionPlanner(StructuredOutputAdapter("risk", PreventionPlan, runnable)).plan_prevention(item, assessment)
    )

    assert heuristic.improved_criteria == ["Item V states one clear call to action"]
    assert heuristic.approach_notes == "Shoot outdoors\nPreventive measures: Allocate extra iteration attempts"
    assert llm.improved_description == "A 30 second teaser"
    assert "Preventive measures: Allocate extra iteration attempts" in runnable.messages[0][-1][1]
