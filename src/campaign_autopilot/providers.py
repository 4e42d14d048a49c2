"""Capability providers.

Two families live here. The ``LLM*`` providers bind ChatOpenAI to typed
schemas through :func:`get_structured_chat_model` and never parse free text.
The template and heuristic providers are deterministic and need no network,
which makes them suitable for offline runs and tests.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from pydantic import BaseModel, Field

from .capabilities import GenerationContext
from .llm import StructuredOutputAdapter, get_structured_chat_model
from .model_selection import RuntimeModelSelection
from .models import (
    Artifact,
    BrandConstraints,
    EffortEstimate,
    IssueSeverity,
    Level,
    PreventionPlan,
    QualityDimension,
    QualityEvaluation,
    RiskAssessment,
    RiskFactor,
    Suggestion,
    ValidationIssue,
    VariantDraft,
    VariantFocus,
    WorkItem,
    WorkItemType,
)
from .settings import RuntimeSettings

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]{3,}")
CTA_VERB_RE = re.compile(
    r"^\s*(get|start|join|shop|book|try|discover|learn|download|sign|register|claim|explore|subscribe|buy|watch|save)\b",
    re.IGNORECASE,
)
_STOPWORDS = frozenset(
    {"the", "and", "for", "with", "that", "this", "from", "your", "you", "are", "our", "into", "must", "should", "will"}
)


def tokens(value: str) -> set[str]:
    return {token for token in _TOKEN_RE.findall(value.lower()) if token not in _STOPWORDS}


# ---------------------------------------------------------------------------
# LLM schemas
# ---------------------------------------------------------------------------


class ArtifactDraft(BaseModel):
    title: str
    body: str
    call_to_action: str = ""
    visual_reference: str = ""


class ReviewIssue(BaseModel):
    dimension: QualityDimension = QualityDimension.GENERAL
    severity: IssueSeverity = IssueSeverity.MAJOR
    description: str


class ReviewSuggestion(BaseModel):
    issue_ref: str = ""
    fix: str
    corrected_text: str | None = None


class QualityReview(BaseModel):
    """Per-dimension review; scores are 0-100."""

    clarity: int = Field(ge=0, le=100)
    engagement: int = Field(ge=0, le=100)
    brand_alignment: int = Field(ge=0, le=100)
    cta_strength: int = Field(ge=0, le=100)
    issues: list[ReviewIssue] = Field(default_factory=list)
    suggestions: list[ReviewSuggestion] = Field(default_factory=list)
    reasoning: str = ""


class EffortReview(BaseModel):
    estimated_hours: float
    complexity: Level = Level.MEDIUM
    risk_level: Level = Level.MEDIUM
    recommended_iterations: int = 2
    roi: float = 5.0


class RiskReview(BaseModel):
    risk_score: int
    factors: list[RiskFactor] = Field(default_factory=list)
    preventive_measures: list[str] = Field(default_factory=list)
    recommended_iterations: int = 2


class VariantBatch(BaseModel):
    variants: list[VariantDraft] = Field(default_factory=list)


def _describe_item(item: WorkItem) -> str:
    criteria = "; ".join(item.acceptance_criteria) or "none"
    return (
        f"Item: {item.title}\nType: {item.type.value}\nChannel: {item.channel or 'unspecified'}\n"
        f"Description: {item.description or 'none'}\nAcceptance criteria: {criteria}"
    )


def _describe_brand(brand: BrandConstraints) -> str:
    return (
        f"Brand: {brand.name or 'unnamed'}\nTone: {brand.tone or 'unspecified'}\n"
        f"Values: {', '.join(brand.values) or 'none'}\nKey messages: {', '.join(brand.key_messages) or 'none'}\n"
        f"Audience: {brand.audience or 'general'}\nNever use: {', '.join(brand.banned_phrases) or 'nothing banned'}"
    )


def _adapter(
    capability: str,
    schema: type[BaseModel],
    system_prompt: str,
    settings: RuntimeSettings,
    selection: RuntimeModelSelection | None,
    repo_root: Path | None,
    temperature: float = 0.0,
) -> StructuredOutputAdapter:
    chosen = selection if selection is not None else RuntimeModelSelection.from_settings(settings)
    return get_structured_chat_model(
        capability=capability,
        model_name=chosen.resolve(capability),
        schema=schema,
        system_prompt=system_prompt,
        temperature=temperature,
        timeout=settings.capability_timeout_seconds,
        repo_root=repo_root,
    )


class LLMArtifactGenerator:
    def __init__(self, adapter: StructuredOutputAdapter[ArtifactDraft], *, model_name: str = "") -> None:
        self.adapter = adapter
        self.model_name = model_name

    @classmethod
    def from_settings(
        cls,
        settings: RuntimeSettings,
        *,
        selection: RuntimeModelSelection | None = None,
        repo_root: Path | None = None,
    ) -> "LLMArtifactGenerator":
        chosen = selection if selection is not None else RuntimeModelSelection.from_settings(settings)
        adapter = _adapter(
            "generator",
            ArtifactDraft,
            "You are a senior campaign copywriter. Produce one finished creative artifact that satisfies every "
            "acceptance criterion and stays on brand.",
            settings,
            chosen,
            repo_root,
            temperature=0.7,
        )
        return cls(adapter, model_name=chosen.resolve("generator"))

    @staticmethod
    def build_prompt(context: GenerationContext, brand: BrandConstraints) -> str:
        parts = [_describe_item(context.item), _describe_brand(brand)]
        if context.campaign_goal:
            parts.append(f"Campaign goal: {context.campaign_goal}")
        if context.prior_artifact is not None and context.feedback is not None:
            feedback = context.feedback
            focus = feedback.focus_dimension.value if feedback.focus_dimension is not None else "overall quality"
            issues = "\n".join(f"- [{issue.severity.value}] {issue.description}" for issue in feedback.issues)
            fixes = "\n".join(f"- {suggestion.fix}" for suggestion in feedback.suggestions)
            parts.append(
                f"Previous draft (score {feedback.score}, focus on {focus}):\n{context.prior_artifact.body}\n"
                f"Issues:\n{issues or '- none reported'}\nSuggested fixes:\n{fixes or '- none'}\n"
                "Rewrite the draft so every issue is resolved."
            )
        return "\n\n".join(parts)

    async def generate(self, context: GenerationContext) -> Artifact:
        prompt = self.build_prompt(context, context.brand)
        draft = await self.adapter.ainvoke(prompt)
        return Artifact(
            item_id=context.item.item_id,
            title=draft.title,
            body=draft.body,
            call_to_action=draft.call_to_action,
            visual_reference=draft.visual_reference,
            prompt_used=prompt,
            provenance=f"llm:{self.model_name}" if self.model_name else "llm",
        )


class LLMQualityEvaluator:
    def __init__(self, adapter: StructuredOutputAdapter[QualityReview]) -> None:
        self.adapter = adapter

    @classmethod
    def from_settings(
        cls,
        settings: RuntimeSettings,
        *,
        selection: RuntimeModelSelection | None = None,
        repo_root: Path | None = None,
    ) -> "LLMQualityEvaluator":
        return cls(
            _adapter(
                "evaluator",
                QualityReview,
                "You are a strict brand reviewer. Score clarity, engagement, brand alignment and CTA strength "
                "from 0 to 100 and list concrete issues with fixes.",
                settings,
                selection,
                repo_root,
            )
        )

    async def evaluate(self, artifact: Artifact, brand: BrandConstraints, criteria: list[str]) -> QualityEvaluation:
        checklist = "\n".join(f"- {criterion}" for criterion in criteria) or "- none"
        prompt = (
            f"{_describe_brand(brand)}\n\nAcceptance criteria:\n{checklist}\n\n"
            f"Title: {artifact.title}\nBody:\n{artifact.body}\nCall to action: {artifact.call_to_action or 'none'}"
        )
        review = await self.adapter.ainvoke(prompt)
        return QualityEvaluation(
            dimension_scores={
                QualityDimension.CLARITY: review.clarity,
                QualityDimension.ENGAGEMENT: review.engagement,
                QualityDimension.BRAND_ALIGNMENT: review.brand_alignment,
                QualityDimension.CTA_STRENGTH: review.cta_strength,
            },
            issues=[ValidationIssue(**issue.model_dump()) for issue in review.issues],
            suggestions=[Suggestion(**suggestion.model_dump()) for suggestion in review.suggestions],
            reasoning=review.reasoning,
        )


class LLMEffortEstimator:
    def __init__(self, adapter: StructuredOutputAdapter[EffortReview]) -> None:
        self.adapter = adapter

    @classmethod
    def from_settings(
        cls,
        settings: RuntimeSettings,
        *,
        selection: RuntimeModelSelection | None = None,
        repo_root: Path | None = None,
    ) -> "LLMEffortEstimator":
        return cls(
            _adapter(
                "estimator",
                EffortReview,
                "Estimate production effort for a campaign work item: hours (1-8), complexity, risk level, "
                "recommended retry attempts (1-3) and business ROI (1-10).",
                settings,
                selection,
                repo_root,
            )
        )

    async def estimate(self, item: WorkItem) -> EffortEstimate:
        review = await self.adapter.ainvoke(_describe_item(item))
        return EffortEstimate(
            item_id=item.item_id,
            title=item.title,
            estimated_hours=max(review.estimated_hours, 0.0),
            complexity=review.complexity,
            risk_level=review.risk_level,
            recommended_iterations=min(max(review.recommended_iterations, 1), 3),
            roi=min(max(review.roi, 1.0), 10.0),
        )


class LLMRiskAssessor:
    def __init__(self, adapter: StructuredOutputAdapter[RiskReview]) -> None:
        self.adapter = adapter

    @classmethod
    def from_settings(
        cls,
        settings: RuntimeSettings,
        *,
        selection: RuntimeModelSelection | None = None,
        repo_root: Path | None = None,
    ) -> "LLMRiskAssessor":
        return cls(
            _adapter(
                "risk",
                RiskReview,
                "Predict how likely a campaign work item is to fail review. Consider complexity, common failure "
                "points for its type, acceptance criteria clarity, channel risks and blockers. Score 0-100.",
                settings,
                selection,
                repo_root,
            )
        )

    async def assess_risk(self, item: WorkItem) -> RiskAssessment:
        review = await self.adapter.ainvoke(_describe_item(item))
        return RiskAssessment(
            item_id=item.item_id,
            title=item.title,
            risk_score=min(max(review.risk_score, 0), 100),
            factors=review.factors,
            preventive_measures=review.preventive_measures,
            recommended_iterations=max(review.recommended_iterations, 1),
        )


class LLMPreventionPlanner:
    def __init__(self, adapter: StructuredOutputAdapter[PreventionPlan]) -> None:
        self.adapter = adapter

    @classmethod
    def from_settings(
        cls,
        settings: RuntimeSettings,
        *,
        selection: RuntimeModelSelection | None = None,
        repo_root: Path | None = None,
    ) -> "LLMPreventionPlanner":
        return cls(
            _adapter(
                "risk",
                PreventionPlan,
                "Rewrite a risky campaign work item so it is less likely to fail review: make acceptance criteria "
                "specific and measurable, clarify the description, and note a simpler approach.",
                settings,
                selection,
                repo_root,
            )
        )

    async def plan_prevention(self, item: WorkItem, assessment: RiskAssessment) -> PreventionPlan:
        measures = "; ".join(assessment.preventive_measures)
        return await self.adapter.ainvoke(f"{_describe_item(item)}\nPreventive measures: {measures}")


class LLMVariantProposer:
    def __init__(self, adapter: StructuredOutputAdapter[VariantBatch]) -> None:
        self.adapter = adapter

    @classmethod
    def from_settings(
        cls,
        settings: RuntimeSettings,
        *,
        selection: RuntimeModelSelection | None = None,
        repo_root: Path | None = None,
    ) -> "LLMVariantProposer":
        return cls(
            _adapter(
                "variants",
                VariantBatch,
                "Write A/B test variants of a campaign artifact and predict each variant's performance (0-100).",
                settings,
                selection,
                repo_root,
                temperature=0.8,
            )
        )

    async def propose_variants(
        self,
        artifact: Artifact,
        brand: BrandConstraints,
        count: int,
        focus: VariantFocus,
    ) -> list[VariantDraft]:
        prompt = (
            f"{_describe_brand(brand)}\n\nOriginal title: {artifact.title}\nOriginal body:\n{artifact.body}\n"
            f"Original call to action: {artifact.call_to_action or 'none'}\n\n"
            f"Write {count} variants that differ in {focus.value}."
        )
        batch = await self.adapter.ainvoke(prompt)
        return batch.variants[:count]


# ---------------------------------------------------------------------------
# Deterministic providers
# ---------------------------------------------------------------------------

_BASE_HOURS: dict[WorkItemType, float] = {
    WorkItemType.SOCIAL: 1.5,
    WorkItemType.EMAIL: 2.0,
    WorkItemType.AD: 2.0,
    WorkItemType.BLOG: 4.0,
    WorkItemType.DESIGN: 4.0,
    WorkItemType.LANDING_PAGE: 5.0,
    WorkItemType.VIDEO: 6.0,
    WorkItemType.OTHER: 3.0,
}

_BASE_ROI: dict[WorkItemType, float] = {
    WorkItemType.AD: 8.0,
    WorkItemType.LANDING_PAGE: 8.0,
    WorkItemType.EMAIL: 7.0,
    WorkItemType.SOCIAL: 6.0,
    WorkItemType.VIDEO: 6.0,
    WorkItemType.BLOG: 5.0,
    WorkItemType.DESIGN: 5.0,
    WorkItemType.OTHER: 4.0,
}


class TemplateArtifactGenerator:
    """Builds drafts from the item, its criteria and the brand's key messages."""

    def __init__(self, call_to_action: str = "Get started today") -> None:
        self.call_to_action = call_to_action

    async def generate(self, context: GenerationContext) -> Artifact:
        item = context.item
        brand = context.brand
        lines = [item.description or item.title]
        if brand.key_messages:
            lines.append(" ".join(brand.key_messages))
        if brand.values:
            lines.append(f"Built on {', '.join(brand.values)}.")
        if brand.audience:
            lines.append(f"Made for {brand.audience}.")
        lines.extend(item.acceptance_criteria)
        if context.feedback is not None:
            lines.extend(
                suggestion.corrected_text for suggestion in context.feedback.suggestions if suggestion.corrected_text
            )
        if context.campaign_goal:
            lines.append(f"Your next step toward {context.campaign_goal}.")
        body = "\n".join(lines)
        for phrase in brand.banned_phrases:
            body = re.sub(re.escape(phrase), "", body, flags=re.IGNORECASE)
        return Artifact(
            item_id=item.item_id,
            title=item.title,
            body=body,
            call_to_action=self.call_to_action,
            prompt_used=f"template:{item.type.value}:attempt-{context.attempt}",
            provenance="template",
        )


class HeuristicQualityEvaluator:
    """Deterministic scorer over length, engagement cues, brand overlap, CTA wording and criteria coverage."""

    async def evaluate(self, artifact: Artifact, brand: BrandConstraints, criteria: list[str]) -> QualityEvaluation:
        text = f"{artifact.title}\n{artifact.body}\n{artifact.call_to_action}"
        artifact_tokens = tokens(text)
        issues: list[ValidationIssue] = []
        suggestions: list[Suggestion] = []
        verdict: bool | None = None

        words = len(artifact.body.split())
        if words < 15:
            clarity = 40
        elif words < 40:
            clarity = 75
        elif words <= 350:
            clarity = 90
        else:
            clarity = 70

        lowered = text.lower()
        engagement = 60
        if re.search(r"\byou(r)?\b", lowered):
            engagement += 20
        if "?" in text or "!" in text:
            engagement += 10
        if 2 <= len(artifact.title.split()) <= 12:
            engagement += 10
        audience_tokens = tokens(brand.audience)
        if audience_tokens and not audience_tokens & artifact_tokens:
            engagement -= 15
            issues.append(
                ValidationIssue(
                    dimension=QualityDimension.ENGAGEMENT,
                    severity=IssueSeverity.MINOR,
                    description=f"Does not speak to the target audience: {brand.audience}",
                )
            )
            suggestions.append(Suggestion(issue_ref="engagement", fix=f"Address {brand.audience} directly"))

        brand_tokens = tokens(" ".join([brand.name, brand.tone, *brand.values, *brand.key_messages]))
        if brand_tokens:
            overlap = len(brand_tokens & artifact_tokens) / len(brand_tokens)
            brand_alignment = 60 + round(40 * min(overlap * 2, 1.0))
        else:
            brand_alignment = 85
        for phrase in brand.banned_phrases:
            if phrase and phrase.lower() in lowered:
                brand_alignment = min(brand_alignment, 30)
                verdict = False
                issues.append(
                    ValidationIssue(
                        dimension=QualityDimension.BRAND_ALIGNMENT,
                        severity=IssueSeverity.CRITICAL,
                        description=f"Uses banned phrase '{phrase}'",
                    )
                )
                suggestions.append(Suggestion(issue_ref="brand_alignment", fix=f"Remove '{phrase}'"))

        if not artifact.call_to_action.strip():
            cta_strength = 30
        elif CTA_VERB_RE.search(artifact.call_to_action):
            cta_strength = 95
        else:
            cta_strength = 65

        for criterion in criteria:
            wanted = tokens(criterion)
            if not wanted:
                continue
            covered = len(wanted & artifact_tokens)
            if covered * 2 < len(wanted):
                verdict = False
                issues.append(
                    ValidationIssue(
                        dimension=QualityDimension.ACCEPTANCE,
                        severity=IssueSeverity.MAJOR,
                        description=f"Acceptance criterion not addressed: {criterion}",
                    )
                )
                suggestions.append(
                    Suggestion(issue_ref="acceptance", fix=f"Address: {criterion}", corrected_text=criterion)
                )

        scores = {
            QualityDimension.CLARITY: clarity,
            QualityDimension.ENGAGEMENT: min(engagement, 100),
            QualityDimension.BRAND_ALIGNMENT: brand_alignment,
            QualityDimension.CTA_STRENGTH: cta_strength,
        }
        for dimension, value in scores.items():
            if value < 70:
                issues.append(
                    ValidationIssue(
                        dimension=dimension,
                        severity=IssueSeverity.MINOR,
                        description=f"{dimension.value.replace('_', ' ')} scored {value}",
                    )
                )
                suggestions.append(Suggestion(issue_ref=dimension.value, fix=_DIMENSION_FIXES[dimension]))
        return QualityEvaluation(dimension_scores=scores, verdict=verdict, issues=issues, suggestions=suggestions)


_DIMENSION_FIXES: dict[QualityDimension, str] = {
    QualityDimension.CLARITY: "Expand the body to a clear, complete message of 40-350 words",
    QualityDimension.ENGAGEMENT: "Address the reader directly and add a question or hook",
    QualityDimension.BRAND_ALIGNMENT: "Work the brand's key messages and values into the copy",
    QualityDimension.CTA_STRENGTH: "Open the call to action with a strong verb such as 'Get' or 'Start'",
}


class HeuristicEffortEstimator:
    async def estimate(self, item: WorkItem) -> EffortEstimate:
        criteria = len(item.acceptance_criteria)
        hours = _BASE_HOURS[item.type] + 0.5 * max(criteria - 2, 0)
        if criteria <= 2:
            complexity = Level.LOW
        elif criteria <= 4:
            complexity = Level.MEDIUM
        else:
            complexity = Level.HIGH
        risk = Level.HIGH if item.type == WorkItemType.VIDEO or len(item.depends_on) > 2 else complexity
        iterations = {Level.LOW: 1, Level.MEDIUM: 2, Level.HIGH: 3}[risk]
        return EffortEstimate(
            item_id=item.item_id,
            title=item.title,
            estimated_hours=hours,
            complexity=complexity,
            risk_level=risk,
            recommended_iterations=iterations,
            roi=_BASE_ROI[item.type],
        )


class HeuristicRiskAssessor:
    async def assess_risk(self, item: WorkItem) -> RiskAssessment:
        score = 20
        factors: list[RiskFactor] = []
        if len(item.acceptance_criteria) > 4:
            score += 20
            factors.append(
                RiskFactor(
                    name="Many acceptance criteria",
                    severity=Level.MEDIUM,
                    description=f"{len(item.acceptance_criteria)} criteria must all be met",
                    mitigation="Validate early against each criterion",
                )
            )
        if not item.acceptance_criteria:
            score += 15
            factors.append(
                RiskFactor(
                    name="Unclear acceptance criteria",
                    severity=Level.MEDIUM,
                    description="No explicit criteria to validate against",
                    mitigation="Define measurable criteria before generation",
                )
            )
        if len(item.description.split()) < 8:
            score += 15
            factors.append(
                RiskFactor(
                    name="Thin brief",
                    severity=Level.LOW,
                    description="Description gives little creative direction",
                    mitigation="Expand the brief with audience and goal",
                )
            )
        if item.type in (WorkItemType.VIDEO, WorkItemType.LANDING_PAGE):
            score += 25
            factors.append(
                RiskFactor(
                    name="Complex format",
                    severity=Level.HIGH,
                    description=f"{item.type.value} items need multiple coordinated assets",
                    mitigation="Allocate extra iteration attempts",
                )
            )
        if item.depends_on:
            score += 5 * min(len(item.depends_on), 4)
            factors.append(
                RiskFactor(
                    name="Upstream dependencies",
                    severity=Level.LOW,
                    description=f"Blocked until {', '.join(item.depends_on)} complete",
                    mitigation="Schedule dependencies first",
                )
            )
        score = min(score, 100)
        return RiskAssessment(
            item_id=item.item_id,
            title=item.title,
            risk_score=score,
            factors=factors,
            preventive_measures=[factor.mitigation for factor in factors],
            recommended_iterations=3 if score > 70 else 2 if score > 40 else 1,
        )


class HeuristicPreventionPlanner:
    """Records preventive measures as approach notes and fills in missing criteria."""

    async def plan_prevention(self, item: WorkItem, assessment: RiskAssessment) -> PreventionPlan:
        criteria = list(item.acceptance_criteria) or [f"{item.title} states one clear call to action"]
        notes = f"Preventive measures: {'; '.join(assessment.preventive_measures)}"
        return PreventionPlan(
            improved_criteria=criteria,
            approach_notes=f"{item.notes}\n{notes}" if item.notes else notes,
        )


class TemplateVariantProposer:
    """Rewrites the call to action (or opening line) with fixed alternatives."""

    _CTAS = ("Start your free trial", "Claim your offer now", "Discover what's possible", "Join today")
    _OPENERS = ("Here's the news:", "Ready for more?", "Imagine this:", "Good news!")

    async def propose_variants(
        self,
        artifact: Artifact,
        brand: BrandConstraints,
        count: int,
        focus: VariantFocus,
    ) -> list[VariantDraft]:
        drafts: list[VariantDraft] = []
        for index in range(count):
            if focus == VariantFocus.CTA:
                cta = self._CTAS[index % len(self._CTAS)]
                body = artifact.body
            else:
                cta = artifact.call_to_action
                body = f"{self._OPENERS[index % len(self._OPENERS)]} {artifact.body}"
            drafts.append(
                VariantDraft(
                    title=artifact.title,
                    body=body,
                    call_to_action=cta,
                    predicted_performance=max(80 - 7 * index, 0),
                    reasoning=f"{focus.value} alternative {index + 1}",
                )
            )
        return drafts
