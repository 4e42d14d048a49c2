from __future__ import annotations

import asyncio
from collections.abc import Sequence

import pytest

from campaign_autopilot.capabilities import GenerationContext
from campaign_autopilot.models import (
    Artifact,
    Backlog,
    BrandConstraints,
    EffortEstimate,
    ExecutionProgress,
    QualityEvaluation,
    RiskAssessment,
    WorkItem,
)
from campaign_autopilot.settings import RuntimeSettings

Outcome = int | QualityEvaluation | Exception


class ScriptedGenerator:
    """Returns numbered drafts; the 1-based call numbers in ``failures`` raise instead."""

    def __init__(self, failures: Sequence[int] = (), delay: float = 0.0) -> None:
        self.failures = set(failures)
        self.delay = delay
        self.contexts: list[GenerationContext] = []
        self.active = 0
        self.peak_active = 0

    async def generate(self, context: GenerationContext) -> Artifact:
        self.contexts.append(context)
        call = len(self.contexts)
        self.active += 1
        self.peak_active = max(self.peak_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if call in self.failures:
                raise RuntimeError(f"provider outage on call {call}")
            return Artifact(
                item_id=context.item.item_id,
                title=context.item.title,
                body=f"draft {call} for {context.item.item_id}",
                provenance="scripted",
            )
        finally:
            self.active -= 1


class ScriptedEvaluator:
    """Plays back outcomes per call; the last outcome repeats once the script runs out."""

    def __init__(self, outcomes: Sequence[Outcome]) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[Artifact] = []

    async def evaluate(self, artifact: Artifact, brand: BrandConstraints, criteria: list[str]) -> QualityEvaluation:
        self.calls.append(artifact)
        outcome = self.outcomes[min(len(self.calls), len(self.outcomes)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, QualityEvaluation):
            return outcome
        return QualityEvaluation(score=outcome)


class PerItemEvaluator:
    """Scripted scores keyed by item id; unscripted items score ``default``."""

    def __init__(self, scripts: dict[str, Sequence[int]] | None = None, default: int = 90) -> None:
        self.scripts = {item_id: list(scores) for item_id, scores in (scripts or {}).items()}
        self.default = default
        self.calls: dict[str, int] = {}

    async def evaluate(self, artifact: Artifact, brand: BrandConstraints, criteria: list[str]) -> QualityEvaluation:
        count = self.calls.get(artifact.item_id, 0)
        self.calls[artifact.item_id] = count + 1
        script = self.scripts.get(artifact.item_id)
        if not script:
            return QualityEvaluation(score=self.default)
        return QualityEvaluation(score=script[min(count, len(script) - 1)])


class FixedEstimator:
    def __init__(self, estimates: dict[str, EffortEstimate], failing: Sequence[str] = ()) -> None:
        self.estimates = estimates
        self.failing = set(failing)

    async def estimate(self, item: WorkItem) -> EffortEstimate:
        if item.item_id in self.failing:
            raise RuntimeError("estimation service unavailable")
        return self.estimates[item.item_id]


class FixedRiskAssessor:
    def __init__(self, scores: dict[str, int], failing: Sequence[str] = ()) -> None:
        self.scores = scores
        self.failing = set(failing)

    async def assess_risk(self, item: WorkItem) -> RiskAssessment:
        if item.item_id in self.failing:
            raise RuntimeError("risk service unavailable")
        return RiskAssessment(item_id=item.item_id, risk_score=self.scores[item.item_id])


class ProgressRecorder:
    def __init__(self) -> None:
        self.events: list[ExecutionProgress] = []

    def __call__(self, progress: ExecutionProgress) -> None:
        self.events.append(progress)


def make_item(item_id: str, *depends_on: str, hours: float = 2.0, **fields: object) -> WorkItem:
    fields.setdefault("title", f"Item {item_id}")
    return WorkItem(item_id=item_id, depends_on=list(depends_on), estimated_hours=hours, **fields)


@pytest.fixture
def settings() -> RuntimeSettings:
    return RuntimeSettings()


@pytest.fixture
def brand() -> BrandConstraints:
    return BrandConstraints(
        name="Evergreen Apparel",
        tone="playful",
        values=["sustainability", "comfort"],
        key_messages=["Sustainable style for everyday life"],
        audience="returning customers",
        banned_phrases=["cheap"],
    )


@pytest.fixture
def backlog(brand: BrandConstraints) -> Backlog:
    return Backlog(
        backlog_id="BL-test",
        campaign_goal="Drive spring collection preorders",
        brand=brand,
        items=[make_item("A"), make_item("B", "A"), make_item("C")],
    )
