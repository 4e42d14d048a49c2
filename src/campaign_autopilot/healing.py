from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, TypedDict

from langgraph.graph import END, START, StateGraph
from langgraph.types import Command

from .capabilities import ArtifactGenerator, GenerationContext, call_capability
from .errors import CapabilityError
from .models import (
    Artifact,
    BatchHealingFailure,
    BatchHealingReport,
    BrandConstraints,
    ExecutionProgress,
    ExecutionStatus,
    HealingAttempt,
    HealingFeedback,
    HealingOutcome,
    HealingReport,
    ValidationResult,
    WorkItem,
)
from .progress import ProgressReporter, ProgressSink
from .settings import RuntimeSettings, steps_for_rounds
from .validation import QualityValidator

logger = logging.getLogger(__name__)


class HealingState(TypedDict, total=False):
    item: WorkItem
    brand: BrandConstraints
    campaign_goal: str
    round_number: int
    max_attempts: int
    artifact: Artifact
    result: ValidationResult
    candidate: Artifact | None
    attempts: list[HealingAttempt]
    history: list[ValidationResult]
    outcome: HealingOutcome
    reporter: ProgressReporter | None
    progress_context: ExecutionProgress | None


def build_feedback(round_number: int, result: ValidationResult) -> HealingFeedback:
    return HealingFeedback(
        round_number=round_number,
        score=result.score,
        focus_dimension=result.weakest_dimension,
        issues=result.issues,
        suggestions=result.suggestions,
    )


class HealingLoop:
    """Bounded retry-with-feedback loop: score -> route -> regenerate -> validate -> route -> healed/exhausted.

    ``max_attempts`` bounds scoring rounds. The initial draft is round 1, so a
    run performs at most ``max_attempts - 1`` regenerations. The round counter
    is carried in graph state and every regeneration appends one HealingAttempt.
    """

    def __init__(
        self,
        *,
        generator: ArtifactGenerator,
        validator: QualityValidator,
        settings: RuntimeSettings | None = None,
    ) -> None:
        self.generator = generator
        self.validator = validator
        self.settings = settings if settings is not None else validator.settings
        self.graph = self._build_graph().compile()

    def _build_graph(self) -> StateGraph:
        graph = StateGraph(HealingState)
        graph.add_node("score", self._score)
        graph.add_node("route", self._route)
        graph.add_node("regenerate", self._regenerate)
        graph.add_node("validate", self._validate)
        graph.add_node("healed", self._healed)
        graph.add_node("exhausted", self._exhausted)

        graph.add_edge(START, "score")
        graph.add_edge("score", "route")
        graph.add_edge("validate", "route")
        graph.add_edge("healed", END)
        graph.add_edge("exhausted", END)
        return graph

    def _emit(self, state: HealingState, status: ExecutionStatus, message: str, artifact: Artifact | None) -> None:
        reporter = state.get("reporter")
        if reporter is None:
            return
        base = state.get("progress_context") or ExecutionProgress(current_item_id=state["item"].item_id)
        reporter.emit(
            base.model_copy(
                update={
                    "status": status,
                    "message": message,
                    "artifacts": [*base.artifacts, artifact] if artifact is not None else list(base.artifacts),
                }
            )
        )

    async def _score(self, state: HealingState) -> dict[str, Any]:
        artifact = state["artifact"]
        self._emit(state, ExecutionStatus.VALIDATING, "Validating initial draft", artifact)
        result = await self.validator.validate(artifact, state["brand"], state["item"].acceptance_criteria)
        logger.info("Initial draft for %s scored %d (passed=%s)", state["item"].item_id, result.score, result.passed)
        return {"result": result, "history": [*state.get("history", []), result]}

    def _route(self, state: HealingState) -> Command[str]:
        if state["result"].passed:
            return Command(goto="healed")
        if int(state.get("round_number", 1)) >= int(state["max_attempts"]):
            return Command(goto="exhausted")
        return Command(goto="regenerate")

    async def _regenerate(self, state: HealingState) -> Command[str]:
        item = state["item"]
        round_number = int(state.get("round_number", 1)) + 1
        result = state["result"]
        feedback = build_feedback(round_number - 1, result)
        focus = feedback.focus_dimension.value if feedback.focus_dimension is not None else "overall quality"
        self._emit(
            state,
            ExecutionStatus.HEALING,
            f"Healing round {round_number} of {state['max_attempts']}, focusing on {focus}",
            None,
        )
        context = GenerationContext(
            item=item,
            brand=state["brand"],
            campaign_goal=state.get("campaign_goal", ""),
            attempt=round_number,
            prior_artifact=state["artifact"],
            feedback=feedback,
        )
        try:
            candidate = await call_capability(
                "generator",
                self.generator.generate(context),
                timeout=self.settings.capability_timeout_seconds,
            )
        except CapabilityError as exc:
            logger.warning("Regeneration round %d for %s failed: %s", round_number, item.item_id, exc)
            attempt = HealingAttempt(
                sequence=round_number - 1,
                issues_addressed=result.issues,
                suggestions_applied=result.suggestions,
                error=str(exc),
            )
            return Command(
                goto="route",
                update={
                    "round_number": round_number,
                    "candidate": None,
                    "attempts": [*state.get("attempts", []), attempt],
                },
            )
        return Command(goto="validate", update={"round_number": round_number, "candidate": candidate})

    async def _validate(self, state: HealingState) -> dict[str, Any]:
        candidate = state["candidate"]
        previous = state["result"]
        self._emit(state, ExecutionStatus.VALIDATING, f"Validating round {state['round_number']}", candidate)
        result = await self.validator.validate(candidate, state["brand"], state["item"].acceptance_criteria)
        attempt = HealingAttempt(
            sequence=int(state["round_number"]) - 1,
            issues_addressed=previous.issues,
            suggestions_applied=previous.suggestions,
            artifact=candidate,
            result=result,
        )
        logger.info(
            "Healing round %d for %s scored %d (passed=%s)",
            state["round_number"],
            state["item"].item_id,
            result.score,
            result.passed,
        )
        return {
            "artifact": candidate,
            "result": result,
            "candidate": None,
            "attempts": [*state.get("attempts", []), attempt],
            "history": [*state.get("history", []), result],
        }

    def _healed(self, state: HealingState) -> dict[str, Any]:
        return {"outcome": HealingOutcome.HEALED}

    def _exhausted(self, state: HealingState) -> dict[str, Any]:
        logger.warning(
            "Healing exhausted for %s after %d rounds (last score %d)",
            state["item"].item_id,
            state.get("round_number", 1),
            state["result"].score,
        )
        return {"outcome": HealingOutcome.EXHAUSTED}

    async def heal(
        self,
        item: WorkItem,
        artifact: Artifact,
        brand: BrandConstraints | None = None,
        max_attempts: int | None = None,
        on_progress: ProgressSink | ProgressReporter | None = None,
        *,
        campaign_goal: str = "",
        progress_context: ExecutionProgress | None = None,
    ) -> HealingReport:
        """Score ``artifact`` and regenerate it with feedback until it passes or rounds run out.

        Args:
            item: Work item the artifact attempts to satisfy.
            artifact: Initial draft, scored as round 1.
            brand: Brand constraints passed to generation and validation.
            max_attempts: Scoring-round bound; defaults to ``settings.max_heal_attempts``.
            on_progress: Sink or reporter receiving a snapshot on every transition.
            campaign_goal: Forwarded to the generator.
            progress_context: Backlog-level fields copied into emitted snapshots.

        Returns:
            A HealingReport. Exhausted runs carry the last candidate, not the original draft.

        Raises:
            ValueError: If ``max_attempts`` is below 1.
        """
        attempts_bound = self.settings.max_heal_attempts if max_attempts is None else max_attempts
        if attempts_bound < 1:
            raise ValueError(f"max_attempts must be >= 1, got: {attempts_bound}")

        if isinstance(on_progress, ProgressReporter):
            reporter: ProgressReporter | None = on_progress
        elif on_progress is not None:
            reporter = ProgressReporter(on_progress)
        else:
            reporter = None
        final = await self.graph.ainvoke(
            {
                "item": item,
                "brand": brand if brand is not None else BrandConstraints(),
                "campaign_goal": campaign_goal,
                "round_number": 1,
                "max_attempts": attempts_bound,
                "artifact": artifact,
                "candidate": None,
                "attempts": [],
                "history": [],
                "reporter": reporter,
                "progress_context": progress_context,
            },
            config={"recursion_limit": max(self.settings.recursion_limit, steps_for_rounds(attempts_bound))},
        )

        return HealingReport(
            item_id=item.item_id,
            outcome=final["outcome"],
            final_artifact=final["artifact"],
            final_result=final["result"],
            attempts=list(final.get("attempts", [])),
            history=list(final.get("history", [])),
            rounds_used=int(final.get("round_number", 1)),
        )

    async def heal_batch(
        self,
        drafts: Sequence[tuple[WorkItem, Artifact]],
        brand: BrandConstraints | None = None,
        max_attempts: int | None = None,
        on_progress: ProgressSink | ProgressReporter | None = None,
        *,
        campaign_goal: str = "",
    ) -> BatchHealingReport:
        """Heal each (item, draft) pair in order; exhausted drafts become failures with a reason."""
        if isinstance(on_progress, ProgressReporter):
            reporter: ProgressReporter | None = on_progress
        elif on_progress is not None:
            reporter = ProgressReporter(on_progress)
        else:
            reporter = None

        batch = BatchHealingReport()
        for index, (item, artifact) in enumerate(drafts, start=1):
            progress = ExecutionProgress(current_item_id=item.item_id, item_index=index - 1, total_items=len(drafts))
            if reporter is not None:
                reporter.emit(
                    progress.model_copy(
                        update={"status": ExecutionStatus.HEALING, "message": f"Healing artifact {index}/{len(drafts)}"}
                    )
                )
            report = await self.heal(
                item,
                artifact,
                brand,
                max_attempts,
                reporter,
                campaign_goal=campaign_goal,
                progress_context=progress,
            )
            if report.healed:
                batch.healed.append(report)
                continue
            batch.failures.append(
                BatchHealingFailure(
                    item_id=item.item_id,
                    artifact=report.final_artifact,
                    reason=f"Failed validation after {report.rounds_used} rounds (score: {report.final_result.score})",
                )
            )
        logger.info("Batch healing: %d healed, %d failed", len(batch.healed), len(batch.failures))
        return batch


@dataclass(frozen=True)
class HealingStats:
    total_attempts: int
    successful_heals: int
    healing_rate_percent: int
    average_score: int
    distinct_issues: list[str]


def healing_stats(attempts: list[HealingAttempt]) -> HealingStats:
    scores = [attempt.result.score for attempt in attempts if attempt.result is not None]
    successes = sum(1 for attempt in attempts if attempt.succeeded)
    issues: list[str] = []
    for attempt in attempts:
        for issue in attempt.issues_addressed:
            if issue.description not in issues:
                issues.append(issue.description)
    return HealingStats(
        total_attempts=len(attempts),
        successful_heals=successes,
        healing_rate_percent=round(successes / len(attempts) * 100) if attempts else 0,
        average_score=round(sum(scores) / len(scores)) if scores else 0,
        distinct_issues=issues,
    )
