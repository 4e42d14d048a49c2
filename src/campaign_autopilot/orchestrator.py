from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from .capabilities import ArtifactGenerator, GenerationContext, QualityEvaluator, call_capability
from .errors import CancellationRequested, CapabilityError
from .healing import HealingLoop
from .models import (
    AllocationPlan,
    Artifact,
    Backlog,
    ExecutionLogEntry,
    ExecutionProgress,
    ExecutionStatus,
    HealingAttempt,
    ItemExecutionResult,
    RunSummary,
    ValidationResult,
    WorkItem,
)
from .progress import ProgressReporter, ProgressSink
from .sequencing import ReadinessTracker, build_sequence
from .settings import RuntimeSettings
from .validation import QualityValidator

logger = logging.getLogger(__name__)


@dataclass
class ExecutionSession:
    """Caller-owned execution state shared across orchestrator calls.

    Holds the iteration counter, learnings, execution log and per-item attempt,
    validation and iteration-spend history. Independent runs use independent
    sessions.
    """

    default_budget: int = 6
    iteration: int = 0
    learnings: list[str] = field(default_factory=list)
    log: list[ExecutionLogEntry] = field(default_factory=list)
    attempts: dict[str, list[HealingAttempt]] = field(default_factory=dict)
    validations: dict[str, list[ValidationResult]] = field(default_factory=dict)
    spent: dict[str, int] = field(default_factory=dict)
    budgets: dict[str, int] = field(default_factory=dict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def budget_for(self, item_id: str) -> int:
        return self.budgets.get(item_id, self.default_budget)

    def remaining(self, item_id: str) -> int:
        return max(self.budget_for(item_id) - self.spent.get(item_id, 0), 0)

    def apply_allocation(self, plan: AllocationPlan) -> None:
        for allocation in plan.allocations:
            self.budgets[allocation.item_id] = allocation.estimate.recommended_iterations

    def record(self, item_id: str, action: str, passed: bool, message: str) -> ExecutionLogEntry:
        entry = ExecutionLogEntry(item_id=item_id, action=action, passed=passed, message=message)
        self.log.append(entry)
        return entry

    def add_learning(self, item: WorkItem, passed: bool, message: str) -> str:
        stamp = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")
        mark = "PASS" if passed else "FAIL"
        learning = f"[{stamp}] {mark} {item.title} - {message}"
        self.learnings.append(learning)
        return learning

    def render_learnings(self, backlog: Backlog) -> str:
        completed = [item for item in backlog.items if item.completed]
        lines = [
            f"# Campaign Execution Learnings - {backlog.brand.name or backlog.backlog_id}",
            "",
        ]
        if backlog.campaign_goal:
            lines.extend([f"Goal: {backlog.campaign_goal}", ""])
        lines.extend(
            [
                f"## Generated {datetime.now(UTC).strftime('%Y-%m-%d %H:%M:%S')} UTC",
                "",
                f"Progress: {len(completed)}/{len(backlog.items)} items complete after {self.iteration} iterations",
                "",
                *(f"- {learning}" for learning in self.learnings),
                "",
                "## Completed Items",
                "",
                *(f"- {item.title}" for item in completed),
            ]
        )
        return "\n".join(lines).rstrip() + "\n"

    def write_learnings(self, backlog: Backlog, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.render_learnings(backlog), encoding="utf-8")
        logger.info("Wrote %d learnings to %s", len(self.learnings), path)
        return path


class ExecutionOrchestrator:
    """Drives a backlog to completion through generation, validation and healing."""

    def __init__(
        self,
        *,
        generator: ArtifactGenerator,
        evaluator: QualityEvaluator,
        settings: RuntimeSettings | None = None,
    ) -> None:
        self.settings = settings if settings is not None else RuntimeSettings.from_env()
        self.generator = generator
        self.validator = QualityValidator(evaluator, settings=self.settings)
        self.healing = HealingLoop(generator=generator, validator=self.validator, settings=self.settings)

    def new_session(self, plan: AllocationPlan | None = None) -> ExecutionSession:
        session = ExecutionSession(default_budget=self.settings.item_iteration_budget)
        if plan is not None:
            session.apply_allocation(plan)
        return session

    @staticmethod
    def _reporter(on_progress: ProgressSink | ProgressReporter | None) -> ProgressReporter:
        if isinstance(on_progress, ProgressReporter):
            return on_progress
        return ProgressReporter(on_progress)

    def _next_runnable(self, backlog: Backlog, session: ExecutionSession) -> WorkItem | None:
        tracker = ReadinessTracker(backlog.items)
        for item_id in tracker.ready_ids():
            if session.remaining(item_id) > 0:
                return backlog.get_item(item_id)
        return None

    async def execute_next(
        self,
        backlog: Backlog,
        session: ExecutionSession | None = None,
        on_progress: ProgressSink | ProgressReporter | None = None,
    ) -> ItemExecutionResult:
        """Execute the first ready, incomplete item that still has iteration budget.

        A fully complete backlog returns success without touching the session or
        emitting progress. When nothing is runnable (every remaining item is
        blocked or out of budget) the result is unsuccessful and nothing changes.

        Raises:
            ConfigurationError: If the backlog's dependency graph is invalid.
        """
        if backlog.is_complete:
            return ItemExecutionResult(success=True, message="Backlog already complete")
        build_sequence(backlog.items)
        session = session if session is not None else self.new_session()
        item = self._next_runnable(backlog, session)
        if item is None:
            return ItemExecutionResult(success=False, message="No runnable items: remaining items are blocked or out of budget")
        return await self._execute_item(backlog, item, session, self._reporter(on_progress))

    async def _execute_item(
        self,
        backlog: Backlog,
        item: WorkItem,
        session: ExecutionSession,
        reporter: ProgressReporter,
    ) -> ItemExecutionResult:
        async with session.lock:
            session.iteration += 1
            iteration = session.iteration
        base = ExecutionProgress(
            backlog_id=backlog.backlog_id,
            current_item_id=item.item_id,
            item_index=backlog.index_of(item.item_id),
            total_items=len(backlog.items),
            iteration=iteration,
            learnings=list(session.learnings),
        )
        reporter.emit(base.model_copy(update={"status": ExecutionStatus.GENERATING, "message": f"Generating {item.title}"}))
        logger.info("Iteration %d: executing %s (%s)", iteration, item.item_id, item.title)

        context = GenerationContext(item=item, brand=backlog.brand, campaign_goal=backlog.campaign_goal)
        try:
            draft: Artifact = await call_capability(
                "generator",
                self.generator.generate(context),
                timeout=self.settings.capability_timeout_seconds,
            )
        except CapabilityError as exc:
            logger.warning("Initial generation failed for %s: %s", item.item_id, exc)
            async with session.lock:
                session.spent[item.item_id] = session.spent.get(item.item_id, 0) + 1
                session.record(item.item_id, "Generation", False, str(exc))
                session.add_learning(item, False, f"Generation failed: {exc}")
                learnings = list(session.learnings)
            reporter.emit(
                base.model_copy(
                    update={
                        "status": ExecutionStatus.FAILED,
                        "message": f"Generation failed: {exc}",
                        "learnings": learnings,
                    }
                )
            )
            return ItemExecutionResult(success=False, item_id=item.item_id, message=str(exc))

        max_attempts = max(min(self.settings.max_heal_attempts, session.remaining(item.item_id)), 1)
        report = await self.healing.heal(
            item,
            draft,
            backlog.brand,
            max_attempts,
            reporter,
            campaign_goal=backlog.campaign_goal,
            progress_context=base,
        )

        result = report.final_result
        async with session.lock:
            session.spent[item.item_id] = session.spent.get(item.item_id, 0) + report.rounds_used
            session.attempts.setdefault(item.item_id, []).extend(report.attempts)
            session.validations.setdefault(item.item_id, []).extend(report.history)
            if report.healed:
                backlog.mark_complete(item.item_id, result)
                message = f"Passed with score {result.score} after {report.rounds_used} round(s)"
            else:
                issue = result.issues[0].description if result.issues else "below threshold"
                message = f"Validation failed with score {result.score}: {issue}"
            session.record(item.item_id, "Validation", report.healed, message)
            session.add_learning(item, report.healed, message)
            learnings = list(session.learnings)

        reporter.emit(
            base.model_copy(
                update={
                    "status": ExecutionStatus.COMPLETE if report.healed else ExecutionStatus.FAILED,
                    "message": f"Item complete: {item.title}" if report.healed else message,
                    "artifacts": [report.final_artifact],
                    "learnings": learnings,
                }
            )
        )
        return ItemExecutionResult(
            success=report.healed,
            item_id=item.item_id,
            artifacts=[report.final_artifact],
            report=report,
            message=message,
        )

    async def run_to_completion(
        self,
        backlog: Backlog,
        max_iterations: int | None = None,
        on_progress: ProgressSink | ProgressReporter | None = None,
        *,
        session: ExecutionSession | None = None,
        cancel_event: asyncio.Event | None = None,
        concurrent: bool = False,
    ) -> RunSummary:
        """Execute items until the backlog completes, stalls or ``max_iterations`` items have run.

        With ``concurrent`` set, every ready item of the current wave runs
        concurrently under a semaphore of ``worker_pool_size``. Cancellation is
        checked before each item starts; in-flight items finish their round.

        Raises:
            ConfigurationError: If the backlog's dependency graph is invalid.
        """
        limit = self.settings.max_total_iterations if max_iterations is None else max_iterations
        if limit < 1:
            raise ValueError(f"max_iterations must be >= 1, got: {limit}")
        session = session if session is not None else self.new_session()
        reporter = self._reporter(on_progress)
        build_sequence(backlog.items)

        cancelled = False
        try:
            if concurrent:
                await self._run_phased(backlog, session, reporter, limit, cancel_event)
            else:
                await self._run_sequential(backlog, session, reporter, limit, cancel_event)
        except CancellationRequested:
            cancelled = True
            logger.info("Run of %s cancelled after %d iterations", backlog.backlog_id, session.iteration)

        summary = self._summarize(backlog, session, cancelled)
        if summary.complete:
            reporter.emit(
                ExecutionProgress(
                    backlog_id=backlog.backlog_id,
                    total_items=len(backlog.items),
                    item_index=len(backlog.items),
                    iteration=session.iteration,
                    status=ExecutionStatus.COMPLETE,
                    message="Backlog complete",
                    learnings=list(session.learnings),
                )
            )
        return summary

    async def _run_sequential(
        self,
        backlog: Backlog,
        session: ExecutionSession,
        reporter: ProgressReporter,
        limit: int,
        cancel_event: asyncio.Event | None,
    ) -> None:
        executed = 0
        while not backlog.is_complete and executed < limit:
            if cancel_event is not None and cancel_event.is_set():
                raise CancellationRequested("cancellation requested before next item")
            item = self._next_runnable(backlog, session)
            if item is None:
                logger.warning("No runnable items left in %s; stopping", backlog.backlog_id)
                return
            await self._execute_item(backlog, item, session, reporter)
            executed += 1

    async def _run_phased(
        self,
        backlog: Backlog,
        session: ExecutionSession,
        reporter: ProgressReporter,
        limit: int,
        cancel_event: asyncio.Event | None,
    ) -> None:
        tracker = ReadinessTracker(backlog.items)
        semaphore = asyncio.Semaphore(self.settings.worker_pool_size)
        executed = 0

        async def run_one(item: WorkItem) -> bool:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    return False
                result = await self._execute_item(backlog, item, session, reporter)
            if result.success:
                released = tracker.mark_complete(item.item_id)
                if released:
                    logger.debug("%s released %s", item.item_id, ", ".join(released))
            return True

        while not backlog.is_complete and executed < limit:
            if cancel_event is not None and cancel_event.is_set():
                raise CancellationRequested("cancellation requested before next wave")
            wave = [item_id for item_id in tracker.ready_ids() if session.remaining(item_id) > 0]
            if not wave:
                logger.warning("No runnable items left in %s; stopping", backlog.backlog_id)
                return
            wave = wave[: limit - executed]
            logger.info("Starting wave of %d item(s): %s", len(wave), ", ".join(wave))
            started = await asyncio.gather(*(run_one(backlog.get_item(item_id)) for item_id in wave))
            executed += sum(1 for flag in started if flag)
            if not all(started):
                raise CancellationRequested("cancellation requested during wave")

    def _summarize(self, backlog: Backlog, session: ExecutionSession, cancelled: bool) -> RunSummary:
        incomplete = [item.item_id for item in backlog.items if not item.completed]
        return RunSummary(
            backlog_id=backlog.backlog_id,
            iterations=session.iteration,
            completed_items=[item.item_id for item in backlog.items if item.completed],
            incomplete_items=incomplete,
            progress=backlog.progress(),
            cancelled=cancelled,
            exhausted_items=[item_id for item_id in incomplete if session.remaining(item_id) == 0],
        )
