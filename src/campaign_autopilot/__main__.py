"""Entry point for `python -m campaign_autopilot` and the `campaign-autopilot` CLI script."""

from __future__ import annotations

import argparse
import asyncio
import logging
from collections.abc import Sequence
from pathlib import Path

from pydantic import ValidationError

from campaign_autopilot.allocation import BudgetAllocator, rebalance
from campaign_autopilot.capabilities import PreventionPlanner
from campaign_autopilot.errors import ConfigurationError
from campaign_autopilot.models import Backlog, ExecutionProgress, RunSummary
from campaign_autopilot.orchestrator import ExecutionOrchestrator
from campaign_autopilot.providers import (
    HeuristicEffortEstimator,
    HeuristicPreventionPlanner,
    HeuristicQualityEvaluator,
    HeuristicRiskAssessor,
    LLMArtifactGenerator,
    LLMEffortEstimator,
    LLMPreventionPlanner,
    LLMQualityEvaluator,
    LLMRiskAssessor,
    TemplateArtifactGenerator,
)
from campaign_autopilot.risk import RiskPredictor
from campaign_autopilot.sequencing import build_sequence
from campaign_autopilot.settings import RuntimeSettings
from campaign_autopilot.validation import validation_report


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a campaign backlog to completion")
    parser.add_argument("--backlog-file", type=Path, required=True, help="Path to the backlog JSON document")
    parser.add_argument(
        "--total-hours",
        type=float,
        default=None,
        help="Hour ceiling; when set, per-item iteration budgets come from the allocation plan",
    )
    parser.add_argument("--max-iterations", type=int, default=None, help="Upper bound on item executions for this run")
    parser.add_argument("--concurrent", action="store_true", help="Run independent items of a phase concurrently")
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Use the deterministic template/heuristic providers instead of LLM-backed ones",
    )
    parser.add_argument("--learnings-out", type=Path, default=None, help="Write a markdown learnings report here")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )
    return parser.parse_args(argv)


def load_backlog(path: Path) -> Backlog:
    if not path.is_file():
        raise FileNotFoundError(f"Backlog file does not exist: {path}")
    return Backlog.model_validate_json(path.read_text(encoding="utf-8"))


def print_progress(progress: ExecutionProgress) -> None:
    print(f"[{progress.status.value}] {progress.current_item_id or '-'} {progress.message}")


async def run(args: argparse.Namespace, backlog: Backlog, settings: RuntimeSettings) -> RunSummary:
    if args.offline:
        generator, evaluator = TemplateArtifactGenerator(), HeuristicQualityEvaluator()
        estimator, assessor = HeuristicEffortEstimator(), HeuristicRiskAssessor()
        planner: PreventionPlanner = HeuristicPreventionPlanner()
    else:
        generator = LLMArtifactGenerator.from_settings(settings)
        evaluator = LLMQualityEvaluator.from_settings(settings)
        estimator = LLMEffortEstimator.from_settings(settings)
        assessor = LLMRiskAssessor.from_settings(settings)
        planner = LLMPreventionPlanner.from_settings(settings)

    orchestrator = ExecutionOrchestrator(generator=generator, evaluator=evaluator, settings=settings)
    session = orchestrator.new_session()
    if args.total_hours is not None:
        plan = await BudgetAllocator(estimator, settings=settings).allocate_budget(backlog.items, args.total_hours)
        if plan.budget_remaining < 0:
            logging.warning("Allocation exceeds %gh by %gh; rebalancing", args.total_hours, -plan.budget_remaining)
            plan = rebalance(plan)
        session.apply_allocation(plan)
        print(f"budget_remaining={plan.budget_remaining:g}")

    predictor = RiskPredictor(assessor, planner=planner, settings=settings)
    risk = await predictor.assess_backlog_risk(backlog.items)
    logging.info(
        "Backlog risk %s (average %d, %d high-risk items)",
        risk.overall_level.value,
        risk.average_risk_score,
        len(risk.high_risk_items),
    )
    for assessment in risk.assessments:
        if assessment.item_id in risk.high_risk_items:
            index = backlog.index_of(assessment.item_id)
            improved = await predictor.apply_preventive_measures(backlog.items[index], assessment)
            if improved is not backlog.items[index]:
                backlog.items[index] = improved
                print(f"preventive_rewrite={assessment.item_id}")

    summary = await orchestrator.run_to_completion(
        backlog,
        args.max_iterations,
        print_progress,
        session=session,
        concurrent=args.concurrent,
    )
    final_results = [results[-1] for results in session.validations.values() if results]
    quality = validation_report(final_results)
    print(f"quality_consistency={quality.overall_consistency}")
    for recommendation in quality.recommendations:
        print(f"recommendation: {recommendation}")
    if args.learnings_out is not None:
        session.write_learnings(backlog, args.learnings_out)
    return summary


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = RuntimeSettings.from_env()
        backlog = load_backlog(args.backlog_file)
        sequence = build_sequence(backlog.items)
    except (OSError, ValueError, ValidationError) as exc:
        logging.error("Unable to load backlog input: %s", exc)
        return 1

    for phase in sequence.phases:
        print(f"{phase.name}: {', '.join(phase.item_ids)} ({phase.duration_hours:g}h)")

    try:
        summary = asyncio.run(run(args, backlog, settings))
    except (ConfigurationError, RuntimeError) as exc:
        logging.error("Campaign execution failed: %s", exc)
        return 1

    print(f"campaign_complete={summary.complete}")
    print("run_summary:")
    print(summary.model_dump_json(indent=2))
    return 0 if summary.complete else 1


if __name__ == "__main__":
    raise SystemExit(main())
