from importlib.metadata import PackageNotFoundError, version

from .allocation import BudgetAllocator, budget_report, build_allocation_plan, rebalance
from .capabilities import (
    ArtifactGenerator,
    EffortEstimator,
    GenerationContext,
    PreventionPlanner,
    QualityEvaluator,
    RiskAssessor,
    VariantProposer,
)
from .errors import CancellationRequested, CapabilityError, ConfigurationError
from .healing import HealingLoop, HealingStats, healing_stats
from .model_selection import DEFAULT_MODELS_BY_TIER, RuntimeModelSelection
from .models import (
    AllocationPlan,
    Artifact,
    ArtifactVariant,
    Backlog,
    BatchHealingFailure,
    BatchHealingReport,
    BrandConstraints,
    BudgetReport,
    DependencyEdge,
    EffortEstimate,
    ExecutionLogEntry,
    ExecutionProgress,
    ExecutionStatus,
    HealingAttempt,
    HealingFeedback,
    HealingOutcome,
    HealingReport,
    ItemAllocation,
    ItemExecutionResult,
    Level,
    Phase,
    PreventionPlan,
    QualityDimension,
    QualityEvaluation,
    RiskAssessment,
    RiskFactor,
    RiskReport,
    RunSummary,
    SequencePlan,
    Suggestion,
    ValidationIssue,
    ValidationReport,
    ValidationResult,
    VariantDraft,
    VariantFocus,
    VariantPlan,
    WorkItem,
    WorkItemType,
)
from .orchestrator import ExecutionOrchestrator, ExecutionSession
from .progress import ProgressReporter
from .risk import RiskPredictor, summarize_risk
from .sequencing import ReadinessTracker, SequencingInsights, build_sequence, sequencing_insights
from .settings import RuntimeSettings
from .validation import QualityValidator, validation_report
from .variants import VariantGenerator, VariantInsights, variant_insights


def get_version() -> str:
    try:
        return version("campaign-autopilot")
    except PackageNotFoundError:
        return "0.0.0"


__all__ = [
    "AllocationPlan",
    "Artifact",
    "ArtifactGenerator",
    "ArtifactVariant",
    "Backlog",
    "BatchHealingFailure",
    "BatchHealingReport",
    "BrandConstraints",
    "BudgetAllocator",
    "BudgetReport",
    "CancellationRequested",
    "CapabilityError",
    "ConfigurationError",
    "DependencyEdge",
    "EffortEstimate",
    "EffortEstimator",
    "ExecutionLogEntry",
    "ExecutionOrchestrator",
    "ExecutionProgress",
    "ExecutionSession",
    "ExecutionStatus",
    "GenerationContext",
    "HealingAttempt",
    "HealingFeedback",
    "HealingLoop",
    "HealingOutcome",
    "HealingReport",
    "HealingStats",
    "ItemAllocation",
    "ItemExecutionResult",
    "Level",
    "Phase",
    "PreventionPlan",
    "PreventionPlanner",
    "ProgressReporter",
    "QualityDimension",
    "QualityEvaluation",
    "QualityEvaluator",
    "QualityValidator",
    "ReadinessTracker",
    "RiskAssessment",
    "RiskAssessor",
    "RiskFactor",
    "RiskPredictor",
    "RiskReport",
    "RunSummary",
    "RuntimeModelSelection",
    "RuntimeSettings",
    "SequencePlan",
    "SequencingInsights",
    "Suggestion",
    "ValidationIssue",
    "ValidationReport",
    "ValidationResult",
    "VariantDraft",
    "VariantFocus",
    "VariantGenerator",
    "VariantInsights",
    "VariantPlan",
    "VariantProposer",
    "WorkItem",
    "WorkItemType",
    "DEFAULT_MODELS_BY_TIER",
    "budget_report",
    "build_allocation_plan",
    "build_sequence",
    "get_version",
    "healing_stats",
    "rebalance",
    "sequencing_insights",
    "summarize_risk",
    "validation_report",
    "variant_insights",
]
