from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .canonical import canonical_fingerprint


class WorkItemType(str, Enum):
    SOCIAL = "social"
    VIDEO = "video"
    DESIGN = "design"
    EMAIL = "email"
    BLOG = "blog"
    AD = "ad"
    LANDING_PAGE = "landing_page"
    OTHER = "other"


class Level(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class QualityDimension(str, Enum):
    CLARITY = "clarity"
    ENGAGEMENT = "engagement"
    BRAND_ALIGNMENT = "brand_alignment"
    CTA_STRENGTH = "cta_strength"
    ACCEPTANCE = "acceptance"
    GENERAL = "general"


SCORED_DIMENSIONS: tuple[QualityDimension, ...] = (
    QualityDimension.CLARITY,
    QualityDimension.ENGAGEMENT,
    QualityDimension.BRAND_ALIGNMENT,
    QualityDimension.CTA_STRENGTH,
)


class IssueSeverity(str, Enum):
    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    VALIDATING = "validating"
    HEALING = "healing"
    COMPLETE = "complete"
    FAILED = "failed"


class HealingOutcome(str, Enum):
    HEALED = "healed"
    EXHAUSTED = "exhausted"


def _utc_now() -> datetime:
    return datetime.now(UTC)


class BrandConstraints(BaseModel):
    """Brand voice inputs the validator scores against."""

    name: str = ""
    tone: str = ""
    values: list[str] = Field(default_factory=list)
    key_messages: list[str] = Field(default_factory=list)
    audience: str = ""
    banned_phrases: list[str] = Field(default_factory=list)


class WorkItem(BaseModel):
    """One campaign story with its acceptance criteria."""

    model_config = ConfigDict(validate_assignment=True)

    item_id: str
    title: str
    description: str = ""
    type: WorkItemType = WorkItemType.SOCIAL
    channel: str = ""
    acceptance_criteria: list[str] = Field(default_factory=list)
    estimated_hours: float = Field(default=2.0, ge=0.0)
    depends_on: list[str] = Field(default_factory=list)
    completed: bool = False
    notes: str = ""

    @field_validator("item_id")
    @classmethod
    def _item_id_non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("item_id must be non-empty")
        return value.strip()


class Artifact(BaseModel):
    """Output of one generation attempt. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    artifact_id: str = Field(default_factory=lambda: f"ART-{uuid.uuid4().hex[:8]}")
    item_id: str
    title: str
    body: str
    call_to_action: str = ""
    visual_reference: str = ""
    prompt_used: str = ""
    provenance: str = ""
    created_at: datetime = Field(default_factory=_utc_now)


class ValidationIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    dimension: QualityDimension = QualityDimension.GENERAL
    severity: IssueSeverity = IssueSeverity.MAJOR
    description: str


class Suggestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    issue_ref: str = ""
    fix: str
    corrected_text: str | None = None


class ValidationResult(BaseModel):
    """Immutable verdict for one artifact."""

    model_config = ConfigDict(frozen=True)

    passed: bool
    score: int = Field(ge=0, le=100)
    issues: tuple[ValidationIssue, ...] = ()
    suggestions: tuple[Suggestion, ...] = ()
    dimension_scores: dict[QualityDimension, int] = Field(default_factory=dict)
    weakest_dimension: QualityDimension | None = None
    fallback: bool = False
    validated_at: datetime = Field(default_factory=_utc_now)


class QualityEvaluation(BaseModel):
    """Typed output of an evaluation capability before threshold policy is applied."""

    score: int | None = Field(default=None, ge=0, le=100)
    verdict: bool | None = None
    dimension_scores: dict[QualityDimension, int] = Field(default_factory=dict)
    issues: list[ValidationIssue] = Field(default_factory=list)
    suggestions: list[Suggestion] = Field(default_factory=list)
    reasoning: str = ""


class HealingFeedback(BaseModel):
    """Structured feedback handed to the generator for a regeneration round."""

    model_config = ConfigDict(frozen=True)

    round_number: int
    score: int
    focus_dimension: QualityDimension | None = None
    issues: tuple[ValidationIssue, ...] = ()
    suggestions: tuple[Suggestion, ...] = ()


class HealingAttempt(BaseModel):
    model_config = ConfigDict(frozen=True)

    sequence: int = Field(ge=1)
    timestamp: datetime = Field(default_factory=_utc_now)
    issues_addressed: tuple[ValidationIssue, ...] = ()
    suggestions_applied: tuple[Suggestion, ...] = ()
    artifact: Artifact | None = None
    result: ValidationResult | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.result is not None and self.result.passed


class HealingReport(BaseModel):
    """Terminal state of one healing run."""

    item_id: str
    outcome: HealingOutcome
    final_artifact: Artifact
    final_result: ValidationResult
    attempts: list[HealingAttempt] = Field(default_factory=list)
    history: list[ValidationResult] = Field(default_factory=list)
    rounds_used: int = Field(ge=1)

    @property
    def healed(self) -> bool:
        return self.outcome == HealingOutcome.HEALED


class BatchHealingFailure(BaseModel):
    item_id: str
    artifact: Artifact
    reason: str


class BatchHealingReport(BaseModel):
    """Outcome of healing several artifacts one after another."""

    healed: list[HealingReport] = Field(default_factory=list)
    failures: list[BatchHealingFailure] = Field(default_factory=list)


class ValidationReport(BaseModel):
    """Consistency rollup over many validation results."""

    overall_consistency: int
    issues_by_dimension: dict[QualityDimension, int] = Field(default_factory=dict)
    critical_issues: list[ValidationIssue] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class Backlog(BaseModel):
    """Ordered collection of work items sharing one campaign goal."""

    model_config = ConfigDict(validate_assignment=True)

    backlog_id: str = Field(default_factory=lambda: f"BL-{uuid.uuid4().hex[:8]}")
    campaign_goal: str = ""
    brand: BrandConstraints = Field(default_factory=BrandConstraints)
    items: list[WorkItem] = Field(default_factory=list)

    def get_item(self, item_id: str) -> WorkItem:
        for item in self.items:
            if item.item_id == item_id:
                return item
        raise KeyError(f"Unknown work item: {item_id}")

    def index_of(self, item_id: str) -> int:
        for index, item in enumerate(self.items):
            if item.item_id == item_id:
                return index
        raise KeyError(f"Unknown work item: {item_id}")

    def progress(self) -> float:
        if not self.items:
            return 1.0
        return sum(1 for item in self.items if item.completed) / len(self.items)

    @property
    def is_complete(self) -> bool:
        return all(item.completed for item in self.items)

    def mark_complete(self, item_id: str, result: ValidationResult) -> None:
        if not result.passed:
            raise ValueError(f"Cannot complete {item_id} without a passing validation result")
        self.get_item(item_id).completed = True


class DependencyEdge(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str
    target: str


class Phase(BaseModel):
    number: int
    name: str
    item_ids: list[str]
    duration_hours: float


class SequencePlan(BaseModel):
    original_order: list[str]
    order: list[str]
    phases: list[Phase]
    critical_path: list[str]
    edges: list[DependencyEdge] = Field(default_factory=list)

    def phase_of(self, item_id: str) -> int:
        for phase in self.phases:
            if item_id in phase.item_ids:
                return phase.number
        raise KeyError(f"Item not sequenced: {item_id}")


class EffortEstimate(BaseModel):
    item_id: str
    title: str = ""
    estimated_hours: float = Field(default=3.0, ge=0.0)
    complexity: Level = Level.MEDIUM
    risk_level: Level = Level.MEDIUM
    recommended_iterations: int = Field(default=2, ge=1, le=3)
    roi: float = Field(default=5.0, ge=1.0, le=10.0)

    @property
    def roi_per_hour(self) -> float:
        return self.roi / max(self.estimated_hours, 1.0)


class ItemAllocation(BaseModel):
    estimate: EffortEstimate
    priority: int
    roi_per_hour: float
    allocated_hours: float
    funded: bool
    remaining_after: float

    @property
    def item_id(self) -> str:
        return self.estimate.item_id


class AllocationPlan(BaseModel):
    total_budget_hours: float
    allocations: list[ItemAllocation]
    priority_order: list[str]
    risk_mitigation: list[str] = Field(default_factory=list)
    budget_remaining: float

    @property
    def fingerprint(self) -> str:
        return canonical_fingerprint(self)

    def iterations_for(self, item_id: str) -> int:
        for allocation in self.allocations:
            if allocation.item_id == item_id:
                return allocation.estimate.recommended_iterations
        raise KeyError(f"No allocation for item: {item_id}")


class BudgetReport(BaseModel):
    total_estimated_hours: float
    high_roi: int
    medium_roi: int
    low_roi: int
    high_risk_count: int
    buffer_recommended_hours: int


class RiskFactor(BaseModel):
    name: str
    severity: Level = Level.MEDIUM
    description: str = ""
    mitigation: str = ""


class RiskAssessment(BaseModel):
    item_id: str
    title: str = ""
    risk_score: int = Field(default=50, ge=0, le=100)
    bucket: Level = Level.MEDIUM
    factors: list[RiskFactor] = Field(default_factory=list)
    preventive_measures: list[str] = Field(default_factory=list)
    recommended_iterations: int = Field(default=2, ge=1)
    fallback: bool = False


class PreventionPlan(BaseModel):
    """Rewrite of a risky item proposed by a prevention capability. Empty fields keep the original."""

    improved_description: str = ""
    improved_criteria: list[str] = Field(default_factory=list)
    approach_notes: str = ""


class RiskReport(BaseModel):
    assessments: list[RiskAssessment]
    average_risk_score: int
    high_risk_items: list[str]
    most_common_factor: str | None = None
    most_common_factor_count: int = 0
    recommended_buffer_iterations: int = 0
    recommended_buffer_hours: float = 0.0
    mitigation: list[str] = Field(default_factory=list)
    overall_level: Level = Level.LOW


class ExecutionProgress(BaseModel):
    backlog_id: str = ""
    current_item_id: str = ""
    item_index: int = 0
    total_items: int = 0
    iteration: int = 0
    status: ExecutionStatus = ExecutionStatus.PENDING
    message: str = ""
    artifacts: list[Artifact] = Field(default_factory=list)
    learnings: list[str] = Field(default_factory=list)


class ExecutionLogEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=_utc_now)
    item_id: str
    action: str
    passed: bool
    message: str


class ItemExecutionResult(BaseModel):
    """Return value of one execute_next call."""

    success: bool
    item_id: str | None = None
    artifacts: list[Artifact] = Field(default_factory=list)
    report: HealingReport | None = None
    message: str = ""


class RunSummary(BaseModel):
    backlog_id: str
    iterations: int
    completed_items: list[str]
    incomplete_items: list[str]
    progress: float
    cancelled: bool = False
    exhausted_items: list[str] = Field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.incomplete_items


class VariantFocus(str, Enum):
    CTA = "cta"
    MESSAGING = "messaging"
    TONE = "tone"


class VariantDraft(BaseModel):
    """Typed output of a variant capability for one alternative."""

    title: str
    body: str
    call_to_action: str = ""
    predicted_performance: int = Field(default=50, ge=0, le=100)
    reasoning: str = ""


class ArtifactVariant(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_artifact_id: str
    label: str
    variant_number: int
    artifact: Artifact
    predicted_performance: int = Field(ge=0, le=100)
    reasoning: str = ""


class VariantPlan(BaseModel):
    original: Artifact
    focus: VariantFocus
    variants: list[ArtifactVariant]
    winner_label: str | None = None
    winner_score: int | None = None
    lift_percent: float | None = None
