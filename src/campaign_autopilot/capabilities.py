"""Narrow interfaces for the external providers the engine consumes.

Every provider call goes through :func:`call_capability` so that slow calls are
bounded by the configured timeout and every failure, whatever its type, reaches
the engine as a :class:`CapabilityError`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import Protocol, TypeVar, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from .errors import CapabilityError
from .models import (
    Artifact,
    BrandConstraints,
    EffortEstimate,
    HealingFeedback,
    PreventionPlan,
    QualityEvaluation,
    RiskAssessment,
    VariantDraft,
    VariantFocus,
    WorkItem,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class GenerationContext(BaseModel):
    """Everything a generator needs for one attempt at an item."""

    model_config = ConfigDict(frozen=True)

    item: WorkItem
    brand: BrandConstraints = Field(default_factory=BrandConstraints)
    campaign_goal: str = ""
    attempt: int = 1
    prior_artifact: Artifact | None = None
    feedback: HealingFeedback | None = None

    @property
    def is_regeneration(self) -> bool:
        return self.prior_artifact is not None


@runtime_checkable
class ArtifactGenerator(Protocol):
    async def generate(self, context: GenerationContext) -> Artifact: ...


@runtime_checkable
class QualityEvaluator(Protocol):
    async def evaluate(
        self,
        artifact: Artifact,
        brand: BrandConstraints,
        criteria: list[str],
    ) -> QualityEvaluation: ...


@runtime_checkable
class EffortEstimator(Protocol):
    async def estimate(self, item: WorkItem) -> EffortEstimate: ...


@runtime_checkable
class RiskAssessor(Protocol):
    async def assess_risk(self, item: WorkItem) -> RiskAssessment: ...


@runtime_checkable
class PreventionPlanner(Protocol):
    async def plan_prevention(self, item: WorkItem, assessment: RiskAssessment) -> PreventionPlan: ...


@runtime_checkable
class VariantProposer(Protocol):
    async def propose_variants(
        self,
        artifact: Artifact,
        brand: BrandConstraints,
        count: int,
        focus: VariantFocus,
    ) -> list[VariantDraft]: ...


async def call_capability(capability: str, call: Awaitable[T], *, timeout: float) -> T:
    """Await a provider call with a timeout and fold every failure into CapabilityError.

    Timeouts are treated exactly like provider failures. ``asyncio.CancelledError``
    is not caught so that task cancellation keeps its normal semantics.
    """
    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except CapabilityError:
        raise
    except TimeoutError as exc:
        raise CapabilityError(capability, f"timed out after {timeout:g}s") from exc
    except Exception as exc:  # noqa: BLE001 - provider boundary, any failure is a capability failure.
        raise CapabilityError(capability, f"{type(exc).__name__}: {exc}") from exc
