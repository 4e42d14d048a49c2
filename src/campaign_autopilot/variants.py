from __future__ import annotations

import logging
import string
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field

from .capabilities import VariantProposer, call_capability
from .errors import CapabilityError
from .models import Artifact, ArtifactVariant, BrandConstraints, VariantFocus, VariantPlan
from .settings import RuntimeSettings

logger = logging.getLogger(__name__)

_LABELS = string.ascii_uppercase


def rank_variants(variants: Sequence[ArtifactVariant]) -> list[ArtifactVariant]:
    return sorted(variants, key=lambda variant: -variant.predicted_performance)


def lift_percent(top: int, weakest: int) -> float | None:
    if weakest <= 0:
        return None
    return round((top - weakest) / weakest * 100, 1)


class VariantGenerator:
    """Produces ranked A/B alternatives for a finished artifact. Never mutates the original."""

    def __init__(self, proposer: VariantProposer, *, settings: RuntimeSettings | None = None) -> None:
        self.proposer = proposer
        self.settings = settings if settings is not None else RuntimeSettings.from_env()

    async def generate_variants(
        self,
        artifact: Artifact,
        brand: BrandConstraints | None = None,
        count: int | None = None,
        focus: VariantFocus = VariantFocus.CTA,
    ) -> VariantPlan:
        wanted = self.settings.variant_count if count is None else count
        if not 1 <= wanted <= len(_LABELS):
            raise ValueError(f"variant count must be between 1 and {len(_LABELS)}, got: {wanted}")

        try:
            drafts = await call_capability(
                "variants",
                self.proposer.propose_variants(artifact, brand or BrandConstraints(), wanted, focus),
                timeout=self.settings.capability_timeout_seconds,
            )
        except CapabilityError as exc:
            logger.warning("Variant generation for %s failed: %s", artifact.artifact_id, exc)
            return VariantPlan(original=artifact, focus=focus, variants=[])

        variants: list[ArtifactVariant] = []
        for number, draft in enumerate(list(drafts)[:wanted], start=1):
            variant_artifact = artifact.model_copy(
                update={
                    "artifact_id": f"{artifact.artifact_id}-{_LABELS[number - 1]}",
                    "title": draft.title or artifact.title,
                    "body": draft.body,
                    "call_to_action": draft.call_to_action or artifact.call_to_action,
                    "provenance": f"variant:{focus.value}",
                }
            )
            variants.append(
                ArtifactVariant(
                    source_artifact_id=artifact.artifact_id,
                    label=_LABELS[number - 1],
                    variant_number=number,
                    artifact=variant_artifact,
                    predicted_performance=draft.predicted_performance,
                    reasoning=draft.reasoning,
                )
            )

        ranked = rank_variants(variants)
        if not ranked:
            return VariantPlan(original=artifact, focus=focus, variants=[])
        winner, baseline = ranked[0], ranked[-1]
        return VariantPlan(
            original=artifact,
            focus=focus,
            variants=ranked,
            winner_label=winner.label,
            winner_score=winner.predicted_performance,
            lift_percent=lift_percent(winner.predicted_performance, baseline.predicted_performance),
        )


@dataclass(frozen=True)
class VariantInsights:
    total_artifacts: int
    total_variants: int
    average_lift_percent: int
    winner_frequency: dict[str, int] = field(default_factory=dict)
    recommendation: str = ""


def variant_insights(plans: Sequence[VariantPlan]) -> VariantInsights:
    lifts = [plan.lift_percent for plan in plans if plan.lift_percent is not None]
    wins = Counter(plan.winner_label for plan in plans if plan.winner_label is not None)
    return VariantInsights(
        total_artifacts=len(plans),
        total_variants=sum(len(plan.variants) for plan in plans),
        average_lift_percent=round(sum(lifts) / len(lifts)) if lifts else 0,
        winner_frequency=dict(sorted(wins.items())),
        recommendation=f"A/B test all {len(plans)} artifacts. Variant A wins {wins.get('A', 0)} times.",
    )
