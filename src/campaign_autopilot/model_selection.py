from __future__ import annotations

import os
from dataclasses import dataclass

from .settings import RuntimeSettings


VALID_TIERS: frozenset[str] = frozenset({"frontier", "efficient", "economy"})

DEFAULT_MODELS_BY_TIER: dict[str, str] = {
    "frontier": "gpt-4o",
    "efficient": "gpt-4o-mini",
    "economy": "gpt-4o-mini",
}

# Generation carries the creative load; scoring and planning run on cheaper tiers.
DEFAULT_TIER_BY_CAPABILITY: dict[str, str] = {
    "generator": "frontier",
    "evaluator": "efficient",
    "variants": "efficient",
    "estimator": "economy",
    "risk": "economy",
}


@dataclass(frozen=True)
class RuntimeModelSelection:
    """Maps capability roles to model tiers and tiers to concrete model identifiers.

    ``CAMPAIGN_TIER_<CAPABILITY>`` moves a capability to another tier, for
    example ``CAMPAIGN_TIER_EVALUATOR=frontier`` for a stricter judge.
    """

    by_tier: dict[str, str]
    tier_by_capability: dict[str, str]

    def __post_init__(self) -> None:
        """Validate that all tiers are configured and every capability maps to a known tier."""
        missing = VALID_TIERS - set(self.by_tier)
        if missing:
            raise ValueError(
                f"RuntimeModelSelection missing required tiers: {', '.join(sorted(missing))}. "
                f"All of {sorted(VALID_TIERS)} must be configured."
            )
        for tier, model_name in self.by_tier.items():
            if not model_name or not model_name.strip():
                raise ValueError(f"RuntimeModelSelection tier '{tier}' has empty model name")
        for capability, tier in self.tier_by_capability.items():
            if tier not in VALID_TIERS:
                raise ValueError(
                    f"Capability '{capability}' mapped to unknown tier '{tier}'. Valid tiers: {sorted(VALID_TIERS)}"
                )

    @classmethod
    def from_settings(cls, settings: RuntimeSettings) -> "RuntimeModelSelection":
        """Build the selection from runtime settings plus per-capability tier overrides in the environment."""
        by_tier = {
            "frontier": settings.model_frontier,
            "efficient": settings.model_efficient,
            "economy": settings.model_economy,
        }
        tier_by_capability = dict(DEFAULT_TIER_BY_CAPABILITY)
        for capability in DEFAULT_TIER_BY_CAPABILITY:
            override = os.getenv(f"CAMPAIGN_TIER_{capability.upper()}")
            if override and override.strip():
                tier_by_capability[capability] = override.strip().lower()
        return cls(by_tier=by_tier, tier_by_capability=tier_by_capability)

    def resolve(self, capability: str) -> str:
        """Return the concrete model name for a capability role.

        Raises:
            ValueError: If the capability is not a known role.
        """
        tier = self.tier_by_capability.get(capability)
        if tier is None:
            available = ", ".join(sorted(self.tier_by_capability))
            raise ValueError(f"Unknown capability '{capability}'. Known capabilities: {available}")
        return self.by_tier[tier]
