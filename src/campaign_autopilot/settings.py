from __future__ import annotations

import math
import os
from dataclasses import dataclass, replace


@dataclass(frozen=True)
class RuntimeSettings:
    """Runtime settings loaded from environment with fail-fast validation."""

    pass_threshold: int = 80
    fallback_score: int = 50
    max_heal_attempts: int = 3
    item_iteration_budget: int = 6
    max_total_iterations: int = 10
    worker_pool_size: int = 3
    capability_timeout_seconds: float = 120.0
    recursion_limit: int = 200
    risk_medium_threshold: int = 40
    risk_high_threshold: int = 70
    risk_buffer_multiplier: float = 1.5
    buffer_hours_per_iteration: float = 2.0
    budget_buffer_ratio: float = 0.2
    high_risk_hour_buffer_ratio: float = 0.5
    variant_count: int = 2
    model_frontier: str = "gpt-4o"
    model_efficient: str = "gpt-4o-mini"
    model_economy: str = "gpt-4o-mini"

    @classmethod
    def from_env(cls) -> "RuntimeSettings":
        return cls(
            pass_threshold=_get_env_int("CAMPAIGN_PASS_THRESHOLD", default=80, minimum=1, maximum=100),
            fallback_score=_get_env_int("CAMPAIGN_FALLBACK_SCORE", default=50, minimum=50, maximum=70),
            max_heal_attempts=_get_env_int("CAMPAIGN_MAX_HEAL_ATTEMPTS", default=3, minimum=1, maximum=50),
            item_iteration_budget=_get_env_int("CAMPAIGN_ITEM_ITERATION_BUDGET", default=6, minimum=1, maximum=500),
            max_total_iterations=_get_env_int("CAMPAIGN_MAX_TOTAL_ITERATIONS", default=10, minimum=1),
            worker_pool_size=_get_env_int("CAMPAIGN_WORKER_POOL_SIZE", default=3, minimum=1, maximum=64),
            capability_timeout_seconds=_get_env_float(
                "CAMPAIGN_CAPABILITY_TIMEOUT_SECONDS", default=120.0, minimum=0.01
            ),
            recursion_limit=_get_env_int("CAMPAIGN_RECURSION_LIMIT", default=200, minimum=25, maximum=100_000),
            risk_medium_threshold=_get_env_int("CAMPAIGN_RISK_MEDIUM_THRESHOLD", default=40, minimum=0, maximum=100),
            risk_high_threshold=_get_env_int("CAMPAIGN_RISK_HIGH_THRESHOLD", default=70, minimum=0, maximum=100),
            risk_buffer_multiplier=_get_env_float("CAMPAIGN_RISK_BUFFER_MULTIPLIER", default=1.5, minimum=0.0),
            buffer_hours_per_iteration=_get_env_float("CAMPAIGN_BUFFER_HOURS_PER_ITERATION", default=2.0, minimum=0.0),
            budget_buffer_ratio=_get_env_float("CAMPAIGN_BUDGET_BUFFER_RATIO", default=0.2, minimum=0.0, maximum=10.0),
            high_risk_hour_buffer_ratio=_get_env_float(
                "CAMPAIGN_HIGH_RISK_HOUR_BUFFER_RATIO", default=0.5, minimum=0.0, maximum=10.0
            ),
            variant_count=_get_env_int("CAMPAIGN_VARIANT_COUNT", default=2, minimum=1, maximum=26),
            model_frontier=os.getenv("CAMPAIGN_MODEL_FRONTIER", "gpt-4o"),
            model_efficient=os.getenv("CAMPAIGN_MODEL_EFFICIENT", "gpt-4o-mini"),
            model_economy=os.getenv("CAMPAIGN_MODEL_ECONOMY", "gpt-4o-mini"),
        ).normalized()

    def normalized(self) -> "RuntimeSettings":
        """Validate and normalize all fields. Raises ValueError on invalid configuration."""
        # -- Model name validation --
        model_frontier = self.model_frontier.strip()
        if not model_frontier:
            raise ValueError("CAMPAIGN_MODEL_FRONTIER must be non-empty")
        model_efficient = self.model_efficient.strip()
        if not model_efficient:
            raise ValueError("CAMPAIGN_MODEL_EFFICIENT must be non-empty")
        model_economy = self.model_economy.strip()
        if not model_economy:
            raise ValueError("CAMPAIGN_MODEL_ECONOMY must be non-empty")

        # -- Policy validation --
        if self.risk_medium_threshold >= self.risk_high_threshold:
            raise ValueError(
                "CAMPAIGN_RISK_MEDIUM_THRESHOLD must be lower than CAMPAIGN_RISK_HIGH_THRESHOLD, "
                f"got: {self.risk_medium_threshold} >= {self.risk_high_threshold}"
            )
        if not 50 <= self.fallback_score <= 70:
            raise ValueError(f"CAMPAIGN_FALLBACK_SCORE must be between 50 and 70, got: {self.fallback_score}")
        if self.fallback_score >= self.pass_threshold:
            raise ValueError(
                "CAMPAIGN_FALLBACK_SCORE must stay below CAMPAIGN_PASS_THRESHOLD, "
                f"got: {self.fallback_score} >= {self.pass_threshold}"
            )
        if self.max_heal_attempts > self.item_iteration_budget:
            raise ValueError(
                "CAMPAIGN_MAX_HEAL_ATTEMPTS must be <= CAMPAIGN_ITEM_ITERATION_BUDGET, "
                f"got: {self.max_heal_attempts} > {self.item_iteration_budget}"
            )
        if self.recursion_limit < steps_for_rounds(self.max_heal_attempts):
            raise ValueError(
                "CAMPAIGN_RECURSION_LIMIT is too low for CAMPAIGN_MAX_HEAL_ATTEMPTS, "
                f"need >= {steps_for_rounds(self.max_heal_attempts)}, got: {self.recursion_limit}"
            )
        return replace(
            self,
            model_frontier=model_frontier,
            model_efficient=model_efficient,
            model_economy=model_economy,
        )


def steps_for_rounds(rounds: int) -> int:
    """Graph steps a healing run of ``rounds`` scoring rounds can take.

    Each retry is route, regenerate and validate; entry and exit add a few more.
    """
    return 3 * rounds + 5


def _get_env_int(name: str, default: int, minimum: int, maximum: int = 10_000_000) -> int:
    """Parse an integer from an environment variable with bounds checking.

    Args:
        name: Environment variable name.
        default: Value to return if the variable is unset.
        minimum: Inclusive lower bound.
        maximum: Inclusive upper bound (default 10M, prevents absurd values).

    Returns:
        The parsed integer, guaranteed to be within [minimum, maximum].

    Raises:
        ValueError: If the value is not an integer or is outside bounds.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    if parsed > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {parsed}")
    return parsed


def _get_env_float(name: str, default: float, minimum: float, maximum: float = 1_000_000.0) -> float:
    """Parse a finite float from an environment variable with bounds checking."""
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got: {raw!r}") from exc
    if not math.isfinite(parsed):
        raise ValueError(f"{name} must be finite, got: {raw!r}")
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    if parsed > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {parsed}")
    return parsed
