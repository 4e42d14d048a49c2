from __future__ import annotations


class ConfigurationError(ValueError):
    """Fatal backlog or budget configuration problem (cyclic graph, invalid ceiling)."""


class CapabilityError(RuntimeError):
    """A generation, evaluation, estimation, risk or variant provider call failed or timed out."""

    def __init__(self, capability: str, message: str) -> None:
        super().__init__(f"{capability}: {message}")
        self.capability = capability


class CancellationRequested(Exception):
    """Raised inside a run when the caller's cancellation signal is set."""
