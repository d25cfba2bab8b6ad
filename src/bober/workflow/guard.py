"""Iteration budget enforcement for phase loops."""

from __future__ import annotations

import enum
from dataclasses import dataclass


class GuardDecision(str, enum.Enum):
    CONTINUE = "continue"
    ADVANCE = "advance"
    FORCE_ADVANCE = "force_advance"


@dataclass(frozen=True)
class IterationGuard:
    """Decides after each iteration whether a phase continues, advances, or is forced on.

    ``FORCE_ADVANCE`` means the budget ran out without a completion signal; it
    is a controlled degradation, not a failure.
    """

    max_iterations: int

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")

    def decide(self, is_complete: bool, iterations_used: int) -> GuardDecision:
        if is_complete:
            return GuardDecision.ADVANCE
        if iterations_used >= self.max_iterations:
            return GuardDecision.FORCE_ADVANCE
        return GuardDecision.CONTINUE

    def remaining(self, iterations_used: int) -> int:
        return max(0, self.max_iterations - iterations_used)
