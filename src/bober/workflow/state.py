"""Phase outcome types passed from the phase runner to the orchestrator."""

from __future__ import annotations

import enum

from pydantic import BaseModel

from bober.models import PhaseName, PhaseResponse


class PhaseOutcome(str, enum.Enum):
    """Why a phase loop ended."""

    COMPLETED = "completed"
    BUDGET_EXHAUSTED = "budget-exhausted"
    CANCELLED = "cancelled"
    NO_VALID_RESPONSE = "no-valid-response"


class PhaseResult(BaseModel):
    """Output of one phase.

    ``response`` is the last successfully parsed structured response, or
    ``None`` if no iteration produced one.
    """

    phase: PhaseName
    outcome: PhaseOutcome
    response: PhaseResponse | None = None
    iterations: int = 0

    @property
    def is_degraded(self) -> bool:
        return self.outcome in (PhaseOutcome.BUDGET_EXHAUSTED, PhaseOutcome.NO_VALID_RESPONSE)
