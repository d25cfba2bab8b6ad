"""Phase runner: one bounded agent loop.

Each iteration checks for cancellation, invokes the agent within the phase's
conversation, parses the response, appends the formatted fragment to the
report sink, records the iteration in the status registry, and asks the
iteration guard whether to go on.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Callable

import structlog

from bober.agents.base import Agent, Conversation
from bober.agents.instructions import continuation_prompt
from bober.models import PhaseName, PhaseResponse
from bober.streaming import EVENT_ITERATION_RECORDED, WorkflowEventStream
from bober.tools.reports import ReportSink
from bober.workflow.completion import Detection, detect_completion
from bober.workflow.guard import GuardDecision, IterationGuard
from bober.workflow.registry import StatusRegistry
from bober.workflow.state import PhaseOutcome, PhaseResult

logger = structlog.get_logger(__name__)

FragmentFormatter = Callable[[PhaseResponse, int], str]


class PhaseRunner:
    """Drives one phase of an incident workflow to completion."""

    def __init__(
        self,
        phase: PhaseName,
        incident_id: str,
        agent: Agent,
        guard: IterationGuard,
        formatter: FragmentFormatter,
        sink: ReportSink,
        registry: StatusRegistry,
        cancel_signal: threading.Event,
        event_stream: WorkflowEventStream | None = None,
        call_timeout: float | None = None,
    ) -> None:
        self.phase = phase
        self.incident_id = incident_id
        self.agent = agent
        self.guard = guard
        self.formatter = formatter
        self.sink = sink
        self.registry = registry
        self.cancel_signal = cancel_signal
        self.event_stream = event_stream
        self.call_timeout = call_timeout

    async def run(self, prompt: str) -> PhaseResult:
        """Iterate until the phase completes, runs out of budget, or is cancelled."""
        conversation = self.agent.new_conversation()
        last_response: PhaseResponse | None = None
        iterations = 0

        logger.info(
            "phase_start",
            phase=self.phase.value,
            agent=self.agent.name,
            max_iterations=self.guard.max_iterations,
        )

        while True:
            if self.cancel_signal.is_set():
                logger.info("phase_cancelled", phase=self.phase.value, iterations=iterations)
                return self._result(PhaseOutcome.CANCELLED, last_response, iterations)

            iterations += 1
            raw = await self._invoke(prompt, conversation, iterations)
            detection = detect_completion(raw, self.phase)

            if detection.payload is not None:
                last_response = detection.payload
                await self.sink.append_iteration_record(
                    self.incident_id, self.formatter(detection.payload, iterations)
                )
            else:
                logger.warning(
                    "phase_response_invalid",
                    phase=self.phase.value,
                    iteration=iterations,
                    error=detection.error,
                )

            self.registry.update_iteration(self.incident_id, self.phase, iterations)
            await self._emit_iteration(detection, iterations)

            decision = self.guard.decide(detection.is_complete, iterations)
            logger.info(
                "phase_iteration",
                phase=self.phase.value,
                iteration=iterations,
                valid=detection.is_valid,
                is_complete=detection.is_complete,
                decision=decision.value,
                remaining=self.guard.remaining(iterations),
            )

            if decision is GuardDecision.CONTINUE:
                prompt = continuation_prompt(self.phase, previous_valid=detection.is_valid)
                continue

            if decision is GuardDecision.ADVANCE:
                logger.info("phase_complete", phase=self.phase.value, iterations=iterations)
                return self._result(PhaseOutcome.COMPLETED, last_response, iterations)

            outcome = (
                PhaseOutcome.BUDGET_EXHAUSTED
                if last_response is not None
                else PhaseOutcome.NO_VALID_RESPONSE
            )
            logger.warning(
                "phase_force_advanced",
                phase=self.phase.value,
                iterations=iterations,
                max_iterations=self.guard.max_iterations,
                outcome=outcome.value,
            )
            return self._result(outcome, last_response, iterations)

    async def _invoke(self, prompt: str, conversation: Conversation, iteration: int) -> str | None:
        if self.call_timeout is None:
            return await self.agent.invoke(prompt, conversation)
        try:
            return await asyncio.wait_for(
                self.agent.invoke(prompt, conversation), timeout=self.call_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                "agent_call_timeout",
                phase=self.phase.value,
                iteration=iteration,
                timeout_seconds=self.call_timeout,
            )
            return None

    async def _emit_iteration(self, detection: Detection, iteration: int) -> None:
        if self.event_stream is None:
            return
        await self.event_stream.emit(
            self.incident_id,
            EVENT_ITERATION_RECORDED,
            data={
                "phase": self.phase.value,
                "iteration": iteration,
                "valid": detection.is_valid,
                "is_complete": detection.is_complete,
            },
            message=f"{self.phase.label} iteration {iteration} recorded",
        )

    def _result(
        self,
        outcome: PhaseOutcome,
        response: PhaseResponse | None,
        iterations: int,
    ) -> PhaseResult:
        return PhaseResult(phase=self.phase, outcome=outcome, response=response, iterations=iterations)
