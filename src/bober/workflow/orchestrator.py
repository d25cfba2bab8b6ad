"""Incident workflow orchestrator.

Drives one incident through its phases in order:

1. **Analysis** -- the analyzer investigates over SSH, one fragment per
   iteration appended to ``analysis.md``
2. **Summarization** -- the summarizer reads the log and produces the final
   ``analysis-summary.md`` document
3. **Resolution** (optional) -- the resolver applies fixes and writes
   ``resolution.md``

Every transition is recorded in the status registry and emitted on the event
stream. A phase that runs out of budget is force-advanced; the workflow only
fails on an unexpected error.
"""

from __future__ import annotations

import asyncio
from typing import Mapping

import structlog

from bober.agents.base import Agent
from bober.agents.instructions import initial_prompt
from bober.config import Settings
from bober.models import IncidentContext, MonitorEvent, PhaseName, ResolutionReport, SummaryReport
from bober.reporting import (
    FRAGMENT_FORMATTERS,
    format_log_header,
    format_resolution_report,
    format_summary,
)
from bober.streaming import (
    EVENT_PHASE_COMPLETED,
    EVENT_PHASE_STARTED,
    EVENT_WORKFLOW_CANCELLED,
    EVENT_WORKFLOW_COMPLETED,
    EVENT_WORKFLOW_FAILED,
    EVENT_WORKFLOW_STARTED,
    WorkflowEventStream,
)
from bober.tools.reports import RESOLUTION_FILENAME, SUMMARY_FILENAME, ReportSink
from bober.workflow.guard import IterationGuard
from bober.workflow.phase import PhaseRunner
from bober.workflow.registry import StatusRegistry
from bober.workflow.state import PhaseOutcome, PhaseResult

logger = structlog.get_logger(__name__)


class WorkflowOrchestrator:
    """Runs registered incidents through analysis, summarization and resolution."""

    def __init__(
        self,
        settings: Settings,
        registry: StatusRegistry,
        sink: ReportSink,
        event_stream: WorkflowEventStream | None = None,
    ) -> None:
        self.settings = settings
        self.registry = registry
        self.sink = sink
        self.event_stream = event_stream

    def budget_for(self, phase: PhaseName) -> int:
        return {
            PhaseName.ANALYSIS: self.settings.analysis_max_iterations,
            PhaseName.SUMMARIZATION: self.settings.summary_max_iterations,
            PhaseName.RESOLUTION: self.settings.resolution_max_iterations,
        }[phase]

    def phases_for(self, agents: Mapping[PhaseName, Agent]) -> list[PhaseName]:
        phases = [PhaseName.ANALYSIS, PhaseName.SUMMARIZATION]
        if self.settings.enable_resolution and PhaseName.RESOLUTION in agents:
            phases.append(PhaseName.RESOLUTION)
        return phases

    async def run(
        self,
        incident: IncidentContext,
        monitor_event: MonitorEvent,
        agents: Mapping[PhaseName, Agent],
    ) -> None:
        """Execute the workflow for a registered incident.

        Never raises for ordinary failures: they are recorded on the
        incident's status instead. Task cancellation marks the workflow
        cancelled and is re-raised.
        """
        incident_id = incident.incident_id
        cancel_signal = self.registry.cancellation_signal(incident_id)
        if cancel_signal is None:
            logger.warning("workflow_not_runnable", incident_id=incident_id)
            return

        structlog.contextvars.bind_contextvars(incident_id=incident_id)
        logger.info("workflow_start", url=monitor_event.url, status_code=monitor_event.status_code)

        try:
            await self.sink.append_iteration_record(
                incident_id, format_log_header(incident_id, monitor_event)
            )
            await self._emit(
                incident_id,
                EVENT_WORKFLOW_STARTED,
                data={"url": monitor_event.url, "status_code": monitor_event.status_code},
                message=f"Investigation started for {monitor_event.url}",
            )

            context = ""
            final: PhaseResult | None = None
            for phase in self.phases_for(agents):
                if cancel_signal.is_set():
                    await self._cancelled(incident_id)
                    return

                self.registry.update_phase(incident_id, phase.state, phase.label)
                await self._emit(
                    incident_id,
                    EVENT_PHASE_STARTED,
                    data={"phase": phase.value, "max_iterations": self.budget_for(phase)},
                    message=f"{phase.label} started",
                )

                runner = PhaseRunner(
                    phase=phase,
                    incident_id=incident_id,
                    agent=agents[phase],
                    guard=IterationGuard(self.budget_for(phase)),
                    formatter=FRAGMENT_FORMATTERS[phase],
                    sink=self.sink,
                    registry=self.registry,
                    cancel_signal=cancel_signal,
                    event_stream=self.event_stream,
                    call_timeout=self.settings.agent_call_timeout_seconds,
                )
                result = await runner.run(initial_prompt(phase, monitor_event, context))

                # A cancel that landed during the last iteration stops the
                # transition: no outcome, event or final document is recorded
                if result.outcome is PhaseOutcome.CANCELLED or cancel_signal.is_set():
                    await self._cancelled(incident_id)
                    return

                if result.is_degraded:
                    logger.warning(
                        "phase_degraded",
                        phase=phase.value,
                        outcome=result.outcome.value,
                        iterations=result.iterations,
                    )
                self.registry.record_phase_outcome(incident_id, phase, result.outcome.value)
                await self._emit(
                    incident_id,
                    EVENT_PHASE_COMPLETED,
                    data={
                        "phase": phase.value,
                        "outcome": result.outcome.value,
                        "iterations": result.iterations,
                    },
                    message=f"{phase.label} finished: {result.outcome.value}",
                )

                if phase is PhaseName.SUMMARIZATION:
                    context = await self._write_summary(incident_id, monitor_event, result)
                elif phase is PhaseName.RESOLUTION:
                    await self._write_resolution(incident_id, result)

                if result.response is not None:
                    final = result

            if cancel_signal.is_set():
                await self._cancelled(incident_id)
                return

            payload = final.response.model_dump(mode="json") if final and final.response else None
            if self.registry.mark_completed(incident_id, result=payload):
                await self._emit(
                    incident_id,
                    EVENT_WORKFLOW_COMPLETED,
                    data={"result": payload},
                    message="Investigation completed",
                )
            logger.info("workflow_complete")

        except asyncio.CancelledError:
            await self._cancelled(incident_id)
            raise
        except Exception as exc:
            error_message = str(exc) or type(exc).__name__
            logger.exception("workflow_failed", error=error_message)
            if self.registry.mark_failed(incident_id, error_message):
                await self._emit(
                    incident_id,
                    EVENT_WORKFLOW_FAILED,
                    data={"error": error_message},
                    message=f"Investigation failed: {error_message}",
                )
        finally:
            structlog.contextvars.unbind_contextvars("incident_id")

    # ------------------------------------------------------------------
    # Phase outputs
    # ------------------------------------------------------------------

    async def _write_summary(
        self,
        incident_id: str,
        monitor_event: MonitorEvent,
        result: PhaseResult,
    ) -> str:
        """Write ``analysis-summary.md`` and return the summary as prompt context."""
        summary = result.response
        if not isinstance(summary, SummaryReport):
            logger.warning("summary_missing", outcome=result.outcome.value)
            return ""

        document = format_summary(summary, incident_id, monitor_event.url, monitor_event.status_code)
        await self.sink.write_final_report(incident_id, document, SUMMARY_FILENAME)
        logger.info("summary_written", severity=summary.severity)
        return summary.model_dump_json(indent=2)

    async def _write_resolution(self, incident_id: str, result: PhaseResult) -> None:
        resolution = result.response
        if not isinstance(resolution, ResolutionReport):
            logger.warning("resolution_missing", outcome=result.outcome.value)
            return

        document = format_resolution_report(resolution, incident_id)
        await self.sink.write_final_report(incident_id, document, RESOLUTION_FILENAME)
        logger.info("resolution_written", status=resolution.status.value)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def _cancelled(self, incident_id: str) -> None:
        # request_cancel usually got here first; this covers task cancellation
        self.registry.mark_cancelled(incident_id)
        logger.info("workflow_cancelled")
        await self._emit(incident_id, EVENT_WORKFLOW_CANCELLED, message="Investigation cancelled")

    async def _emit(self, incident_id: str, event_type: str, data: dict | None = None, message: str = "") -> None:
        if self.event_stream is None:
            return
        await self.event_stream.emit(incident_id, event_type, data=data, message=message)
