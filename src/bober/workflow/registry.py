"""Process-wide registry of incident workflow statuses.

One :class:`StatusRegistry` is created per application and injected wherever
it is needed. Every operation holds a single lock, so in-flight workflows and
status pollers always see a consistent snapshot. Readers receive copies;
the stored records are only mutated through the methods below.
"""

from __future__ import annotations

import threading
from typing import Any

import structlog

from bober.errors import DuplicateIncidentError
from bober.models import MonitorEvent, PhaseName, WorkflowState, WorkflowStatus, utcnow

logger = structlog.get_logger(__name__)


class StatusRegistry:
    """Thread-safe map from incident id to :class:`WorkflowStatus`.

    Each registered incident also owns a cancellation signal
    (:class:`threading.Event`) that is discarded once the workflow reaches a
    terminal state. Updates for terminal workflows are ignored, so nothing is
    recorded for an incident after it has been cancelled.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._workflows: dict[str, WorkflowStatus] = {}
        self._signals: dict[str, threading.Event] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        incident_id: str,
        monitor_event: MonitorEvent,
        directory_path: str,
    ) -> WorkflowStatus:
        """Track a new workflow in the ``pending`` state.

        Raises:
            DuplicateIncidentError: if *incident_id* is already tracked.
        """
        with self._lock:
            if incident_id in self._workflows:
                raise DuplicateIncidentError(incident_id)
            status = WorkflowStatus(
                incident_id=incident_id,
                state=WorkflowState.PENDING,
                current_phase="Initializing",
                start_time=utcnow(),
                monitor_event=monitor_event,
                directory_path=directory_path,
            )
            self._workflows[incident_id] = status
            self._signals[incident_id] = threading.Event()
            snapshot = status.model_copy(deep=True)

        logger.info("workflow_registered", incident_id=incident_id)
        return snapshot

    # ------------------------------------------------------------------
    # Progress updates
    # ------------------------------------------------------------------

    def update_phase(self, incident_id: str, state: WorkflowState, label: str) -> bool:
        """Move a workflow into *state* with the display label *label*."""
        with self._lock:
            status = self._active(incident_id)
            if status is None:
                return False
            status.state = state
            status.current_phase = label
            return True

    def update_iteration(self, incident_id: str, phase: PhaseName, count: int) -> bool:
        """Record that *phase* has used *count* iterations."""
        with self._lock:
            status = self._active(incident_id)
            if status is None:
                return False
            status.set_iterations(phase, count)
            status.current_phase = f"{phase.label} (Iteration {count})"
            return True

    def record_phase_outcome(self, incident_id: str, phase: PhaseName, outcome: str) -> bool:
        with self._lock:
            status = self._active(incident_id)
            if status is None:
                return False
            status.phase_outcomes[phase.value] = outcome
            return True

    # ------------------------------------------------------------------
    # Terminal states
    # ------------------------------------------------------------------

    def mark_completed(self, incident_id: str, result: dict[str, Any] | None = None) -> bool:
        return self._finish(incident_id, WorkflowState.COMPLETED, "Completed", result=result)

    def mark_failed(self, incident_id: str, error_message: str) -> bool:
        return self._finish(incident_id, WorkflowState.FAILED, "Failed", error_message=error_message)

    def mark_cancelled(self, incident_id: str) -> bool:
        return self._finish(incident_id, WorkflowState.CANCELLED, "Cancelled")

    def request_cancel(self, incident_id: str) -> bool:
        """Signal cancellation of a running workflow.

        The workflow is marked cancelled immediately; the orchestrator observes
        the signal at its next checkpoint and stops.

        Returns:
            ``False`` if the incident is unknown or already terminal.
        """
        with self._lock:
            status = self._active(incident_id)
            if status is None:
                return False
            signal = self._signals.get(incident_id)
            if signal is not None:
                signal.set()
            self._finish_locked(status, WorkflowState.CANCELLED, "Cancelled")

        logger.info("workflow_cancel_requested", incident_id=incident_id)
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, incident_id: str) -> WorkflowStatus | None:
        with self._lock:
            status = self._workflows.get(incident_id)
            return status.model_copy(deep=True) if status is not None else None

    def list_all(self) -> list[WorkflowStatus]:
        """All tracked workflows, most recently started first."""
        with self._lock:
            statuses = [s.model_copy(deep=True) for s in self._workflows.values()]
        return sorted(statuses, key=lambda s: s.start_time, reverse=True)

    def cancellation_signal(self, incident_id: str) -> threading.Event | None:
        """The live cancellation signal, or ``None`` once the workflow is terminal."""
        with self._lock:
            return self._signals.get(incident_id)

    def clear(self) -> None:
        """Forget every tracked workflow."""
        with self._lock:
            for signal in self._signals.values():
                signal.set()
            self._workflows.clear()
            self._signals.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._workflows)

    def __contains__(self, incident_id: object) -> bool:
        with self._lock:
            return incident_id in self._workflows

    # ------------------------------------------------------------------
    # Internals (callers hold the lock)
    # ------------------------------------------------------------------

    def _active(self, incident_id: str) -> WorkflowStatus | None:
        status = self._workflows.get(incident_id)
        if status is None or status.state.is_terminal:
            return None
        return status

    def _finish(self, incident_id: str, state: WorkflowState, label: str, **fields: Any) -> bool:
        with self._lock:
            status = self._active(incident_id)
            if status is None:
                # Already terminal (or unknown): make sure the signal is gone
                self._signals.pop(incident_id, None)
                return False
            self._finish_locked(status, state, label, **fields)

        logger.info("workflow_finished", incident_id=incident_id, state=state.value)
        return True

    def _finish_locked(
        self,
        status: WorkflowStatus,
        state: WorkflowState,
        label: str,
        **fields: Any,
    ) -> None:
        status.state = state
        status.current_phase = label
        status.end_time = utcnow()
        for key, value in fields.items():
            setattr(status, key, value)
        self._signals.pop(status.incident_id, None)
