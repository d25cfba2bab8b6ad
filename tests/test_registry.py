"""Status registry tests."""

from __future__ import annotations

import threading
import time

import pytest

from bober.errors import DuplicateIncidentError
from bober.models import PhaseName, WorkflowState


def _register(registry, monitor_event, incident_id="INC-1"):
    return registry.register(incident_id, monitor_event, f"/tmp/incidents/{incident_id}")


def test_register_starts_pending(registry, monitor_event):
    status = _register(registry, monitor_event)
    assert status.state is WorkflowState.PENDING
    assert status.current_phase == "Initializing"
    assert status.end_time is None
    assert "INC-1" in registry
    assert len(registry) == 1


def test_duplicate_registration_rejected(registry, monitor_event):
    _register(registry, monitor_event)
    with pytest.raises(DuplicateIncidentError):
        _register(registry, monitor_event)


def test_get_unknown_returns_none(registry):
    assert registry.get("missing") is None
    assert registry.request_cancel("missing") is False


def test_get_returns_copy(registry, monitor_event):
    _register(registry, monitor_event)
    snapshot = registry.get("INC-1")
    snapshot.state = WorkflowState.FAILED
    assert registry.get("INC-1").state is WorkflowState.PENDING


def test_phase_and_iteration_updates(registry, monitor_event):
    _register(registry, monitor_event)
    assert registry.update_phase("INC-1", WorkflowState.ANALYZING, "Analysis")
    assert registry.update_iteration("INC-1", PhaseName.ANALYSIS, 3)

    status = registry.get("INC-1")
    assert status.state is WorkflowState.ANALYZING
    assert status.state.is_running
    assert status.analyzer_iterations == 3
    assert status.current_phase == "Analysis (Iteration 3)"


def test_mark_completed_sets_end_time(registry, monitor_event):
    _register(registry, monitor_event)
    assert registry.mark_completed("INC-1", result={"phase": "summarization"})

    status = registry.get("INC-1")
    assert status.state is WorkflowState.COMPLETED
    assert status.end_time is not None
    assert status.result == {"phase": "summarization"}
    assert registry.cancellation_signal("INC-1") is None


def test_cancel_after_completion_is_rejected(registry, monitor_event):
    _register(registry, monitor_event)
    assert registry.mark_completed("INC-1", result={"phase": "summarization"})

    assert registry.request_cancel("INC-1") is False
    status = registry.get("INC-1")
    assert status.state is WorkflowState.COMPLETED
    assert status.current_phase == "Completed"


def test_terminal_markers_are_idempotent(registry, monitor_event):
    _register(registry, monitor_event)
    assert registry.mark_failed("INC-1", "boom")
    assert registry.mark_failed("INC-1", "again") is False
    assert registry.mark_cancelled("INC-1") is False
    assert registry.mark_completed("INC-1") is False

    status = registry.get("INC-1")
    assert status.state is WorkflowState.FAILED
    assert status.error_message == "boom"


def test_request_cancel_marks_cancelled_and_sets_signal(registry, monitor_event):
    _register(registry, monitor_event)
    signal = registry.cancellation_signal("INC-1")

    assert registry.request_cancel("INC-1") is True
    assert signal.is_set()
    assert registry.get("INC-1").state is WorkflowState.CANCELLED
    assert registry.get("INC-1").current_phase == "Cancelled"
    assert registry.request_cancel("INC-1") is False


def test_updates_ignored_after_cancel(registry, monitor_event):
    _register(registry, monitor_event)
    registry.update_iteration("INC-1", PhaseName.ANALYSIS, 1)
    registry.request_cancel("INC-1")

    assert registry.update_phase("INC-1", WorkflowState.SUMMARIZING, "Summarization") is False
    assert registry.update_iteration("INC-1", PhaseName.ANALYSIS, 2) is False
    assert registry.mark_completed("INC-1") is False

    status = registry.get("INC-1")
    assert status.state is WorkflowState.CANCELLED
    assert status.analyzer_iterations == 1


def test_list_all_most_recent_first(registry, monitor_event):
    for incident_id in ("INC-1", "INC-2", "INC-3"):
        _register(registry, monitor_event, incident_id)
        time.sleep(0.001)
    assert [s.incident_id for s in registry.list_all()] == ["INC-3", "INC-2", "INC-1"]


def test_clear_forgets_everything(registry, monitor_event):
    _register(registry, monitor_event)
    signal = registry.cancellation_signal("INC-1")
    registry.clear()
    assert len(registry) == 0
    assert signal.is_set()


def test_concurrent_updates_are_consistent(registry, monitor_event):
    incident_ids = [f"INC-{i}" for i in range(20)]
    for incident_id in incident_ids:
        _register(registry, monitor_event, incident_id)

    def work(incident_id):
        for count in range(1, 51):
            registry.update_iteration(incident_id, PhaseName.ANALYSIS, count)
        registry.mark_completed(incident_id)

    threads = [threading.Thread(target=work, args=(i,)) for i in incident_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    for status in registry.list_all():
        assert status.state is WorkflowState.COMPLETED
        assert status.analyzer_iterations == 50
