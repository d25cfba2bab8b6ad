"""End-to-end workflow tests for the incident orchestrator."""

from __future__ import annotations

import asyncio

import pytest

from fakes import (
    InMemorySink,
    ScriptedAgent,
    analysis_json,
    resolution_json,
    summary_json,
)


def _setup(settings, registry, monitor_event, incident_id="20250115-100000-ABC123", sink=None, events=None):
    from bober.models import IncidentContext
    from bober.workflow.orchestrator import WorkflowOrchestrator

    sink = sink or InMemorySink()
    incident = IncidentContext(incident_id=incident_id, directory_path=f"/tmp/incidents/{incident_id}")
    registry.register(incident_id, monitor_event, incident.directory_path)
    orchestrator = WorkflowOrchestrator(settings, registry, sink, events)
    return orchestrator, incident, sink


@pytest.mark.asyncio
async def test_happy_path_completes_with_summary(settings, registry, monitor_event):
    from bober.models import PhaseName, WorkflowState

    orchestrator, incident, sink = _setup(settings, registry, monitor_event)
    analyzer = ScriptedAgent([analysis_json(), analysis_json(is_complete=True)])
    summarizer = ScriptedAgent([summary_json()])

    await orchestrator.run(
        incident, monitor_event, {PhaseName.ANALYSIS: analyzer, PhaseName.SUMMARIZATION: summarizer}
    )

    status = registry.get(incident.incident_id)
    assert status.state is WorkflowState.COMPLETED
    assert status.analyzer_iterations == 2
    assert status.summarizer_iterations == 1
    assert status.current_phase == "Completed"
    assert status.result["phase"] == "summarization"
    assert status.result["root_cause"] == "Unrotated nginx access logs filled /var."

    fragments = sink.fragments[incident.incident_id]
    assert fragments[0].startswith("# Incident Analysis Report")
    assert "## Iteration 1" in fragments[1]
    assert "## Iteration 2" in fragments[2]

    summary = sink.documents[incident.incident_id]["analysis-summary.md"]
    for section in ("## Overview", "## Root Cause", "## Severity", "## Key Findings",
                    "## Timeline", "## Recommended Actions"):
        assert section in summary
    assert "1. Rotate nginx logs" in summary


@pytest.mark.asyncio
async def test_each_phase_gets_its_own_conversation(settings, registry, monitor_event):
    from bober.models import PhaseName

    orchestrator, incident, _ = _setup(settings, registry, monitor_event)
    analyzer = ScriptedAgent([analysis_json(), analysis_json(is_complete=True)])
    summarizer = ScriptedAgent([summary_json()])

    await orchestrator.run(
        incident, monitor_event, {PhaseName.ANALYSIS: analyzer, PhaseName.SUMMARIZATION: summarizer}
    )

    assert len(analyzer.conversations) == 1
    assert len(summarizer.conversations) == 1
    assert analyzer.conversations[0] is not summarizer.conversations[0]
    assert analyzer.prompts[0].startswith("Investigate this incident")
    assert "URL: https://shop.example.com/health" in analyzer.prompts[0]
    assert analyzer.prompts[1] == "Continue the investigation based on your previous findings."


@pytest.mark.asyncio
async def test_summary_written_once_across_iterations(settings, registry, monitor_event):
    from bober.models import PhaseName

    orchestrator, incident, sink = _setup(settings, registry, monitor_event)
    analyzer = ScriptedAgent([analysis_json(is_complete=True)])
    summarizer = ScriptedAgent([summary_json(is_complete=False), summary_json(is_complete=True)])

    await orchestrator.run(
        incident, monitor_event, {PhaseName.ANALYSIS: analyzer, PhaseName.SUMMARIZATION: summarizer}
    )

    assert summarizer.calls == 2
    assert sink.writes == [(incident.incident_id, "analysis-summary.md")]


@pytest.mark.asyncio
async def test_analysis_budget_forces_advance(settings, registry, monitor_event):
    from bober.models import PhaseName, WorkflowState
    from structlog.testing import capture_logs

    orchestrator, incident, _ = _setup(settings, registry, monitor_event)
    analyzer = ScriptedAgent([analysis_json(is_complete=False)])
    summarizer = ScriptedAgent([summary_json()])

    with capture_logs() as logs:
        await orchestrator.run(
            incident, monitor_event, {PhaseName.ANALYSIS: analyzer, PhaseName.SUMMARIZATION: summarizer}
        )

    status = registry.get(incident.incident_id)
    assert analyzer.calls == settings.analysis_max_iterations
    assert status.analyzer_iterations == settings.analysis_max_iterations
    assert status.phase_outcomes["analysis"] == "budget-exhausted"
    assert status.state is WorkflowState.COMPLETED
    assert summarizer.calls == 1

    degraded = [entry for entry in logs if entry["event"] == "phase_degraded"]
    assert [entry["phase"] for entry in degraded] == ["analysis"]
    assert degraded[0]["outcome"] == "budget-exhausted"


@pytest.mark.asyncio
async def test_malformed_summaries_skip_summary_document(settings, registry, monitor_event):
    from bober.models import PhaseName, WorkflowState

    orchestrator, incident, sink = _setup(settings, registry, monitor_event)
    analyzer = ScriptedAgent([analysis_json(is_complete=True)])
    summarizer = ScriptedAgent(["I could not produce JSON, sorry."])

    await orchestrator.run(
        incident, monitor_event, {PhaseName.ANALYSIS: analyzer, PhaseName.SUMMARIZATION: summarizer}
    )

    status = registry.get(incident.incident_id)
    assert summarizer.calls == settings.summary_max_iterations
    assert status.phase_outcomes["summarization"] == "no-valid-response"
    assert status.state is WorkflowState.COMPLETED
    assert "analysis-summary.md" not in sink.documents.get(incident.incident_id, {})
    # The last valid response is the analyzer's
    assert status.result["phase"] == "analysis"


@pytest.mark.asyncio
async def test_cancel_during_analysis_stops_workflow(settings, registry, monitor_event):
    from bober.models import PhaseName, WorkflowState

    orchestrator, incident, _ = _setup(settings, registry, monitor_event)
    analyzer = ScriptedAgent(
        [analysis_json(is_complete=False)],
        on_invoke=lambda n: registry.request_cancel(incident.incident_id) if n == 2 else None,
    )
    summarizer = ScriptedAgent([summary_json()])

    await orchestrator.run(
        incident, monitor_event, {PhaseName.ANALYSIS: analyzer, PhaseName.SUMMARIZATION: summarizer}
    )

    status = registry.get(incident.incident_id)
    assert status.state is WorkflowState.CANCELLED
    assert analyzer.calls == 2
    assert summarizer.calls == 0
    # The iteration in flight when cancel arrived is not recorded
    assert status.analyzer_iterations == 1
    assert status.end_time is not None


@pytest.mark.asyncio
async def test_cancel_during_final_summary_iteration_writes_nothing(settings, registry, monitor_event):
    from bober.models import PhaseName, WorkflowState
    from bober.streaming import WorkflowEventStream

    events = WorkflowEventStream()
    orchestrator, incident, sink = _setup(settings, registry, monitor_event, events=events)
    analyzer = ScriptedAgent([analysis_json(is_complete=True)])
    # The summarizer finishes its iteration even though cancel arrived meanwhile
    summarizer = ScriptedAgent(
        [summary_json()],
        on_invoke=lambda n: registry.request_cancel(incident.incident_id),
    )

    await orchestrator.run(
        incident, monitor_event, {PhaseName.ANALYSIS: analyzer, PhaseName.SUMMARIZATION: summarizer}
    )

    status = registry.get(incident.incident_id)
    assert status.state is WorkflowState.CANCELLED
    assert summarizer.calls == 1
    assert "summarization" not in status.phase_outcomes
    assert status.result is None
    assert sink.writes == []
    assert "analysis-summary.md" not in sink.documents.get(incident.incident_id, {})

    types = [e.event_type for e in events.get_history(incident.incident_id)]
    assert types[-1] == "workflow_cancelled"
    assert types.count("phase_completed") == 1


@pytest.mark.asyncio
async def test_cancel_before_start_runs_nothing(settings, registry, monitor_event):
    from bober.models import PhaseName, WorkflowState

    orchestrator, incident, sink = _setup(settings, registry, monitor_event)
    registry.request_cancel(incident.incident_id)
    analyzer = ScriptedAgent([analysis_json(is_complete=True)])

    await orchestrator.run(
        incident, monitor_event, {PhaseName.ANALYSIS: analyzer, PhaseName.SUMMARIZATION: analyzer}
    )

    assert analyzer.calls == 0
    assert registry.get(incident.incident_id).state is WorkflowState.CANCELLED
    assert incident.incident_id not in sink.fragments


@pytest.mark.asyncio
async def test_agent_failure_marks_workflow_failed(settings, registry, monitor_event):
    from bober.errors import AgentError
    from bober.models import PhaseName, WorkflowState

    orchestrator, incident, _ = _setup(settings, registry, monitor_event)
    analyzer = ScriptedAgent([analysis_json(), AgentError("Analyzer: chat request failed")])
    summarizer = ScriptedAgent([summary_json()])

    await orchestrator.run(
        incident, monitor_event, {PhaseName.ANALYSIS: analyzer, PhaseName.SUMMARIZATION: summarizer}
    )

    status = registry.get(incident.incident_id)
    assert status.state is WorkflowState.FAILED
    assert status.error_message == "Analyzer: chat request failed"
    assert status.current_phase == "Failed"
    assert summarizer.calls == 0


@pytest.mark.asyncio
async def test_task_cancellation_marks_cancelled(settings, registry, monitor_event):
    from bober.models import PhaseName, WorkflowState

    orchestrator, incident, _ = _setup(settings, registry, monitor_event)
    gate = asyncio.Event()
    analyzer = ScriptedAgent([analysis_json()], gate=gate)

    task = asyncio.create_task(
        orchestrator.run(incident, monitor_event, {PhaseName.ANALYSIS: analyzer, PhaseName.SUMMARIZATION: analyzer})
    )
    while analyzer.calls == 0:
        await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert registry.get(incident.incident_id).state is WorkflowState.CANCELLED


@pytest.mark.asyncio
async def test_resolution_phase_when_enabled(settings, registry, monitor_event):
    from bober.models import PhaseName, WorkflowState

    settings = settings.model_copy(update={"enable_resolution": True})
    orchestrator, incident, sink = _setup(settings, registry, monitor_event)
    resolver = ScriptedAgent([resolution_json()])

    await orchestrator.run(
        incident,
        monitor_event,
        {
            PhaseName.ANALYSIS: ScriptedAgent([analysis_json(is_complete=True)]),
            PhaseName.SUMMARIZATION: ScriptedAgent([summary_json()]),
            PhaseName.RESOLUTION: resolver,
        },
    )

    status = registry.get(incident.incident_id)
    assert status.state is WorkflowState.COMPLETED
    assert status.resolver_iterations == 1
    assert status.result["phase"] == "resolution"
    assert status.result["status"] == "success"
    assert "Unrotated nginx access logs" in resolver.prompts[0]

    resolution = sink.documents[incident.incident_id]["resolution.md"]
    assert "**Status:** SUCCESS" in resolution
    assert "truncate -s 0 /var/log/nginx/access.log" in resolution


@pytest.mark.asyncio
async def test_resolution_skipped_when_disabled(settings, registry, monitor_event):
    from bober.models import PhaseName

    orchestrator, incident, _ = _setup(settings, registry, monitor_event)
    resolver = ScriptedAgent([resolution_json()])

    await orchestrator.run(
        incident,
        monitor_event,
        {
            PhaseName.ANALYSIS: ScriptedAgent([analysis_json(is_complete=True)]),
            PhaseName.SUMMARIZATION: ScriptedAgent([summary_json()]),
            PhaseName.RESOLUTION: resolver,
        },
    )

    assert resolver.calls == 0
    assert registry.get(incident.incident_id).result["phase"] == "summarization"


@pytest.mark.asyncio
async def test_events_follow_workflow_progress(settings, registry, monitor_event):
    from bober.models import PhaseName
    from bober.streaming import WorkflowEventStream

    events = WorkflowEventStream()
    orchestrator, incident, _ = _setup(settings, registry, monitor_event, events=events)

    await orchestrator.run(
        incident,
        monitor_event,
        {
            PhaseName.ANALYSIS: ScriptedAgent([analysis_json(is_complete=True)]),
            PhaseName.SUMMARIZATION: ScriptedAgent([summary_json()]),
        },
    )

    types = [e.event_type for e in events.get_history(incident.incident_id)]
    assert types == [
        "workflow_started",
        "phase_started",
        "iteration_recorded",
        "phase_completed",
        "phase_started",
        "iteration_recorded",
        "phase_completed",
        "workflow_completed",
    ]

    received = [e.event_type async for e in events.subscribe(incident.incident_id)]
    assert received[-1] == "workflow_completed"


@pytest.mark.asyncio
async def test_writes_markdown_files_to_incident_directory(settings, registry, monitor_event):
    from bober.models import IncidentContext, PhaseName
    from bober.tools.reports import MarkdownReportSink
    from bober.workflow.orchestrator import WorkflowOrchestrator

    incident = IncidentContext.create(settings.data_directory, monitor_event)
    registry.register(incident.incident_id, monitor_event, incident.directory_path)
    orchestrator = WorkflowOrchestrator(settings, registry, MarkdownReportSink(settings.data_directory))

    await orchestrator.run(
        incident,
        monitor_event,
        {
            PhaseName.ANALYSIS: ScriptedAgent([analysis_json(is_complete=True)]),
            PhaseName.SUMMARIZATION: ScriptedAgent([summary_json()]),
        },
    )

    analysis = incident.analysis_file_path.read_text(encoding="utf-8")
    assert "**Status Code:** 503" in analysis
    assert "df -h" in analysis
    assert incident.summary_file_path.read_text(encoding="utf-8").startswith("# Incident Summary")
    assert not incident.resolution_file_path.exists()
