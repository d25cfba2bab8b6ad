"""Markdown rendering of workflow output.

Produces the investigation log header, one fragment per phase iteration, and
the final summary and resolution documents.
"""

from __future__ import annotations

from datetime import datetime

from bober.models import (
    AnalyzerIterationResponse,
    MonitorEvent,
    PhaseName,
    ResolutionReport,
    SummaryReport,
    utcnow,
)

_TS_FORMAT = "%Y-%m-%d %H:%M:%S UTC"


def _ts(now: datetime | None) -> str:
    return (now or utcnow()).strftime(_TS_FORMAT)


def format_log_header(
    incident_id: str,
    monitor_event: MonitorEvent,
    now: datetime | None = None,
) -> str:
    """Header written once at the top of ``analysis.md``."""
    return (
        "# Incident Analysis Report\n"
        "\n"
        f"**Incident ID:** {incident_id}\n"
        f"**URL:** {monitor_event.url}\n"
        f"**Status Code:** {monitor_event.status_code}\n"
        f"**Reported At:** {_ts(now)}\n"
        "\n"
        "---\n"
        "\n"
    )


def format_analyzer_iteration(
    response: AnalyzerIterationResponse,
    iteration: int,
    now: datetime | None = None,
) -> str:
    lines = [f"## Iteration {iteration} - {_ts(now)}", "", f"**Reasoning:** {response.reasoning}", ""]

    executed = response.command_executed
    if executed is not None:
        lines += [
            f"**Command Executed on {executed.host}:**",
            "```bash",
            executed.command,
            "```",
            "",
            "**Output:**",
            "```",
            executed.output,
            "```",
            "",
        ]
    else:
        lines += ["**Command Executed:** None (thinking/planning iteration)", ""]

    progress = response.progress
    lines += [
        f"**Findings:** {response.current_findings}",
        "",
        f"**Progress:** {progress.completion_percentage}% - {progress.current_focus}",
        f"**Severity:** {progress.severity}",
        "",
        "---",
        "",
    ]
    return "\n".join(lines) + "\n"


def format_summary_iteration(
    response: SummaryReport,
    iteration: int,
    now: datetime | None = None,
) -> str:
    """Short log entry for a summarization pass; the full document is written separately."""
    state = "final" if response.is_complete else "draft"
    return (
        f"## Summarization Pass {iteration} ({state}) - {_ts(now)}\n"
        "\n"
        f"**Severity:** {response.severity}\n"
        f"**Root Cause:** {response.root_cause}\n"
        "\n"
        "---\n"
        "\n"
    )


def format_summary(
    summary: SummaryReport,
    incident_id: str,
    url: str,
    status_code: str,
    now: datetime | None = None,
) -> str:
    """Render the complete ``analysis-summary.md`` document."""
    lines = [
        "# Incident Summary",
        "",
        f"**Incident ID:** {incident_id}",
        f"**URL:** {url}",
        f"**Status Code:** {status_code}",
        f"**Report Generated:** {_ts(now)}",
        "",
        "---",
        "",
        "## Overview",
        "",
        summary.overview,
        "",
        "## Root Cause",
        "",
        summary.root_cause,
        "",
        "## Severity",
        "",
        f"**{summary.severity.upper()}**",
        "",
        "## Key Findings",
        "",
    ]
    lines += [f"- {finding}" for finding in summary.key_findings]
    lines += ["", "## Timeline", ""]
    lines += [f"- **{event.timestamp}:** {event.description}" for event in summary.timeline]
    lines += ["", "## Recommended Actions", ""]
    lines += [f"{i}. {action}" for i, action in enumerate(summary.recommended_actions, 1)]
    lines.append("")
    return "\n".join(lines) + "\n"


def format_resolution_iteration(
    response: ResolutionReport,
    iteration: int,
    now: datetime | None = None,
) -> str:
    lines = [
        f"## Resolution Iteration {iteration} - {_ts(now)}",
        "",
        f"**Summary:** {response.summary}",
        f"**Status:** {response.status.value}",
        "",
    ]
    for step in response.steps_executed:
        marker = "OK" if step.success else "FAILED"
        lines += [f"- [{marker}] {step.action}"]
        if step.command:
            lines += ["  ```bash", f"  {step.command}", "  ```"]
    lines += ["", "---", ""]
    return "\n".join(lines) + "\n"


def format_resolution_report(
    resolution: ResolutionReport,
    incident_id: str,
    now: datetime | None = None,
) -> str:
    """Render the complete ``resolution.md`` document."""
    lines = [
        "# Incident Resolution",
        "",
        f"**Incident ID:** {incident_id}",
        f"**Status:** {resolution.status.value.upper()}",
        f"**Report Generated:** {_ts(now)}",
        "",
        "---",
        "",
        "## Summary",
        "",
        resolution.summary,
        "",
        "## Steps Executed",
        "",
    ]
    for i, step in enumerate(resolution.steps_executed, 1):
        outcome = "success" if step.success else "failed"
        lines += [f"{i}. {step.action} ({outcome})"]
        if step.command:
            lines += ["", "   ```bash", f"   {step.command}", "   ```"]
        if step.output:
            lines += ["", "   ```", *[f"   {line}" for line in step.output.splitlines()], "   ```"]
    lines += ["", "## Verification", ""]
    lines += [f"- {item}" for item in resolution.verification_results]
    lines += ["", "## Follow-up Actions", ""]
    lines += [f"- {item}" for item in resolution.follow_up_actions]
    lines.append("")
    return "\n".join(lines) + "\n"


FRAGMENT_FORMATTERS = {
    PhaseName.ANALYSIS: format_analyzer_iteration,
    PhaseName.SUMMARIZATION: format_summary_iteration,
    PhaseName.RESOLUTION: format_resolution_iteration,
}
