"""Pydantic models for the Bober incident workflow service.

Covers the monitor webhook payload, incident identity, workflow lifecycle
states and status records, the per-phase structured agent responses, and
the HTTP/SSE payloads exposed by the API.
"""

from __future__ import annotations

import enum
import hashlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Any, Literal, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)
from pydantic.alias_generators import to_camel

from bober.tools.reports import ANALYSIS_FILENAME, RESOLUTION_FILENAME, SUMMARY_FILENAME


def utcnow() -> datetime:
    """Return the current timezone-aware UTC time."""
    return datetime.now(tz=timezone.utc)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class WorkflowState(str, enum.Enum):
    """Lifecycle states of an incident workflow."""

    PENDING = "pending"
    ANALYZING = "analyzing"
    SUMMARIZING = "summarizing"
    RESOLVING = "resolving"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES

    @property
    def is_running(self) -> bool:
        return self in (WorkflowState.ANALYZING, WorkflowState.SUMMARIZING, WorkflowState.RESOLVING)


_TERMINAL_STATES = frozenset(
    {WorkflowState.COMPLETED, WorkflowState.FAILED, WorkflowState.CANCELLED}
)


class PhaseName(str, enum.Enum):
    """Workflow phases, in execution order."""

    ANALYSIS = "analysis"
    SUMMARIZATION = "summarization"
    RESOLUTION = "resolution"

    @property
    def label(self) -> str:
        return _PHASE_LABELS[self]

    @property
    def state(self) -> WorkflowState:
        return _PHASE_STATES[self]


_PHASE_LABELS = {
    PhaseName.ANALYSIS: "Analysis",
    PhaseName.SUMMARIZATION: "Summarization",
    PhaseName.RESOLUTION: "Resolution",
}

_PHASE_STATES = {
    PhaseName.ANALYSIS: WorkflowState.ANALYZING,
    PhaseName.SUMMARIZATION: WorkflowState.SUMMARIZING,
    PhaseName.RESOLUTION: WorkflowState.RESOLVING,
}


# ---------------------------------------------------------------------------
# Incident identity
# ---------------------------------------------------------------------------


class MonitorEvent(BaseModel):
    """Faulty-endpoint report sent by the external monitor."""

    model_config = ConfigDict(populate_by_name=True)

    url: str = Field(
        validation_alias=AliasChoices("Url", "url", "URL"),
        serialization_alias="url",
        min_length=1,
    )
    status_code: str = Field(
        validation_alias=AliasChoices("StatusCode", "statusCode", "status_code"),
        serialization_alias="statusCode",
    )

    @field_validator("status_code", mode="before")
    @classmethod
    def _coerce_status_code(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value


class IncidentContext(BaseModel):
    """Identity and storage location of one triggered investigation."""

    model_config = ConfigDict(frozen=True)

    incident_id: str
    directory_path: str
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def analysis_file_path(self) -> Path:
        return Path(self.directory_path) / ANALYSIS_FILENAME

    @property
    def summary_file_path(self) -> Path:
        return Path(self.directory_path) / SUMMARY_FILENAME

    @property
    def resolution_file_path(self) -> Path:
        return Path(self.directory_path) / RESOLUTION_FILENAME

    @classmethod
    def create(
        cls,
        base_directory: str | Path,
        monitor_event: MonitorEvent,
        now: datetime | None = None,
    ) -> IncidentContext:
        """Build a new incident id and create its directory.

        The id is ``<yyyyMMdd-HHmmss>-<URL hash>``; a numeric suffix is added
        when the same URL is reported twice within one second.
        """
        now = now or utcnow()
        incidents_root = Path(base_directory) / "incidents"
        base_id = f"{now:%Y%m%d-%H%M%S}-{url_hash(monitor_event.url)}"

        incident_id = base_id
        attempt = 1
        while True:
            directory = incidents_root / incident_id
            try:
                directory.mkdir(parents=True, exist_ok=False)
                break
            except FileExistsError:
                attempt += 1
                incident_id = f"{base_id}-{attempt}"

        return cls(incident_id=incident_id, directory_path=str(directory), created_at=now)


def url_hash(url: str) -> str:
    """Return a short, stable, upper-case hex digest of *url*."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:6].upper()


# ---------------------------------------------------------------------------
# Per-phase structured agent responses
# ---------------------------------------------------------------------------


class CommandExecution(BaseModel):
    """A remote command run during an analysis iteration."""

    command: str
    output: str = ""
    host: str = ""


class ProgressMetadata(BaseModel):
    """Progress tracking reported by the analyzer on every iteration."""

    severity: str = "unknown"  # low / medium / high / critical
    current_focus: str = ""
    completion_percentage: int = 0

    @field_validator("completion_percentage", mode="before")
    @classmethod
    def _clamp_percentage(cls, value: Any) -> Any:
        if isinstance(value, (int, float)):
            return max(0, min(100, int(value)))
        return value


class AnalyzerIterationResponse(BaseModel):
    """Structured output of one Analysis iteration."""

    phase: Literal["analysis"] = "analysis"
    reasoning: str
    command_executed: CommandExecution | None = None
    current_findings: str
    is_complete: bool
    progress: ProgressMetadata = Field(default_factory=ProgressMetadata)


class TimelineEvent(BaseModel):
    """A significant event in the investigation timeline."""

    timestamp: str
    description: str


class SummaryReport(BaseModel):
    """Structured output of the Summarization phase."""

    phase: Literal["summarization"] = "summarization"
    overview: str
    root_cause: str
    key_findings: list[str] = Field(default_factory=list)
    severity: str = "unknown"
    recommended_actions: list[str] = Field(default_factory=list)
    timeline: list[TimelineEvent] = Field(default_factory=list)
    is_complete: bool


class ResolutionStep(BaseModel):
    """One remediation step executed by the resolver."""

    action: str
    command: str = ""
    output: str = ""
    success: bool = False


class ResolutionStatus(str, enum.Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class ResolutionReport(BaseModel):
    """Structured output of one Resolution iteration."""

    phase: Literal["resolution"] = "resolution"
    summary: str
    steps_executed: list[ResolutionStep] = Field(default_factory=list)
    status: ResolutionStatus = ResolutionStatus.PARTIAL
    verification_results: list[str] = Field(default_factory=list)
    follow_up_actions: list[str] = Field(default_factory=list)
    is_complete: bool

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value


PhaseResponse = Annotated[
    Union[AnalyzerIterationResponse, SummaryReport, ResolutionReport],
    Field(discriminator="phase"),
]

RESPONSE_MODELS: dict[PhaseName, type[BaseModel]] = {
    PhaseName.ANALYSIS: AnalyzerIterationResponse,
    PhaseName.SUMMARIZATION: SummaryReport,
    PhaseName.RESOLUTION: ResolutionReport,
}


# ---------------------------------------------------------------------------
# Workflow status
# ---------------------------------------------------------------------------


class WorkflowStatus(BaseModel):
    """Tracked state of one incident workflow, as exposed by the API."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    incident_id: str
    state: WorkflowState = WorkflowState.PENDING
    current_phase: str = "Initializing"
    analyzer_iterations: int = 0
    summarizer_iterations: int = 0
    resolver_iterations: int = 0
    start_time: datetime = Field(default_factory=utcnow)
    end_time: datetime | None = None
    error_message: str | None = None
    monitor_event: MonitorEvent
    directory_path: str
    phase_outcomes: dict[str, str] = Field(default_factory=dict)
    result: dict[str, Any] | None = None

    def set_iterations(self, phase: PhaseName, count: int) -> None:
        setattr(self, _ITERATION_FIELDS[phase], count)


_ITERATION_FIELDS = {
    PhaseName.ANALYSIS: "analyzer_iterations",
    PhaseName.SUMMARIZATION: "summarizer_iterations",
    PhaseName.RESOLUTION: "resolver_iterations",
}


# ---------------------------------------------------------------------------
# API payloads
# ---------------------------------------------------------------------------


class IncidentSummary(BaseModel):
    url: str
    status_code: str = Field(serialization_alias="statusCode")


class WebhookResponse(BaseModel):
    """Acknowledgement returned by the incident webhook."""

    status: str = "processing"
    incident_id: str = Field(serialization_alias="incidentId")
    incident: IncidentSummary
    directory_path: str = Field(serialization_alias="directoryPath")
    message: str
    timestamp: datetime = Field(default_factory=utcnow)


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    timestamp: datetime = Field(default_factory=utcnow)


class ErrorResponse(BaseModel):
    error: str
    detail: str | None = None
    status_code: int


# ---------------------------------------------------------------------------
# SSE event model
# ---------------------------------------------------------------------------


class WorkflowEvent(BaseModel):
    """Server-Sent Event pushed during workflow execution."""

    event_type: str
    incident_id: str
    data: dict[str, Any] = Field(default_factory=dict)
    message: str = ""
    timestamp: datetime = Field(default_factory=utcnow)
