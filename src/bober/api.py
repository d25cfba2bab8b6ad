"""FastAPI application for the Bober incident workflow service.

Exposes REST endpoints for:
- Receiving monitor webhooks and starting investigations
- Polling and cancelling workflows
- Reading investigation reports and streaming real-time progress
- Health checks
"""

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Mapping

import httpx
import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from bober.agents.base import Agent
from bober.agents.builder import AgentBuilder
from bober.config import Settings
from bober.errors import DuplicateIncidentError, IncidentNotFoundError
from bober.models import (
    ErrorResponse,
    HealthResponse,
    IncidentContext,
    IncidentSummary,
    MonitorEvent,
    PhaseName,
    WebhookResponse,
    WorkflowStatus,
    utcnow,
)
from bober.streaming import WorkflowEventStream
from bober.tools.remote import RemoteExecutor, SshExecutor
from bober.tools.reports import (
    ANALYSIS_FILENAME,
    RESOLUTION_FILENAME,
    SUMMARY_FILENAME,
    MarkdownReportSink,
)
from bober.workflow.orchestrator import WorkflowOrchestrator
from bober.workflow.registry import StatusRegistry

logger = structlog.get_logger(__name__)

AgentFactory = Callable[[IncidentContext], Mapping[PhaseName, Agent]]


# ---------------------------------------------------------------------------
# Application State container
# ---------------------------------------------------------------------------


class AppState:
    """Shared application state accessible from route handlers."""

    def __init__(
        self,
        settings: Settings,
        agent_factory: AgentFactory | None = None,
        executor: RemoteExecutor | None = None,
    ) -> None:
        self.settings = settings
        self.registry = StatusRegistry()
        self.event_stream = WorkflowEventStream(retain_finished=settings.event_history_retention)
        self.sink = MarkdownReportSink(settings.data_directory)
        self.client = httpx.AsyncClient(
            base_url=settings.ollama_base_url,
            timeout=settings.ollama_request_timeout_seconds,
        )
        self.executor = executor or SshExecutor(
            hosts=settings.ssh_hosts,
            user=settings.ssh_user,
            ssh_options=settings.ssh_options,
            connect_timeout=settings.ssh_connect_timeout_seconds,
            command_timeout=settings.command_timeout_seconds,
        )
        self.agent_factory: AgentFactory = agent_factory or AgentBuilder(
            settings, self.client, self.executor, self.sink
        )
        self.orchestrator = WorkflowOrchestrator(
            settings, self.registry, self.sink, self.event_stream
        )
        self.tasks: dict[str, asyncio.Task[None]] = {}

    def start_workflow(
        self,
        incident: IncidentContext,
        monitor_event: MonitorEvent,
        agents: Mapping[PhaseName, Agent],
    ) -> asyncio.Task[None]:
        incident_id = incident.incident_id
        task = asyncio.create_task(
            self.orchestrator.run(incident, monitor_event, agents),
            name=f"workflow-{incident_id}",
        )
        self.tasks[incident_id] = task
        task.add_done_callback(lambda _: self.tasks.pop(incident_id, None))
        return task

    async def shutdown(self) -> None:
        tasks = list(self.tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.client.aclose()

    def require_status(self, incident_id: str) -> WorkflowStatus:
        status = self.registry.get(incident_id)
        if status is None:
            raise IncidentNotFoundError(incident_id)
        return status


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(
    settings: Settings | None = None,
    agent_factory: AgentFactory | None = None,
    executor: RemoteExecutor | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    *agent_factory* and *executor* replace the Ollama agents and the SSH
    executor, e.g. with scripted fakes in tests.
    """
    settings = settings or Settings()
    state = AppState(settings, agent_factory=agent_factory, executor=executor)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        logger.info("application_shutdown", running_workflows=len(state.tasks))
        await state.shutdown()

    app = FastAPI(
        title="Bober",
        description=(
            "Incident investigation service. Receives monitor webhooks and runs "
            "an analyze -> summarize -> (resolve) agent workflow per incident."
        ),
        version=settings.service_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS for the dashboard
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.app_state = state
    app.state.settings = settings

    # -------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------

    @app.get("/", tags=["health"])
    async def root() -> dict[str, Any]:
        return {"status": "Bober is running", "timestamp": utcnow().isoformat()}

    @app.get("/health", response_model=HealthResponse, tags=["health"])
    async def health() -> HealthResponse:
        """Service health check."""
        return HealthResponse(
            status="healthy",
            service=settings.service_name,
            version=settings.service_version,
        )

    # -------------------------------------------------------------------
    # Webhook
    # -------------------------------------------------------------------

    @app.post("/webhook/incident", status_code=202, tags=["incidents"])
    async def receive_incident(monitor_event: MonitorEvent) -> dict[str, Any]:
        """Acknowledge a monitor event and start its investigation.

        The workflow runs in the background; poll ``/workflows/{incidentId}``
        or follow ``/workflows/{incidentId}/stream`` for progress.
        """
        logger.info(
            "incident_webhook_received",
            url=monitor_event.url,
            status_code=monitor_event.status_code,
        )

        incident = await asyncio.to_thread(
            IncidentContext.create, settings.data_directory, monitor_event
        )
        try:
            state.registry.register(incident.incident_id, monitor_event, incident.directory_path)
        except DuplicateIncidentError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc

        try:
            agents = state.agent_factory(incident)
        except Exception as exc:
            error_message = str(exc) or type(exc).__name__
            logger.exception("agent_setup_failed", incident_id=incident.incident_id, error=error_message)
            state.registry.mark_failed(incident.incident_id, f"Agent setup failed: {error_message}")
            raise HTTPException(
                status_code=500,
                detail=f"Could not start investigation for incident {incident.incident_id}",
            ) from exc

        state.start_workflow(incident, monitor_event, agents)
        logger.info(
            "incident_workflow_started",
            incident_id=incident.incident_id,
            directory=incident.directory_path,
        )

        response = WebhookResponse(
            incident_id=incident.incident_id,
            incident=IncidentSummary(url=monitor_event.url, status_code=monitor_event.status_code),
            directory_path=incident.directory_path,
            message=f"Investigation started for incident {incident.incident_id}",
        )
        return response.model_dump(mode="json", by_alias=True)

    # -------------------------------------------------------------------
    # Workflow endpoints
    # -------------------------------------------------------------------

    @app.get("/workflows", tags=["workflows"])
    async def list_workflows() -> list[dict[str, Any]]:
        """All tracked workflows, most recently started first."""
        return [s.model_dump(mode="json", by_alias=True) for s in state.registry.list_all()]

    @app.get("/workflows/{incident_id}", tags=["workflows"])
    async def get_workflow(incident_id: str) -> dict[str, Any]:
        status = state.registry.get(incident_id)
        if status is None:
            raise HTTPException(status_code=404, detail=f"Workflow {incident_id} not found")
        return status.model_dump(mode="json", by_alias=True)

    @app.post("/workflows/{incident_id}/cancel", tags=["workflows"])
    async def cancel_workflow(incident_id: str) -> dict[str, Any]:
        """Request cancellation of a running workflow.

        The current iteration finishes; no further iterations or phases run.
        """
        if not state.registry.request_cancel(incident_id):
            raise HTTPException(
                status_code=404,
                detail=f"Workflow {incident_id} not found or already finished",
            )
        return {
            "incidentId": incident_id,
            "status": "cancelled",
            "message": f"Cancellation requested for workflow {incident_id}",
        }

    @app.get("/workflows/{incident_id}/report", tags=["workflows"])
    async def get_report(incident_id: str) -> dict[str, Any]:
        """Current investigation log and final documents for an incident."""
        try:
            status = state.require_status(incident_id)
        except IncidentNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

        return {
            "incidentId": incident_id,
            "state": status.state.value,
            "analysis": await state.sink.read_document(incident_id, ANALYSIS_FILENAME),
            "summary": await state.sink.read_document(incident_id, SUMMARY_FILENAME),
            "resolution": await state.sink.read_document(incident_id, RESOLUTION_FILENAME),
        }

    @app.get("/workflows/{incident_id}/stream", tags=["workflows"])
    async def stream_workflow(incident_id: str) -> EventSourceResponse:
        """SSE stream of workflow events."""
        status = state.registry.get(incident_id)
        if status is None:
            raise HTTPException(status_code=404, detail=f"Workflow {incident_id} not found")
        finished = status.state.is_terminal

        async def event_generator():  # type: ignore[no-untyped-def]
            async for event in state.event_stream.subscribe(incident_id, finished=finished):
                yield {
                    "event": event.event_type,
                    "data": json.dumps(event.model_dump(mode="json")),
                }

        return EventSourceResponse(event_generator())

    # -------------------------------------------------------------------
    # Error handlers
    # -------------------------------------------------------------------

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unhandled exceptions."""
        logger.error(
            "unhandled_exception", error=str(exc), path=request.url.path
        )
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="Internal server error",
                detail=str(exc),
                status_code=500,
            ).model_dump(),
        )

    return app
