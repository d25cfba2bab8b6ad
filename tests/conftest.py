"""Test fixtures for the Bober incident workflow service."""

from __future__ import annotations

import pytest

from fakes import RecordingExecutor, ScriptedAgent, analysis_json, summary_json


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set up test environment variables."""
    monkeypatch.setenv("ENVIRONMENT", "testing")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    for key in ("OLLAMA_BASE_URL", "SSH_HOSTS", "ENABLE_RESOLUTION", "DATA_DIRECTORY"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture()
def settings(tmp_path):
    """Create test settings with incidents stored under a temp directory."""
    from bober.config import Settings

    return Settings(
        environment="testing",
        log_level="DEBUG",
        data_directory=str(tmp_path),
        ssh_hosts=["10.0.0.5"],
        analysis_max_iterations=3,
        summary_max_iterations=2,
        resolution_max_iterations=2,
        agent_call_timeout_seconds=5.0,
    )


@pytest.fixture()
def registry():
    from bober.workflow.registry import StatusRegistry

    return StatusRegistry()


@pytest.fixture()
def monitor_event():
    from bober.models import MonitorEvent

    return MonitorEvent(url="https://shop.example.com/health", status_code="503")


@pytest.fixture()
def executor():
    return RecordingExecutor()


@pytest.fixture()
def agent_factory():
    """Agents that finish each phase on their first iteration."""
    from bober.models import PhaseName

    def build(incident):
        return {
            PhaseName.ANALYSIS: ScriptedAgent([analysis_json(is_complete=True)], name="Analyzer"),
            PhaseName.SUMMARIZATION: ScriptedAgent([summary_json()], name="Summarizer"),
        }

    return build


@pytest.fixture()
def app(settings, agent_factory, executor):
    """Create a test FastAPI application."""
    from bober.api import create_app

    return create_app(settings, agent_factory=agent_factory, executor=executor)


@pytest.fixture()
def client(app):
    """Create an async test client."""
    from httpx import ASGITransport, AsyncClient

    transport = ASGITransport(app=app)
    return AsyncClient(transport=transport, base_url="http://test")
