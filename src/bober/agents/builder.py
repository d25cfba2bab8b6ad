"""Construction of the per-incident analyzer, summarizer and resolver agents."""

from __future__ import annotations

from typing import Mapping

import httpx

from bober.agents.base import Agent, Tool
from bober.agents.instructions import INSTRUCTIONS
from bober.agents.ollama import OllamaAgent
from bober.config import Settings
from bober.models import RESPONSE_MODELS, IncidentContext, PhaseName
from bober.tools.command_gate import Role
from bober.tools.remote import GatedRemoteExecutor, RemoteExecutor
from bober.tools.reports import MarkdownReportSink

_SSH_PARAMETERS = {
    "type": "object",
    "properties": {
        "host": {"type": "string", "description": "Host to run the command on"},
        "command": {"type": "string", "description": "Shell command to execute"},
    },
    "required": ["host", "command"],
}


def ssh_tool(executor: RemoteExecutor, role: Role, strict: bool = False) -> Tool:
    """Remote command tool restricted to *role*'s allowlist."""
    gated = GatedRemoteExecutor(executor, role, strict=strict)
    return Tool(
        name="ssh_dynamic",
        description=(
            "Executes a command on a host from the credential pool. Only commands "
            f"in the {role.value} allowlist are permitted."
        ),
        handler=gated.execute,
        parameters=_SSH_PARAMETERS,
    )


def read_analysis_tool(sink: MarkdownReportSink, incident_id: str) -> Tool:
    async def read_analysis() -> str:
        return await sink.read_analysis(incident_id)

    return Tool(
        name="read_analysis",
        description="Reads the complete analysis report from analysis.md",
        handler=read_analysis,
    )


class AgentBuilder:
    """Builds the phase agents for one incident, sharing one HTTP client."""

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient,
        executor: RemoteExecutor,
        sink: MarkdownReportSink,
    ) -> None:
        self.settings = settings
        self.client = client
        self.executor = executor
        self.sink = sink

    def __call__(self, incident: IncidentContext) -> Mapping[PhaseName, Agent]:
        strict = self.settings.strict_command_gate
        read_analysis = read_analysis_tool(self.sink, incident.incident_id)

        agents: dict[PhaseName, Agent] = {
            PhaseName.ANALYSIS: self._agent(
                "Bober Analyzer",
                PhaseName.ANALYSIS,
                [ssh_tool(self.executor, Role.ANALYZER, strict)],
            ),
            PhaseName.SUMMARIZATION: self._agent(
                "Bober Summarizer",
                PhaseName.SUMMARIZATION,
                [read_analysis],
            ),
        }
        if self.settings.enable_resolution:
            agents[PhaseName.RESOLUTION] = self._agent(
                "Bober Resolver",
                PhaseName.RESOLUTION,
                [ssh_tool(self.executor, Role.RESOLVER, strict), read_analysis],
            )
        return agents

    def _agent(self, name: str, phase: PhaseName, tools: list[Tool]) -> OllamaAgent:
        return OllamaAgent(
            name=name,
            client=self.client,
            model=self.settings.ollama_model,
            instruction=INSTRUCTIONS[phase],
            tools=tools,
            response_schema=RESPONSE_MODELS[phase].model_json_schema(),
            max_tool_rounds=self.settings.agent_max_tool_rounds,
        )
