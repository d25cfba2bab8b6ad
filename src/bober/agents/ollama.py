"""Agent backed by an Ollama chat endpoint.

Sends the phase conversation to ``/api/chat`` with the agent's tools and a JSON
schema for the structured response, executes any tool calls the model makes,
and returns the model's final message content.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from bober.agents.base import BaseAgent, Conversation, Tool
from bober.errors import AgentError

logger = structlog.get_logger(__name__)


class OllamaAgent(BaseAgent):
    """Conversational agent using Ollama's chat API with tool calling."""

    def __init__(
        self,
        name: str,
        client: httpx.AsyncClient,
        model: str,
        instruction: str = "",
        tools: list[Tool] | None = None,
        response_schema: dict[str, Any] | None = None,
        max_tool_rounds: int = 8,
    ) -> None:
        super().__init__(name=name, instruction=instruction, tools=tools)
        self.client = client
        self.model = model
        self.response_schema = response_schema
        self.max_tool_rounds = max_tool_rounds

    async def invoke(self, prompt: str, conversation: Conversation) -> str:
        conversation.append("user", prompt)
        content = ""

        for round_number in range(1, self.max_tool_rounds + 1):
            message = await self._chat(conversation)
            conversation.append_message(message)
            content = message.get("content") or ""

            tool_calls = message.get("tool_calls") or []
            if not tool_calls:
                return content

            logger.info(
                "agent_tool_calls",
                agent=self.name,
                round=round_number,
                tools=[c.get("function", {}).get("name") for c in tool_calls],
            )
            for call in tool_calls:
                function = call.get("function", {})
                result = await self._run_tool(function.get("name", ""), function.get("arguments"))
                conversation.append("tool", result, tool_name=function.get("name", ""))

        logger.warning("agent_tool_rounds_exhausted", agent=self.name, rounds=self.max_tool_rounds)
        return content

    async def _run_tool(self, name: str, arguments: Any) -> str:
        tool = self.get_tool(name)
        if tool is None:
            return f"Error: unknown tool '{name}'"
        return await tool.invoke(arguments)

    async def _chat(self, conversation: Conversation) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": conversation.messages,
            "stream": False,
        }
        if self.tools:
            payload["tools"] = [tool.schema() for tool in self.tools]
        if self.response_schema is not None:
            payload["format"] = self.response_schema

        try:
            response = await self.client.post("/api/chat", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            raise AgentError(f"{self.name}: chat request failed: {exc}") from exc
        except ValueError as exc:
            raise AgentError(f"{self.name}: chat response is not JSON") from exc

        message = data.get("message")
        if not isinstance(message, dict):
            raise AgentError(f"{self.name}: chat response has no message")
        return message
