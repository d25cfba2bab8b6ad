"""Agent abstractions used by the workflow phases.

- :class:`Conversation` -- append-only message history, one per phase
- :class:`Tool` -- a named async function an agent may call
- :class:`BaseAgent` -- abstract agent: ``invoke(prompt, conversation) -> text``
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol

import structlog

from bober.errors import BoberError

logger = structlog.get_logger(__name__)


class Conversation:
    """Ordered, append-only chat history shared by every iteration of one phase.

    A fresh conversation is created for each phase and discarded when the
    phase ends; it is never shared across phases or incidents.
    """

    def __init__(self, system_prompt: str = "") -> None:
        self._messages: list[dict[str, Any]] = []
        if system_prompt:
            self._messages.append({"role": "system", "content": system_prompt})

    def append(self, role: str, content: str, **extra: Any) -> None:
        message: dict[str, Any] = {"role": role, "content": content}
        message.update(extra)
        self._messages.append(message)

    def append_message(self, message: dict[str, Any]) -> None:
        self._messages.append(dict(message))

    @property
    def messages(self) -> list[dict[str, Any]]:
        """A copy of the history, oldest first."""
        return [dict(m) for m in self._messages]

    def __len__(self) -> int:
        return len(self._messages)


@dataclass
class Tool:
    """An async function exposed to the agent as a callable tool.

    Errors from the Bober domain (rejected commands, remote failures) and bad
    arguments are returned to the agent as a failed tool call rather than
    raised, so the agent can try something else.
    """

    name: str
    description: str
    handler: Callable[..., Awaitable[str]]
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )

    def schema(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    async def invoke(self, arguments: dict[str, Any] | str | None) -> str:
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments) if arguments.strip() else {}
            except json.JSONDecodeError:
                return f"Error: arguments for {self.name} are not valid JSON"
        try:
            return await self.handler(**(arguments or {}))
        except BoberError as exc:
            logger.warning("tool_call_failed", tool=self.name, error=str(exc))
            return f"Error: {exc}"
        except TypeError as exc:
            logger.warning("tool_call_bad_arguments", tool=self.name, error=str(exc))
            return f"Error: invalid arguments for {self.name}: {exc}"


class Agent(Protocol):
    """Anything that turns a prompt plus conversation into a response text."""

    name: str

    async def invoke(self, prompt: str, conversation: Conversation) -> str: ...

    def new_conversation(self) -> Conversation: ...


class BaseAgent(ABC):
    """Abstract base class for conversational agents."""

    def __init__(
        self,
        name: str,
        instruction: str = "",
        tools: list[Tool] | None = None,
    ) -> None:
        self.name = name
        self.instruction = instruction
        self.tools = tools or []

    def new_conversation(self) -> Conversation:
        """Start a conversation seeded with this agent's instructions."""
        return Conversation(system_prompt=self.instruction)

    def get_tool(self, name: str) -> Tool | None:
        for tool in self.tools:
            if tool.name == name:
                return tool
        return None

    @abstractmethod
    async def invoke(self, prompt: str, conversation: Conversation) -> str:
        """Send *prompt* within *conversation* and return the final response text."""
        ...

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"
