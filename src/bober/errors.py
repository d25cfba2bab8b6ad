"""Exception types raised by the Bober workflow engine and its collaborators."""

from __future__ import annotations


class BoberError(Exception):
    """Base class for all Bober errors."""


class DuplicateIncidentError(BoberError):
    """An incident id was registered twice."""

    def __init__(self, incident_id: str) -> None:
        super().__init__(f"Incident {incident_id} is already registered")
        self.incident_id = incident_id


class IncidentNotFoundError(BoberError):
    """No workflow is tracked for the given incident id."""

    def __init__(self, incident_id: str) -> None:
        super().__init__(f"Incident {incident_id} not found")
        self.incident_id = incident_id


class CommandRejectedError(BoberError, PermissionError):
    """A remote command failed the allowlist check.

    Surfaced to the agent as a failed tool call, never fatal to the workflow.
    """

    def __init__(self, message: str, role: str, base_command: str | None) -> None:
        super().__init__(message)
        self.role = role
        self.base_command = base_command


class RemoteExecutionError(BoberError):
    """Transport, authentication or timeout failure while running a remote command."""

    def __init__(self, host: str, command: str, reason: str) -> None:
        super().__init__(f"Command '{command}' on {host} failed: {reason}")
        self.host = host
        self.command = command
        self.reason = reason


class AgentError(BoberError):
    """The agent backend could not produce a response (transport or protocol failure)."""
