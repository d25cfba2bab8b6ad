"""Command allowlists and the authorization gate for remote commands.

Every command an agent asks to run on a remote host is checked here before it
can reach the remote executor. The check compares only the first
whitespace-separated token (the base command) against a fixed per-role set,
exact and case-sensitive.

Known limitation: because only the base command is evaluated, shell control
operators can chain further commands after an allowed one (``echo hi; rm x``
passes for the Analyzer). ``strict=True`` rejects such commands up front; it
is off by default so the documented contract is unchanged.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass


class Role(str, enum.Enum):
    """Agent roles that may dispatch remote commands."""

    ANALYZER = "Analyzer"
    RESOLVER = "Resolver"


# ---------------------------------------------------------------------------
# Allowlists
# ---------------------------------------------------------------------------

ANALYZER_COMMANDS: frozenset[str] = frozenset({
    # System information
    "uname", "hostname", "uptime", "whoami", "date",
    # Disk usage
    "df", "du", "lsblk",
    # Memory and CPU
    "free", "top", "htop", "ps", "vmstat", "iostat",
    # Network diagnostics
    "netstat", "ss", "ip", "ifconfig", "ping", "traceroute", "nslookup",
    "dig", "curl", "wget",
    # Log viewing
    "tail", "head", "cat", "less", "more", "grep", "journalctl", "dmesg",
    # Service status
    "systemctl", "service", "docker",
    # File system (read-only)
    "ls", "find", "stat", "file", "wc", "which", "whereis",
    # Environment
    "env", "printenv", "echo",
})

RESOLVER_EXTRA_COMMANDS: frozenset[str] = frozenset({
    # Service management
    "supervisorctl", "pm2",
    # Process management
    "kill", "pkill", "killall",
    # File operations
    "rm", "mv", "cp", "mkdir", "rmdir", "touch", "chmod", "chown", "chgrp",
    # Text manipulation
    "sed", "awk", "tee",
    # Cleanup
    "truncate",
    # Package management
    "apt", "apt-get", "yum", "dnf", "npm", "pip", "pip3",
})

RESOLVER_COMMANDS: frozenset[str] = ANALYZER_COMMANDS | RESOLVER_EXTRA_COMMANDS

ALLOWLISTS: dict[Role, frozenset[str]] = {
    Role.ANALYZER: ANALYZER_COMMANDS,
    Role.RESOLVER: RESOLVER_COMMANDS,
}

_SHELL_OPERATORS = re.compile(r"[;&|`<>\n]|\$\(")


@dataclass(frozen=True)
class Authorization:
    """Outcome of a gate check."""

    allowed: bool
    base_command: str | None
    reason: str = ""

    def __bool__(self) -> bool:
        return self.allowed


def base_command(raw_command: str) -> str | None:
    """Return the first whitespace-separated token of *raw_command*, if any."""
    tokens = raw_command.split()
    return tokens[0] if tokens else None


def rejection_message(raw_command: str, role: Role | str) -> str:
    """Message surfaced to the agent when *raw_command* is refused."""
    role_name = role.value if isinstance(role, Role) else role
    return (
        f"Command '{base_command(raw_command or '') or ''}' is not allowed for "
        f"{role_name} agent. Command rejected for security reasons."
    )


def authorize(
    raw_command: str | None,
    allowlist: frozenset[str] | set[str],
    role: Role | str = Role.ANALYZER,
    strict: bool = False,
) -> Authorization:
    """Check *raw_command* against *allowlist*.

    Args:
        raw_command: Command string proposed by the agent.
        allowlist: Permitted base commands for the calling role.
        role: Role name used in the rejection message.
        strict: Also reject commands containing shell control operators.

    Returns:
        An :class:`Authorization`; falsy when the command is rejected.
    """
    command = (raw_command or "").strip()
    if not command:
        return Authorization(False, None, "Empty command rejected.")

    base = base_command(command)
    if base is None:
        return Authorization(False, None, "Empty command rejected.")

    if strict and _SHELL_OPERATORS.search(command):
        role_name = role.value if isinstance(role, Role) else role
        return Authorization(
            False,
            base,
            f"Command '{base}' contains shell control operators, which are not "
            f"allowed for {role_name} agent. Command rejected for security reasons.",
        )

    if base not in allowlist:
        return Authorization(False, base, rejection_message(command, role))

    return Authorization(True, base)
