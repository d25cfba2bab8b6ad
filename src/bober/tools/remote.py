"""Remote command execution for analyzer and resolver agents.

:class:`SshExecutor` runs commands on pooled hosts through the OpenSSH client.
Agents never receive an executor directly: they get a
:class:`GatedRemoteExecutor`, which runs every command through the command
gate first.
"""

from __future__ import annotations

import asyncio
from typing import Protocol, Sequence

import structlog

from bober.errors import CommandRejectedError, RemoteExecutionError
from bober.tools.command_gate import ALLOWLISTS, Role, authorize

logger = structlog.get_logger(__name__)


class RemoteExecutor(Protocol):
    """Runs a shell command on a remote host and returns its output."""

    async def execute(self, host: str, command: str) -> str: ...


class SshExecutor:
    """Execute commands over SSH using the system ``ssh`` client.

    Only hosts in the configured pool are reachable. Authentication relies on
    the process's SSH agent / key configuration (``BatchMode`` prevents
    interactive password prompts).
    """

    def __init__(
        self,
        hosts: Sequence[str],
        user: str,
        ssh_options: Sequence[str] = (),
        connect_timeout: int = 10,
        command_timeout: float | None = 60.0,
        ssh_binary: str = "ssh",
    ) -> None:
        self.hosts = frozenset(hosts)
        self.user = user
        self.ssh_options = list(ssh_options)
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.ssh_binary = ssh_binary

    def build_argv(self, host: str, command: str) -> list[str]:
        return [
            self.ssh_binary,
            *self.ssh_options,
            "-o", f"ConnectTimeout={self.connect_timeout}",
            f"{self.user}@{host}",
            "--",
            command,
        ]

    async def execute(self, host: str, command: str) -> str:
        if host not in self.hosts:
            raise RemoteExecutionError(host, command, f"host {host} is not in the SSH host pool")

        argv = self.build_argv(host, command)
        logger.info("ssh_command_start", host=host, command=command)

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise RemoteExecutionError(host, command, str(exc)) from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.command_timeout
            )
        except asyncio.TimeoutError as exc:
            await _reap(process)
            raise RemoteExecutionError(
                host, command, f"timed out after {self.command_timeout}s"
            ) from exc
        except BaseException:
            # Cancelled from outside (agent call timeout, shutdown)
            await _reap(process)
            raise

        output = stdout.decode("utf-8", errors="replace")
        # 255 is reserved by ssh for its own connection/auth failures
        if process.returncode == 255:
            raise RemoteExecutionError(
                host, command, stderr.decode("utf-8", errors="replace").strip() or "ssh failed"
            )

        logger.info(
            "ssh_command_complete",
            host=host,
            command=command,
            exit_code=process.returncode,
            output_bytes=len(stdout),
        )
        if process.returncode != 0:
            error_text = stderr.decode("utf-8", errors="replace")
            output = f"{output}\n[exit code {process.returncode}]\n{error_text}".strip()
        return output


class GatedRemoteExecutor:
    """Remote executor bound to one role's allowlist.

    Every call passes the command gate before reaching the wrapped executor;
    rejected commands raise :class:`CommandRejectedError` and never reach it.
    """

    def __init__(
        self,
        executor: RemoteExecutor,
        role: Role,
        strict: bool = False,
    ) -> None:
        self._executor = executor
        self.role = role
        self.allowlist = ALLOWLISTS[role]
        self.strict = strict

    async def execute(self, host: str, command: str) -> str:
        decision = authorize(command, self.allowlist, self.role, strict=self.strict)
        if not decision:
            logger.warning(
                "command_rejected",
                role=self.role.value,
                host=host,
                base_command=decision.base_command,
            )
            raise CommandRejectedError(decision.reason, self.role.value, decision.base_command)
        return await self._executor.execute(host, command)


async def _reap(process: asyncio.subprocess.Process) -> None:
    """Kill *process* if it is still running and wait for it to exit."""
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
    await asyncio.shield(process.wait())
