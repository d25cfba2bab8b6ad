"""Configuration management for the Bober incident workflow service.

Settings are read from environment variables (and an optional ``.env`` file)
via pydantic-settings. Covers service identity, incident storage, the agent
backend, per-phase iteration budgets, and remote command execution.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Bober service configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service identity
    service_name: str = "bober"
    service_version: str = "0.1.0"
    host: str = "0.0.0.0"
    port: int = 5250
    environment: str = "development"
    log_level: str = "INFO"

    # Incident storage; incidents live under <data_directory>/incidents/<id>
    data_directory: str = "."

    # Agent backend (Ollama chat API)
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.1:8b"
    ollama_request_timeout_seconds: float = 300.0
    agent_max_tool_rounds: int = 8
    agent_call_timeout_seconds: float | None = Field(
        default=600.0,
        description="Hard limit for one agent invocation. None disables the limit.",
    )

    # Phase iteration budgets
    analysis_max_iterations: int = Field(default=15, ge=1)
    summary_max_iterations: int = Field(default=3, ge=1)
    resolution_max_iterations: int = Field(default=5, ge=1)
    enable_resolution: bool = False

    # Progress events of finished incidents kept for SSE replay
    event_history_retention: int = Field(default=100, ge=0)

    # Remote execution
    ssh_hosts: list[str] = Field(default_factory=lambda: ["192.168.1.22"])
    ssh_user: str = "ubuntu"
    ssh_options: list[str] = Field(
        default_factory=lambda: ["-o", "BatchMode=yes", "-o", "StrictHostKeyChecking=accept-new"]
    )
    ssh_connect_timeout_seconds: int = 10
    command_timeout_seconds: float | None = 60.0
    strict_command_gate: bool = False

    @property
    def is_development(self) -> bool:
        return self.environment.lower() in ("development", "dev", "local")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""
    return Settings()
