"""Configuration for the flow orchestrator.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Remote credentials are optional at startup so the API server, the ledger and
the review pipeline work against local state alone. Operations that talk to
the remote task tracker call :meth:`OrchestratorSettings.require_remote_credentials`
and fail fast with :class:`ConfigurationError`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from task_flow_orchestrator.orchestrator.errors import ConfigurationError


class LLMConfig(BaseSettings):
    """Configuration for the LLM-backed enrichment strategy."""

    provider: Literal["openai"] = Field(
        default="openai",
        description="LLM provider to use",
    )
    openai_api_key: str | None = Field(
        default=None,
        description="OpenAI API key",
    )
    openai_model: str = Field(
        default="gpt-4o-mini",
        description="OpenAI model to use",
    )
    openai_temperature: float = Field(
        default=0.2,
        ge=0.0,
        le=2.0,
        description="Temperature for OpenAI model",
    )
    max_tokens: int = Field(
        default=1200,
        gt=0,
        description="Upper bound on completion tokens for one enrichment",
    )

    model_config = SettingsConfigDict(
        env_prefix="ORCHESTRATOR_LLM_",
        env_file=".env",
        extra="ignore",
    )


class OrchestratorSettings(BaseSettings):
    """Settings for the orchestrator process.

    Environment variables:
    - ORCHESTRATOR_REMOTE_TOKEN    (required for sync)
    - ORCHESTRATOR_REMOTE_TEAM_ID  (required for sync)
    - ORCHESTRATOR_REMOTE_BASE_URL (optional)
    - ORCHESTRATOR_DB_PATH         (optional)
    - LOG_LEVEL / LOG_FORMAT       (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `OrchestratorSettings(_env_file=path_to_env)`.
    """

    remote_token: str = Field(
        default="",
        validation_alias="ORCHESTRATOR_REMOTE_TOKEN",
        description="API token for the remote task tracker",
    )
    remote_team_id: str = Field(
        default="",
        validation_alias="ORCHESTRATOR_REMOTE_TEAM_ID",
        description="Team/workspace whose projects are synchronized",
    )
    remote_base_url: str = Field(
        default="https://api.clickup.com/api/v2",
        validation_alias="ORCHESTRATOR_REMOTE_BASE_URL",
    )
    remote_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        validation_alias="ORCHESTRATOR_REMOTE_TIMEOUT_SECONDS",
        description="Per-request HTTP timeout",
    )
    remote_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        validation_alias="ORCHESTRATOR_REMOTE_MAX_ATTEMPTS",
    )
    remote_backoff_seconds: float = Field(
        default=1.0,
        ge=0,
        validation_alias="ORCHESTRATOR_REMOTE_BACKOFF_SECONDS",
        description="Base delay for the remote client's exponential backoff",
    )

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        validation_alias="LOG_FORMAT",
    )

    db_path: Path = Field(
        default=Path("agent_state/staging.db"),
        validation_alias="ORCHESTRATOR_DB_PATH",
        description="SQLite database holding staged/promoted tasks and the execution ledger",
    )
    flows_file: Path | None = Field(
        default=None,
        validation_alias="ORCHESTRATOR_FLOWS_FILE",
        description="Optional JSON file with extra flow definitions, loaded at startup",
    )
    step_backoff_seconds: float = Field(
        default=0.5,
        ge=0,
        validation_alias="ORCHESTRATOR_STEP_BACKOFF_SECONDS",
        description="Base delay between attempts of a failing flow step",
    )

    enrichment_strategy: Literal["rules", "llm"] = Field(
        default="rules",
        validation_alias="ORCHESTRATOR_ENRICHMENT_STRATEGY",
    )
    conflict_policy: Literal["last_write_wins", "remote_wins", "local_wins", "manual"] = Field(
        default="last_write_wins",
        validation_alias="ORCHESTRATOR_CONFLICT_POLICY",
    )

    cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        validation_alias="ORCHESTRATOR_CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins.",
    )

    llm: LLMConfig = Field(default_factory=LLMConfig)

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @property
    def has_remote_credentials(self) -> bool:
        return bool(self.remote_token.strip() and self.remote_team_id.strip())

    def require_remote_credentials(self) -> None:
        missing = []
        if not self.remote_token.strip():
            missing.append("ORCHESTRATOR_REMOTE_TOKEN")
        if not self.remote_team_id.strip():
            missing.append("ORCHESTRATOR_REMOTE_TEAM_ID")
        if missing:
            raise ConfigurationError(f"{', '.join(missing)} required for remote sync")

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
