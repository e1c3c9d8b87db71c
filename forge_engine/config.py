"""Engine configuration — all settings from environment variables."""

import logging
from pathlib import PurePosixPath

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings


class ForgeSettings(BaseSettings):
    """Runtime configuration for testforge (validated via Pydantic)."""

    model_config = {"env_prefix": "", "extra": "ignore", "populate_by_name": True}

    # Backend / alerts
    backend_base_url: str = Field(default="http://localhost:3000", alias="BASE_URL")
    alerts_url_override: str = Field(default="", alias="ALERTS_URL")
    http_timeout: float = Field(default=10.0, alias="FORGE_HTTP_TIMEOUT")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    alerts_only_flag: bool = Field(default=False, alias="ALERTS_ONLY")
    log_mode: str = Field(
        default="",
        validation_alias=AliasChoices("LOG_MODE", "MASTRA_LOG_MODE"),
    )

    # Collaborator (LLM)
    model: str = Field(default="openai/gpt-4o-mini", alias="FORGE_MODEL")
    temperature: float = Field(default=0.2, alias="FORGE_TEMPERATURE")
    max_tokens: int = Field(default=4096, alias="FORGE_MAX_TOKENS")
    llm_timeout: float = Field(default=180.0, alias="FORGE_LLM_TIMEOUT")
    agent_max_steps: int = Field(default=40, alias="FORGE_AGENT_MAX_STEPS")
    max_attempts: int = Field(default=3, alias="FORGE_MAX_ATTEMPTS")

    # GitHub
    github_token: str = Field(
        default="",
        validation_alias=AliasChoices("GITHUB_TOKEN", "GITHUB_PAT"),
    )
    github_api_url: str = Field(default="https://api.github.com", alias="GITHUB_API_URL")

    # Docker sandbox
    docker_image: str = Field(default="testforge-ubuntu:22.04", alias="FORGE_DOCKER_IMAGE")
    container_name: str = Field(default="testforge-sandbox", alias="FORGE_CONTAINER_NAME")
    workdir: str = Field(default="/app", alias="FORGE_WORKDIR")
    command_timeout: float = Field(default=120.0, alias="FORGE_COMMAND_TIMEOUT")

    @field_validator("backend_base_url", "github_api_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Invalid URL scheme: {v}")
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("temperature")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        if not 0.0 <= v <= 2.0:
            raise ValueError(f"Temperature must be 0.0-2.0, got {v}")
        return v

    @field_validator("max_tokens")
    @classmethod
    def validate_max_tokens(cls, v: int) -> int:
        if v < 1 or v > 200000:
            raise ValueError(f"max_tokens must be 1-200000, got {v}")
        return v

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        if v < 1 or v > 10:
            raise ValueError(f"max_attempts must be 1-10, got {v}")
        return v

    @property
    def alerts_url(self) -> str:
        return self.alerts_url_override or f"{self.backend_base_url}/api/alerts"

    @property
    def alerts_only(self) -> bool:
        """True when step logging is muted and only alerts are emitted."""
        return self.alerts_only_flag or self.log_mode.lower() == "alerts_only"

    @property
    def context_path(self) -> str:
        return str(PurePosixPath(self.workdir) / "agent.context.json")

    @property
    def plan_path(self) -> str:
        return str(PurePosixPath(self.workdir) / "agent.plan.json")

    @classmethod
    def from_env(cls) -> "ForgeSettings":
        """Create settings from environment variables."""
        return cls()
