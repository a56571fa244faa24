"""Configuration models for requestkit.

All models use Pydantic v2 and reject unknown keys, so typos in a config
file fail loudly instead of being ignored.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BasicAuthConfig(BaseModel):
    """Credentials for HTTP basic auth."""

    model_config = ConfigDict(extra="forbid")

    username: str = Field(description="User name")
    password: str = Field(description="Password (supports ${ENV_VAR} substitution)")


class ClientProfile(BaseModel):
    """Defaults applied to every request built for one named client."""

    model_config = ConfigDict(extra="forbid")

    base_url: str = Field(description="Base URL; request paths are appended to it")
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="Headers to include (supports ${ENV_VAR} substitution)",
    )
    timeout_ms: int = Field(default=0, ge=0, description="Timeout in milliseconds, 0 for default")
    retries: int = Field(default=0, ge=0, description="Retries on connection/timeout failures")
    basic_auth: BasicAuthConfig | None = Field(default=None, description="Basic auth credentials")

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v


class LoggingConfig(BaseModel):
    """Logging settings."""

    model_config = ConfigDict(extra="forbid")

    level: str = Field(default="WARNING", description="Log level name, e.g., DEBUG")
    file: str | None = Field(default=None, description="Optional log file path")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level '{v}'")
        return level


class ClientConfig(BaseModel):
    """Top-level client configuration file structure."""

    model_config = ConfigDict(extra="forbid")

    clients: dict[str, ClientProfile] = Field(description="Client name -> profile mapping")
    logging: LoggingConfig = Field(default_factory=LoggingConfig, description="Logging settings")
