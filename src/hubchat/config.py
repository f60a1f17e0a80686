"""Configuration management for hubchat."""

from __future__ import annotations

from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from hubchat.errors import ConfigurationError

DEFAULT_SYSTEM_PROMPT = """\
- you are a friendly home automation assistant
- reply in lower case
"""

BusyPolicy = Literal["wait", "reject"]


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="HUBCHAT_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Model endpoint
    api_key: str | None = Field(
        None,
        description="Credential for the model endpoint",
        validation_alias=AliasChoices("HUBCHAT_API_KEY", "OPENAI_API_KEY"),
    )
    api_base: str | None = Field(
        None,
        description="Base address of the model endpoint",
        validation_alias=AliasChoices("HUBCHAT_API_BASE", "OPENAI_BASE_URL"),
    )
    model: str = Field(default="gpt-4o", description="Model name sent to the endpoint")
    max_tokens: int = Field(default=1024, description="Maximum tokens for responses")
    timeout_seconds: float | None = Field(default=90, description="Upper bound for one model call")

    # Turn configuration
    system_prompt: str = Field(default=DEFAULT_SYSTEM_PROMPT, description="System instructions for every turn")
    busy_policy: BusyPolicy = Field(default="wait", description="What to do when a conversation already has a turn")

    # Logging
    log_level: str = Field(default="INFO", description="Log level")

    def require_model_endpoint(self) -> tuple[str, str]:
        """Return (api_key, api_base) or fail if either is absent."""
        missing: list[str] = []
        if not self.api_key:
            missing.append("OPENAI_API_KEY")
        if not self.api_base:
            missing.append("OPENAI_BASE_URL")
        if missing:
            raise ConfigurationError(f"Model endpoint not configured. Set {', '.join(missing)}.")
        return self.api_key, self.api_base  # type: ignore[return-value]


def get_settings() -> Settings:
    """Get application settings from the environment and `.env`."""
    return Settings()
