"""
SmartParser configuration using Pydantic Settings.

Values are read from ``SMART_PARSER_*`` environment variables and an optional
``.env`` file. Invalid or missing values raise ConfigurationError before any
parse call is attempted.
"""

from functools import lru_cache
from typing import Annotated, Any, Literal
from urllib.parse import urlparse

from pydantic import Field, StringConstraints, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class SmartParserSettings(BaseSettings):
    """Connection settings for the chat-completion endpoint."""

    # Required
    deployment_name: NonEmptyStr
    openai_endpoint: NonEmptyStr
    openai_credential_key: NonEmptyStr
    http_client_network_timeout_seconds: int = Field(..., gt=0)

    # Transport
    provider: Literal["azure", "openai"] = "azure"
    api_version: NonEmptyStr = "2024-10-21"
    max_transport_retries: int = Field(default=2, ge=0)

    model_config = SettingsConfigDict(
        env_prefix="SMART_PARSER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    @field_validator("openai_endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        """Endpoint must be an absolute http(s) URI."""
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"openai_endpoint must be an absolute http(s) URI, got '{v}'")
        return v


def load_settings(**overrides: Any) -> SmartParserSettings:
    """
    Build and validate settings.

    Args:
        **overrides: Explicit values taking precedence over the environment
            (``_env_file`` is forwarded to pydantic-settings).

    Returns:
        Validated settings.

    Raises:
        ConfigurationError: If a required setting is missing or malformed.
    """
    try:
        return SmartParserSettings(**overrides)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid SmartParser configuration: {e}") from e


@lru_cache
def get_settings() -> SmartParserSettings:
    """
    Get cached settings loaded from the environment.

    Returns:
        SmartParserSettings: Configuration loaded from environment.
    """
    return load_settings()
