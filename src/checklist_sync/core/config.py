"""Application configuration with validation."""

from enum import Enum
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..exceptions import ConfigurationError


class LogFormat(str, Enum):
    """Log output format."""
    TEXT = "text"
    JSON = "json"


class Settings(BaseSettings):
    """
    Connection and runtime settings.

    Read from environment variables (case-insensitive) and an optional
    ``.env`` file in the working directory.
    """

    # Confluence connection
    confluence_base_url: str = Field(
        default="",
        description="Confluence DC/Server base URL, e.g. https://confluence.example.org"
    )
    confluence_pat: str = Field(
        default="",
        description="Personal access token, sent as Bearer"
    )
    confluence_user_agent: str = Field(
        default="",
        description="Custom User-Agent (empty = browser-like default)"
    )
    request_timeout: float = Field(
        default=30,
        description="Per-request timeout in seconds"
    )

    # Page placement
    space_key: str = Field(
        default="FMG",
        description="Space to find or create checklist pages in"
    )
    parent_page_id: Optional[str] = Field(
        default=None,
        description="Ancestor page for newly created checklist pages"
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_format: LogFormat = Field(
        default=LogFormat.TEXT,
        description="Log output format: 'json' for structured, 'text' for human-readable"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard Python logging levels."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v_upper

    @field_validator('parent_page_id', mode='before')
    @classmethod
    def empty_parent_is_none(cls, v):
        return v or None

    def validate_connection(self) -> None:
        """Fail fast when the Confluence connection cannot be configured.

        Raises:
            ConfigurationError: If the base URL or token is missing.
        """
        missing = []
        if not self.confluence_base_url:
            missing.append("CONFLUENCE_BASE_URL")
        if not self.confluence_pat:
            missing.append("CONFLUENCE_PAT")
        if missing:
            raise ConfigurationError(
                f"Set env: {' and '.join(missing)}",
                field=missing[0].lower(),
            )
