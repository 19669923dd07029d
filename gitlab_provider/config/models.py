"""Configuration models for the GitLab provider."""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, HttpUrl, SecretStr, field_validator

DEFAULT_BASE_URL = "https://gitlab.com/api/v4"


class GitLabConfig(BaseModel):
    """GitLab API configuration."""

    base_url: HttpUrl = Field(
        HttpUrl(DEFAULT_BASE_URL),
        description="GitLab API URL, e.g. https://gitlab.example.com/api/v4",
    )
    token: SecretStr = Field(
        ...,
        description="Personal, group or project access token",
    )
    timeout_seconds: int = Field(
        30,
        description="Timeout for GitLab API calls in seconds",
        ge=1,
    )
    max_retries: int = Field(
        3,
        description="Maximum number of retry attempts",
        ge=0,
    )
    retry_delay_seconds: float = Field(
        1.0,
        description="Initial delay between retries in seconds",
        ge=0.0,
    )
    insecure: bool = Field(
        False,
        description="Disable TLS certificate verification",
    )
    cacert_file: Optional[Path] = Field(
        None,
        description="Path to a CA bundle used to verify the GitLab certificate",
    )
    early_auth_check: bool = Field(
        True,
        description="Verify the token against the API before reconciling",
    )

    @field_validator("token")
    @classmethod
    def validate_token(cls, v: SecretStr) -> SecretStr:
        """Validate that the token is not empty."""
        if not v.get_secret_value().strip():
            raise ValueError("GitLab token cannot be empty")
        return v

    @field_validator("cacert_file")
    @classmethod
    def validate_cacert_file(cls, v: Optional[Path]) -> Optional[Path]:
        if v is not None and not v.is_file():
            raise ValueError(f"CA certificate file not found: {v}")
        return v

    @property
    def verify_ssl(self):
        """Value passed to the HTTP client's ``verify`` option."""
        if self.insecure:
            return False
        if self.cacert_file is not None:
            return str(self.cacert_file)
        return True


class LoggingConfig(BaseModel):
    """Configuration for structured logging."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format (json or text)")

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(sorted(valid_levels))}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        if v.lower() not in {"json", "text"}:
            raise ValueError("Log format must be 'json' or 'text'")
        return v.lower()


class StateConfig(BaseModel):
    """Where the identities of managed resources are persisted."""

    path: Path = Field(
        default=Path("./gitlab-provider.state.json"),
        description="JSON file holding the identity and last-read state of each resource",
    )


class ProviderConfig(BaseModel):
    """Main configuration for the GitLab provider."""

    gitlab: GitLabConfig
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    state: StateConfig = Field(default_factory=StateConfig)

    @classmethod
    def from_env(cls) -> "ProviderConfig":
        """Create configuration from environment variables.

        Reads ``GITLAB_TOKEN`` (required), ``GITLAB_BASE_URL``,
        ``GITLAB_INSECURE``, ``GITLAB_CACERT_FILE``, ``LOG_LEVEL``,
        ``LOG_FORMAT`` and ``STATE_FILE``. A ``.env`` file in the working
        directory is loaded first.

        Raises:
            ValueError: If required environment variables are missing.
        """
        load_dotenv()

        token = os.getenv("GITLAB_TOKEN")
        if not token:
            raise ValueError("GITLAB_TOKEN environment variable is required")

        gitlab = {
            "token": token,
            "base_url": os.getenv("GITLAB_BASE_URL", DEFAULT_BASE_URL),
            "insecure": os.getenv("GITLAB_INSECURE", "false").lower() in {"1", "true", "yes"},
        }
        if os.getenv("GITLAB_CACERT_FILE"):
            gitlab["cacert_file"] = os.getenv("GITLAB_CACERT_FILE")

        return cls(
            gitlab=GitLabConfig.model_validate(gitlab),
            logging=LoggingConfig(
                level=os.getenv("LOG_LEVEL", "INFO"),
                format=os.getenv("LOG_FORMAT", "text"),
            ),
            state=StateConfig(path=Path(os.getenv("STATE_FILE", "./gitlab-provider.state.json"))),
        )
