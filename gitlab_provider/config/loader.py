"""Configuration loader with YAML parsing and environment variable substitution."""

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional, Set

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from gitlab_provider.clients.exceptions import ConfigurationError
from gitlab_provider.config.models import ProviderConfig


class EnvironmentVariableError(ConfigurationError):
    """Raised when environment variable substitution fails."""
    pass


# Only these variables may be referenced from a configuration file
ALLOWED_ENV_VARS: Set[str] = {
    "GITLAB_TOKEN",
    "GITLAB_BASE_URL",
    "GITLAB_INSECURE",
    "GITLAB_CACERT_FILE",
    "LOG_LEVEL",
    "LOG_FORMAT",
    "STATE_FILE",
    "HOME",
    "USER",
    "PWD",
    "TMPDIR",
}


class ConfigLoader:
    """Configuration loader with environment variable substitution."""

    # Pattern for environment variable substitution: ${VAR_NAME} or ${VAR_NAME:default_value}
    ENV_VAR_PATTERN = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*?)(?::([^}]*))?\}')

    def __init__(self, require_env_vars: bool = True, load_env_file: bool = True) -> None:
        """Initialize the configuration loader.

        Args:
            require_env_vars: Whether to require all environment variables to exist
                            (if False, missing vars without defaults will be left as-is)
            load_env_file: Whether to load a ``.env`` file before substituting
        """
        self.require_env_vars = require_env_vars
        if load_env_file:
            load_dotenv()

    def load_config(self, config_path: Path) -> ProviderConfig:
        """Load and validate configuration from YAML file.

        Args:
            config_path: Path to the YAML configuration file

        Returns:
            Validated ProviderConfig instance

        Raises:
            ConfigurationError: If loading or validation fails
        """
        if not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                raw_content = f.read()
        except OSError as e:
            raise ConfigurationError(f"Failed to read configuration: {e}") from e

        substituted_content = self._substitute_env_vars(raw_content)

        try:
            config_data = yaml.safe_load(substituted_content)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax: {e}") from e

        if not isinstance(config_data, dict):
            raise ConfigurationError("Configuration file must contain a YAML object")

        return load_config_from_dict(config_data)

    def _substitute_env_vars(self, content: str) -> str:
        """Substitute environment variables in the content.

        Supports patterns like:
        - ${VAR_NAME} - Required environment variable
        - ${VAR_NAME:default} - Environment variable with default value

        Raises:
            EnvironmentVariableError: If a variable is not allowed, or is
                required and missing
        """
        missing_vars = []
        disallowed_vars = []

        def replace_env_var(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default_value = match.group(2)

            if var_name not in ALLOWED_ENV_VARS:
                disallowed_vars.append(var_name)
                return match.group(0)

            env_value = os.getenv(var_name)

            if env_value is not None:
                return env_value
            elif default_value is not None:
                return default_value
            elif self.require_env_vars:
                missing_vars.append(var_name)
            return match.group(0)

        substituted = self.ENV_VAR_PATTERN.sub(replace_env_var, content)

        if disallowed_vars:
            raise EnvironmentVariableError(
                f"Environment variables not in allowlist: {', '.join(sorted(set(disallowed_vars)))}. "
                f"Allowed variables: {', '.join(sorted(ALLOWED_ENV_VARS))}"
            )
        if missing_vars:
            raise EnvironmentVariableError(
                f"Required environment variables are not set: {', '.join(sorted(set(missing_vars)))}"
            )
        return substituted


def load_config_from_dict(config_data: Dict[str, Any]) -> ProviderConfig:
    """Load configuration from dictionary.

    Raises:
        ConfigurationError: If validation fails
    """
    try:
        return ProviderConfig.model_validate(config_data)
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed: {e}") from e


def find_config_file(start_path: Optional[Path] = None) -> Optional[Path]:
    """Find configuration file by searching up directory tree.

    Searches for ``gitlab-provider.yaml``, ``gitlab-provider.yml``,
    ``config.yaml`` and ``config.yml``, in that order.
    """
    if start_path is None:
        start_path = Path.cwd()

    config_filenames = [
        "gitlab-provider.yaml",
        "gitlab-provider.yml",
        "config.yaml",
        "config.yml",
    ]

    current_path = start_path.resolve()

    while True:
        for filename in config_filenames:
            config_path = current_path / filename
            if config_path.exists():
                return config_path

        parent = current_path.parent
        if parent == current_path:
            break
        current_path = parent

    return None
