"""Configuration package for gitlab-declarative-provider."""

from .loader import ConfigLoader, find_config_file, load_config_from_dict
from .models import GitLabConfig, LoggingConfig, ProviderConfig, StateConfig

__all__ = [
    "ConfigLoader",
    "find_config_file",
    "load_config_from_dict",
    "GitLabConfig",
    "LoggingConfig",
    "ProviderConfig",
    "StateConfig",
]
