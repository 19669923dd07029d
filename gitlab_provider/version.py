"""Version information for gitlab-declarative-provider."""

__version__ = "0.1.0"
