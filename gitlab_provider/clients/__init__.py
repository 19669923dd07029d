"""Remote API clients."""

from .gitlab import GitLabClient

__all__ = ["GitLabClient"]
