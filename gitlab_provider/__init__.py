"""GitLab declarative provider.

Reconciles declared GitLab topics, project memberships and Jira integrations
against a GitLab instance.
"""

from gitlab_provider.version import __version__

from gitlab_provider.config.models import ProviderConfig
from gitlab_provider.core.context import ProviderContext
from gitlab_provider.core.registry import ResourceRegistry, build_default_registry

__all__ = [
    "ProviderConfig",
    "ProviderContext",
    "ResourceRegistry",
    "build_default_registry",
    "__version__",
]
