"""Explicit mapping from resource type names to reconcilers."""

from typing import TYPE_CHECKING, Dict, Iterator, List, Optional, Type

import structlog

from gitlab_provider.clients.exceptions import ProviderError

if TYPE_CHECKING:
    from gitlab_provider.core.context import ProviderContext
    from gitlab_provider.resources.base import BaseReconciler

logger = structlog.get_logger(__name__)


class ResourceRegistry:
    """Resource type name -> reconciler class.

    Built once at start-up and passed by reference. Nothing registers itself
    at import time.

    Usage:
        registry = build_default_registry()
        topics = registry.create("gitlab_topic", context)
        state = topics.read("42")
    """

    def __init__(self, reconcilers: Optional[Dict[str, Type["BaseReconciler"]]] = None) -> None:
        self._reconcilers: Dict[str, Type["BaseReconciler"]] = {}
        for name, reconciler in (reconcilers or {}).items():
            self.register(reconciler, name=name)

    def register(
        self,
        reconciler: Type["BaseReconciler"],
        name: Optional[str] = None,
    ) -> None:
        """Register a reconciler under ``name`` (defaults to its resource type)."""
        name = name or reconciler.resource_type
        if not name:
            raise ProviderError(f"{reconciler.__name__} does not declare a resource type")
        if name in self._reconcilers:
            raise ProviderError(f"Resource type {name!r} is already registered", resource_type=name)
        self._reconcilers[name] = reconciler
        logger.debug("Registered resource type", resource_type=name, reconciler=reconciler.__name__)

    def get(self, name: str) -> Type["BaseReconciler"]:
        try:
            return self._reconcilers[name]
        except KeyError:
            raise ProviderError(
                f"Unknown resource type {name!r}. Known types: {', '.join(sorted(self._reconcilers))}",
                resource_type=name,
            ) from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._reconcilers)

    def __len__(self) -> int:
        return len(self._reconcilers)

    def __contains__(self, name: object) -> bool:
        return name in self._reconcilers

    def names(self) -> List[str]:
        return sorted(self._reconcilers)

    def create(self, name: str, context: "ProviderContext") -> "BaseReconciler":
        """Instantiate the reconciler for ``name`` bound to ``context``."""
        return self.get(name)(context)


def build_default_registry() -> ResourceRegistry:
    """Registry with every resource type this provider ships."""
    from gitlab_provider.resources.jira_service import JiraServiceReconciler
    from gitlab_provider.resources.project_memberships import ProjectMembershipReconciler
    from gitlab_provider.resources.topics import TopicReconciler

    registry = ResourceRegistry()
    for reconciler in (TopicReconciler, ProjectMembershipReconciler, JiraServiceReconciler):
        registry.register(reconciler)
    return registry
