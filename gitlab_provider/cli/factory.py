"""Factories wiring configuration into the provider components."""

from typing import Optional

import httpx
import structlog

from gitlab_provider.config.models import ProviderConfig
from gitlab_provider.core.context import ProviderContext
from gitlab_provider.core.executor import Executor, Planner
from gitlab_provider.core.registry import ResourceRegistry, build_default_registry
from gitlab_provider.core.state import StateStore

logger = structlog.get_logger(__name__)


class ComponentFactory:
    """Builds the context, state store, planner and executor for a command.

    A transport can be injected so the whole stack runs against a fake
    GitLab in tests.
    """

    def __init__(
        self,
        config: ProviderConfig,
        registry: Optional[ResourceRegistry] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.config = config
        self.registry = registry or build_default_registry()
        self.transport = transport

    def create_context(self) -> ProviderContext:
        logger.debug("Creating provider context", base_url=str(self.config.gitlab.base_url))
        return ProviderContext.from_config(self.config, transport=self.transport)

    def create_state_store(self) -> StateStore:
        return StateStore.open(self.config.state.path)

    def create_planner(self, context: ProviderContext, state_store: StateStore) -> Planner:
        return Planner(self.registry, context, state_store)

    def create_executor(self, context: ProviderContext, state_store: StateStore) -> Executor:
        return Executor(self.registry, context, state_store)
