"""Typed context handed to every reconciler operation."""

from dataclasses import dataclass
from typing import Optional

import httpx
import structlog

from gitlab_provider.clients.exceptions import ConfigurationError
from gitlab_provider.clients.gitlab import GitLabClient
from gitlab_provider.config.models import ProviderConfig
from gitlab_provider.core.capabilities import CapabilityGate

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ProviderContext:
    """The remote API client plus process-wide configuration.

    Built once at start-up and passed by reference; it holds no mutable
    reconciliation state, so distinct resources can be reconciled
    concurrently against the same context.
    """

    client: GitLabClient
    config: Optional[ProviderConfig] = None

    @classmethod
    def from_config(
        cls,
        config: ProviderConfig,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> "ProviderContext":
        """Create the client described by ``config``.

        Raises:
            ConfigurationError: If ``early_auth_check`` is on and the API
                cannot be reached with the configured token
        """
        gitlab = config.gitlab
        client = GitLabClient(
            base_url=str(gitlab.base_url),
            token=gitlab.token,
            timeout_seconds=gitlab.timeout_seconds,
            max_retries=gitlab.max_retries,
            retry_delay_seconds=gitlab.retry_delay_seconds,
            verify_ssl=gitlab.verify_ssl,
            transport=transport,
        )
        if gitlab.early_auth_check and not client.health_check():
            client.close()
            raise ConfigurationError(
                f"Unable to reach the GitLab API at {client.base_url} with the configured token"
            )
        logger.debug("Created provider context", base_url=client.base_url)
        return cls(client=client, config=config)

    def capability_gate(self) -> CapabilityGate:
        return CapabilityGate(self.client.get_version)

    def close(self) -> None:
        logger.debug("Closing provider context", **self.client.get_stats())
        self.client.close()
