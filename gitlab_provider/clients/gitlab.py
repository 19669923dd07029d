"""GitLab REST API client for the resources managed by the provider."""

from typing import Any, Dict, Optional, Union
from urllib.parse import quote

import httpx
import structlog
from pydantic import SecretStr

from gitlab_provider.clients.base import BaseAPIClient, FileSpec
from gitlab_provider.clients.exceptions import RemoteError

logger = structlog.get_logger(__name__)

ProjectRef = Union[str, int]


def encode_project(project: ProjectRef) -> str:
    """Encode a project id or ``namespace/path`` for use in a URL segment."""
    return quote(str(project), safe="")


class GitLabClient(BaseAPIClient):
    """GitLab API client covering topics, project members and integrations."""

    def __init__(
        self,
        base_url: str,
        token: SecretStr,
        timeout_seconds: int = 30,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0,
        verify_ssl: Union[bool, str] = True,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        """Initialize GitLab client.

        Args:
            base_url: GitLab API base URL (e.g. 'https://gitlab.com/api/v4')
            token: Personal, project or group access token
            timeout_seconds: Request timeout in seconds
            max_retries: Maximum retry attempts
            retry_delay_seconds: Initial retry delay
            verify_ssl: TLS verification flag or path to a CA bundle
            transport: Optional httpx transport (used for testing)
        """
        base_url = str(base_url).rstrip("/")
        if not base_url.endswith("/api/v4"):
            base_url = f"{base_url}/api/v4"

        self._token = token

        super().__init__(
            base_url=base_url,
            timeout_seconds=timeout_seconds,
            max_retries=max_retries,
            retry_delay_seconds=retry_delay_seconds,
            verify_ssl=verify_ssl,
            transport=transport,
        )

    def _get_auth_headers(self) -> Dict[str, str]:
        """Get GitLab authentication headers."""
        return {"PRIVATE-TOKEN": self._token.get_secret_value()}

    def health_check(self) -> bool:
        """Check if the GitLab API is reachable with the configured token.

        Returns:
            True if API is healthy, False otherwise
        """
        try:
            self.get_version()
            return True
        except RemoteError as e:
            self._logger.error("GitLab health check failed", error=str(e))
            return False

    def get_version(self) -> str:
        """Get the version string reported by the GitLab instance."""
        data = self.get_json("/version")
        version = data.get("version") if isinstance(data, dict) else None
        if not version:
            raise RemoteError("GitLab did not report a version", response_text=str(data))
        self._logger.debug("Retrieved GitLab version", version=version)
        return version

    # Topics

    def create_topic(
        self,
        payload: Dict[str, Any],
        avatar: Optional[FileSpec] = None,
    ) -> Dict[str, Any]:
        files = {"avatar": avatar} if avatar else None
        topic = self.send_json("POST", "/topics", json_data=payload, files=files)
        self._logger.info("Created topic", topic_id=topic.get("id"), name=payload.get("name"))
        return topic

    def get_topic(self, topic_id: int) -> Dict[str, Any]:
        return self.get_json(f"/topics/{topic_id}")

    def update_topic(
        self,
        topic_id: int,
        payload: Dict[str, Any],
        avatar: Optional[FileSpec] = None,
    ) -> Dict[str, Any]:
        files = {"avatar": avatar} if avatar else None
        topic = self.send_json("PUT", f"/topics/{topic_id}", json_data=payload, files=files)
        self._logger.info("Updated topic", topic_id=topic_id, fields=sorted(payload))
        return topic

    def delete_topic(self, topic_id: int) -> None:
        self.delete(f"/topics/{topic_id}")
        self._logger.info("Deleted topic", topic_id=topic_id)

    # Projects and project members

    def get_project(self, project: ProjectRef) -> Dict[str, Any]:
        return self.get_json(f"/projects/{encode_project(project)}")

    def add_project_member(
        self,
        project: ProjectRef,
        payload: Dict[str, Any],
    ) -> Dict[str, Any]:
        member = self.send_json(
            "POST", f"/projects/{encode_project(project)}/members", json_data=payload
        )
        self._logger.info(
            "Added project member",
            project=str(project),
            user_id=payload.get("user_id"),
            access_level=payload.get("access_level"),
        )
        return member

    def get_project_member(self, project: ProjectRef, user_id: int) -> Dict[str, Any]:
        return self.get_json(f"/projects/{encode_project(project)}/members/{user_id}")

    def edit_project_member(
        self,
        project: ProjectRef,
        user_id: int,
        payload: Dict[str, Any],
    ) -> Dict[str, Any]:
        member = self.send_json(
            "PUT",
            f"/projects/{encode_project(project)}/members/{user_id}",
            json_data=payload,
        )
        self._logger.info(
            "Updated project member",
            project=str(project),
            user_id=user_id,
            fields=sorted(payload),
        )
        return member

    def delete_project_member(self, project: ProjectRef, user_id: int) -> None:
        self.delete(f"/projects/{encode_project(project)}/members/{user_id}")
        self._logger.info("Removed project member", project=str(project), user_id=user_id)

    # Jira integration

    def set_jira_service(
        self,
        project: ProjectRef,
        payload: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Create or update the Jira integration of a project.

        GitLab exposes a single PUT for both, so the whole configuration
        (including credentials) is sent on every call.
        """
        service = self.send_json(
            "PUT", f"/projects/{encode_project(project)}/services/jira", json_data=payload
        )
        self._logger.info("Configured Jira integration", project=str(project))
        return service

    def get_jira_service(self, project: ProjectRef) -> Dict[str, Any]:
        return self.get_json(f"/projects/{encode_project(project)}/services/jira")

    def delete_jira_service(self, project: ProjectRef) -> None:
        self.delete(f"/projects/{encode_project(project)}/services/jira")
        self._logger.info("Disabled Jira integration", project=str(project))
