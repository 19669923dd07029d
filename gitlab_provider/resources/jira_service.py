"""Jira integration of a GitLab project."""

from typing import Any, Dict, Optional, Set
from urllib.parse import urlparse

import structlog
from pydantic import field_validator

from gitlab_provider.resources.base import BaseReconciler
from gitlab_provider.resources.schema import AttributeKind, ResourceState, attribute

logger = structlog.get_logger(__name__)

# The integration endpoint rejects a PUT that does not carry these
ALWAYS_SENT_FIELDS = frozenset({"url", "username", "password"})


def _event_toggle(description: str) -> Any:
    return attribute(None, kind=AttributeKind.OPTIONAL_COMPUTED, description=description)


class JiraServiceState(ResourceState):
    """Declarative state of a ``gitlab_service_jira``."""

    project: str = attribute(
        kind=AttributeKind.REQUIRED,
        force_new=True,
        path_param=True,
        description="ID of the project you want to activate integration on.",
    )
    title: str = attribute("", kind=AttributeKind.COMPUTED, description="Title.")
    created_at: str = attribute("", kind=AttributeKind.COMPUTED, description="Create time.")
    updated_at: str = attribute("", kind=AttributeKind.COMPUTED, description="Update time.")
    active: bool = attribute(
        False,
        kind=AttributeKind.COMPUTED,
        description="Whether the integration is active.",
    )
    url: str = attribute(
        kind=AttributeKind.REQUIRED,
        read_path="properties.url",
        description=(
            "The URL to the JIRA project which is being linked to this GitLab project. "
            "For example, https://jira.example.com."
        ),
    )
    project_key: str = attribute(
        "",
        kind=AttributeKind.OPTIONAL,
        read_path="properties.project_key",
        description="The short identifier for your JIRA project, all uppercase, e.g., PROJ.",
    )
    username: str = attribute(
        kind=AttributeKind.REQUIRED,
        read_path="properties.username",
        description="The username of the user created to be used with GitLab/JIRA.",
    )
    password: str = attribute(
        kind=AttributeKind.REQUIRED,
        sensitive=True,
        description="The password of the user created to be used with GitLab/JIRA.",
    )
    jira_issue_transition_id: str = attribute(
        "",
        kind=AttributeKind.OPTIONAL,
        read_path="properties.jira_issue_transition_id",
        description="The ID of a transition that moves issues to a closed state.",
    )
    push_events: Optional[bool] = _event_toggle("Enable notifications for push events.")
    issues_events: Optional[bool] = _event_toggle("Enable notifications for issues events.")
    commit_events: Optional[bool] = _event_toggle("Enable notifications for commit events.")
    merge_requests_events: Optional[bool] = _event_toggle(
        "Enable notifications for merge request events."
    )
    tag_push_events: Optional[bool] = _event_toggle("Enable notifications for tag_push events.")
    note_events: Optional[bool] = _event_toggle("Enable notifications for note events.")
    pipeline_events: Optional[bool] = _event_toggle("Enable notifications for pipeline events.")
    job_events: Optional[bool] = _event_toggle("Enable notifications for job events.")
    comment_on_event_enabled: Optional[bool] = _event_toggle(
        "Enable comments inside Jira issues on each GitLab event (commit / merge request)."
    )

    @field_validator("project", mode="before")
    @classmethod
    def validate_project(cls, v: Any) -> str:
        return str(v) if isinstance(v, int) else v

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        # Imports read the URL back from the remote, which may be empty
        if not v:
            return v
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"url must be an http or https URL, got {v!r}")
        return v


class JiraServiceReconciler(BaseReconciler[JiraServiceState]):
    """Manages the Jira integration of a project.

    GitLab has one PUT endpoint for configuring the integration, used for
    both create and update. Deleting it deactivates the integration, after
    which reads return it with ``active: false``.
    """

    resource_type = "gitlab_service_jira"
    state_model = JiraServiceState
    description = "Manages the Jira integration of a project."

    def identity_attributes(self, identity: str) -> Dict[str, Any]:
        return {"id": identity, "project": identity}

    def update_payload(self, desired: JiraServiceState, changed: Set[str]) -> Dict[str, Any]:
        return self.mapper.to_remote_payload(desired, set(changed) | ALWAYS_SENT_FIELDS)

    def is_absent(self, entity: Dict[str, Any]) -> bool:
        return entity.get("active") is False

    def _create_remote(self, desired: JiraServiceState, payload: Dict[str, Any]) -> str:
        self._logger.debug("Creating Jira integration", project=desired.project)
        self.client.set_jira_service(desired.project, payload)
        return desired.project

    def _fetch_remote(self, identity: str) -> Dict[str, Any]:
        # A missing project surfaces as a 404 just like a missing integration
        self.client.get_project(identity)
        return self.client.get_jira_service(identity)

    def _update_remote(
        self,
        identity: str,
        desired: JiraServiceState,
        prior: Optional[JiraServiceState],
        payload: Dict[str, Any],
        changed: Set[str],
    ) -> None:
        self.client.set_jira_service(identity, payload)

    def _delete_remote(self, identity: str) -> None:
        self.client.delete_jira_service(identity)
