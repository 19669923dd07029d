"""Membership of a user in a project with a given access level."""

from datetime import datetime
from enum import IntEnum
from typing import Any, Dict, Optional, Set, Tuple

import structlog
from pydantic import field_validator

from gitlab_provider.clients.exceptions import UnexpectedRemoteValueError
from gitlab_provider.core.identifiers import (
    build_two_part_id,
    parse_int_component,
    parse_two_part_id,
)
from gitlab_provider.resources.base import BaseReconciler
from gitlab_provider.resources.schema import AttributeKind, AttributeMapper, ResourceState, attribute

logger = structlog.get_logger(__name__)


class AccessLevel(IntEnum):
    """GitLab access levels and their numeric API values."""
    NO_ONE = 0
    MINIMAL = 5
    GUEST = 10
    REPORTER = 20
    DEVELOPER = 30
    MAINTAINER = 40
    OWNER = 50

    @property
    def level_name(self) -> str:
        return self.name.lower().replace("_", " ")

    @classmethod
    def from_name(cls, name: str) -> "AccessLevel":
        return cls[name.strip().upper().replace(" ", "_")]


VALID_PROJECT_ACCESS_LEVELS = ("guest", "reporter", "developer", "maintainer", "owner")

# The edit-member endpoint rejects a PUT that does not carry these
ALWAYS_SENT_FIELDS = frozenset({"access_level"})


def access_level_value(name: str) -> int:
    return int(AccessLevel.from_name(name))


def access_level_name(value: Any) -> str:
    """Name of the access level GitLab reports for a project member.

    Raises:
        UnexpectedRemoteValueError: If the level is unknown or cannot be
            held by a project membership
    """
    try:
        level = AccessLevel(int(value))
    except (TypeError, ValueError) as e:
        raise UnexpectedRemoteValueError(
            f"Unknown access level reported by GitLab: {value!r}",
            field="access_level",
        ) from e
    if level.level_name not in VALID_PROJECT_ACCESS_LEVELS:
        raise UnexpectedRemoteValueError(
            f"Access level {level.level_name!r} is not valid for a project membership",
            field="access_level",
        )
    return level.level_name


class ProjectMembershipState(ResourceState):
    """Declarative state of a ``gitlab_project_membership``."""

    project_id: str = attribute(
        kind=AttributeKind.REQUIRED,
        force_new=True,
        path_param=True,
        description="The id or full path of the project.",
    )
    user_id: int = attribute(
        kind=AttributeKind.REQUIRED,
        force_new=True,
        read_path="id",
        description="The id of the user.",
    )
    access_level: str = attribute(
        kind=AttributeKind.REQUIRED,
        description=f"The access level for the member. Valid values are: {', '.join(VALID_PROJECT_ACCESS_LEVELS)}.",
    )
    expires_at: str = attribute(
        "",
        kind=AttributeKind.OPTIONAL,
        description="Expiration date for the project membership. Format: YYYY-MM-DD.",
    )

    @field_validator("project_id", mode="before")
    @classmethod
    def validate_project_id(cls, v: Any) -> str:
        # Numeric project ids are accepted from YAML as ints
        return str(v) if isinstance(v, int) else v

    @field_validator("access_level")
    @classmethod
    def validate_access_level(cls, v: str) -> str:
        normalized = v.strip().lower()
        if normalized not in VALID_PROJECT_ACCESS_LEVELS:
            raise ValueError(
                f"access_level must be one of: {', '.join(VALID_PROJECT_ACCESS_LEVELS)}"
            )
        return normalized

    @field_validator("expires_at")
    @classmethod
    def validate_expires_at(cls, v: str) -> str:
        if v:
            try:
                datetime.strptime(v, "%Y-%m-%d")
            except ValueError as e:
                raise ValueError("expires_at must be a date in YYYY-MM-DD format") from e
        return v


def split_membership_id(identity: str) -> Tuple[str, int]:
    """Decode ``<project>:<user id>``."""
    project_id, user_id = parse_two_part_id(identity)
    return project_id, parse_int_component(user_id, "user id")


class ProjectMembershipReconciler(BaseReconciler[ProjectMembershipState]):
    """Adds a user to an existing project with a set access level."""

    resource_type = "gitlab_project_membership"
    state_model = ProjectMembershipState
    description = "Manages the membership of a user in a project."

    def build_mapper(self) -> AttributeMapper[ProjectMembershipState]:
        return AttributeMapper(
            self.state_model,
            outbound={"access_level": access_level_value},
            inbound={"access_level": access_level_name},
        )

    def validate_identity(self, identity: str) -> None:
        split_membership_id(identity)

    def identity_attributes(self, identity: str) -> Dict[str, Any]:
        project_id, user_id = split_membership_id(identity)
        return {"id": identity, "project_id": project_id, "user_id": user_id}

    def update_payload(self, desired: ProjectMembershipState, changed: Set[str]) -> Dict[str, Any]:
        return self.mapper.to_remote_payload(desired, set(changed) | ALWAYS_SENT_FIELDS)

    def _create_remote(self, desired: ProjectMembershipState, payload: Dict[str, Any]) -> str:
        self._logger.debug(
            "Creating project membership",
            project_id=desired.project_id,
            user_id=desired.user_id,
        )
        self.client.add_project_member(desired.project_id, payload)
        return build_two_part_id(desired.project_id, str(desired.user_id))

    def _fetch_remote(self, identity: str) -> Dict[str, Any]:
        project_id, user_id = split_membership_id(identity)
        return self.client.get_project_member(project_id, user_id)

    def _update_remote(
        self,
        identity: str,
        desired: ProjectMembershipState,
        prior: Optional[ProjectMembershipState],
        payload: Dict[str, Any],
        changed: Set[str],
    ) -> None:
        project_id, user_id = split_membership_id(identity)
        if "expires_at" in payload and not payload["expires_at"]:
            # An empty date clears the expiration
            payload = dict(payload, expires_at=None)
        self.client.edit_project_member(project_id, user_id, payload)

    def _delete_remote(self, identity: str) -> None:
        project_id, user_id = split_membership_id(identity)
        self.client.delete_project_member(project_id, user_id)
