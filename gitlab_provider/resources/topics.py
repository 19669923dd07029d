"""Lifecycle of GitLab topics, which are assignable to projects."""

from typing import Any, Dict, Optional, Set

import structlog

from gitlab_provider.core.capabilities import ensure_field_supported
from gitlab_provider.core.identifiers import parse_int_component
from gitlab_provider.resources.avatars import (
    AvatarState,
    avatar_for_create,
    avatar_for_update,
    file_sha256,
)
from gitlab_provider.resources.base import BaseReconciler
from gitlab_provider.resources.schema import AttributeKind, attribute

logger = structlog.get_logger(__name__)

TITLE_MIN_VERSION = "15.0"
TOPIC_DELETION_MIN_VERSION = "14.9"


class TopicState(AvatarState):
    """Declarative state of a ``gitlab_topic``."""

    name: str = attribute(
        kind=AttributeKind.REQUIRED,
        description="The topic's name.",
    )
    title: str = attribute(
        "",
        kind=AttributeKind.OPTIONAL,
        description=(
            "The topic's title. Requires at least GitLab 15.0 for which it's a required argument."
        ),
    )
    description: str = attribute(
        "",
        kind=AttributeKind.OPTIONAL,
        description="A text describing the topic.",
    )
    soft_destroy: bool = attribute(
        False,
        kind=AttributeKind.LOCAL,
        description=(
            "Empty the topic's fields instead of deleting it. Only needed before GitLab 14.9, "
            "which introduced the proper deletion of topics."
        ),
    )


class TopicReconciler(BaseReconciler[TopicState]):
    """Manages topics through the ``/topics`` API."""

    resource_type = "gitlab_topic"
    state_model = TopicState
    description = "Topics are the successors for project tags."
    deletion_min_version = TOPIC_DELETION_MIN_VERSION

    def validate_identity(self, identity: str) -> None:
        parse_int_component(identity, "topic id")

    def check_capabilities(self, desired: TopicState) -> None:
        ensure_field_supported(
            self.context.capability_gate(),
            "title",
            desired.is_set("title"),
            TITLE_MIN_VERSION,
            resource_type=self.resource_type,
        )

    def prepare(self, desired: TopicState) -> TopicState:
        if desired.avatar and not desired.avatar_hash:
            return desired.with_values(avatar_hash=file_sha256(desired.avatar))
        if not desired.avatar and desired.avatar_hash:
            return desired.with_values(avatar_hash="")
        return desired

    def _create_remote(self, desired: TopicState, payload: Dict[str, Any]) -> str:
        avatar = avatar_for_create(desired.avatar)
        self._logger.debug("Creating topic", name=desired.name, with_avatar=avatar is not None)
        topic = self.client.create_topic(payload, avatar=avatar.as_file() if avatar else None)
        return str(topic["id"])

    def _fetch_remote(self, identity: str) -> Dict[str, Any]:
        return self.client.get_topic(parse_int_component(identity, "topic id"))

    def _update_remote(
        self,
        identity: str,
        desired: TopicState,
        prior: Optional[TopicState],
        payload: Dict[str, Any],
        changed: Set[str],
    ) -> None:
        avatar = avatar_for_update(
            desired.avatar,
            desired.avatar_hash,
            prior.avatar if prior is not None else "",
            changed,
        )
        if avatar is not None and avatar.is_removal:
            payload = dict(payload, avatar="")
            avatar = None
        if not payload and avatar is None:
            self._logger.debug("Only local attributes changed", identity=identity, changed=sorted(changed))
            return
        self.client.update_topic(
            parse_int_component(identity, "topic id"),
            payload,
            avatar=avatar.as_file() if avatar else None,
        )

    def _delete_remote(self, identity: str) -> None:
        self.client.delete_topic(parse_int_component(identity, "topic id"))

    def _soft_delete_remote(self, identity: str, state: TopicState) -> None:
        # Topics before 14.9 have no title, only the description can be emptied
        self.client.update_topic(parse_int_component(identity, "topic id"), {"description": ""})
