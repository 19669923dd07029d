"""Avatar attachments read from local files."""

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Set, Tuple

import structlog

from gitlab_provider.clients.exceptions import LocalResourceUnavailableError
from gitlab_provider.resources.schema import AttributeKind, ResourceState, attribute

logger = structlog.get_logger(__name__)

AVATAR_FIELDS = ("avatar", "avatar_hash")


class AvatarState(ResourceState):
    """State of a resource that carries an uploadable avatar."""

    avatar: str = attribute(
        "",
        kind=AttributeKind.LOCAL,
        description="A local path to the avatar image to upload. Not available for imported resources.",
    )
    avatar_hash: str = attribute(
        "",
        kind=AttributeKind.LOCAL,
        description=(
            "The hash of the avatar image, used to trigger an update of the avatar. "
            "Computed from the file when not given. Not available for imported resources."
        ),
    )
    avatar_url: str = attribute(
        "",
        kind=AttributeKind.COMPUTED,
        description="The URL of the avatar image.",
    )


@dataclass(frozen=True)
class Avatar:
    """An avatar upload; an empty avatar removes the current one."""

    filename: str = ""
    content: bytes = b""

    @property
    def is_removal(self) -> bool:
        return not self.filename

    def as_file(self) -> Tuple[str, bytes]:
        return (Path(self.filename).name, self.content)


def read_local_avatar(path: str) -> Avatar:
    """Read an avatar image from disk.

    Raises:
        LocalResourceUnavailableError: If the file cannot be opened or read
    """
    try:
        with open(path, "rb") as f:
            content = f.read()
    except OSError as e:
        raise LocalResourceUnavailableError(
            f"Unable to open avatar file {path}: {e}", path=path
        ) from e
    return Avatar(filename=path, content=content)


def file_sha256(path: str) -> str:
    """Hex SHA-256 of a local file.

    Raises:
        LocalResourceUnavailableError: If the file cannot be read
    """
    return hashlib.sha256(read_local_avatar(path).content).hexdigest()


def avatar_for_create(avatar_path: str) -> Optional[Avatar]:
    """The avatar to upload with a create call, if one is configured."""
    if avatar_path:
        return read_local_avatar(avatar_path)
    return None


def avatar_for_update(
    avatar_path: str,
    avatar_hash: str,
    prior_avatar_path: str,
    changed: Set[str],
) -> Optional[Avatar]:
    """The avatar change to send with an update call.

    Returns ``None`` when the avatar is untouched, an empty :class:`Avatar`
    when a previously configured avatar was removed, and the file contents
    otherwise. Without a hash the configured file is uploaded on every update.
    """
    if not (changed & set(AVATAR_FIELDS)) and avatar_hash:
        return None
    if not avatar_path:
        if prior_avatar_path:
            logger.debug("Removing avatar", previous=prior_avatar_path)
            return Avatar()
        return None
    return read_local_avatar(avatar_path)
