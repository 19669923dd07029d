"""Version-based capability checks against the remote GitLab instance."""

import re
from typing import Callable, NamedTuple

import structlog

from gitlab_provider.clients.exceptions import (
    InvalidVersionError,
    MissingRequiredFieldError,
    UnsupportedFeatureError,
)

logger = structlog.get_logger(__name__)

# major[.minor[.patch]] with an optional leading "v"; anything after a "-" or
# "+" (pre-release, edition, build metadata) does not take part in ordering.
_VERSION_PATTERN = re.compile(r"^v?(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:[-+~].*)?$")


class ServerVersion(NamedTuple):
    """A semantic version reduced to the parts used for ordering."""

    major: int
    minor: int
    patch: int

    @classmethod
    def parse(cls, text: str) -> "ServerVersion":
        """Parse a version string such as ``15.1.0-ee`` or ``14.9``.

        Raises:
            InvalidVersionError: If ``text`` is not a version
        """
        match = _VERSION_PATTERN.match(text.strip()) if text else None
        if match is None:
            raise InvalidVersionError(f"Unable to parse version {text!r}")
        major, minor, patch = match.groups()
        return cls(int(major), int(minor or 0), int(patch or 0))

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


class CapabilityGate:
    """Decides whether a feature is available on the remote instance.

    The version is fetched from ``version_reporter`` on every check, so a
    gate never serves a stale answer after an instance upgrade.
    """

    def __init__(self, version_reporter: Callable[[], str]) -> None:
        self._version_reporter = version_reporter

    def current_version(self) -> ServerVersion:
        return ServerVersion.parse(self._version_reporter())

    def supports_feature(self, min_version: str) -> bool:
        """Return True if the remote version is at least ``min_version``."""
        required = ServerVersion.parse(min_version)
        current = self.current_version()
        supported = current >= required
        logger.debug(
            "Checked remote capability",
            remote_version=str(current),
            min_version=str(required),
            supported=supported,
        )
        return supported

    def is_version_at_least(self, version: str) -> bool:
        return self.supports_feature(version)

    def is_version_less_than(self, version: str) -> bool:
        return not self.supports_feature(version)


def ensure_field_supported(
    gate: CapabilityGate,
    field: str,
    is_set: bool,
    min_version: str,
    resource_type: str = "",
) -> None:
    """Reject a field that is version gated in both directions.

    From ``min_version`` on the field is mandatory; before it, the remote
    does not know the field at all.

    Raises:
        UnsupportedFeatureError: If the field is set but the remote is older
        MissingRequiredFieldError: If the remote requires the field but it is unset
    """
    supported = gate.supports_feature(min_version)
    if supported and not is_set:
        raise MissingRequiredFieldError(
            f"{field} is a required attribute for GitLab {min_version} and newer. "
            "Please specify it in the configuration.",
            resource_type=resource_type or None,
            field=field,
        )
    if not supported and is_set:
        raise UnsupportedFeatureError(
            f"{field} is not supported by your version of GitLab. "
            f"At least GitLab {min_version} is required",
            resource_type=resource_type or None,
            field=field,
        )
