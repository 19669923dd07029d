"""Composite resource identities.

Resources whose remote identity spans several keys (for example a project
membership, identified by project and user) persist a single string made of
the parts joined with ``ID_DELIMITER``. The encoding is byte exact: parts are
never trimmed or case folded, so ``encode_id(decode_id(x, n)) == x``.
"""

from typing import List, Sequence, Tuple

from gitlab_provider.clients.exceptions import (
    InvalidIdentifierComponentError,
    MalformedIdentifierError,
)

ID_DELIMITER = ":"


def encode_id(parts: Sequence[str]) -> str:
    """Join identity parts into a single resource identity.

    Raises:
        MalformedIdentifierError: If there are no parts or a part contains
            the delimiter (the result could not be decoded unambiguously)
    """
    if not parts:
        raise MalformedIdentifierError("Cannot build an identity from zero parts")
    for part in parts:
        if ID_DELIMITER in part:
            raise MalformedIdentifierError(
                f"Identity part {part!r} must not contain {ID_DELIMITER!r}"
            )
    return ID_DELIMITER.join(parts)


def decode_id(identity: str, expected_parts: int) -> List[str]:
    """Split a resource identity back into its parts.

    Raises:
        MalformedIdentifierError: If the part count differs from ``expected_parts``
    """
    parts = identity.split(ID_DELIMITER)
    if len(parts) != expected_parts:
        raise MalformedIdentifierError(
            f"Unexpected ID format ({identity!r}). Expected {expected_parts} parts "
            f"separated by {ID_DELIMITER!r}, got {len(parts)}"
        )
    return parts


def parse_int_component(value: str, component: str) -> int:
    """Parse a numeric identity part.

    Raises:
        InvalidIdentifierComponentError: If ``value`` is not a base-10 integer
    """
    # int() would accept surrounding whitespace and underscores
    stripped = value[1:] if value.startswith("-") else value
    if not stripped.isascii() or not stripped.isdigit():
        raise InvalidIdentifierComponentError(
            f"Failed to convert {component} {value!r} to int",
            field=component,
        )
    return int(value)


def build_two_part_id(first: str, second: str) -> str:
    return encode_id([first, second])


def parse_two_part_id(identity: str) -> Tuple[str, str]:
    first, second = decode_id(identity, 2)
    return first, second
