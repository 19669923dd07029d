"""Attribute schema and the mapping between declarative state and API payloads.

Every resource declares its state as a pydantic model whose fields are built
with :func:`attribute`. The attribute kind decides which direction a field
travels in:

* ``REQUIRED``: sent on create (and on update when changed), always read back.
* ``OPTIONAL``: sent only when explicitly set or changed, always read back.
* ``OPTIONAL_COMPUTED``: like optional, but the server fills it when unset.
* ``COMPUTED``: assigned by the server, never sent.
* ``LOCAL``: only meaningful to the provider (file paths, fallback flags);
  never sent as a plain field and never read back.

``sensitive`` fields are sent but never read back, their last known value is
carried over instead. ``path_param`` fields are part of the identity: they
travel in the URL, and on read they come from the identity rather than the
payload.
"""

from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    Mapping,
    Optional,
    Set,
    Type,
    TypeVar,
    Union,
    get_args,
    get_origin,
)

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.fields import FieldInfo
from pydantic_core import PydanticUndefined

from gitlab_provider.clients.exceptions import UnexpectedRemoteValueError


class AttributeKind(str, Enum):
    """How an attribute participates in reconciliation."""
    REQUIRED = "required"
    OPTIONAL = "optional"
    OPTIONAL_COMPUTED = "optional_computed"
    COMPUTED = "computed"
    LOCAL = "local"


def attribute(
    default: Any = ...,
    *,
    kind: AttributeKind,
    description: str,
    sensitive: bool = False,
    force_new: bool = False,
    path_param: bool = False,
    remote_name: Optional[str] = None,
    read_path: Optional[str] = None,
    **field_kwargs: Any,
) -> Any:
    """Declare a resource attribute as a pydantic field."""
    return Field(
        default,
        description=description,
        json_schema_extra={
            "kind": kind.value,
            "sensitive": sensitive,
            "force_new": force_new,
            "path_param": path_param,
            "remote_name": remote_name,
            "read_path": read_path,
        },
        **field_kwargs,
    )


@dataclass(frozen=True)
class AttributeSpec:
    """Reconciliation metadata of one attribute."""

    name: str
    kind: AttributeKind
    sensitive: bool = False
    force_new: bool = False
    path_param: bool = False
    remote_name: Optional[str] = None
    read_path: Optional[str] = None

    @property
    def outbound_key(self) -> str:
        return self.remote_name or self.name

    @property
    def inbound_path(self) -> str:
        return self.read_path or self.name

    @property
    def is_outbound(self) -> bool:
        return self.kind not in (AttributeKind.COMPUTED, AttributeKind.LOCAL) and not self.path_param

    @property
    def reads_from_remote(self) -> bool:
        return (
            self.kind is not AttributeKind.LOCAL
            and not self.sensitive
            and not self.path_param
        )

    @classmethod
    def from_field(cls, name: str, field: FieldInfo) -> "AttributeSpec":
        extra = field.json_schema_extra if isinstance(field.json_schema_extra, dict) else {}
        kind = extra.get("kind")
        if kind is None:
            kind = AttributeKind.REQUIRED if field.is_required() else AttributeKind.OPTIONAL
        return cls(
            name=name,
            kind=AttributeKind(kind),
            sensitive=bool(extra.get("sensitive", False)),
            force_new=bool(extra.get("force_new", False)),
            path_param=bool(extra.get("path_param", False)),
            remote_name=extra.get("remote_name"),
            read_path=extra.get("read_path"),
        )


class ResourceState(BaseModel):
    """Base class of the typed desired/observed state of one resource."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = attribute(
        "",
        kind=AttributeKind.COMPUTED,
        path_param=True,
        description="The resource identity.",
    )

    @classmethod
    def attribute_specs(cls) -> Dict[str, AttributeSpec]:
        return {
            name: AttributeSpec.from_field(name, field)
            for name, field in cls.model_fields.items()
        }

    def is_set(self, name: str) -> bool:
        """Whether the configuration explicitly gave a non-empty value."""
        if name not in self.model_fields_set:
            return False
        value = getattr(self, name)
        return value is not None and value != ""

    def with_values(self, **values: Any) -> "ResourceState":
        """Return a validated copy with ``values`` applied."""
        data = self.model_dump()
        data.update(values)
        updated = self.__class__.model_validate(data)
        # keep track of what the configuration set, plus the new values
        fields_set = set(self.model_fields_set) | set(values)
        object.__setattr__(updated, "__pydantic_fields_set__", fields_set)
        return updated

    def public_dict(self) -> Dict[str, Any]:
        """Dump the state without sensitive values."""
        specs = self.attribute_specs()
        return {
            name: value
            for name, value in self.model_dump(mode="json").items()
            if not specs[name].sensitive
        }


StateT = TypeVar("StateT", bound=ResourceState)

Converter = Callable[[Any], Any]


def zero_value(field: FieldInfo) -> Any:
    """The empty representation of a field: its default, else its type's zero."""
    if field.default is not PydanticUndefined:
        return field.default
    if field.default_factory is not None:
        return field.default_factory()
    annotation = field.annotation
    if get_origin(annotation) is Union and type(None) in get_args(annotation):
        return None
    for base, zero in ((bool, False), (int, 0), (float, 0.0), (str, "")):
        if annotation is base:
            return zero
    return None


def lookup_path(entity: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted path (``properties.url``) in a payload."""
    value: Any = entity
    for key in path.split("."):
        if not isinstance(value, Mapping):
            return None
        value = value.get(key)
    return value


def changed_fields(prior: ResourceState, desired: ResourceState) -> Set[str]:
    """Names of the attributes whose desired value differs from the last read.

    Computed attributes never count, and optional-computed attributes only
    count when the configuration sets them.
    """
    changed = set()
    for name, spec in desired.attribute_specs().items():
        if spec.kind is AttributeKind.COMPUTED:
            continue
        if spec.kind is AttributeKind.OPTIONAL_COMPUTED and (
            name not in desired.model_fields_set or getattr(desired, name) is None
        ):
            continue
        if getattr(prior, name) != getattr(desired, name):
            changed.add(name)
    return changed


class AttributeMapper(Generic[StateT]):
    """Converts between a state model and the remote payload."""

    def __init__(
        self,
        state_model: Type[StateT],
        outbound: Optional[Dict[str, Converter]] = None,
        inbound: Optional[Dict[str, Converter]] = None,
    ) -> None:
        self.state_model = state_model
        self.specs = state_model.attribute_specs()
        self._outbound = outbound or {}
        self._inbound = inbound or {}

    def to_remote_payload(
        self,
        desired: StateT,
        changed_fields: Optional[Set[str]] = None,
    ) -> Dict[str, Any]:
        """Build the request body for ``desired``.

        Without ``changed_fields`` (create) required attributes are always
        included and optional ones only when explicitly set. With it
        (update) exactly the changed outbound attributes are included.
        """
        payload: Dict[str, Any] = {}
        for name, spec in self.specs.items():
            if not spec.is_outbound:
                continue
            value = getattr(desired, name)
            if changed_fields is not None:
                if name not in changed_fields:
                    continue
            elif spec.kind is not AttributeKind.REQUIRED and not desired.is_set(name):
                continue
            if value is None:
                continue
            converter = self._outbound.get(name)
            payload[spec.outbound_key] = converter(value) if converter else value
        return payload

    def from_remote_entity(
        self,
        entity: Mapping[str, Any],
        prior: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Build attribute values from a remote payload.

        Every attribute gets a value. Attributes the remote does not return
        (local, sensitive and identity attributes) keep their ``prior``
        value; anything missing falls back to its zero value.
        """
        prior = prior or {}
        fields = self.state_model.model_fields
        values: Dict[str, Any] = {}
        for name, spec in self.specs.items():
            if not spec.reads_from_remote:
                values[name] = prior[name] if name in prior else zero_value(fields[name])
                continue
            value = lookup_path(entity, spec.inbound_path)
            if value is None:
                values[name] = zero_value(fields[name])
                continue
            converter = self._inbound.get(name)
            values[name] = converter(value) if converter else value
        return values

    def to_state(
        self,
        entity: Mapping[str, Any],
        prior: Optional[Mapping[str, Any]] = None,
    ) -> StateT:
        """Validate a remote payload into a state.

        Raises:
            UnexpectedRemoteValueError: If the remote reports a value the
                state model rejects
        """
        try:
            return self.state_model.model_validate(self.from_remote_entity(entity, prior))
        except ValidationError as e:
            error = e.errors()[0]
            field = ".".join(str(part) for part in error["loc"]) or None
            raise UnexpectedRemoteValueError(
                f"Unexpected value for {field} reported by GitLab: {error['msg']}",
                field=field,
            ) from e
