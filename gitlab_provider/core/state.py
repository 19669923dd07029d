"""Persistence of the identities and last-read state of managed resources."""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Type

import structlog
from pydantic import BaseModel, Field, ValidationError

from gitlab_provider.clients.exceptions import StateError
from gitlab_provider.resources.schema import ResourceState, StateT, zero_value

logger = structlog.get_logger(__name__)

STATE_FORMAT_VERSION = 1


def resource_address(resource_type: str, name: str) -> str:
    """Address of a declared resource, ``<type>.<name>``."""
    return f"{resource_type}.{name}"


class ManagedResource(BaseModel):
    """One managed resource as recorded in the state file."""

    type: str
    name: str
    identity: str
    attributes: Dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def address(self) -> str:
        return resource_address(self.type, self.name)

    def restore(
        self,
        state_model: Type[StateT],
        desired: Optional[ResourceState] = None,
    ) -> StateT:
        """Rebuild the typed state recorded for this resource.

        Sensitive attributes are never written to disk; they are taken from
        ``desired`` when given, otherwise left at their zero value.
        """
        fields = state_model.model_fields
        data = {name: value for name, value in self.attributes.items() if name in fields}
        for name, spec in state_model.attribute_specs().items():
            if not spec.sensitive:
                continue
            if desired is not None:
                data[name] = getattr(desired, name)
            else:
                data.setdefault(name, zero_value(fields[name]))
        data["id"] = self.identity

        try:
            return state_model.model_validate(data)
        except ValidationError as e:
            raise StateError(
                f"Stored state of {self.address} does not match the {self.type} schema: {e}",
                resource_type=self.type,
            ) from e


class StateFile(BaseModel):
    """On-disk layout of the state file."""

    version: int = STATE_FORMAT_VERSION
    resources: Dict[str, ManagedResource] = Field(default_factory=dict)


class StateStore:
    """JSON state file keyed by resource address.

    Every mutation is written through to disk immediately so an interrupted
    apply never loses the identity of a resource it already created.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._state = StateFile()
        self._logger = logger.bind(state_file=str(self.path))

    @classmethod
    def open(cls, path: Path) -> "StateStore":
        store = cls(path)
        store.load()
        return store

    def load(self) -> None:
        """Load the state file; a missing file is an empty state.

        Raises:
            StateError: If the file exists but cannot be parsed
        """
        if not self.path.exists():
            self._logger.debug("No state file, starting empty")
            self._state = StateFile()
            return

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            self._state = StateFile.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise StateError(f"Failed to load state file {self.path}: {e}") from e

        if self._state.version != STATE_FORMAT_VERSION:
            raise StateError(
                f"Unsupported state file version {self._state.version} in {self.path}"
            )

        self._logger.info("Loaded state", managed_resources=len(self._state.resources))

    def save(self) -> None:
        """Write the state atomically, keeping a backup of the previous file."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_file = self.path.with_suffix(self.path.suffix + ".tmp")

        try:
            with open(tmp_file, 'w', encoding='utf-8') as f:
                json.dump(self._state.model_dump(mode='json'), f, indent=2, sort_keys=True)
            if self.path.exists():
                self.path.replace(self.path.with_suffix(self.path.suffix + ".backup"))
            tmp_file.replace(self.path)
        except OSError as e:
            raise StateError(f"Failed to save state file {self.path}: {e}") from e

        self._logger.debug("Saved state", managed_resources=len(self._state.resources))

    def get(self, address: str) -> Optional[ManagedResource]:
        return self._state.resources.get(address)

    def addresses(self) -> List[str]:
        return sorted(self._state.resources)

    def resources(self) -> List[ManagedResource]:
        return [self._state.resources[address] for address in self.addresses()]

    def put(self, resource_type: str, name: str, state: ResourceState) -> ManagedResource:
        """Record ``state`` under ``<resource_type>.<name>`` and save."""
        if not state.id:
            raise StateError(
                f"Refusing to record {resource_address(resource_type, name)} without an identity",
                resource_type=resource_type,
            )
        entry = ManagedResource(
            type=resource_type,
            name=name,
            identity=state.id,
            attributes=state.public_dict(),
        )
        self._state.resources[entry.address] = entry
        self.save()
        self._logger.debug("Recorded resource", address=entry.address, identity=entry.identity)
        return entry

    def remove(self, address: str) -> Optional[ManagedResource]:
        """Forget ``address`` and save; returns the removed entry if any."""
        entry = self._state.resources.pop(address, None)
        if entry is not None:
            self.save()
            self._logger.debug("Removed resource", address=address, identity=entry.identity)
        return entry

    def __len__(self) -> int:
        return len(self._state.resources)

    def __contains__(self, address: object) -> bool:
        return address in self._state.resources
