"""YAML manifest declaring the desired resources."""

import re
from pathlib import Path
from typing import Any, Dict, List, Tuple

import structlog
import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from gitlab_provider.clients.exceptions import ConfigurationError
from gitlab_provider.core.registry import ResourceRegistry
from gitlab_provider.core.state import resource_address
from gitlab_provider.resources.schema import ResourceState

logger = structlog.get_logger(__name__)

NAME_PATTERN = re.compile(r'^[A-Za-z_][A-Za-z0-9_-]*$')


class ManifestEntry(BaseModel):
    """A single declared resource."""

    type: str = Field(..., description="Resource type, e.g. gitlab_topic")
    name: str = Field(..., description="Local name, unique per type")
    attributes: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not NAME_PATTERN.match(v):
            raise ValueError(
                "name must start with a letter or underscore and contain only "
                "letters, digits, underscores and dashes"
            )
        return v

    @field_validator("attributes")
    @classmethod
    def validate_attributes(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        # The identity is assigned by the remote, never declared
        if "id" in v:
            raise ValueError("'id' is computed and cannot be declared")
        return v

    @property
    def address(self) -> str:
        return resource_address(self.type, self.name)


class Manifest(BaseModel):
    """All declared resources, in declaration order."""

    resources: List[ManifestEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_addresses(self) -> "Manifest":
        seen = set()
        for entry in self.resources:
            if entry.address in seen:
                raise ValueError(f"Resource {entry.address} is declared more than once")
            seen.add(entry.address)
        return self

    def addresses(self) -> List[str]:
        return [entry.address for entry in self.resources]

    def desired_states(
        self,
        registry: ResourceRegistry,
    ) -> List[Tuple[ManifestEntry, ResourceState]]:
        """Validate every entry against its resource type's state model.

        Raises:
            ConfigurationError: If a type is unknown or attributes are invalid
        """
        desired = []
        errors = []
        for entry in self.resources:
            if entry.type not in registry:
                errors.append(f"{entry.address}: unknown resource type {entry.type!r}")
                continue
            state_model = registry.get(entry.type).state_model
            try:
                desired.append((entry, state_model.model_validate(entry.attributes)))
            except ValidationError as e:
                for error in e.errors():
                    location = ".".join(str(part) for part in error["loc"])
                    errors.append(f"{entry.address}.{location}: {error['msg']}")

        if errors:
            raise ConfigurationError("Invalid manifest:\n  " + "\n  ".join(errors))
        return desired


class ManifestLoader:
    """Reads a manifest file."""

    def load(self, path: Path) -> Manifest:
        """Load and validate the manifest structure.

        Raises:
            ConfigurationError: If the file is missing or malformed
        """
        if not path.exists():
            raise ConfigurationError(f"Manifest file not found: {path}")

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigurationError(f"Failed to read manifest: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax in manifest: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError("Manifest must contain a YAML object with a 'resources' list")

        try:
            manifest = Manifest.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Manifest validation failed: {e}") from e

        logger.debug("Loaded manifest", path=str(path), resources=len(manifest.resources))
        return manifest
