"""Base reconciler implementing the create/read/update/delete/import contract."""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, ClassVar, Dict, Generic, Iterator, Optional, Set, Type

import structlog

from gitlab_provider.clients.exceptions import (
    ProviderError,
    RemoteError,
    RemoteNotFoundError,
    UnsupportedFeatureError,
)
from gitlab_provider.core.context import ProviderContext
from gitlab_provider.resources.schema import (
    AttributeMapper,
    ResourceState,
    StateT,
    changed_fields,
)

logger = structlog.get_logger(__name__)


class BaseReconciler(ABC, Generic[StateT]):
    """Synchronizes the desired state of one resource type with GitLab.

    Subclasses provide the remote calls; this class owns the contract that
    every resource shares:

    * create and update always finish with a read, so computed attributes
      are populated from the remote;
    * a read that hits a 404 returns ``None`` (the resource is gone and must
      be dropped from state) instead of raising;
    * remote errors are never retried or wrapped here: the same exception
      propagates, annotated with the operation and identity.

    Instances keep no state between calls.
    """

    resource_type: ClassVar[str] = ""
    state_model: ClassVar[Type[ResourceState]] = ResourceState
    description: ClassVar[str] = ""
    supports_import: ClassVar[bool] = True
    # Versions before this one cannot delete the remote entity
    deletion_min_version: ClassVar[Optional[str]] = None

    def __init__(self, context: ProviderContext) -> None:
        self.context = context
        self.client = context.client
        self.mapper: AttributeMapper[StateT] = self.build_mapper()

        self._logger = logger.bind(
            reconciler_type=self.__class__.__name__,
            resource_type=self.resource_type,
        )

    def build_mapper(self) -> AttributeMapper[StateT]:
        return AttributeMapper(self.state_model)

    # Resource-specific hooks

    @abstractmethod
    def _create_remote(self, desired: StateT, payload: Dict[str, Any]) -> str:
        """Issue the creation call and return the new resource identity."""
        pass

    @abstractmethod
    def _fetch_remote(self, identity: str) -> Dict[str, Any]:
        """Fetch the remote entity; raise RemoteNotFoundError if it is gone."""
        pass

    @abstractmethod
    def _update_remote(
        self,
        identity: str,
        desired: StateT,
        prior: Optional[StateT],
        payload: Dict[str, Any],
        changed: Set[str],
    ) -> None:
        """Issue the update call for ``payload``."""
        pass

    @abstractmethod
    def _delete_remote(self, identity: str) -> None:
        """Issue the deletion call."""
        pass

    def validate_identity(self, identity: str) -> None:
        """Raise if ``identity`` is not a well-formed identity for this resource."""
        if not identity:
            raise ProviderError("Resource identity must not be empty", resource_type=self.resource_type)

    def identity_attributes(self, identity: str) -> Dict[str, Any]:
        """Attributes that are determined by the identity alone."""
        return {"id": identity}

    def check_capabilities(self, desired: StateT) -> None:
        """Reject desired state the remote version cannot honour."""
        return None

    def prepare(self, desired: StateT) -> StateT:
        """Fill in locally derived attributes before a write."""
        return desired

    def create_payload(self, desired: StateT) -> Dict[str, Any]:
        return self.mapper.to_remote_payload(desired)

    def update_payload(self, desired: StateT, changed: Set[str]) -> Dict[str, Any]:
        return self.mapper.to_remote_payload(desired, changed)

    def is_absent(self, entity: Dict[str, Any]) -> bool:
        """Whether a fetched entity should be treated as not existing."""
        return False

    def soft_delete_requested(self, state: StateT) -> bool:
        return bool(getattr(state, "soft_destroy", False))

    def _soft_delete_remote(self, identity: str, state: StateT) -> None:
        raise UnsupportedFeatureError(
            f"{self.resource_type} has no fallback for deletion",
            resource_type=self.resource_type,
        )

    # Reconciliation contract

    @contextmanager
    def _remote_operation(self, operation: str, identity: Optional[str]) -> Iterator[None]:
        try:
            yield
        except RemoteError as e:
            e.annotate(operation, identity, self.resource_type)
            self._logger.error(
                "Remote operation failed",
                operation=operation,
                identity=identity,
                error=e.message,
                status_code=e.status_code,
            )
            raise

    def create(self, desired: StateT) -> StateT:
        """Create the remote entity and return its freshly read state."""
        desired = self.prepare(desired)
        self.check_capabilities(desired)
        payload = self.create_payload(desired)

        self._logger.debug("Creating resource", fields=sorted(payload))
        with self._remote_operation("create", None):
            identity = self._create_remote(desired, payload)

        self._logger.info("Created resource", identity=identity)
        return self._read_existing(identity, desired, "create")

    def read(self, identity: str, prior: Optional[StateT] = None) -> Optional[StateT]:
        """Read the remote entity.

        Returns:
            The observed state, or None when the remote entity no longer
            exists (the caller must clear the stored identity)
        """
        self.validate_identity(identity)
        self._logger.debug("Reading resource", identity=identity)

        with self._remote_operation("read", identity):
            try:
                entity = self._fetch_remote(identity)
            except RemoteNotFoundError:
                self._logger.debug("Resource not found, removing from state", identity=identity)
                return None

        if self.is_absent(entity):
            self._logger.debug("Resource no longer active, removing from state", identity=identity)
            return None

        seed = prior.model_dump() if prior is not None else {}
        seed.update(self.identity_attributes(identity))
        return self.mapper.to_state(entity, seed)

    def update(
        self,
        identity: str,
        desired: StateT,
        prior: Optional[StateT] = None,
        changed: Optional[Set[str]] = None,
    ) -> StateT:
        """Send the changed attributes and return the freshly read state.

        Args:
            identity: Identity of the resource to update
            desired: Desired state
            prior: Last-read state; read from the remote when not given
            changed: Attributes to send; computed against ``prior`` when not given
        """
        self.validate_identity(identity)
        desired = self.prepare(desired)

        if changed is None:
            if prior is None:
                prior = self._read_existing(identity, None, "update")
            changed = changed_fields(prior, desired)

        specs = self.state_model.attribute_specs()
        replaced = sorted(name for name in changed if specs[name].force_new)
        if replaced:
            raise ProviderError(
                f"Changing {', '.join(replaced)} requires replacing {self.resource_type} {identity}",
                resource_type=self.resource_type,
                field=replaced[0],
            )

        self.check_capabilities(desired)

        if changed:
            payload = self.update_payload(desired, changed)
            self._logger.debug("Updating resource", identity=identity, fields=sorted(payload))
            with self._remote_operation("update", identity):
                self._update_remote(identity, desired, prior, payload, changed)
        else:
            self._logger.debug("No changes to send", identity=identity)

        return self._read_existing(identity, desired, "update")

    def delete(self, identity: str, state: Optional[StateT] = None) -> None:
        """Delete the remote entity.

        When the remote version cannot delete this resource type and the
        state asks for the fallback, the entity is emptied instead.

        Raises:
            UnsupportedFeatureError: If deletion is unsupported and no fallback is requested
        """
        self.validate_identity(identity)

        if self.deletion_min_version is not None:
            with self._remote_operation("delete", identity):
                supported = self.context.capability_gate().supports_feature(self.deletion_min_version)
            if not supported:
                if state is None or not self.soft_delete_requested(state):
                    raise UnsupportedFeatureError(
                        f"GitLab {self.deletion_min_version} introduced the proper deletion of "
                        f"{self.resource_type}. Set `soft_destroy = true` to empty it out instead.",
                        resource_type=self.resource_type,
                    )
                self._logger.warning("Not deleting resource, emptying its fields instead", identity=identity)
                with self._remote_operation("delete", identity):
                    self._soft_delete_remote(identity, state)
                return

        self._logger.debug("Deleting resource", identity=identity)
        with self._remote_operation("delete", identity):
            self._delete_remote(identity)
        self._logger.info("Deleted resource", identity=identity)

    def import_state(self, raw_id: str) -> StateT:
        """Adopt an existing remote entity from its identity.

        Attributes the remote cannot report (local paths, secrets) are left
        at their zero value.
        """
        if not self.supports_import:
            raise UnsupportedFeatureError(
                f"{self.resource_type} does not support import",
                resource_type=self.resource_type,
            )
        self._logger.info("Importing resource", identity=raw_id)
        state = self.read(raw_id)
        if state is None:
            raise RemoteNotFoundError(
                "Cannot import non-existent remote object"
            ).annotate("import", raw_id, self.resource_type)
        return state

    def requires_replacement(self, prior: StateT, desired: StateT) -> bool:
        specs = self.state_model.attribute_specs()
        return any(specs[name].force_new for name in changed_fields(prior, desired))

    def _read_existing(self, identity: str, prior: Optional[StateT], operation: str) -> StateT:
        state = self.read(identity, prior)
        if state is None:
            raise RemoteNotFoundError(
                "Remote object not found"
            ).annotate(operation, identity, self.resource_type)
        return state
