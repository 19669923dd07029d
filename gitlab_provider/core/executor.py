"""Planning and applying changes between a manifest and the remote."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field

from gitlab_provider.clients.exceptions import ProviderError, RemoteError, StateError
from gitlab_provider.core.context import ProviderContext
from gitlab_provider.core.manifest import Manifest
from gitlab_provider.core.registry import ResourceRegistry
from gitlab_provider.core.state import ManagedResource, StateStore
from gitlab_provider.resources.base import BaseReconciler
from gitlab_provider.resources.schema import ResourceState, changed_fields

logger = structlog.get_logger(__name__)


class PlanAction(str, Enum):
    """What applying a plan item does to the remote."""
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    NOOP = "noop"


class PlanItem(BaseModel):
    """A single resource in a plan."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    address: str
    resource_type: str
    name: str
    action: PlanAction
    reason: str
    identity: Optional[str] = None
    changes: List[str] = Field(default_factory=list)
    desired: Optional[ResourceState] = Field(None, exclude=True)
    prior: Optional[ResourceState] = Field(None, exclude=True)


class Plan(BaseModel):
    """Ordered list of plan items; deletions come last."""

    items: List[PlanItem] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def count(self, action: PlanAction) -> int:
        return sum(1 for item in self.items if item.action == action)

    def summary(self) -> Dict[str, int]:
        return {action.value: self.count(action) for action in PlanAction}

    @property
    def has_changes(self) -> bool:
        return any(item.action != PlanAction.NOOP for item in self.items)

    def changes(self) -> List[PlanItem]:
        return [item for item in self.items if item.action != PlanAction.NOOP]


class ApplyResult(BaseModel):
    """Outcome of applying one plan item."""

    address: str
    action: PlanAction
    success: bool
    identity: Optional[str] = None
    error_message: Optional[str] = None


class _ReconcilerCache:
    """One reconciler per resource type for the duration of a run."""

    def __init__(self, registry: ResourceRegistry, context: ProviderContext) -> None:
        self.registry = registry
        self.context = context
        self._reconcilers: Dict[str, BaseReconciler] = {}

    def __call__(self, resource_type: str) -> BaseReconciler:
        if resource_type not in self._reconcilers:
            self._reconcilers[resource_type] = self.registry.create(resource_type, self.context)
        return self._reconcilers[resource_type]


class Planner:
    """Compares declared resources with the state file and the remote."""

    def __init__(
        self,
        registry: ResourceRegistry,
        context: ProviderContext,
        state_store: StateStore,
    ) -> None:
        self.state_store = state_store
        self._reconciler_for = _ReconcilerCache(registry, context)
        self.registry = registry
        self._logger = logger.bind(component="planner")

    def plan(self, manifest: Manifest) -> Plan:
        """Build the plan that makes the remote match ``manifest``.

        Every managed resource is read from the remote; resources that
        vanished outside of the provider are planned for creation again.
        """
        items = []
        declared = set()

        for entry, desired in manifest.desired_states(self.registry):
            declared.add(entry.address)
            items.append(self._plan_declared(entry.type, entry.name, desired))

        for managed in self.state_store.resources():
            if managed.address not in declared:
                items.append(self._plan_delete(managed, "no longer declared"))

        plan = Plan(items=items)
        self._logger.info("Generated plan", **plan.summary())
        return plan

    def plan_destroy(self) -> Plan:
        """Plan the deletion of every managed resource, newest declarations first."""
        items = [
            self._plan_delete(managed, "destroy requested")
            for managed in reversed(self.state_store.resources())
        ]
        plan = Plan(items=items)
        self._logger.info("Generated destroy plan", **plan.summary())
        return plan

    def _plan_declared(self, resource_type: str, name: str, desired: ResourceState) -> PlanItem:
        reconciler = self._reconciler_for(resource_type)
        address = f"{resource_type}.{name}"
        managed = self.state_store.get(address)
        base = dict(address=address, resource_type=resource_type, name=name, desired=desired)

        if managed is None:
            return PlanItem(action=PlanAction.CREATE, reason="not yet created", **base)
        if managed.type != resource_type:
            raise StateError(
                f"{address} is recorded as {managed.type}; destroy it before changing its type",
                resource_type=resource_type,
            )

        stored = managed.restore(reconciler.state_model, desired)
        observed = reconciler.read(managed.identity, stored)
        if observed is None:
            return PlanItem(
                action=PlanAction.CREATE,
                reason="no longer exists remotely",
                **base,
            )

        prepared = reconciler.prepare(desired)
        changes = sorted(changed_fields(observed, prepared))
        base.update(identity=managed.identity, prior=observed, changes=changes)

        if reconciler.requires_replacement(observed, prepared):
            return PlanItem(action=PlanAction.REPLACE, reason="a force-new attribute changed", **base)
        if changes:
            return PlanItem(action=PlanAction.UPDATE, reason="attributes differ", **base)
        return PlanItem(action=PlanAction.NOOP, reason="up to date", **base)

    def _plan_delete(self, managed: ManagedResource, reason: str) -> PlanItem:
        reconciler = self._reconciler_for(managed.type)
        return PlanItem(
            address=managed.address,
            resource_type=managed.type,
            name=managed.name,
            action=PlanAction.DELETE,
            reason=reason,
            identity=managed.identity,
            prior=managed.restore(reconciler.state_model),
        )


class Executor:
    """Applies a plan item by item, persisting identities after each step."""

    def __init__(
        self,
        registry: ResourceRegistry,
        context: ProviderContext,
        state_store: StateStore,
        progress_callback: Optional[Callable[[PlanItem, ApplyResult], None]] = None,
    ) -> None:
        self.state_store = state_store
        self.progress_callback = progress_callback
        self._reconciler_for = _ReconcilerCache(registry, context)
        self._logger = logger.bind(component="executor")

    def apply(self, plan: Plan, continue_on_error: bool = False) -> List[ApplyResult]:
        """Apply ``plan`` sequentially.

        Args:
            plan: Plan produced by :class:`Planner`
            continue_on_error: Keep going after a failed item instead of stopping

        Returns:
            One result per attempted item
        """
        results = []
        for item in plan.items:
            result = self._apply_item(item)
            results.append(result)
            if self.progress_callback:
                self.progress_callback(item, result)
            if not result.success and not continue_on_error:
                self._logger.warning("Stopping apply after failure", address=item.address)
                break

        self._logger.info(
            "Apply finished",
            attempted=len(results),
            failed=sum(1 for r in results if not r.success),
        )
        return results

    def _apply_item(self, item: PlanItem) -> ApplyResult:
        reconciler = self._reconciler_for(item.resource_type)
        item_logger = self._logger.bind(address=item.address, action=item.action.value)

        try:
            identity = self._dispatch(reconciler, item)
        except (RemoteError, ProviderError) as e:
            item_logger.error("Failed to apply plan item", error=str(e))
            return ApplyResult(
                address=item.address,
                action=item.action,
                success=False,
                identity=item.identity,
                error_message=str(e),
            )

        item_logger.info("Applied plan item", identity=identity)
        return ApplyResult(address=item.address, action=item.action, success=True, identity=identity)

    def _dispatch(self, reconciler: BaseReconciler, item: PlanItem) -> Optional[str]:
        if item.action == PlanAction.NOOP:
            # refresh the recorded attributes with what was just read
            return self._record(item, item.prior).identity

        if item.action == PlanAction.DELETE:
            reconciler.delete(item.identity, item.prior)
            self.state_store.remove(item.address)
            return None

        if item.action == PlanAction.REPLACE:
            reconciler.delete(item.identity, item.prior)
            self.state_store.remove(item.address)
            return self._record(item, reconciler.create(item.desired)).identity

        if item.action == PlanAction.UPDATE:
            state = reconciler.update(
                item.identity,
                item.desired,
                prior=item.prior,
                changed=set(item.changes),
            )
            return self._record(item, state).identity

        return self._record(item, reconciler.create(item.desired)).identity

    def _record(self, item: PlanItem, state: Any) -> ManagedResource:
        return self.state_store.put(item.resource_type, item.name, state)
