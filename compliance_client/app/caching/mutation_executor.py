"""
Mutation executor: writes with optimistic updates and rollback.

Every update/delete follows the same protocol:

1. hold the target detail key and the cached collections of the entity type
   (in-flight reads on them are cancelled, later read results discarded);
2. snapshot those entries into a ``PendingMutationContext``;
3. write the predicted result into the cache;
4. await the request;
5. on success write the server response and apply the invalidation plan,
   on failure restore the snapshots exactly;
6. release the holds.

Two mutations on the same key are not serialised: the second one snapshots
the first one's provisional value, so a rollback can restore an intermediate
state. Holds are counted, so the key stays protected until both settle.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set

from shared.errors import get_error_message
from shared.logging import get_logger
from .invalidation import InvalidationPlan, InvalidationRouter, Operation
from .keys import ResourceKey, collection_key
from .query_executor import QueryExecutor
from .resource_cache import CacheEntry, ResourceCache


RequestFn = Callable[[], Awaitable[Any]]


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class MutationState(str, Enum):
    """States of one mutation instance."""
    IDLE = "idle"
    PENDING = "pending"
    SUCCESS = "success"
    ROLLED_BACK = "rolled_back"


_TRANSITIONS = {
    MutationState.IDLE: {MutationState.PENDING},
    MutationState.PENDING: {MutationState.SUCCESS, MutationState.ROLLED_BACK},
    MutationState.SUCCESS: set(),
    MutationState.ROLLED_BACK: set(),
}


class InvalidMutationTransition(RuntimeError):
    """Raised when a mutation is driven through an illegal state change."""


@dataclass(frozen=True)
class MutationResult:
    """Outcome of a settled mutation."""

    entity_type: str
    operation: Operation
    key: Optional[ResourceKey]
    state: MutationState
    data: Any = None
    error: Optional[BaseException] = None

    @property
    def is_success(self) -> bool:
        return self.state == MutationState.SUCCESS

    @property
    def is_error(self) -> bool:
        return self.state == MutationState.ROLLED_BACK

    @property
    def error_message(self) -> Optional[str]:
        return get_error_message(self.error) if self.error is not None else None

    def raise_for_error(self) -> "MutationResult":
        """Raise the stored error, if any; otherwise return self."""
        if self.error is not None:
            raise self.error
        return self


class Mutation:
    """State machine for a single mutation: idle -> pending -> success | rolled_back."""

    def __init__(self, entity_type: str, operation: Operation,
                 key: Optional[ResourceKey] = None, entity_id: Optional[str] = None):
        self.entity_type = entity_type.value if isinstance(entity_type, Enum) else str(entity_type)
        self.operation = operation
        self.key = key
        self.entity_id = entity_id
        self.state = MutationState.IDLE
        self.data: Any = None
        self.error: Optional[BaseException] = None

    @property
    def is_pending(self) -> bool:
        return self.state == MutationState.PENDING

    def transition(self, state: MutationState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise InvalidMutationTransition(
                f"Cannot move {self.operation.value} mutation from {self.state.value} to {state.value}"
            )
        self.state = state

    def to_result(self) -> MutationResult:
        return MutationResult(
            entity_type=self.entity_type,
            operation=self.operation,
            key=self.key,
            state=self.state,
            data=self.data,
            error=self.error,
        )


@dataclass
class PendingMutationContext:
    """Pre-mutation snapshots; discarded on success, consumed on rollback."""

    target_key: Optional[ResourceKey]
    snapshots: Dict[ResourceKey, Optional[CacheEntry]] = field(default_factory=dict)
    modified: Set[ResourceKey] = field(default_factory=set)
    previous: Any = None


class MutationExecutor:
    """Runs create/update/delete mutations against the cache."""

    def __init__(self, cache: ResourceCache, queries: QueryExecutor, router: InvalidationRouter,
                 metrics: Optional[Any] = None, now: Callable[[], str] = utc_now_iso):
        self.cache = cache
        self.queries = queries
        self.router = router
        self.metrics = metrics
        self.now = now
        self.logger = get_logger("compliance_client.mutation_executor")

    def is_pending(self, key: ResourceKey) -> bool:
        """Return True while any mutation holds ``key``."""
        return self.queries.is_held(key)

    async def create(self, entity_type: str, request_fn: RequestFn, *,
                     select: Optional[Callable[[Any], Any]] = None) -> MutationResult:
        """Create an entity; the detail key is seeded from the response."""
        return await self.execute(entity_type, Operation.CREATE, request_fn, select=select)

    async def update(self, entity_type: str, key: ResourceKey, entity_id: str,
                     payload: Mapping[str, Any], request_fn: RequestFn) -> MutationResult:
        """Update an entity, showing the merged result before the server confirms it."""
        mutation = Mutation(entity_type, Operation.UPDATE, key=key, entity_id=entity_id)
        id_field = self._id_field(entity_type, Operation.UPDATE)
        stamp = self.now()

        def apply(context: PendingMutationContext) -> None:
            snapshot = context.snapshots.get(key)
            if snapshot is not None and isinstance(snapshot.data, Mapping):
                self.cache.set(key, {**snapshot.data, **payload, "updatedAt": stamp})
                context.modified.add(key)
            self._rewrite_rows(
                context, entity_id, id_field,
                lambda row: {**row, **payload, "updatedAt": stamp}
            )

        def settle(response: Any, context: PendingMutationContext) -> None:
            self.cache.set(key, response)
            if isinstance(response, Mapping):
                self._rewrite_rows(context, entity_id, id_field, lambda row: dict(response))

        return await self._run(mutation, request_fn, apply=apply, settle=settle, id_field=id_field)

    async def delete(self, entity_type: str, key: ResourceKey, entity_id: str,
                     request_fn: RequestFn) -> MutationResult:
        """Delete an entity, hiding it from the cache before the server confirms it."""
        mutation = Mutation(entity_type, Operation.DELETE, key=key, entity_id=entity_id)
        id_field = self._id_field(entity_type, Operation.DELETE)

        def apply(context: PendingMutationContext) -> None:
            if self.cache.remove(key) is not None:
                context.modified.add(key)
            self._rewrite_rows(context, entity_id, id_field, lambda row: None)

        return await self._run(mutation, request_fn, apply=apply, id_field=id_field)

    async def execute(self, entity_type: str, operation: Operation, request_fn: RequestFn, *,
                      affected_id: Optional[str] = None, key: Optional[ResourceKey] = None,
                      select: Optional[Callable[[Any], Any]] = None) -> MutationResult:
        """Run a mutation with no optimistic step; only the invalidation plan follows it.

        ``select`` extracts the entity from an enveloped response before the
        plan is built; the full response is still returned as ``data``.
        """
        mutation = Mutation(entity_type, Operation(operation), key=key, entity_id=affected_id)
        return await self._run(mutation, request_fn, hold=False, select=select)

    async def _run(self, mutation: Mutation, request_fn: RequestFn, *,
                   apply: Optional[Callable[[PendingMutationContext], None]] = None,
                   settle: Optional[Callable[[Any, PendingMutationContext], None]] = None,
                   select: Optional[Callable[[Any], Any]] = None,
                   id_field: str = "id",
                   hold: bool = True) -> MutationResult:
        mutation.transition(MutationState.PENDING)
        start = time.perf_counter()
        held = self._keys_to_hold(mutation) if hold else []
        for key in held:
            self.queries.hold(key)
        context = PendingMutationContext(target_key=mutation.key)

        try:
            context.snapshots = {key: self.cache.get(key) for key in held}
            context.previous = self._previous_value(context, mutation.entity_id, id_field)
            if apply is not None:
                apply(context)

            self.logger.debug(
                "Mutation pending",
                entity_type=mutation.entity_type,
                operation=mutation.operation.value,
                key=str(mutation.key) if mutation.key else None,
                optimistic=[str(key) for key in context.modified],
            )

            response = await request_fn()

            if settle is not None:
                settle(response, context)
            entity = select(response) if select is not None else response
            plan = self.router.on_mutation_settled(
                mutation.entity_type,
                mutation.operation,
                mutation.entity_id,
                result=entity,
                previous=context.previous,
            )
            self._apply_plan(plan)
        except asyncio.CancelledError:
            self._rollback(mutation, context, None)
            raise
        except Exception as exc:
            self._rollback(mutation, context, exc)
            return mutation.to_result()
        finally:
            for key in held:
                self.queries.release(key)
            if self.metrics:
                self.metrics.observe_histogram(
                    "mutation_duration_seconds",
                    time.perf_counter() - start,
                    entity_type=mutation.entity_type,
                    operation=mutation.operation.value,
                )

        mutation.data = response
        mutation.transition(MutationState.SUCCESS)
        self.logger.info(
            "Mutation succeeded",
            entity_type=mutation.entity_type,
            operation=mutation.operation.value,
            entity_id=mutation.entity_id,
        )
        self._count("mutations_total", mutation, result="success")
        return mutation.to_result()

    def _rollback(self, mutation: Mutation, context: PendingMutationContext,
                  error: Optional[BaseException]) -> None:
        restored = set(context.modified)
        if context.target_key is not None and context.target_key in context.snapshots:
            restored.add(context.target_key)
        for key in restored:
            current = self.cache.get(key)
            self.cache.restore(key, context.snapshots.get(key))
            # Invalidations that landed while the mutation was pending survive the rollback
            if current is not None and current.invalidated:
                self.cache.invalidate(key)

        mutation.error = error
        mutation.transition(MutationState.ROLLED_BACK)
        self.logger.warning(
            "Mutation failed, optimistic update rolled back",
            entity_type=mutation.entity_type,
            operation=mutation.operation.value,
            entity_id=mutation.entity_id,
            restored=[str(key) for key in restored],
            error=get_error_message(error) if error is not None else "cancelled",
        )
        self._count("mutations_total", mutation, result="error")
        self._count("mutation_rollbacks_total", mutation)

    def _apply_plan(self, plan: InvalidationPlan) -> None:
        for key, value in plan.seed.items():
            self.cache.set(key, value)
        for key in plan.remove:
            self.cache.remove(key)
        for pattern in plan.invalidate:
            self.cache.invalidate_matching(pattern)

    def _keys_to_hold(self, mutation: Mutation) -> List[ResourceKey]:
        keys: List[ResourceKey] = []
        if mutation.key is not None:
            keys.append(mutation.key)
        for entry in self.cache.find(collection_key(mutation.entity_type)):
            if entry.key not in keys:
                keys.append(entry.key)
        return keys

    def _rewrite_rows(self, context: PendingMutationContext, entity_id: str, id_field: str,
                      rewrite: Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]) -> None:
        """Apply ``rewrite`` to the entity's row in every held collection; None drops the row."""
        for key in context.snapshots:
            if not key.is_collection:
                continue
            current = self.cache.get(key)
            if current is None or not isinstance(current.data, list):
                continue
            rows: List[Any] = []
            changed = False
            for row in current.data:
                if isinstance(row, Mapping) and str(row.get(id_field)) == str(entity_id):
                    changed = True
                    replacement = rewrite(dict(row))
                    if replacement is not None:
                        rows.append(replacement)
                else:
                    rows.append(row)
            if changed:
                self.cache.set(key, rows, state=current.state, error=current.error)
                context.modified.add(key)

    def _previous_value(self, context: PendingMutationContext, entity_id: Optional[str], id_field: str) -> Any:
        target = context.snapshots.get(context.target_key) if context.target_key else None
        if target is not None and target.data is not None:
            return target.data
        if entity_id is None:
            return None
        for key, snapshot in context.snapshots.items():
            if key.is_collection and snapshot is not None and isinstance(snapshot.data, list):
                for row in snapshot.data:
                    if isinstance(row, Mapping) and str(row.get(id_field)) == str(entity_id):
                        return row
        return None

    def _id_field(self, entity_type: str, operation: Operation) -> str:
        rule = self.router.rule_for(entity_type, operation)
        return rule.detail_id_field if rule is not None else "id"

    def _count(self, metric_name: str, mutation: Mutation, **labels) -> None:
        if self.metrics:
            self.metrics.increment_counter(
                metric_name,
                entity_type=mutation.entity_type,
                operation=mutation.operation.value,
                **labels
            )
