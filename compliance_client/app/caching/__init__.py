"""
Client-side cache-consistency layer.

Reads go through the query executor, writes through the mutation executor;
both keep the shared resource cache consistent under interleaved requests.
Prefer explicit invalidation over time-based expiry for anything a mutation
can change.
"""

from .keys import EntityType, ResourceKey, Scope, all_key, collection_key, detail_key
from .resource_cache import (
    CacheEntry,
    CacheEvent,
    CacheEventType,
    CacheState,
    ResourceCache,
    get_resource_cache,
    reset_resource_cache,
)
from .query_executor import QueryExecutor, QueryOptions, QueryResult
from .invalidation import InvalidationPlan, InvalidationRouter, InvalidationRule, Operation
from .mutation_executor import (
    Mutation,
    MutationExecutor,
    MutationResult,
    MutationState,
    PendingMutationContext,
)

__all__ = [
    "EntityType",
    "ResourceKey",
    "Scope",
    "all_key",
    "collection_key",
    "detail_key",
    "CacheEntry",
    "CacheEvent",
    "CacheEventType",
    "CacheState",
    "ResourceCache",
    "get_resource_cache",
    "reset_resource_cache",
    "QueryExecutor",
    "QueryOptions",
    "QueryResult",
    "InvalidationPlan",
    "InvalidationRouter",
    "InvalidationRule",
    "Operation",
    "Mutation",
    "MutationExecutor",
    "MutationResult",
    "MutationState",
    "PendingMutationContext",
]
