"""
Generic CRUD resource bound to the cache-consistency layer.

A resource knows its REST paths and response envelopes; the query and
mutation executors do the cache work.
"""

from typing import Any, Dict, List, Mapping, Optional

from shared.logging import get_logger
from ..adapters.api_client import ApiClient
from ..caching.keys import EntityType, ResourceKey, collection_key, detail_key
from ..caching.mutation_executor import MutationExecutor, MutationResult
from ..caching.query_executor import DEFAULT_STALE_TIME, QueryExecutor, QueryOptions, QueryResult


class EntityResource:
    """Read accessors and mutation triggers for one entity type."""

    entity_type: EntityType
    path: str
    list_envelope: Optional[str] = None
    detail_envelope: Optional[str] = None

    def __init__(self, api: ApiClient, queries: QueryExecutor, mutations: MutationExecutor,
                 stale_time: float = DEFAULT_STALE_TIME):
        self.api = api
        self.queries = queries
        self.mutations = mutations
        self.stale_time = stale_time
        self.logger = get_logger(f"compliance_client.resources.{self.entity_type.value}")

    def list_key(self, filters: Optional[Mapping[str, Any]] = None) -> ResourceKey:
        return collection_key(self.entity_type, filters)

    def detail_key(self, entity_id: str) -> ResourceKey:
        return detail_key(self.entity_type, entity_id)

    def detail_path(self, entity_id: str) -> str:
        return f"{self.path}/{entity_id}"

    async def list(self, filters: Optional[Mapping[str, Any]] = None, *,
                   options: Optional[QueryOptions] = None) -> QueryResult:
        """Read the collection, optionally filtered."""
        params = dict(filters) if filters else None

        async def fetch() -> List[Dict[str, Any]]:
            body = await self.api.get(self.path, params=params)
            return self._unwrap_list(body)

        return await self.queries.query(self.list_key(filters), fetch, self._options(options))

    async def get(self, entity_id: Optional[str], *, options: Optional[QueryOptions] = None) -> QueryResult:
        """Read one entity; an empty id disables the read."""
        if not entity_id:
            return QueryResult(key=None)

        async def fetch() -> Any:
            body = await self.api.get(self.detail_path(entity_id))
            return self._unwrap_detail(body)

        return await self.queries.query(self.detail_key(entity_id), fetch, self._options(options))

    def cached(self, entity_id: str) -> Any:
        """Return whatever the cache currently holds for the entity, without fetching."""
        return self.queries.peek(self.detail_key(entity_id)).data

    async def create(self, payload: Mapping[str, Any]) -> MutationResult:
        """Create an entity."""
        async def request() -> Any:
            body = await self.api.post(self.path, dict(payload))
            return self._unwrap_detail(body)

        result = await self.mutations.create(self.entity_type, request)
        self._log_result(result)
        return result

    async def update(self, entity_id: str, updates: Mapping[str, Any]) -> MutationResult:
        """Update an entity optimistically."""
        async def request() -> Any:
            body = await self.api.put(self.detail_path(entity_id), dict(updates))
            return self._unwrap_detail(body)

        result = await self.mutations.update(
            self.entity_type, self.detail_key(entity_id), entity_id, dict(updates), request
        )
        self._log_result(result)
        return result

    async def delete(self, entity_id: str) -> MutationResult:
        """Delete an entity optimistically."""
        async def request() -> None:
            await self.api.delete(self.detail_path(entity_id))

        result = await self.mutations.delete(
            self.entity_type, self.detail_key(entity_id), entity_id, request
        )
        self._log_result(result)
        return result

    def _options(self, options: Optional[QueryOptions]) -> QueryOptions:
        return options if options is not None else QueryOptions(stale_time=self.stale_time)

    def _unwrap_list(self, body: Any) -> List[Dict[str, Any]]:
        if isinstance(body, list):
            return body
        if isinstance(body, dict):
            for envelope in (self.list_envelope, "items", "data"):
                if envelope and isinstance(body.get(envelope), list):
                    return body[envelope]
        self.logger.warning("Unexpected list payload", payload_type=type(body).__name__)
        return []

    def _unwrap_detail(self, body: Any) -> Any:
        if self.detail_envelope and isinstance(body, dict) and self.detail_envelope in body:
            return body[self.detail_envelope]
        return body

    def _log_result(self, result: MutationResult) -> None:
        if result.is_error:
            self.logger.error(
                f"Failed to {result.operation.value} {self.entity_type.value}",
                error=result.error_message
            )
