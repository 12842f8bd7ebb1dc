"""
Query executor: reads through the resource cache.

Serves fresh entries straight from the cache, de-duplicates concurrent reads
of the same key, and never lets a read overwrite a key that a mutation holds.
Fetch failures are stored on the cache entry, never raised to the caller.
"""

import asyncio
import itertools
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, retry_call
from .keys import ResourceKey
from .resource_cache import CacheEntry, CacheState, ResourceCache


DEFAULT_STALE_TIME = 300.0

FetchFn = Callable[[], Awaitable[Any]]


@dataclass
class QueryOptions:
    """Per-read options."""

    stale_time: float = DEFAULT_STALE_TIME
    enabled: bool = True
    retry: Optional[RetryConfig] = None


@dataclass(frozen=True)
class QueryResult:
    """What a read hands back to the UI layer."""

    key: Optional[ResourceKey]
    data: Any = None
    state: CacheState = CacheState.IDLE
    error: Optional[BaseException] = None
    is_stale: bool = False

    @property
    def is_idle(self) -> bool:
        return self.state == CacheState.IDLE

    @property
    def is_loading(self) -> bool:
        return self.state == CacheState.LOADING

    @property
    def is_success(self) -> bool:
        return self.state == CacheState.SUCCESS

    @property
    def is_error(self) -> bool:
        return self.state == CacheState.ERROR

    def raise_for_error(self) -> "QueryResult":
        """Raise the stored error, if any; otherwise return self."""
        if self.error is not None:
            raise self.error
        return self


@dataclass
class _InFlightRead:
    token: int
    task: "asyncio.Task[None]"
    snapshot: Optional[CacheEntry]


class QueryExecutor:
    """Issues reads for resource keys and populates the cache."""

    def __init__(self, cache: ResourceCache, metrics: Optional[Any] = None):
        self.cache = cache
        self.metrics = metrics
        self.logger = get_logger("compliance_client.query_executor")
        self._in_flight: Dict[ResourceKey, _InFlightRead] = {}
        self._holds: Dict[ResourceKey, int] = {}
        self._tokens = itertools.count(1)

    async def query(self, key: ResourceKey, fetch_fn: FetchFn,
                    options: Optional[QueryOptions] = None) -> QueryResult:
        """Return data for ``key``, fetching only when the cache cannot answer."""
        options = options or QueryOptions()

        if not options.enabled:
            entry = self.cache.get(key)
            return QueryResult(key=key, data=entry.data if entry else None, state=CacheState.IDLE)

        if self.is_held(key):
            self.logger.debug("Read deferred to pending mutation", key=str(key))
            return self._result(key, options)

        entry = self.cache.get(key)
        if (
            entry is not None
            and entry.state == CacheState.SUCCESS
            and not entry.is_stale(options.stale_time, self.cache.clock())
        ):
            self._count("cache_hits_total", key)
            return self._result(key, options)

        in_flight = self._in_flight.get(key)
        if in_flight is None:
            self._count("cache_misses_total", key)
            in_flight = self._start(key, fetch_fn, options)
        else:
            self._count("query_deduplicated_total", key)
            self.logger.debug("Attaching to in-flight read", key=str(key))

        try:
            await asyncio.shield(in_flight.task)
        except asyncio.CancelledError:
            # Only the read was aborted (close/reset); the caller itself was not cancelled
            if not in_flight.task.cancelled():
                raise
        return self._result(key, options)

    def prefetch(self, key: ResourceKey, fetch_fn: FetchFn,
                 options: Optional[QueryOptions] = None) -> "asyncio.Future[QueryResult]":
        """Warm ``key`` in the background. Must be called with a running loop."""
        return asyncio.ensure_future(self.query(key, fetch_fn, options))

    def peek(self, key: ResourceKey, options: Optional[QueryOptions] = None) -> QueryResult:
        """Describe the cached state of ``key`` without fetching."""
        return self._result(key, options or QueryOptions())

    def is_fetching(self, key: ResourceKey) -> bool:
        return key in self._in_flight

    def in_flight_keys(self) -> List[ResourceKey]:
        return list(self._in_flight.keys())

    def cancel(self, key: ResourceKey) -> bool:
        """Ignore the result of the in-flight read for ``key``.

        The entry goes back to the snapshot taken when the read started.
        Tasks already attached to the read still complete; they see whatever
        the cache holds when the fetch returns.
        """
        in_flight = self._in_flight.pop(key, None)
        if in_flight is None:
            return False
        self.cache.restore(key, in_flight.snapshot)
        self.logger.debug("Cancelled in-flight read", key=str(key))
        return True

    def hold(self, key: ResourceKey) -> None:
        """Give a mutation control of ``key`` until ``release`` is called."""
        self.cancel(key)
        self._holds[key] = self._holds.get(key, 0) + 1

    def release(self, key: ResourceKey) -> None:
        remaining = self._holds.get(key, 0) - 1
        if remaining > 0:
            self._holds[key] = remaining
        else:
            self._holds.pop(key, None)

    def is_held(self, key: ResourceKey) -> bool:
        return key in self._holds

    async def close(self) -> None:
        """Abort every in-flight read and restore the entries they had marked.

        Callers waiting on an aborted read get the restored entry back.
        """
        pending = list(self._in_flight.items())
        self._in_flight.clear()
        for key, in_flight in pending:
            in_flight.task.cancel()
            self.cache.restore(key, in_flight.snapshot)
        if pending:
            await asyncio.gather(*(item.task for _, item in pending), return_exceptions=True)

    def _start(self, key: ResourceKey, fetch_fn: FetchFn, options: QueryOptions) -> _InFlightRead:
        snapshot = self.cache.get(key)
        self.cache.mark(key, CacheState.LOADING, error=snapshot.error if snapshot else None)
        token = next(self._tokens)
        task = asyncio.ensure_future(self._run(key, token, fetch_fn, options))
        in_flight = _InFlightRead(token=token, task=task, snapshot=snapshot)
        self._in_flight[key] = in_flight
        self.logger.debug("Read started", key=str(key), token=token)
        return in_flight

    async def _run(self, key: ResourceKey, token: int, fetch_fn: FetchFn, options: QueryOptions) -> None:
        start = time.perf_counter()
        data: Any = None
        error: Optional[BaseException] = None
        try:
            if options.retry is not None:
                data = await retry_call(fetch_fn, options.retry, name=str(key))
            else:
                data = await fetch_fn()
        except RetryError as exc:
            error = exc.last_exception
        except Exception as exc:
            error = exc
        finally:
            owned = self._finish(key, token)

        duration = time.perf_counter() - start
        if self.metrics:
            self.metrics.observe_histogram("query_fetch_duration_seconds", duration, entity_type=key.entity_type)

        if not owned:
            self.logger.debug("Discarding result of cancelled read", key=str(key), token=token)
            self._count("query_fetch_total", key, result="discarded")
            return

        if error is not None:
            self.cache.mark(key, CacheState.ERROR, error=error)
            self.logger.warning("Read failed", key=str(key), error=str(error))
            self._count("query_fetch_total", key, result="error")
            return

        self.cache.set(key, data)
        self.logger.debug("Read succeeded", key=str(key), duration_ms=round(duration * 1000, 2))
        self._count("query_fetch_total", key, result="success")

    def _finish(self, key: ResourceKey, token: int) -> bool:
        in_flight = self._in_flight.get(key)
        if in_flight is None or in_flight.token != token:
            return False
        del self._in_flight[key]
        return True

    def _result(self, key: ResourceKey, options: QueryOptions) -> QueryResult:
        entry = self.cache.get(key)
        if entry is None:
            return QueryResult(key=key)
        return QueryResult(
            key=key,
            data=entry.data,
            state=entry.state,
            error=entry.error,
            is_stale=entry.is_stale(options.stale_time, self.cache.clock()),
        )

    def _count(self, metric_name: str, key: ResourceKey, **labels) -> None:
        if self.metrics:
            self.metrics.increment_counter(metric_name, entity_type=key.entity_type, **labels)
