"""
Compliance data client.

Wires the shared cache, the executors, the invalidation router and the REST
transport together and exposes one resource per entity type.
"""

from typing import Any, Optional

import httpx

from shared.circuit_breaker import CircuitBreaker
from shared.config import ClientConfig, get_config
from shared.logging import configure_logging, get_logger
from shared.metrics import MetricsCollector, get_metrics_collector
from .adapters.api_client import ApiClient
from .caching.invalidation import InvalidationRouter
from .caching.mutation_executor import MutationExecutor
from .caching.query_executor import QueryExecutor
from .caching.resource_cache import CacheListener, ResourceCache, get_resource_cache
from .resources.baselines import BaselineResource
from .resources.products import ProductResource
from .resources.systems import SystemResource


class ComplianceDataClient:
    """Entry point for the UI layer.

    The cache handle is explicit: pass one in to isolate a session or a test,
    or leave it out to share the process-wide cache.
    """

    def __init__(self,
                 config: Optional[ClientConfig] = None,
                 *,
                 cache: Optional[ResourceCache] = None,
                 api: Optional[ApiClient] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 metrics: Optional[MetricsCollector] = None,
                 router: Optional[InvalidationRouter] = None):
        self.config = config or get_config()
        self.logger = get_logger("compliance_client.client")

        if metrics is None and self.config.enable_metrics:
            metrics = get_metrics_collector(self.config.client_name)
        self.metrics = metrics

        self.cache = cache if cache is not None else get_resource_cache()
        self.api = api or ApiClient(
            self.config.api_base_url,
            token=self.config.api_token,
            timeout=self.config.request_timeout,
            transport=transport,
            circuit_breaker=CircuitBreaker(
                failure_threshold=self.config.circuit_failure_threshold,
                recovery_timeout=self.config.circuit_recovery_timeout,
                name="compliance_api"
            ),
            metrics=self.metrics,
        )
        self.router = router or InvalidationRouter()
        self.queries = QueryExecutor(self.cache, metrics=self.metrics)
        self.mutations = MutationExecutor(self.cache, self.queries, self.router, metrics=self.metrics)

        stale_time = self.config.stale_time_seconds
        self.products = ProductResource(self.api, self.queries, self.mutations, stale_time=stale_time)
        self.systems = SystemResource(self.api, self.queries, self.mutations, stale_time=stale_time)
        self.baselines = BaselineResource(
            self.api,
            self.queries,
            self.mutations,
            stale_time=stale_time,
            template_stale_time=self.config.template_stale_time_seconds,
        )

    async def __aenter__(self) -> "ComplianceDataClient":
        await self.api.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def subscribe(self, listener: CacheListener):
        """Register for cache change events; returns an unsubscribe callable."""
        return self.cache.subscribe(listener)

    async def reset(self) -> None:
        """Drop in-flight reads and every cached entry (logout, tests)."""
        await self.queries.close()
        self.cache.clear()
        self.logger.info("Client cache reset")

    async def close(self) -> None:
        await self.queries.close()
        await self.api.close()

    def get_stats(self) -> Any:
        """Summary of cache and transport state."""
        return {
            "entries": len(self.cache),
            "in_flight": [str(key) for key in self.queries.in_flight_keys()],
            "circuit_breaker": self.api.circuit_breaker.get_state(),
        }


def create_client(config: Optional[ClientConfig] = None, **kwargs) -> ComplianceDataClient:
    """Configure logging from ``config`` and build a client."""
    config = config or get_config()
    configure_logging(config.client_name, config.log_level, json_logs=config.log_json)
    return ComplianceDataClient(config, **kwargs)
