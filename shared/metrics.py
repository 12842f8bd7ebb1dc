"""
Shared metrics configuration for the compliance data layer.
"""

from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry
from typing import Dict, Any, Optional


class MetricsCollector:
    """Centralized metrics collector for the cache-consistency layer."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        # Each collector owns its registry unless one is passed in
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up metrics for the client."""

        # Service info
        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # Transport metrics
        self._metrics["api_requests_total"] = Counter(
            "api_requests_total",
            "Total REST API requests",
            ["method", "status_code"],
            registry=self.registry
        )

        self._metrics["api_request_duration_seconds"] = Histogram(
            "api_request_duration_seconds",
            "REST API request duration in seconds",
            ["method"],
            registry=self.registry
        )

        # Error metrics
        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        self._setup_cache_metrics()

    def _setup_cache_metrics(self):
        """Set up query and mutation metrics."""
        self._metrics["cache_hits_total"] = Counter(
            "cache_hits_total",
            "Total reads answered from a fresh cache entry",
            ["entity_type"],
            registry=self.registry
        )

        self._metrics["cache_misses_total"] = Counter(
            "cache_misses_total",
            "Total reads that required a fetch",
            ["entity_type"],
            registry=self.registry
        )

        self._metrics["query_fetch_total"] = Counter(
            "query_fetch_total",
            "Total fetches by outcome",
            ["entity_type", "result"],
            registry=self.registry
        )

        self._metrics["query_fetch_duration_seconds"] = Histogram(
            "query_fetch_duration_seconds",
            "Fetch duration in seconds",
            ["entity_type"],
            registry=self.registry
        )

        self._metrics["query_deduplicated_total"] = Counter(
            "query_deduplicated_total",
            "Total reads attached to an in-flight fetch",
            ["entity_type"],
            registry=self.registry
        )

        self._metrics["mutations_total"] = Counter(
            "mutations_total",
            "Total mutations by outcome",
            ["entity_type", "operation", "result"],
            registry=self.registry
        )

        self._metrics["mutation_duration_seconds"] = Histogram(
            "mutation_duration_seconds",
            "Mutation duration in seconds",
            ["entity_type", "operation"],
            registry=self.registry
        )

        self._metrics["mutation_rollbacks_total"] = Counter(
            "mutation_rollbacks_total",
            "Total optimistic updates rolled back",
            ["entity_type", "operation"],
            registry=self.registry
        )

        self._metrics["cache_entries"] = Gauge(
            "cache_entries",
            "Number of entries in the resource cache",
            registry=self.registry
        )

    @staticmethod
    def _child(metric: Any, labels: Dict[str, Any]) -> Any:
        return metric.labels(**labels) if labels else metric

    def record_api_request(self, method: str, status_code: int, duration: float):
        """Record REST API request metrics."""
        self._metrics["api_requests_total"].labels(
            method=method,
            status_code=str(status_code)
        ).inc()

        self._metrics["api_request_duration_seconds"].labels(method=method).observe(duration)

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            self._child(self._metrics[metric_name], labels).inc()

    def set_gauge(self, metric_name: str, value: float, **labels):
        """Set a gauge metric value."""
        if metric_name in self._metrics:
            self._child(self._metrics[metric_name], labels).set(value)

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        if metric_name in self._metrics:
            self._child(self._metrics[metric_name], labels).observe(value)

    def get_sample_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        """Read back a sample from this collector's registry."""
        return self.registry.get_sample_value(name, labels or {})


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
