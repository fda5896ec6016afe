"""Metrics collection for the content search service.

Provides a thin convenience wrapper around ``prometheus_client`` so the
service consistently records HTTP, search, embedding, and cache metrics.

Design notes
- Metrics and labels are predeclared to avoid cardinality explosions
- A single registry is kept per service (can be injected for tests)
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest
import structlog

logger = structlog.get_logger("metrics")


class MetricsCollector:
    """Centralized metrics collection.

    Parameters
    - service_name: Logical name used for scoping
    - registry: Optional custom ``CollectorRegistry`` (e.g. for testing)
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        self.request_count = Counter(
            'http_requests_total',
            'Total HTTP requests',
            ['method', 'endpoint', 'status'],
            registry=self.registry
        )

        self.request_duration = Histogram(
            'http_request_duration_seconds',
            'HTTP request duration',
            ['method', 'endpoint'],
            registry=self.registry
        )

        self.search_requests = Counter(
            'search_requests_total',
            'Total search requests',
            ['search_type'],
            registry=self.registry
        )

        self.search_duration = Histogram(
            'search_duration_seconds',
            'Search duration',
            ['search_type'],
            registry=self.registry
        )

        self.search_results = Histogram(
            'search_results_count',
            'Number of results returned per search',
            ['search_type'],
            buckets=(0, 1, 2, 5, 10, 20, 50),
            registry=self.registry
        )

        self.vector_fallbacks = Counter(
            'search_vector_fallbacks_total',
            'Hybrid searches answered without vector results',
            ['reason'],
            registry=self.registry
        )

        self.embedding_requests = Counter(
            'embedding_requests_total',
            'Total embedding generation requests',
            ['model_name', 'status'],
            registry=self.registry
        )

        self.embedding_duration = Histogram(
            'embedding_duration_seconds',
            'Embedding generation duration',
            ['model_name'],
            registry=self.registry
        )

        self.cache_hits = Counter(
            'search_cache_hits_total',
            'Total cache hits',
            ['cache_type'],
            registry=self.registry
        )

        self.cache_misses = Counter(
            'search_cache_misses_total',
            'Total cache misses',
            ['cache_type'],
            registry=self.registry
        )

    def record_http_request(
        self,
        method: str,
        endpoint: str,
        status: int,
        duration: float
    ) -> None:
        """Record HTTP request metrics.

        duration is expected in seconds to match Prometheus histogram units.
        """
        self.request_count.labels(method=method, endpoint=endpoint, status=status).inc()
        self.request_duration.labels(method=method, endpoint=endpoint).observe(duration)

    def record_search(
        self,
        search_type: str,
        duration: float,
        result_count: int = 0
    ) -> None:
        """Record search metrics."""
        self.search_requests.labels(search_type=search_type).inc()
        self.search_duration.labels(search_type=search_type).observe(duration)
        self.search_results.labels(search_type=search_type).observe(result_count)

    def record_vector_fallback(self, reason: str) -> None:
        """Record a hybrid search that proceeded text-only."""
        self.vector_fallbacks.labels(reason=reason).inc()

    def record_embedding(
        self,
        model_name: str,
        status: str,
        duration: float
    ) -> None:
        """Record embedding generation metrics."""
        self.embedding_requests.labels(model_name=model_name, status=status).inc()
        self.embedding_duration.labels(model_name=model_name).observe(duration)

    def record_cache_hit(self, cache_type: str) -> None:
        """Record cache hit."""
        self.cache_hits.labels(cache_type=cache_type).inc()

    def record_cache_miss(self, cache_type: str) -> None:
        """Record cache miss."""
        self.cache_misses.labels(cache_type=cache_type).inc()

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector(service_name: str) -> MetricsCollector:
    """Get or create metrics collector for a service.

    Returns a process-wide singleton to avoid duplicate collectors/labels.
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(service_name)
    return _metrics_collector
