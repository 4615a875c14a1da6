"""Metrics collection for document loaders.

Provides a thin convenience wrapper around ``prometheus_client`` so loaders
and store adapters consistently record batching, cache and store metrics.

Design notes
- Metrics and labels are predeclared to avoid cardinality explosions
- A registry is kept per collector (can be injected for testing)
"""

import time
from contextlib import contextmanager
from typing import Iterator, Optional

import structlog
from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

logger = structlog.get_logger("metrics")

BATCH_SIZE_BUCKETS = (1, 2, 5, 10, 25, 50, 100, 250, 500, 1000)


class MetricsCollector:
    """Centralized metrics collection for document loaders.

    Parameters
    - service_name: Logical name of the process owning the collector
    - registry: Optional custom ``CollectorRegistry`` (e.g. for testing)

    The ``loader`` label is the loader's collection template joined with
    ``/`` (e.g. ``users/posts``), which is bounded by the code that builds
    loaders rather than by request data.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        self.batches = Counter(
            'docloader_batches_total',
            'Total batched fetches dispatched to the store',
            ['loader'],
            registry=self.registry
        )

        self.batch_size = Histogram(
            'docloader_batch_size',
            'Number of keys per dispatched batch',
            ['loader'],
            buckets=BATCH_SIZE_BUCKETS,
            registry=self.registry
        )

        self.cache_hits = Counter(
            'docloader_cache_hits_total',
            'Loads served by a resolved or in-flight cache entry',
            ['loader'],
            registry=self.registry
        )

        self.cache_misses = Counter(
            'docloader_cache_misses_total',
            'Loads that registered a new key for fetching',
            ['loader'],
            registry=self.registry
        )

        self.cache_primes = Counter(
            'docloader_cache_primes_total',
            'Cache entries installed without a fetch',
            ['loader'],
            registry=self.registry
        )

        self.store_operations = Counter(
            'docloader_store_operations_total',
            'Total store operations issued by loaders',
            ['operation', 'status'],
            registry=self.registry
        )

        self.store_operation_duration = Histogram(
            'docloader_store_operation_duration_seconds',
            'Store operation duration',
            ['operation'],
            registry=self.registry
        )

    def record_batch(self, loader: str, size: int) -> None:
        """Record a dispatched batch and its key count."""
        self.batches.labels(loader=loader).inc()
        self.batch_size.labels(loader=loader).observe(size)

    def record_cache_hit(self, loader: str) -> None:
        """Record cache hit."""
        self.cache_hits.labels(loader=loader).inc()

    def record_cache_miss(self, loader: str) -> None:
        """Record cache miss."""
        self.cache_misses.labels(loader=loader).inc()

    def record_prime(self, loader: str, count: int = 1) -> None:
        """Record primed cache entries."""
        self.cache_primes.labels(loader=loader).inc(count)

    def record_store_operation(self, operation: str, status: str, duration: float) -> None:
        """Record a store operation; duration is in seconds."""
        self.store_operations.labels(operation=operation, status=status).inc()
        self.store_operation_duration.labels(operation=operation).observe(duration)

    @contextmanager
    def time_store_operation(self, operation: str) -> Iterator[None]:
        """Time a block of store I/O, recording ``ok`` or ``error``."""
        start = time.perf_counter()
        status = "ok"
        try:
            yield
        except Exception:
            status = "error"
            raise
        finally:
            self.record_store_operation(operation, status, time.perf_counter() - start)

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector(service_name: str) -> MetricsCollector:
    """Get or create the process-wide metrics collector.

    Loaders built by ``create_loader`` share this collector so their series
    land in one registry; each loader still owns its own cache.
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(service_name)
        logger.debug("Created metrics collector", service=service_name)
    return _metrics_collector
