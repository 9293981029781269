"""
Prometheus metrics for Morph view requests.
"""

from typing import Any, Dict, Optional
import threading

from prometheus_client import REGISTRY, Counter, Histogram, CollectorRegistry, start_http_server


class MetricsCollector:
    """Collects request metrics; instances are ``RequestCompleted`` listeners."""

    def __init__(self, service_name: str = "morph_client", registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        # Counters built with registry=None are never registered anywhere
        self.registry = registry if registry is not None else REGISTRY
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up view request metrics."""
        self._metrics["morph_requests_total"] = Counter(
            "morph_requests_total",
            "Total view requests by outcome",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["morph_cache_lookups_total"] = Counter(
            "morph_cache_lookups_total",
            "Total cache lookups",
            ["result"],
            registry=self.registry
        )

        self._metrics["morph_upstream_attempts_total"] = Counter(
            "morph_upstream_attempts_total",
            "Total upstream GET attempts, polls included",
            registry=self.registry
        )

        self._metrics["morph_request_duration_seconds"] = Histogram(
            "morph_request_duration_seconds",
            "View request duration in seconds",
            ["source"],
            registry=self.registry
        )

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def start_metrics_server(self, port: int = 9090):
        """Start the Prometheus metrics server."""
        start_http_server(port, registry=self.registry)

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).inc()

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).observe(value)

    def __call__(self, event) -> None:
        """Record a ``RequestCompleted`` event."""
        with self._lock:
            self.increment_counter("morph_requests_total", outcome=event.outcome)
            self.increment_counter(
                "morph_cache_lookups_total",
                result="hit" if event.from_cache else "miss",
            )
            self._metrics["morph_upstream_attempts_total"].inc(event.attempts)
            self.observe_histogram(
                "morph_request_duration_seconds",
                event.latency_seconds,
                source="cache" if event.from_cache else "upstream",
            )
            if event.error_code:
                self.record_error(event.error_code)


_default_collector: Optional[MetricsCollector] = None
_default_lock = threading.Lock()


def get_metrics_collector(registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector.

    Metric names can be registered only once per registry, so every client in
    the process shares one collector on the default registry.
    """
    global _default_collector
    if registry is not None:
        return MetricsCollector("morph_client", registry)
    with _default_lock:
        if _default_collector is None:
            _default_collector = MetricsCollector("morph_client")
        return _default_collector
