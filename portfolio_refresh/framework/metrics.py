"""
Prometheus metrics for the refresh service.

All series are prefixed with the service name and live in a private
registry, so several collectors can coexist in one process (tests build
one per case).
"""

from typing import Optional, Sequence

from prometheus_client import (
    Counter, Histogram, Gauge, Info,
    CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST
)

HTTP_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0)
# A rebuild fetches quotes for every holding, NSE warm-up included
BUILD_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 40.0)


class MetricsCollector:
    """Counters and gauges shared by the API, worker, scheduler and quote fetcher."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        self.info = self._metric(Info, "info", f"Build information for {service_name}")
        self.request_count = self._metric(
            Counter, "requests_total", "HTTP requests by route and status", ("method", "endpoint", "status"))
        self.request_duration = self._metric(
            Histogram, "request_duration_seconds", "HTTP request latency", ("method", "endpoint"),
            buckets=HTTP_BUCKETS)
        self.errors_total = self._metric(
            Counter, "errors_total", "Unexpected errors in background loops", ("error_type", "component"))
        self.health_status = self._metric(Gauge, "health_status", "1 when no critical health check fails")
        self.memory_usage = self._metric(Gauge, "memory_usage_bytes", "Resident set size of the process")

        self.portfolio_builds = self._metric(
            Counter, "portfolio_builds_total", "Snapshot rebuilds by trigger and outcome", ("trigger", "status"))
        self.portfolio_build_duration = self._metric(
            Histogram, "portfolio_build_duration_seconds", "Time to rebuild one snapshot", ("trigger",),
            buckets=BUILD_BUCKETS)
        self.portfolio_cache_requests = self._metric(
            Counter, "portfolio_cache_requests_total", "Snapshot lookups by result (hit, stale, miss)", ("result",))
        self.quote_source_requests = self._metric(
            Counter, "quote_source_requests_total",
            "Quote lookups per provider by result (cache_hit, success, failure)", ("source", "result"))
        self.refresh_messages = self._metric(
            Counter, "refresh_messages_total", "Queue messages handled by the worker", ("status",))
        self.refresh_enqueued = self._metric(
            Counter, "refresh_enqueued_total", "Refresh requests appended to the queue", ("producer", "status"))

    def _metric(self, kind, name: str, documentation: str, labels: Sequence[str] = (), **kwargs):
        return kind(f"{self.service_name}_{name}", documentation, list(labels), registry=self.registry, **kwargs)

    def record_request(self, method: str, endpoint: str, status: str, duration: float):
        self.request_count.labels(method=method, endpoint=endpoint, status=status).inc()
        self.request_duration.labels(method=method, endpoint=endpoint).observe(duration)

    def record_build(self, trigger: str, status: str, duration: Optional[float] = None):
        """Count a rebuild; ``duration`` is only observed for builds that ran to completion."""
        self.portfolio_builds.labels(trigger=trigger, status=status).inc()
        if duration is not None:
            self.portfolio_build_duration.labels(trigger=trigger).observe(duration)

    def record_cache_lookup(self, result: str):
        self.portfolio_cache_requests.labels(result=result).inc()

    def record_quote_source(self, source: str, result: str):
        self.quote_source_requests.labels(source=source, result=result).inc()

    def record_refresh_message(self, status: str):
        self.refresh_messages.labels(status=status).inc()

    def record_enqueue(self, producer: str, status: str):
        self.refresh_enqueued.labels(producer=producer, status=status).inc()

    def record_error(self, error_type: str, component: str):
        self.errors_total.labels(error_type=error_type, component=component).inc()

    def set_health_status(self, healthy: bool):
        self.health_status.set(1 if healthy else 0)

    def set_memory_usage(self, bytes_used: int):
        self.memory_usage.set(bytes_used)

    def update_service_info(self, version: str, environment: str, **kwargs):
        self.info.info({"version": version, "environment": environment, **kwargs})

    def get_metrics(self) -> bytes:
        return generate_latest(self.registry)

    def get_content_type(self) -> str:
        return CONTENT_TYPE_LATEST
