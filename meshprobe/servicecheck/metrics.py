"""Prometheus metrics for outgoing check requests.

Uses a dedicated CollectorRegistry so several checkers (and the test suite)
never collide on the default global registry.
"""

from __future__ import annotations

from collections.abc import Sequence

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

METRICS_NAMESPACE = "meshprobe"


class CheckMetrics:
    """Request counters and latency histograms keyed by check type."""

    def __init__(
        self,
        registry: CollectorRegistry | None = None,
        buckets: Sequence[float] | None = None,
    ) -> None:
        self._registry = registry or CollectorRegistry()
        histogram_kwargs = {"buckets": tuple(buckets)} if buckets else {}

        self._requests_total = Counter(
            "httpclient_requests_total",
            "Total outgoing check requests",
            ["code", "method", "type"],
            namespace=METRICS_NAMESPACE,
            registry=self._registry,
        )

        self._request_duration = Histogram(
            "httpclient_request_duration_seconds",
            "Duration of outgoing check requests in seconds",
            ["type"],
            namespace=METRICS_NAMESPACE,
            registry=self._registry,
            **histogram_kwargs,
        )

        self._trace_duration = Histogram(
            "httpclient_trace_request_duration_seconds",
            "Duration of individual request phases (connect, tls, headers) in seconds",
            ["event", "type"],
            namespace=METRICS_NAMESPACE,
            registry=self._registry,
            **histogram_kwargs,
        )

        self._errors_total = Counter(
            "errors_total",
            "Errors raised while performing check requests",
            ["event", "type"],
            namespace=METRICS_NAMESPACE,
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST

    def observe_request(self, check_type: str, method: str, code: int, duration: float) -> None:
        self._requests_total.labels(code=str(code), method=method, type=check_type).inc()
        self._request_duration.labels(type=check_type).observe(duration)

    def observe_phase(self, check_type: str, event: str, duration: float) -> None:
        self._trace_duration.labels(event=event, type=check_type).observe(duration)

    def inc_error(self, check_type: str, event: str) -> None:
        self._errors_total.labels(event=event, type=check_type).inc()

    def generate(self) -> bytes:
        """Render all metrics in the Prometheus text exposition format."""
        return generate_latest(self._registry)
