"""HTTP transport shared by all checks.

Builds the TLS context (service-account CA plus an optional extra CA) and an
httpx transport that attributes latency and errors to the check type carried
in each request's extensions.
"""

from __future__ import annotations

import logging
import ssl
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx

from meshprobe.config import Settings

from .metrics import CheckMetrics

logger = logging.getLogger(__name__)

CHECK_TYPE_EXTENSION = "meshprobe.check_type"


# ── TLS ──────────────────────────────────────────────────────────────────────


def generate_ssl_context(ca_file: Path, extra_ca: str = "") -> ssl.SSLContext:
    """System trust store + cluster CA + optional extra CA bundle.

    Raises OSError / ssl.SSLError when a bundle is missing or not valid PEM.
    """
    ctx = ssl.create_default_context()
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    ctx.load_verify_locations(cafile=str(ca_file))
    if extra_ca:
        ctx.load_verify_locations(cafile=extra_ca)
    return ctx


def build_ssl_context(settings: Settings) -> ssl.SSLContext:
    try:
        ctx = generate_ssl_context(settings.ca_file, settings.extra_ca)
    except (OSError, ssl.SSLError) as e:
        logger.warning(
            "Cannot generate TLS context (extra_ca=%r): %s; continuing with default TLS context",
            settings.extra_ca, e,
        )
        ctx = ssl.create_default_context()
        ctx.minimum_version = ssl.TLSVersion.TLSv1_2

    if settings.insecure:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    return ctx


# ── Instrumentation ──────────────────────────────────────────────────────────


class _PhaseTracer:
    """httpcore trace callback timing each connection/request phase."""

    def __init__(
        self,
        metrics: CheckMetrics,
        check_type: str,
        chained: Callable[[str, dict[str, Any]], None] | None = None,
    ) -> None:
        self._metrics = metrics
        self._check_type = check_type
        self._chained = chained
        self._started: dict[str, float] = {}

    def __call__(self, event_name: str, info: dict[str, Any]) -> None:
        # e.g. "connection.connect_tcp.started", "http11.receive_response_headers.complete"
        name, _, stage = event_name.rpartition(".")
        phase = name.rpartition(".")[2]

        if stage == "started":
            self._started[phase] = time.perf_counter()
        elif stage == "complete":
            t0 = self._started.pop(phase, None)
            if t0 is not None:
                self._metrics.observe_phase(self._check_type, phase, time.perf_counter() - t0)
        elif stage == "failed":
            self._started.pop(phase, None)
            self._metrics.inc_error(self._check_type, phase)

        if self._chained is not None:
            self._chained(event_name, info)


class InstrumentedTransport(httpx.BaseTransport):
    """Wraps another transport and records per-check-type request metrics."""

    def __init__(self, transport: httpx.BaseTransport, metrics: CheckMetrics) -> None:
        self._transport = transport
        self._metrics = metrics

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        check_type = request.extensions.get(CHECK_TYPE_EXTENSION, "unknown")
        tracer = _PhaseTracer(self._metrics, check_type, request.extensions.get("trace"))
        request.extensions = {**request.extensions, "trace": tracer}

        t0 = time.perf_counter()
        try:
            response = self._transport.handle_request(request)
        except Exception:
            self._metrics.inc_error(check_type, "round_trip")
            raise

        self._metrics.observe_request(
            check_type, request.method, response.status_code, time.perf_counter() - t0,
        )
        return response

    def close(self) -> None:
        self._transport.close()


def build_http_client(
    settings: Settings,
    metrics: CheckMetrics,
    ssl_context: ssl.SSLContext | None = None,
) -> httpx.Client:
    """The process-wide client every check shares. Never closed between runs."""
    limits = httpx.Limits(
        max_connections=100,
        max_keepalive_connections=100 if settings.reuse_connections else 0,
        keepalive_expiry=90.0,
    )
    transport = httpx.HTTPTransport(verify=ssl_context or build_ssl_context(settings), limits=limits)
    return httpx.Client(
        timeout=settings.request_timeout,
        transport=InstrumentedTransport(transport, metrics),
    )
