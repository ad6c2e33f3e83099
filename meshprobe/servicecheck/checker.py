"""Check orchestrator — runs every check of one cycle and publishes the outcome.

The four fixed checks and one check per selected neighbour run concurrently
in a thread pool. Each writes its own key into the run's ResultStore; the
run waits for all of them and then swaps in the new snapshot.
"""

from __future__ import annotations

import logging
import socket
import threading
import time
from collections.abc import Callable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from functools import partial
from types import MappingProxyType
from typing import Any

import httpx

from meshprobe.config import Settings

from .metrics import CheckMetrics
from .neighbours import KubernetesDirectory, Peer, PeerDirectory, select_neighbours
from .results import (
    API_SERVER_DIRECT,
    API_SERVER_DNS,
    ERROR,
    ME_INGRESS,
    ME_SERVICE,
    NEIGHBOURHOOD,
    NEIGHBOURHOOD_STATE,
    OK,
    SKIPPED,
    ResultStore,
)
from .transport import CHECK_TYPE_EXTENSION, build_http_client, build_ssl_context

logger = logging.getLogger(__name__)

NEIGHBOUR_ORIGIN_HEADER = "Meshprobe-Neighbour-Origin"


@dataclass(frozen=True)
class CheckContext:
    """Execution context handed to a check; tags its requests for metrics."""

    check_type: str


Check = Callable[[CheckContext], str]


class Checker:
    """Runs the service checks, once or on a schedule.

    The HTTP client and thread pool live as long as the checker. A stopped
    schedule cannot be restarted; build a new Checker instead.
    """

    def __init__(
        self,
        settings: Settings,
        directory: PeerDirectory | None = None,
        http_client: httpx.Client | None = None,
        metrics: CheckMetrics | None = None,
    ) -> None:
        self.settings = settings
        self.metrics = metrics or CheckMetrics(buckets=settings.histogram_buckets)
        # One TLS context for both clients, so a broken CA is reported once
        ssl_context = build_ssl_context(settings) if directory is None or http_client is None else None
        self.directory = directory or KubernetesDirectory.from_settings(settings, ssl_context)
        self._http = http_client or build_http_client(settings, self.metrics, ssl_context)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_workers, thread_name_prefix="meshprobe-check",
        )
        self._stop = threading.Event()
        self._hostname = socket.gethostname()
        self._last_check_result: dict[str, Any] = {}

    @property
    def last_check_result(self) -> Mapping[str, Any]:
        """Outcomes of the most recently completed run (read-only)."""
        return MappingProxyType(self._last_check_result)

    # ── Run ──────────────────────────────────────────────────────────────────

    def run(self) -> None:
        """Run all checks once and publish a fresh snapshot.

        The neighbourhood-skip and discovery-error paths also wait for the
        fixed checks, so a published snapshot is always complete.
        """
        results = ResultStore()
        futures = [
            self._submit(results, self.api_server_direct, API_SERVER_DIRECT),
            self._submit(results, self.api_server_dns, API_SERVER_DNS),
            self._submit(results, self.me_ingress, ME_INGRESS),
            self._submit(results, self.me_service, ME_SERVICE),
        ]
        futures.extend(self._check_neighbourhood(results))

        wait(futures)
        self._last_check_result = results.snapshot()
        logger.debug("Check run finished: %d results", len(self._last_check_result))

    def _check_neighbourhood(self, results: ResultStore) -> list[Future[None]]:
        if not self.settings.check_neighbourhood:
            results.store(NEIGHBOURHOOD_STATE, SKIPPED)
            return []

        try:
            neighbours = self.directory.discover(self.settings.namespace, self.settings.neighbour_filter)
        except Exception as e:
            logger.warning("Neighbourhood discovery failed: %s", e)
            results.store(NEIGHBOURHOOD_STATE, str(e))
            return []

        # The full list is published, the limit only narrows what gets checked
        results.store(NEIGHBOURHOOD_STATE, OK)
        results.store(NEIGHBOURHOOD, list(neighbours))

        limit = self.settings.neighbour_limit
        if limit > 0 and len(neighbours) > limit:
            neighbours = select_neighbours(neighbours, limit, self.settings.node_name)

        return [
            self._submit(results, partial(self.check_neighbour, n), n.check_id)
            for n in neighbours
        ]

    def _submit(self, results: ResultStore, check: Check, check_type: str) -> Future[None]:
        return self._executor.submit(self._measure, results, check, check_type)

    def _measure(self, results: ResultStore, check: Check, check_type: str) -> None:
        ctx = CheckContext(check_type=check_type)
        try:
            outcome = check(ctx)
        except Exception as e:
            logger.exception("Check %s raised", check_type)
            outcome = f"{ERROR}: {e}"
        results.store(check_type, outcome)

    # ── Schedule ─────────────────────────────────────────────────────────────

    def run_scheduled(self, interval: float) -> None:
        """Run the checks every ``interval`` seconds until stop_scheduled().

        Ticks that fall due while a run is still busy collapse into a single
        tick fired right after it; they are never queued.
        """
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")

        logger.info("Scheduled checks started (interval=%ss)", interval)
        next_tick = time.monotonic() + interval
        while not self._stop.wait(max(0.0, next_tick - time.monotonic())):
            self.run()

            next_tick += interval
            now = time.monotonic()
            while next_tick + interval <= now:
                next_tick += interval
        logger.info("Scheduled checks stopped")

    def stop_scheduled(self) -> None:
        """Stop run_scheduled(). One-shot: a second call raises RuntimeError."""
        if self._stop.is_set():
            raise RuntimeError("scheduled checks already stopped")
        self._stop.set()

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self._http.close()

    # ── Checks ───────────────────────────────────────────────────────────────

    def api_server_direct(self, ctx: CheckContext) -> str:
        """/version of the API server via the service IP from the environment."""
        if not self.settings.check_api_server_direct:
            return SKIPPED
        url = (
            f"https://{self.settings.kubernetes_service_host}:"
            f"{self.settings.kubernetes_service_port}/version"
        )
        return self._do_request(ctx, url, bearer=True)

    def api_server_dns(self, ctx: CheckContext) -> str:
        """/version of the API server via the cluster DNS name."""
        if not self.settings.check_api_server_dns:
            return SKIPPED
        url = f"https://kubernetes.default.svc.cluster.local:{self.settings.kubernetes_service_port}/version"
        return self._do_request(ctx, url, bearer=True)

    def me_ingress(self, ctx: CheckContext) -> str:
        if not self.settings.check_me_ingress:
            return SKIPPED
        return self._do_request(ctx, self.settings.ingress_url.rstrip("/") + "/alwayshappy")

    def me_service(self, ctx: CheckContext) -> str:
        if not self.settings.check_me_service:
            return SKIPPED
        return self._do_request(ctx, self.settings.service_url.rstrip("/") + "/alwayshappy")

    def check_neighbour(self, neighbour: Peer, ctx: CheckContext) -> str:
        return self._do_request(ctx, neighbour.url(self.settings.use_tls), origin=True)

    def _do_request(self, ctx: CheckContext, url: str, bearer: bool = False, origin: bool = False) -> str:
        """Single GET; ``ok`` on 200, ``error: ...`` otherwise. Never retries."""
        headers: dict[str, str] = {}
        if bearer:
            try:
                token = self.settings.token_file.read_text(encoding="utf-8").strip()
            except OSError as e:
                return f"{ERROR}: read token file: {e}"
            headers["Authorization"] = f"Bearer {token}"
        if origin:
            headers[NEIGHBOUR_ORIGIN_HEADER] = self._hostname

        try:
            resp = self._http.get(url, headers=headers, extensions={CHECK_TYPE_EXTENSION: ctx.check_type})
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            return f"{ERROR}: {e}"

        if resp.status_code == 200:
            return OK
        return f"{ERROR}: unexpected status code {resp.status_code}"
