"""Shared test fixtures."""

from __future__ import annotations

import threading
from collections.abc import Callable, Generator
from pathlib import Path

import httpx
import pytest

from meshprobe.config import Settings
from meshprobe.servicecheck.checker import Checker
from meshprobe.servicecheck.metrics import CheckMetrics
from meshprobe.servicecheck.neighbours import Peer
from meshprobe.servicecheck.transport import InstrumentedTransport


class FakeDirectory:
    """In-memory peer directory; raises ``error`` when set."""

    def __init__(self, peers: list[Peer] | None = None, error: Exception | None = None) -> None:
        self.peers = peers or []
        self.error = error
        self.calls: list[tuple[str, str]] = []

    def discover(self, namespace: str, label_filter: str) -> list[Peer]:
        self.calls.append((namespace, label_filter))
        if self.error is not None:
            raise self.error
        return list(self.peers)


class FakeNetwork:
    """httpx.MockTransport handler: every host answers 200 unless configured otherwise."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.statuses: dict[str, int] = {}
        self.unreachable: set[str] = set()
        self._lock = threading.Lock()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append(request)
        host = request.url.host
        if host in self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(self.statuses.get(host, 200), text="ok")

    def hosts(self) -> set[str]:
        return {r.url.host for r in self.requests}


def make_peers(n: int) -> list[Peer]:
    return [
        Peer(pod_name=f"meshprobe-{i}", pod_ip=f"10.0.0.{i + 1}", node_name=f"node-{i}")
        for i in range(n)
    ]


@pytest.fixture
def sa_dir(tmp_path: Path) -> Path:
    """Fake service-account directory with a token."""
    d = tmp_path / "serviceaccount"
    d.mkdir()
    (d / "token").write_text("test-token\n")
    return d


@pytest.fixture
def settings(sa_dir: Path) -> Settings:
    return Settings(
        _env_file=None,
        ingress_url="https://meshprobe.example.com",
        service_url="http://meshprobe.meshprobe.svc.cluster.local:8080",
        kubernetes_service_host="10.96.0.1",
        kubernetes_service_port="443",
        service_account_dir=sa_dir,
        node_name="node-0",
        namespace="meshprobe",
        neighbour_filter="app.kubernetes.io/name=meshprobe",
        neighbour_limit=0,
        max_workers=16,
    )


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
def metrics() -> CheckMetrics:
    return CheckMetrics()


@pytest.fixture
def http_client(network: FakeNetwork, metrics: CheckMetrics) -> Generator[httpx.Client, None, None]:
    client = httpx.Client(
        transport=InstrumentedTransport(httpx.MockTransport(network), metrics),
        timeout=5.0,
    )
    yield client
    client.close()


@pytest.fixture
def make_checker(
    settings: Settings, http_client: httpx.Client, metrics: CheckMetrics,
) -> Generator[Callable[..., Checker], None, None]:
    """Build checkers wired to the fake network; settings overrides as kwargs."""
    created: list[Checker] = []

    def _make(directory: FakeDirectory | None = None, **overrides: object) -> Checker:
        checker = Checker(
            settings.model_copy(update=overrides),
            directory=directory or FakeDirectory(),
            http_client=http_client,
            metrics=metrics,
        )
        created.append(checker)
        return checker

    yield _make
    for checker in created:
        checker.close()
