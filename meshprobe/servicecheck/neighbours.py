"""Neighbourhood discovery — finds the other meshprobe pods and picks which to check.

The directory lists pods through the Kubernetes API (httpx, service-account
token). select_neighbours bounds the result with a hash ring so every node
checks a stable slice of its peers instead of the whole cluster.
"""

from __future__ import annotations

import bisect
import hashlib
import logging
import ssl
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import httpx

from meshprobe.config import Settings

from .transport import build_ssl_context

logger = logging.getLogger(__name__)

PATH_PREFIX = "path_"


class DiscoveryError(Exception):
    """Raised when the neighbourhood cannot be listed."""


@dataclass(frozen=True)
class Peer:
    """A meshprobe pod on another (or the same) node."""

    pod_name: str
    pod_ip: str
    node_name: str
    host_ip: str = ""
    phase: str = "Running"
    node_schedulable: bool = True

    @property
    def check_id(self) -> str:
        return PATH_PREFIX + self.node_name

    def url(self, use_tls: bool) -> str:
        if use_tls:
            return f"https://{self.pod_ip}:8443/alwayshappy"
        return f"http://{self.pod_ip}:8080/alwayshappy"


class PeerDirectory(Protocol):
    def discover(self, namespace: str, label_filter: str) -> list[Peer]:
        """Return the current peers. Raises DiscoveryError."""
        ...


# ── Kubernetes directory ─────────────────────────────────────────────────────


class KubernetesDirectory:
    """Lists meshprobe pods via the in-cluster Kubernetes API."""

    def __init__(
        self,
        base_url: str,
        token_file: Path | str,
        verify: ssl.SSLContext | bool = True,
        allow_unschedulable: bool = False,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token_file = token_file
        self._verify = verify
        self._timeout = timeout
        self._transport = transport
        self.allow_unschedulable = allow_unschedulable

    @classmethod
    def from_settings(
        cls, settings: Settings, ssl_context: ssl.SSLContext | None = None,
    ) -> KubernetesDirectory:
        return cls(
            base_url=f"https://{settings.kubernetes_service_host}:{settings.kubernetes_service_port}",
            token_file=settings.token_file,
            verify=ssl_context or build_ssl_context(settings),
            allow_unschedulable=settings.allow_unschedulable,
        )

    def _headers(self) -> dict[str, str]:
        try:
            with open(self._token_file, encoding="utf-8") as f:
                token = f.read().strip()
        except OSError as e:
            raise DiscoveryError(f"read token file: {e}") from e
        return {"Authorization": f"Bearer {token}", "Accept": "application/json"}

    def _get(self, path: str, params: dict[str, str] | None = None) -> dict[str, Any]:
        """GET a Kubernetes API path and return the decoded body."""
        headers = self._headers()
        try:
            with httpx.Client(
                timeout=self._timeout, verify=self._verify, transport=self._transport,
            ) as client:
                resp = client.get(f"{self._base_url}{path}", headers=headers, params=params)
        except httpx.HTTPError as e:
            raise DiscoveryError(f"GET {path}: {e}") from e

        if resp.status_code >= 400:
            detail = resp.text
            try:
                detail = resp.json().get("message", resp.text)
            except ValueError:
                pass
            raise DiscoveryError(f"GET {path}: status {resp.status_code}: {detail}")
        return resp.json()

    def _schedulable_nodes(self) -> dict[str, bool]:
        nodes: dict[str, bool] = {}
        for item in self._get("/api/v1/nodes").get("items", []):
            spec = item.get("spec", {})
            no_schedule = any(t.get("effect") == "NoSchedule" for t in spec.get("taints") or [])
            nodes[item["metadata"]["name"]] = not spec.get("unschedulable", False) and not no_schedule
        return nodes

    def discover(self, namespace: str, label_filter: str) -> list[Peer]:
        body = self._get(
            f"/api/v1/namespaces/{namespace}/pods",
            params={"labelSelector": label_filter} if label_filter else None,
        )
        schedulable = None if self.allow_unschedulable else self._schedulable_nodes()

        peers: list[Peer] = []
        for item in body.get("items", []):
            meta = item.get("metadata", {})
            status = item.get("status", {})
            node_name = item.get("spec", {}).get("nodeName", "")

            # Terminating, pending and not-yet-addressed pods cannot answer
            if meta.get("deletionTimestamp") or status.get("phase") != "Running" or not status.get("podIP"):
                continue

            node_ok = True if schedulable is None else schedulable.get(node_name, False)
            if not node_ok:
                logger.debug("Skipping neighbour %s on unschedulable node %s", meta.get("name"), node_name)
                continue

            peers.append(Peer(
                pod_name=meta.get("name", ""),
                pod_ip=status["podIP"],
                node_name=node_name,
                host_ip=status.get("hostIP", ""),
                phase=status["phase"],
                node_schedulable=node_ok,
            ))
        return peers


# ── Selection ────────────────────────────────────────────────────────────────


def _node_hash(node_name: str) -> str:
    return hashlib.sha256(node_name.encode("utf-8")).hexdigest()


def select_neighbours(peers: Sequence[Peer], limit: int, node_name: str = "") -> list[Peer]:
    """Pick at most ``limit`` peers to check.

    Peers are placed on a ring ordered by the SHA-256 of their node name. The
    selection is the ``limit`` peers following this node's own position, so
    the result is stable between runs and every node checks a different
    slice. ``limit <= 0`` disables filtering.
    """
    if limit <= 0 or len(peers) <= limit:
        return list(peers)

    ring = sorted(peers, key=lambda p: (_node_hash(p.node_name), p.pod_name))
    hashes = [_node_hash(p.node_name) for p in ring]
    start = bisect.bisect_right(hashes, _node_hash(node_name))
    return [ring[(start + i) % len(ring)] for i in range(limit)]
