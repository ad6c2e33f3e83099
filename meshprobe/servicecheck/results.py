"""Check identifiers, outcome values and the per-run result container."""

from __future__ import annotations

import threading
from collections.abc import Mapping
from dataclasses import asdict
from typing import Any

OK = "ok"
ERROR = "error"
SKIPPED = "skipped"

# Fixed checks
API_SERVER_DIRECT = "api_server_direct"
API_SERVER_DNS = "api_server_dns"
ME_INGRESS = "me_ingress"
ME_SERVICE = "me_service"
FIXED_CHECKS = (API_SERVER_DIRECT, API_SERVER_DNS, ME_INGRESS, ME_SERVICE)

# Neighbourhood meta-check and the discovered peer list
NEIGHBOURHOOD_STATE = "neighbourhood_state"
NEIGHBOURHOOD = "neighbourhood"


class ResultStore:
    """Outcomes of a single run, written concurrently by the check threads.

    Every key is owned by exactly one task per run, so writers never contend
    for a key; the lock only keeps snapshot() from copying mid-insert.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._results: dict[str, Any] = {}

    def store(self, key: str, value: Any) -> None:
        with self._lock:
            self._results[key] = value

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._results)


def failed_checks(snapshot: Mapping[str, Any]) -> dict[str, str]:
    """Checks whose outcome is neither ok nor skipped."""
    return {
        key: value
        for key, value in snapshot.items()
        if key != NEIGHBOURHOOD and value not in (OK, SKIPPED)
    }


def snapshot_to_dict(snapshot: Mapping[str, Any]) -> dict[str, Any]:
    """JSON-friendly copy of a snapshot (peers become plain dicts)."""
    out = dict(snapshot)
    if NEIGHBOURHOOD in out:
        out[NEIGHBOURHOOD] = [asdict(p) for p in out[NEIGHBOURHOOD]]
    return out
