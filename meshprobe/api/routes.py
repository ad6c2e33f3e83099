"""HTTP surface of the probe.

Endpoints:
  GET /alwayshappy  — target of the neighbour and self checks, always 200
  GET /alive        — last check result; 500 if any check failed
  GET /metrics      — Prometheus exposition of the check metrics
"""

from __future__ import annotations

import logging
import socket
from typing import Any

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from meshprobe.servicecheck.checker import NEIGHBOUR_ORIGIN_HEADER
from meshprobe.servicecheck.results import NEIGHBOURHOOD, failed_checks, snapshot_to_dict

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/alwayshappy")
def always_happy(request: Request) -> PlainTextResponse:
    origin = request.headers.get(NEIGHBOUR_ORIGIN_HEADER)
    if origin:
        logger.debug("Neighbour check from %s", origin)
    return PlainTextResponse("ok")


@router.get("/alive")
def alive(request: Request) -> JSONResponse:
    """Liveness: report the cached result of the last run."""
    checker = request.app.state.checker
    snapshot = snapshot_to_dict(checker.last_check_result)
    failed = failed_checks(snapshot)

    body: dict[str, Any] = {
        "hostname": socket.gethostname(),
        "checks": {k: v for k, v in snapshot.items() if k != NEIGHBOURHOOD},
        "neighbourhood": snapshot.get(NEIGHBOURHOOD, []),
        "failed": sorted(failed),
    }
    return JSONResponse(body, status_code=500 if failed else 200)


@router.get("/metrics")
def metrics(request: Request) -> Response:
    checker_metrics = request.app.state.checker.metrics
    return Response(content=checker_metrics.generate(), media_type=checker_metrics.content_type)
