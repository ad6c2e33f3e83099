"""Service checks — orchestrator, neighbourhood discovery, instrumented transport."""

from .checker import CheckContext, Checker
from .metrics import CheckMetrics
from .neighbours import DiscoveryError, KubernetesDirectory, Peer, select_neighbours
from .results import FIXED_CHECKS, NEIGHBOURHOOD, NEIGHBOURHOOD_STATE, OK, SKIPPED
