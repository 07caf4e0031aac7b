"""
Prometheus metrics for the reload controller.

- Resolution cycles per resource class and outcome
- Dispatches per strategy and outcome
- Watch streams degraded to polling
- Resolution latency
"""

import logging
import socket

from prometheus_client import REGISTRY, Counter, Histogram, start_http_server

logger = logging.getLogger(__name__)

# Outcome label values
OUTCOME_UNCHANGED = "unchanged"
OUTCOME_RELOADED = "reloaded"
OUTCOME_INITIALIZED = "initialized"
OUTCOME_FAILED = "failed"

reload_cycles_total = Counter(
    "config_reload_cycles_total",
    "Resolution cycles run, by resource class and outcome",
    labelnames=["resource_class", "outcome"],
)

dispatch_total = Counter(
    "config_reload_dispatch_total",
    "Reload dispatches, by strategy and outcome",
    labelnames=["strategy", "outcome"],
)

watch_degraded_total = Counter(
    "config_reload_watch_degraded_total",
    "Watch subscriptions that failed and fell back to polling",
    labelnames=["resource_class"],
)

resolve_seconds = Histogram(
    "config_reload_resolve_seconds",
    "Time spent fetching, normalizing and merging sources",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)


def record_cycle(resource_class: str, outcome: str) -> None:
    reload_cycles_total.labels(resource_class=resource_class, outcome=outcome).inc()


def record_dispatch(strategy: str, outcome: str) -> None:
    dispatch_total.labels(strategy=strategy, outcome=outcome).inc()


def record_watch_degraded(resource_class: str) -> None:
    watch_degraded_total.labels(resource_class=resource_class).inc()


def start_metrics_server(preferred_port: int) -> int:
    """Start the Prometheus HTTP endpoint, falling back to a free port.

    Returns the port actually bound.
    """
    try:
        start_http_server(preferred_port, registry=REGISTRY)
        return preferred_port
    except OSError as e:
        if e.errno != 98:
            raise
        logger.info(
            "Port already in use, finding available port",
            extra={"preferred_port": preferred_port},
        )
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind(("", 0))
            available_port = s.getsockname()[1]
        start_http_server(available_port, registry=REGISTRY)
        return available_port


__all__ = [
    "OUTCOME_UNCHANGED",
    "OUTCOME_RELOADED",
    "OUTCOME_INITIALIZED",
    "OUTCOME_FAILED",
    "reload_cycles_total",
    "dispatch_total",
    "watch_degraded_total",
    "resolve_seconds",
    "record_cycle",
    "record_dispatch",
    "record_watch_degraded",
    "start_metrics_server",
]
