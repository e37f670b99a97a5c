# gamesync/metrics.py
"""Prometheus collectors for the sync layer."""

import logging
from functools import lru_cache
from types import SimpleNamespace
from typing import Any, Dict, Tuple, Type, Union

from prometheus_client import REGISTRY, Counter, Gauge, Histogram

logger = logging.getLogger(__name__)

CollectorType = Union[Counter, Gauge, Histogram]

_COLLECTOR_DEFINITIONS: Dict[str, Tuple[Type[CollectorType], Tuple[Any, ...], Dict[str, Any]]] = {
    # Scheduler metrics
    "SYNC_REQUESTS": (
        Counter,
        ("gamesync_sync_requests_total", "Sync requests by scope and outcome", ["scope", "outcome"]),
        {},
    ),
    "SYNC_DURATION": (
        Histogram,
        ("gamesync_sync_duration_seconds", "Duration of admitted sync executions", ["scope"]),
        {},
    ),
    # Remote call metrics
    "TOOL_CALL_LATENCY": (
        Histogram,
        ("gamesync_tool_call_latency_seconds", "Remote tool call latency in seconds", ["tool"]),
        {},
    ),
    "TOOL_CALL_ERRORS": (
        Counter,
        ("gamesync_tool_call_errors_total", "Remote tool calls that raised", ["tool"]),
        {},
    ),
    # Cache metrics
    "CACHE_RECORDS": (
        Gauge,
        ("gamesync_cache_records", "Records currently held per cache", ["cache"]),
        {},
    ),
    "CONSISTENCY_VIOLATIONS": (
        Counter,
        ("gamesync_consistency_violations_total", "Recoverable active-pointer violations", ["kind"]),
        {},
    ),
}


def _get_registry_collectors() -> Dict[str, CollectorType]:
    """Return the registry collectors mapping for reuse."""

    return getattr(REGISTRY, "_names_to_collectors", {})


def _get_or_create_collector(
    collector_cls: Type[CollectorType],
    *args: Any,
    **kwargs: Any,
) -> CollectorType:
    """Fetch an existing collector or create a new one."""

    collectors = _get_registry_collectors()
    name = args[0] if args else kwargs.get("name")
    if name:
        existing = collectors.get(name)
        if existing is not None:
            if not isinstance(existing, collector_cls):
                raise TypeError(
                    f"Collector '{name}' already registered with type {type(existing).__name__}, "
                    f"expected {collector_cls.__name__}."
                )
            return existing

    return collector_cls(*args, **kwargs)


@lru_cache(maxsize=1)
def metrics() -> SimpleNamespace:
    """Return a singleton namespace containing all Prometheus collectors."""

    namespace: Dict[str, CollectorType] = {}
    for attr_name, (collector_cls, collector_args, collector_kwargs) in _COLLECTOR_DEFINITIONS.items():
        namespace[attr_name] = _get_or_create_collector(
            collector_cls, *collector_args, **collector_kwargs
        )

    return SimpleNamespace(**namespace)
