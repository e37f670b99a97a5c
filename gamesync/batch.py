"""Concurrent execution of independent tool calls."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from gamesync.metrics import metrics
from gamesync.transport import ToolClient

logger = logging.getLogger(__name__)


@dataclass
class BatchToolCall:
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BatchToolResult:
    name: str
    args: Dict[str, Any]
    result: Any = None
    error: Optional[str] = None
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


def find_result(results: Sequence[BatchToolResult], name: str) -> Optional[BatchToolResult]:
    """First result for ``name``; callers locate their entries by tool name."""
    for result in results:
        if result.name == name:
            return result
    return None


async def _invoke(client: ToolClient, call: BatchToolCall) -> BatchToolResult:
    start = time.perf_counter()
    try:
        result = await client.call_tool(call.name, call.args)
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        elapsed = time.perf_counter() - start
        metrics().TOOL_CALL_LATENCY.labels(tool=call.name).observe(elapsed)
        metrics().TOOL_CALL_ERRORS.labels(tool=call.name).inc()
        return BatchToolResult(
            name=call.name,
            args=call.args,
            result=None,
            error=str(exc) or type(exc).__name__ or "Unknown error",
            duration_ms=elapsed * 1000.0,
        )

    elapsed = time.perf_counter() - start
    metrics().TOOL_CALL_LATENCY.labels(tool=call.name).observe(elapsed)
    return BatchToolResult(
        name=call.name,
        args=call.args,
        result=result,
        duration_ms=elapsed * 1000.0,
    )


async def execute_batch(client: ToolClient, calls: Sequence[BatchToolCall]) -> List[BatchToolResult]:
    """
    Run every call concurrently and return one result per call, in input order.

    A call that raises is reported through ``error`` with ``result=None`` and
    never prevents the other results from being returned.  No deduplication
    happens here.
    """
    if not calls:
        return []

    start = time.perf_counter()
    results = await asyncio.gather(*(_invoke(client, call) for call in calls))
    failed = sum(1 for r in results if r.error is not None)
    logger.debug(
        "Executed %d tool calls in %.1fms (%d failed)",
        len(calls),
        (time.perf_counter() - start) * 1000.0,
        failed,
    )
    return list(results)


__all__ = ["BatchToolCall", "BatchToolResult", "execute_batch", "find_result"]
