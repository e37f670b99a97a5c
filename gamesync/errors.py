"""
Error taxonomy and error aggregation for the sync layer.

Nothing in here is raised out of a background sync: sync bodies catch these,
log them and record them in the aggregator so developers can inspect what
went wrong without the user being interrupted.
"""

import time
import logging
from collections import defaultdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Categories of recoverable failures."""
    TRANSPORT = "transport"
    PAYLOAD = "payload"
    DOMAIN = "domain"
    CONSISTENCY = "consistency"
    INTERNAL = "internal"  # anything that is not a GameSyncError


class GameSyncError(Exception):
    """Base exception for all sync-layer errors."""

    kind = ErrorKind.TRANSPORT

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ToolCallError(GameSyncError):
    """The transport failed to complete a remote tool call."""

    kind = ErrorKind.TRANSPORT

    def __init__(self, tool_name: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.tool_name = tool_name
        super().__init__(f"{tool_name}: {message}", details)


class PayloadError(GameSyncError):
    """A payload was present but could not be used."""

    kind = ErrorKind.PAYLOAD


class DomainError(GameSyncError):
    """The remote service answered with an embedded ``error`` field."""

    kind = ErrorKind.DOMAIN


class ConsistencyError(GameSyncError):
    """An active pointer would reference an entity missing from its cache."""

    kind = ErrorKind.CONSISTENCY


class ErrorAggregator:
    """Aggregates and tracks recoverable error patterns."""

    def __init__(self, max_samples: int = 10, reset_interval: float = 3600):
        self.error_counts: Dict[str, int] = defaultdict(int)
        self.error_samples: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self.max_samples = max_samples
        self.reset_interval = reset_interval
        self.last_reset = time.time()

    def record(self, kind: ErrorKind, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        """Record an error occurrence."""
        current_time = time.time()

        if current_time - self.last_reset > self.reset_interval:
            self.error_counts.clear()
            self.error_samples.clear()
            self.last_reset = current_time

        key = kind.value if isinstance(kind, ErrorKind) else str(kind)
        self.error_counts[key] += 1

        samples = self.error_samples[key]
        samples.append({
            "timestamp": datetime.now().isoformat(),
            "message": message,
            "context": context,
        })
        if len(samples) > self.max_samples:
            samples.pop(0)

    def record_exception(self, exc: BaseException, context: Optional[Dict[str, Any]] = None) -> None:
        kind = exc.kind if isinstance(exc, GameSyncError) else ErrorKind.INTERNAL
        self.record(kind, str(exc), context)

    def count(self, kind: ErrorKind) -> int:
        return self.error_counts.get(kind.value, 0)

    def get_error_stats(self) -> Dict[str, Any]:
        """Get error statistics."""
        return {
            "counts": dict(self.error_counts),
            "samples": {k: list(v) for k, v in self.error_samples.items()},
            "last_reset": datetime.fromtimestamp(self.last_reset).isoformat(),
        }
