"""Sync admission control: the per-scope guard/rate limiter and the debouncer."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from gamesync.config import get_config
from gamesync.errors import ErrorAggregator
from gamesync.metrics import metrics

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class SyncScheduler:
    """
    Admits or rejects sync requests for one scope.

    At most one body runs at a time.  Unforced requests arriving within
    ``rate_limit_ms`` of the last admitted start are dropped; ``force`` skips
    the rate limit but never the in-flight guard.  Rejections are silent: the
    caller gets ``False`` and nothing is queued.
    """

    def __init__(
        self,
        name: str,
        body: Callable[[], Awaitable[Any]],
        rate_limit_ms: Optional[float] = None,
        clock: Callable[[], float] = monotonic_ms,
        errors: Optional[ErrorAggregator] = None,
    ):
        self.name = name
        self._body = body
        if rate_limit_ms is None:
            rate_limit_ms = get_config().SYNC_RATE_LIMIT_MS
        self.rate_limit_ms = rate_limit_ms
        self._clock = clock
        self._errors = errors
        self.state = SyncState.IDLE
        self.last_sync_at_ms: Optional[float] = None

    @property
    def is_syncing(self) -> bool:
        return self.state is SyncState.SYNCING

    async def request_sync(self, force: bool = False) -> bool:
        """Run the body if admitted; returns whether it ran."""
        if self.state is SyncState.SYNCING:
            logger.debug("%s sync already in progress, skipping", self.name)
            metrics().SYNC_REQUESTS.labels(scope=self.name, outcome="busy").inc()
            return False

        now = self._clock()
        if (
            not force
            and self.last_sync_at_ms is not None
            and now - self.last_sync_at_ms < self.rate_limit_ms
        ):
            logger.debug("%s sync rate limited, skipping", self.name)
            metrics().SYNC_REQUESTS.labels(scope=self.name, outcome="rate_limited").inc()
            return False

        self.state = SyncState.SYNCING
        self.last_sync_at_ms = now
        metrics().SYNC_REQUESTS.labels(scope=self.name, outcome="admitted").inc()
        logger.info("Starting %s sync%s", self.name, " (forced)" if force else "")

        start = time.perf_counter()
        try:
            await self._body()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("%s sync failed", self.name)
            if self._errors is not None:
                self._errors.record_exception(exc, {"scope": self.name})
        else:
            logger.info("Completed %s sync", self.name)
        finally:
            self.state = SyncState.IDLE
            metrics().SYNC_DURATION.labels(scope=self.name).observe(time.perf_counter() - start)
        return True


class Debouncer:
    """
    Trailing-edge debounce.

    Each ``trigger()`` restarts the wait and replaces the arguments of the
    pending call; ``func`` runs once, ``wait_ms`` after the last trigger.
    Once a call has started it is never cancelled by a later trigger.
    """

    def __init__(self, func: Callable[..., Any], wait_ms: Optional[float] = None):
        self._func = func
        if wait_ms is None:
            wait_ms = get_config().SYNC_DEBOUNCE_MS
        self.wait_ms = wait_ms
        self._pending: Optional[asyncio.Task] = None
        self._running: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def trigger(self, *args: Any, **kwargs: Any) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        loop = asyncio.get_running_loop()
        self._pending = loop.create_task(self._fire(args, kwargs))

    async def _fire(self, args, kwargs) -> None:
        await asyncio.sleep(self.wait_ms / 1000.0)
        self._running = asyncio.current_task()
        self._pending = None
        try:
            result = self._func(*args, **kwargs)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Debounced call failed")

    async def wait(self) -> None:
        """Return once no call is pending or running."""
        while True:
            tasks = {
                task
                for task in (self._pending, self._running)
                if task is not None and not task.done()
            }
            if not tasks:
                return
            await asyncio.wait(tasks)


__all__ = ["Debouncer", "SyncScheduler", "SyncState", "monotonic_ms"]
