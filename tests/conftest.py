import asyncio
import inspect
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


def _is_truthy(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def pytest_collection_modifyitems(config, items):
    should_run = _is_truthy(os.getenv("RUN_TOOL_SERVER_TESTS")) and bool(
        os.getenv("TOOL_ENDPOINT")
    )
    if should_run:
        return

    skip_marker = pytest.mark.skip(
        reason="Set RUN_TOOL_SERVER_TESTS=1 (and TOOL_ENDPOINT) to run against a live tool server"
    )
    for item in items:
        if "requires_tool_server" in item.keywords:
            item.add_marker(skip_marker)


class FakeToolClient:
    """
    In-memory tool client.

    ``responses`` maps a tool name to either a value, an exception instance to
    raise, or a callable taking the call args (sync or async).
    """

    def __init__(self, responses: Optional[Dict[str, Any]] = None):
        self.responses: Dict[str, Any] = dict(responses or {})
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    async def call_tool(self, name: str, args: Dict[str, Any]) -> Any:
        self.calls.append((name, dict(args)))
        await asyncio.sleep(0)
        if name not in self.responses:
            raise RuntimeError(f"no response configured for {name}")
        response = self.responses[name]
        if callable(response):
            response = response(args)
            if inspect.isawaitable(response):
                response = await response
        if isinstance(response, BaseException):
            raise response
        return response

    def names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def calls_to(self, name: str) -> List[Dict[str, Any]]:
        return [args for called, args in self.calls if called == name]


@pytest.fixture
def fake_client():
    return FakeToolClient()
