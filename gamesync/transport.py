"""Remote tool-call transport.

The sync layer only depends on :class:`ToolClient`.  ``HttpToolClient`` is a
thin JSON-RPC 2.0 adapter for services that expose ``tools/call`` over HTTP;
timeouts and retries belong to the transport, the caller only sees whatever
exception it raises.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Dict, Optional, Protocol, runtime_checkable

import aiohttp

from gamesync.errors import DomainError, ToolCallError
from gamesync.normalizer import get_error_message, is_error_response

logger = logging.getLogger(__name__)


@runtime_checkable
class ToolClient(Protocol):
    async def call_tool(self, name: str, args: Dict[str, Any]) -> Any:
        ...


class HttpToolClient:
    """JSON-RPC ``tools/call`` client backed by an aiohttp session."""

    def __init__(
        self,
        endpoint: str,
        *,
        timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.endpoint = endpoint
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def call_tool(self, name: str, args: Dict[str, Any]) -> Any:
        request = {
            "jsonrpc": "2.0",
            "id": str(uuid.uuid4()),
            "method": "tools/call",
            "params": {"name": name, "arguments": args or {}},
        }
        session = await self._get_session()
        try:
            async with session.post(self.endpoint, json=request) as response:
                if response.status >= 400:
                    raise ToolCallError(name, f"HTTP {response.status}")
                body = await response.json(content_type=None)
        except aiohttp.ClientError as exc:
            raise ToolCallError(name, str(exc) or type(exc).__name__) from exc
        except asyncio.TimeoutError as exc:
            raise ToolCallError(name, f"timed out after {self.timeout}s") from exc
        except ValueError as exc:
            raise ToolCallError(name, "response body is not JSON") from exc

        if not isinstance(body, dict):
            raise ToolCallError(name, "response is not a JSON-RPC object")
        error = body.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ToolCallError(name, message or "remote error", {"error": error})
        return body.get("result")

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "HttpToolClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


async def call_tool_checked(client: ToolClient, name: str, args: Dict[str, Any]) -> Any:
    """
    Call ``name`` and return its raw result.

    Any transport exception is re-raised as :class:`ToolCallError`; a result
    carrying an embedded ``error`` field raises :class:`DomainError`.
    """
    try:
        raw = await client.call_tool(name, args)
    except asyncio.CancelledError:
        raise
    except ToolCallError:
        raise
    except Exception as exc:
        raise ToolCallError(name, str(exc) or type(exc).__name__, {"args": args}) from exc
    if is_error_response(raw):
        raise DomainError(get_error_message(raw) or f"{name} failed", {"tool": name})
    return raw
