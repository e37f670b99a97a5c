"""Local-first sync and consistency layer over a remote game-state tool service."""

from gamesync.batch import BatchToolCall, BatchToolResult, execute_batch
from gamesync.errors import (
    ConsistencyError,
    DomainError,
    ErrorAggregator,
    GameSyncError,
    PayloadError,
    ToolCallError,
)
from gamesync.normalizer import get_error_message, is_error_response, normalize
from gamesync.session import GameSession
from gamesync.transport import HttpToolClient, ToolClient

__all__ = [
    "BatchToolCall",
    "BatchToolResult",
    "ConsistencyError",
    "DomainError",
    "ErrorAggregator",
    "GameSession",
    "GameSyncError",
    "HttpToolClient",
    "PayloadError",
    "ToolCallError",
    "ToolClient",
    "execute_batch",
    "get_error_message",
    "is_error_response",
    "normalize",
]
