from prometheus_client import REGISTRY

from gamesync.config import Config
from gamesync.errors import (
    ConsistencyError,
    DomainError,
    ErrorAggregator,
    ErrorKind,
    PayloadError,
    ToolCallError,
)
from gamesync.metrics import metrics


def test_exceptions_carry_their_kind():
    assert ToolCallError("get_party", "timeout").kind is ErrorKind.TRANSPORT
    assert PayloadError("bad").kind is ErrorKind.PAYLOAD
    assert DomainError("no").kind is ErrorKind.DOMAIN
    assert ConsistencyError("stale").kind is ErrorKind.CONSISTENCY
    assert str(ToolCallError("get_party", "timeout")) == "get_party: timeout"


def test_aggregator_counts_and_caps_samples():
    errors = ErrorAggregator(max_samples=2)
    for i in range(3):
        errors.record(ErrorKind.DOMAIN, f"failure {i}", {"i": i})
    errors.record_exception(ValueError("unexpected"))

    assert errors.count(ErrorKind.DOMAIN) == 3
    assert errors.count(ErrorKind.INTERNAL) == 1
    assert errors.count(ErrorKind.PAYLOAD) == 0

    stats = errors.get_error_stats()
    assert [s["message"] for s in stats["samples"]["domain"]] == ["failure 1", "failure 2"]
    assert stats["counts"] == {"domain": 3, "internal": 1}


def test_aggregator_resets_after_interval():
    errors = ErrorAggregator(reset_interval=0)
    errors.record(ErrorKind.PAYLOAD, "first")
    errors.last_reset -= 1
    errors.record(ErrorKind.DOMAIN, "second")
    assert errors.count(ErrorKind.PAYLOAD) == 0
    assert errors.count(ErrorKind.DOMAIN) == 1


def test_config_reads_environment(monkeypatch):
    monkeypatch.setenv("SYNC_RATE_LIMIT_MS", "750")
    monkeypatch.setenv("SYNC_DEBOUNCE_MS", "250")
    monkeypatch.setenv("TOOL_TIMEOUT_SECONDS", "2.5")
    config = Config()

    assert config.SYNC_RATE_LIMIT_MS == 750
    assert config.SYNC_DEBOUNCE_MS == 250
    assert config.TOOL_TIMEOUT_SECONDS == 2.5
    assert config.get("MISSING", "fallback") == "fallback"
    assert "SYNC_RATE_LIMIT_MS" in config.to_dict()


def test_config_defaults(monkeypatch):
    for name in ("SYNC_RATE_LIMIT_MS", "SYNC_DEBOUNCE_MS", "GAMESYNC_STATE_FILE"):
        monkeypatch.delenv(name, raising=False)
    config = Config()
    assert config.SYNC_RATE_LIMIT_MS == 2000
    assert config.SYNC_DEBOUNCE_MS == 1000
    assert config.STATE_FILE == ".gamesync_state.json"


def test_metrics_are_registered_once():
    first = metrics()
    assert metrics() is first
    assert REGISTRY._names_to_collectors["gamesync_sync_requests"] is first.SYNC_REQUESTS
