"""
tests.test_rate_limit
~~~~~~~~~~~~~~~~~~~~~

WebSocket 发消息限流器测试。时间通过 monkeypatch ``time.monotonic`` 控制。
"""
from __future__ import annotations

import pytest

from app.core import rate_limit
from app.core.rate_limit import WebSocketRateLimiter
from app.core.settings import Settings


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture()
def clock(monkeypatch: pytest.MonkeyPatch) -> _Clock:
    fake = _Clock()
    monkeypatch.setattr(rate_limit.time, "monotonic", fake)
    return fake


class TestWebSocketRateLimiter:
    """测试按连接的最小发送间隔。"""

    def test_first_message_allowed(self, clock: _Clock) -> None:
        limiter = WebSocketRateLimiter(interval_seconds=0.2)

        assert limiter.is_allowed("c1")

    def test_too_fast_rejected_then_allowed(self, clock: _Clock) -> None:
        limiter = WebSocketRateLimiter(interval_seconds=0.2)
        limiter.is_allowed("c1")

        clock.now += 0.1
        assert not limiter.is_allowed("c1")

        clock.now += 0.1
        assert limiter.is_allowed("c1")

    def test_clients_are_independent(self, clock: _Clock) -> None:
        limiter = WebSocketRateLimiter(interval_seconds=0.2)
        limiter.is_allowed("c1")

        assert limiter.is_allowed("c2")

    def test_zero_interval_disables(self, clock: _Clock) -> None:
        limiter = WebSocketRateLimiter(interval_seconds=0)

        assert all(limiter.is_allowed("c1") for _ in range(5))

    def test_remove_client_resets(self, clock: _Clock) -> None:
        limiter = WebSocketRateLimiter(interval_seconds=0.2)
        limiter.is_allowed("c1")

        limiter.remove_client("c1")
        limiter.remove_client("c1")

        assert limiter.is_allowed("c1")


def test_ws_throttle_off_by_default(monkeypatch: pytest.MonkeyPatch) -> None:
    """未配置时不限制 send-message 频率。"""
    monkeypatch.delenv("WS_RATE_LIMIT_INTERVAL", raising=False)

    assert Settings(_env_file=None).WS_RATE_LIMIT_INTERVAL == 0
