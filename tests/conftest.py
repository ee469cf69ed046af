"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 使用进程内消息存储和假传输层，
使单元测试无需 MongoDB、无需真实网络即可运行。
"""
from __future__ import annotations

import os
from typing import Any

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("MESSAGE_STORE_BACKEND", "memory")
os.environ.setdefault("WS_RATE_LIMIT_INTERVAL", "0")

from app.db.memory_store import InMemoryMessageStore  # noqa: E402
from app.schemas.chat import HandshakeMetadata, Participant, ParticipantKind  # noqa: E402
from app.services.presence import PresenceDirectory  # noqa: E402
from app.services.session_manager import ChatConnection, SessionManager  # noqa: E402


class FakeTransport:
    """模拟 WebSocket：记录所有发出的帧，可切换为发送失败。"""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.fail = False

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise RuntimeError("transport closed")
        self.sent.append(data)

    def events(self, name: str) -> list[Any]:
        """按事件名过滤已发送帧的 ``data``。"""
        return [frame["data"] for frame in self.sent if frame["event"] == name]

    def clear(self) -> None:
        self.sent.clear()


def make_connection(
    participant_id: str,
    kind: ParticipantKind,
    display_name: str = "",
) -> tuple[ChatConnection, FakeTransport]:
    transport = FakeTransport()
    metadata = HandshakeMetadata(
        participant_id=participant_id,
        participant_kind=kind,
        display_name=display_name,
    )
    return ChatConnection(transport, metadata), transport


@pytest.fixture()
def candidate() -> Participant:
    return Participant(participant_id="u1", kind=ParticipantKind.CANDIDATE)


@pytest.fixture()
def hr() -> Participant:
    return Participant(participant_id="h1", kind=ParticipantKind.HR)


@pytest.fixture()
def store() -> InMemoryMessageStore:
    return InMemoryMessageStore()


@pytest.fixture()
def presence() -> PresenceDirectory:
    return PresenceDirectory()


@pytest.fixture()
def manager(presence: PresenceDirectory, store: InMemoryMessageStore) -> SessionManager:
    return SessionManager(presence=presence, store=store)
