"""
app.services.room_broadcaster
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间扇出组 —— 维护"哪些连接订阅了哪个房间"，并向订阅者并发投递事件。

订阅以连接为粒度：同一身份的多个连接只有显式 join 过的那些会收到消息。
"""
from __future__ import annotations

import asyncio
from typing import Any, Protocol

from app.core.logging import get_logger

logger = get_logger(__name__)


class Subscriber(Protocol):
    """可接收事件的连接。"""

    connection_id: str

    async def send(self, event: str, data: Any) -> None: ...


class RoomBroadcaster:
    """按房间分组的连接订阅表。

    Attributes:
        groups: 房间 ID → 订阅该房间的连接（按连接句柄索引）。
    """

    def __init__(self) -> None:
        self.groups: dict[str, dict[str, Subscriber]] = {}

    def subscribe(self, room_id: str, subscriber: Subscriber) -> None:
        """把连接加入房间的扇出组（重复加入无副作用）。"""
        self.groups.setdefault(room_id, {})[subscriber.connection_id] = subscriber

    def _drop(self, room_id: str, connection_id: str) -> bool:
        """从单个房间移除连接；房间空了就删除该组。"""
        members = self.groups.get(room_id)
        if members is None:
            return False
        removed = members.pop(connection_id, None) is not None
        if not members:
            del self.groups[room_id]
        return removed

    def unsubscribe_all(self, connection_id: str) -> list[str]:
        """把连接从所有扇出组移除，返回它曾订阅的房间。"""
        return [room_id for room_id in list(self.groups) if self._drop(room_id, connection_id)]

    def subscribers(self, room_id: str) -> list[Subscriber]:
        return list(self.groups.get(room_id, {}).values())

    def is_subscribed(self, room_id: str, connection_id: str) -> bool:
        return connection_id in self.groups.get(room_id, {})

    async def publish(self, room_id: str, event: str, data: Any) -> int:
        """向房间内全部订阅者并发投递事件，返回成功投递的连接数。

        投递失败的连接视为已断开，从该房间的扇出组中移除。
        """
        members = self.subscribers(room_id)
        if not members:
            return 0
        results = await asyncio.gather(
            *[member.send(event, data) for member in members],
            return_exceptions=True,
        )
        delivered = 0
        for member, result in zip(members, results):
            if isinstance(result, Exception):
                logger.warning(
                    "投递失败，移除断开的订阅 | room=%s | conn=%s | %s",
                    room_id, member.connection_id, result,
                )
                self._drop(room_id, member.connection_id)
            else:
                delivered += 1
        return delivered
