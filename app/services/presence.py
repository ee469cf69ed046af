"""
app.services.presence
~~~~~~~~~~~~~~~~~~~~~

在线目录 —— 进程生命周期内的在线会话表与每个身份已加入的房间集合。

实例在 lifespan 中创建并注入 ``SessionManager``，只由会话管理层读写。
所有方法都是同步的（没有 await 点），在单个事件循环内天然无竞态。
"""
from __future__ import annotations

from app.core.logging import get_logger
from app.schemas.chat import Participant, SessionRecord

logger = get_logger(__name__)


class PresenceDirectory:
    """在线会话与已加入房间的内存目录。

    Attributes:
        sessions: 连接句柄 → 在线会话记录。
        rooms: 身份键（``"<id>_<kind>"``）→ 已加入的房间 ID 集合。
    """

    def __init__(self) -> None:
        self.sessions: dict[str, SessionRecord] = {}
        self.rooms: dict[str, set[str]] = {}

    def __len__(self) -> int:
        return len(self.sessions)

    def register(
        self,
        connection_id: str,
        identity: Participant,
        display_name: str,
    ) -> SessionRecord:
        """登记一个存活连接。同一句柄重复登记时以最后一次为准。"""
        previous = self.sessions.get(connection_id)
        record = SessionRecord(
            connection_id=connection_id,
            identity=identity,
            display_name=display_name,
        )
        self.sessions[connection_id] = record
        if previous is not None and previous.identity != identity:
            self._release_rooms(previous.identity)
        self.rooms.setdefault(identity.key, set())
        return record

    def deregister(self, connection_id: str) -> SessionRecord | None:
        """移除连接的在线记录；未知句柄直接忽略。

        只有当该身份不再有任何存活连接时，才清空它的已加入房间集合，
        同一身份的其它连接仍可继续引用这些房间。
        """
        record = self.sessions.pop(connection_id, None)
        if record is not None:
            self._release_rooms(record.identity)
        return record

    def _release_rooms(self, identity: Participant) -> None:
        if not self.is_online(identity):
            self.rooms.pop(identity.key, None)

    def snapshot(self) -> list[SessionRecord]:
        """当前在线记录的时点副本，每个连接恰好出现一次。"""
        return list(self.sessions.values())

    def join_room(self, identity: Participant, room_id: str) -> None:
        """记录 ``identity`` 加入了 ``room_id``。"""
        self.rooms.setdefault(identity.key, set()).add(room_id)

    def joined_rooms(self, identity: Participant) -> set[str]:
        return set(self.rooms.get(identity.key, ()))

    def connections_for(self, identity: Participant) -> list[str]:
        return [
            connection_id
            for connection_id, record in self.sessions.items()
            if record.identity == identity
        ]

    def is_online(self, identity: Participant) -> bool:
        return any(record.identity == identity for record in self.sessions.values())

    def clear(self) -> None:
        """关闭时清空全部状态。"""
        if self.sessions:
            logger.info("清理在线目录 | 剩余连接: %d", len(self.sessions))
        self.sessions.clear()
        self.rooms.clear()
