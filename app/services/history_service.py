"""
app.services.history_service
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

历史与未读查询服务 —— 消息存储之上的薄读写门面。

不持有任何状态，也从不访问在线目录；所有状态都在 ``MessageStore`` 里。
"""
from __future__ import annotations

from app.core.logging import get_logger
from app.db.message_store import MessageStore
from app.schemas.chat import ChatMessage, Participant
from app.services.room_identity import room_for

logger = get_logger(__name__)


class HistoryService:
    """会话列表、未读数与"拉取即已读"的历史查询。

    Attributes:
        store: 共享的消息存储。
    """

    def __init__(self, store: MessageStore) -> None:
        self.store = store

    async def conversations(self, identity: Participant) -> list[str]:
        """``identity`` 参与过的全部房间 ID（排序后返回）。"""
        return sorted(await self.store.distinct_rooms_for(identity))

    async def unread_count(self, identity: Participant) -> int:
        """发给 ``identity`` 的未读消息总数。"""
        return await self.store.count_unread(identity)

    async def fetch_history(
        self,
        requester: Participant,
        other: Participant,
    ) -> tuple[str, list[ChatMessage]]:
        """读取两人房间的完整历史（按时间正序），不修改已读状态。"""
        room_id = room_for(requester, other)
        return room_id, await self.store.history_for_room(room_id)

    async def mark_room_read(self, room_id: str, requester: Participant) -> int:
        """把房间内发给请求方的未读消息标记为已读。"""
        marked = await self.store.mark_read(room_id, requester)
        logger.debug("已读标记 | room=%s | reader=%s | marked=%d", room_id, requester, marked)
        return marked

    async def history_between(
        self,
        requester: Participant,
        other: Participant,
    ) -> tuple[str, list[ChatMessage]]:
        """读取两人房间的完整历史，随后把发给请求方的未读消息标记为已读。

        先读后写：返回的消息保持读取时的 ``read`` 状态。

        Returns:
            ``(room_id, messages)``，消息按时间正序。
        """
        room_id, messages = await self.fetch_history(requester, other)
        await self.mark_room_read(room_id, requester)
        return room_id, messages
