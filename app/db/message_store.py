"""
app.db.message_store
~~~~~~~~~~~~~~~~~~~~

消息存储接口 —— 聊天消息的唯一事实来源。

实时通道（写路径）与历史/未读查询（读路径）共用同一个实例，
双方都不在客户端做任何缓存。
"""
from __future__ import annotations

from abc import ABC, abstractmethod

from app.schemas.chat import ChatMessage, Participant


class MessageStore(ABC):
    """只追加的聊天消息存储。"""

    @abstractmethod
    async def append(self, message: ChatMessage) -> ChatMessage:
        """持久化一条消息。

        未设置 ``timestamp`` 时由服务端分配，``read`` 一律重置为 ``False``。

        Returns:
            带有存储 ID 与时间戳的已持久化消息。

        Raises:
            PersistenceError: 存储不可用或写入被拒绝。
        """

    @abstractmethod
    async def history_for_room(self, room_id: str) -> list[ChatMessage]:
        """返回房间的全部消息，按时间戳正序（同一时间戳按写入顺序）。"""

    @abstractmethod
    async def mark_read(self, room_id: str, receiver: Participant) -> int:
        """把房间内发给 ``receiver`` 的未读消息标记为已读，返回本次变更条数。

        幂等：没有未读消息时返回 0，不视为错误。
        """

    @abstractmethod
    async def count_unread(self, identity: Participant) -> int:
        """统计所有房间内发给 ``identity`` 的未读消息数。"""

    @abstractmethod
    async def distinct_rooms_for(self, identity: Participant) -> set[str]:
        """返回 ``identity`` 作为发送方或接收方出现过的全部房间 ID。"""

    async def close(self) -> None:
        """释放存储持有的资源。默认无操作。"""
