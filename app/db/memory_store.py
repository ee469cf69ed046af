"""
app.db.memory_store
~~~~~~~~~~~~~~~~~~~

进程内消息存储 —— 与 ``MongoMessageStore`` 语义一致，但数据只活在内存里。

用于测试以及 ``MESSAGE_STORE_BACKEND=memory`` 的本地调试。
"""
from __future__ import annotations

import itertools

from app.db.message_repository import server_timestamp
from app.db.message_store import MessageStore
from app.schemas.chat import ChatMessage, Participant


class InMemoryMessageStore(MessageStore):
    """按写入顺序保存消息的内存存储。"""

    def __init__(self) -> None:
        self._messages: list[ChatMessage] = []
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._messages)

    async def append(self, message: ChatMessage) -> ChatMessage:
        persisted = message.model_copy(
            update={
                "id": f"{next(self._ids):024x}",
                "timestamp": message.timestamp or server_timestamp(),
                "read": False,
            },
        )
        self._messages.append(persisted)
        return persisted

    async def history_for_room(self, room_id: str) -> list[ChatMessage]:
        # sorted() 是稳定排序，同一时间戳保持写入顺序
        in_room = [m for m in self._messages if m.room_id == room_id]
        return sorted(in_room, key=lambda m: m.timestamp)

    async def mark_read(self, room_id: str, receiver: Participant) -> int:
        changed = 0
        for index, message in enumerate(self._messages):
            if (
                message.room_id == room_id
                and not message.read
                and message.receiver == receiver
            ):
                self._messages[index] = message.model_copy(update={"read": True})
                changed += 1
        return changed

    async def count_unread(self, identity: Participant) -> int:
        return sum(
            1 for m in self._messages if not m.read and m.receiver == identity
        )

    async def distinct_rooms_for(self, identity: Participant) -> set[str]:
        return {
            m.room_id for m in self._messages
            if m.sender == identity or m.receiver == identity
        }
