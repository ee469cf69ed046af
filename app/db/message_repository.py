"""
app.db.message_repository
~~~~~~~~~~~~~~~~~~~~~~~~~

聊天消息持久化仓库 —— 封装 MongoDB ``chat_messages`` 集合的增查改操作。

每条消息一个文档（扁平设计），便于按房间排序查询和按接收方统计未读。
集合在首次操作时惰性建立索引。
"""
from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, TypedDict

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from app.core.errors import PersistenceError
from app.core.logging import get_logger
from app.core.settings import settings
from app.db.message_store import MessageStore
from app.schemas.chat import ChatMessage, Participant

logger = get_logger(__name__)


class MessageDocument(TypedDict):
    """代表 MongoDB 中 chat_messages 集合的单条记录"""
    _id: ObjectId
    room_id: str
    sender_id: str
    sender_kind: str
    sender_name: str
    receiver_id: str
    receiver_kind: str
    body: str
    timestamp: datetime
    read: bool


def server_timestamp() -> datetime:
    """当前 UTC 时间，截断到毫秒（与 BSON Date 精度一致）。"""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def _to_document(message: ChatMessage) -> dict[str, Any]:
    return {
        "room_id": message.room_id,
        "sender_id": message.sender_id,
        "sender_kind": message.sender_kind.value,
        "sender_name": message.sender_name,
        "receiver_id": message.receiver_id,
        "receiver_kind": message.receiver_kind.value,
        "body": message.body,
        "timestamp": message.timestamp,
        "read": message.read,
    }


def _from_document(doc: MessageDocument) -> ChatMessage:
    return ChatMessage(
        id=str(doc["_id"]),
        room_id=doc["room_id"],
        sender_id=doc["sender_id"],
        sender_kind=doc["sender_kind"],
        sender_name=doc.get("sender_name", ""),
        receiver_id=doc["receiver_id"],
        receiver_kind=doc["receiver_kind"],
        body=doc["body"],
        timestamp=doc["timestamp"],
        read=doc.get("read", False),
    )


def _as_receiver(identity: Participant) -> dict[str, str]:
    return {"receiver_id": identity.participant_id, "receiver_kind": identity.kind.value}


def _as_sender(identity: Participant) -> dict[str, str]:
    return {"sender_id": identity.participant_id, "sender_kind": identity.kind.value}


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    """把驱动层异常统一转换为 ``PersistenceError``。"""
    try:
        yield
    except PyMongoError as e:
        logger.error("MongoDB %s 失败: %s", operation, e, exc_info=True)
        raise PersistenceError(f"Message store unavailable during {operation}") from e


class MongoMessageStore(MessageStore):
    """基于 MongoDB 的消息存储。

    Attributes:
        db: MongoDB 数据库实例。
    """

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        collection_name: str | None = None,
    ) -> None:
        self.db = db
        self._collection = db[collection_name or settings.MESSAGE_COLLECTION]
        self._indexes_created = False

    async def _ensure_indexes(self) -> None:
        """确保索引已创建（惰性，首次操作时执行一次）。"""
        if self._indexes_created:
            return
        with _storage_errors("create_index"):
            # 按房间分区 + 按时间排序
            await self._collection.create_index(
                [("room_id", 1), ("timestamp", 1)],
                name="idx_room_time",
            )
            # 未读统计
            await self._collection.create_index(
                [("receiver_id", 1), ("receiver_kind", 1), ("read", 1)],
                name="idx_receiver_unread",
            )
            # 会话列表
            await self._collection.create_index(
                [("sender_id", 1), ("sender_kind", 1)],
                name="idx_sender",
            )
        self._indexes_created = True
        logger.debug("chat_messages 索引已就绪")

    async def append(self, message: ChatMessage) -> ChatMessage:
        await self._ensure_indexes()
        persisted = message.model_copy(
            update={
                "id": None,
                "timestamp": message.timestamp or server_timestamp(),
                "read": False,
            },
        )
        with _storage_errors("insert"):
            result = await self._collection.insert_one(_to_document(persisted))
        return persisted.model_copy(update={"id": str(result.inserted_id)})

    async def history_for_room(self, room_id: str) -> list[ChatMessage]:
        await self._ensure_indexes()
        with _storage_errors("find"):
            cursor = (
                self._collection
                .find({"room_id": room_id})
                .sort([("timestamp", 1), ("_id", 1)])
            )
            docs = await cursor.to_list(length=None)
        return [_from_document(doc) for doc in docs]

    async def mark_read(self, room_id: str, receiver: Participant) -> int:
        await self._ensure_indexes()
        with _storage_errors("update_many"):
            result = await self._collection.update_many(
                {"room_id": room_id, **_as_receiver(receiver), "read": False},
                {"$set": {"read": True}},
            )
        return result.modified_count

    async def count_unread(self, identity: Participant) -> int:
        await self._ensure_indexes()
        with _storage_errors("count_documents"):
            return await self._collection.count_documents(
                {**_as_receiver(identity), "read": False},
            )

    async def distinct_rooms_for(self, identity: Participant) -> set[str]:
        await self._ensure_indexes()
        with _storage_errors("distinct"):
            rooms = await self._collection.distinct(
                "room_id",
                {"$or": [_as_sender(identity), _as_receiver(identity)]},
            )
        return set(rooms)
