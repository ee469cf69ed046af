"""
app.services.session_manager
~~~~~~~~~~~~~~~~~~~~~~~~~~~~

连接会话管理器 —— 负责每条实时连接的完整生命周期。

每条连接是一个显式状态机::

    CONNECTING ──connect()──▶ ONLINE ──disconnect()──▶ CLOSED（终态）

ONLINE 状态下接受三种入站事件（``InboundEvent``），由 ``dispatch()``
统一校验载荷并分派到对应处理函数：

- ``join-room``   : 计算房间 ID，把本连接加入房间扇出组
- ``send-message``: 落库后扇出给房间内全部订阅连接
- ``get-messages``: 单播完整历史，随后把发给自己的消息标记为已读

上线 / 下线时向所有连接广播 ``online-users``。

扇出按"房间订阅"而不是按身份查找：同一身份的多个连接中，
只有显式 join 过该房间的连接才会收到消息（"打开的聊天窗口"语义）。
"""
from __future__ import annotations

import asyncio
import uuid
from enum import Enum
from typing import Any, Protocol

from pydantic import ValidationError as PydanticValidationError

from app.core.errors import ChatError, PersistenceError, ValidationError
from app.core.logging import get_logger
from app.db.message_store import MessageStore
from app.schemas.chat import (
    ChatMessage,
    ErrorPayload,
    GetMessagesPayload,
    HandshakeMetadata,
    JoinRoomPayload,
    OnlineUser,
    Participant,
    ParticipantKind,
    SendMessagePayload,
    WireModel,
)
from app.services.history_service import HistoryService
from app.services.presence import PresenceDirectory
from app.services.room_broadcaster import RoomBroadcaster
from app.services.room_identity import room_for

logger = get_logger(__name__)


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    ONLINE = "online"
    CLOSED = "closed"


class InboundEvent(str, Enum):
    """客户端 → 服务端事件。"""

    JOIN_ROOM = "join-room"
    SEND_MESSAGE = "send-message"
    GET_MESSAGES = "get-messages"


class OutboundEvent(str, Enum):
    """服务端 → 客户端事件。"""

    ONLINE_USERS = "online-users"
    RECEIVE_MESSAGE = "receive-message"
    MESSAGE_HISTORY = "message-history"
    ERROR = "error"


_PAYLOAD_MODELS: dict[InboundEvent, type[WireModel]] = {
    InboundEvent.JOIN_ROOM: JoinRoomPayload,
    InboundEvent.SEND_MESSAGE: SendMessagePayload,
    InboundEvent.GET_MESSAGES: GetMessagesPayload,
}


class JsonTransport(Protocol):
    """底层传输，FastAPI ``WebSocket`` 即满足该协议。"""

    async def send_json(self, data: Any) -> None: ...


class ChatConnection:
    """一条实时连接。

    Attributes:
        connection_id: 连接句柄，每条存活连接唯一。
        identity: 握手时携带的参与者身份（上游已认证）。
        display_name: 展示名，缺省时使用参与者 ID。
        state: 当前状态机状态。
    """

    def __init__(
        self,
        transport: JsonTransport,
        metadata: HandshakeMetadata,
        connection_id: str | None = None,
    ) -> None:
        self.transport = transport
        self.connection_id = connection_id or uuid.uuid4().hex
        self.identity: Participant = metadata.identity
        self.display_name: str = metadata.display_name or metadata.participant_id
        self.state = ConnectionState.CONNECTING

    def __repr__(self) -> str:
        return f"<ChatConnection {self.connection_id[:8]} {self.identity} {self.state.value}>"

    async def send(self, event: OutboundEvent | str, data: Any) -> None:
        """发送一帧 ``{"event": ..., "data": ...}``。"""
        name = event.value if isinstance(event, OutboundEvent) else event
        await self.transport.send_json({"event": name, "data": data})


def parse_event(raw: Any) -> tuple[InboundEvent, WireModel]:
    """把原始帧解析为 ``(事件类型, 已校验载荷)``。

    Raises:
        ValidationError: 帧结构不对、事件未知或载荷字段缺失 / 非法。
    """
    if not isinstance(raw, dict):
        raise ValidationError("Event frame must be a JSON object")
    try:
        event = InboundEvent(raw.get("event"))
    except ValueError:
        raise ValidationError(f"Unknown event: {raw.get('event')!r}") from None
    try:
        payload = _PAYLOAD_MODELS[event].model_validate(raw.get("data") or {})
    except PydanticValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ValidationError(f"Invalid {event.value} payload: {fields}") from None
    return event, payload


def _check_claimed_identity(
    connection: ChatConnection,
    claimed_id: str | None,
    claimed_kind: ParticipantKind | None,
) -> None:
    """载荷里自报的身份（可选）必须与连接身份一致。"""
    if claimed_id is not None and claimed_id != connection.identity.participant_id:
        raise ValidationError("Claimed identity does not match connection")
    if claimed_kind is not None and claimed_kind != connection.identity.kind:
        raise ValidationError("Claimed identity does not match connection")


class SessionManager:
    """实时连接的会话管理器。

    ``PresenceDirectory`` 只由本类读写；``MessageStore`` 与历史查询服务共享。

    Attributes:
        presence: 在线目录。
        broadcaster: 房间扇出组。
        history: 历史与未读查询服务（包装同一个消息存储）。
        connections: 连接句柄 → 存活连接。
    """

    def __init__(
        self,
        presence: PresenceDirectory,
        store: MessageStore,
        broadcaster: RoomBroadcaster | None = None,
    ) -> None:
        self.presence = presence
        self.store = store
        self.broadcaster = broadcaster or RoomBroadcaster()
        self.history = HistoryService(store)
        self.connections: dict[str, ChatConnection] = {}
        self._handlers = {
            InboundEvent.JOIN_ROOM: self._on_join_room,
            InboundEvent.SEND_MESSAGE: self._on_send_message,
            InboundEvent.GET_MESSAGES: self._on_get_messages,
        }

    # ── 生命周期 ──────────────────────────────────────────────────────

    async def connect(self, connection: ChatConnection) -> None:
        """CONNECTING → ONLINE：登记在线并向所有连接广播在线列表。"""
        if connection.state is not ConnectionState.CONNECTING:
            raise ValidationError(f"Cannot connect from state {connection.state.value}")
        connection.state = ConnectionState.ONLINE
        self.connections[connection.connection_id] = connection
        self.presence.register(
            connection.connection_id, connection.identity, connection.display_name,
        )
        logger.info(
            "用户上线 | %s (%s) | 在线连接: %d",
            connection.display_name, connection.identity, len(self.presence),
        )
        await self.broadcast_online_users()

    async def disconnect(self, connection: ChatConnection) -> None:
        """→ CLOSED：退订全部房间、注销在线记录并向剩余连接广播。重复调用无副作用。"""
        if connection.state is ConnectionState.CLOSED:
            return
        was_online = connection.state is ConnectionState.ONLINE
        connection.state = ConnectionState.CLOSED
        self.connections.pop(connection.connection_id, None)
        self.broadcaster.unsubscribe_all(connection.connection_id)
        self.presence.deregister(connection.connection_id)
        if not was_online:
            return
        logger.info(
            "用户下线 | %s (%s) | 在线连接: %d",
            connection.display_name, connection.identity, len(self.presence),
        )
        await self.broadcast_online_users()

    async def shutdown(self) -> None:
        """进程关闭：所有连接直接进入 CLOSED，不再广播。"""
        for connection in list(self.connections.values()):
            connection.state = ConnectionState.CLOSED
            self.broadcaster.unsubscribe_all(connection.connection_id)
        self.connections.clear()
        self.presence.clear()

    # ── 分派 ──────────────────────────────────────────────────────────

    async def dispatch(self, connection: ChatConnection, raw: Any) -> None:
        """处理一条入站帧。

        任何 ``ChatError`` 都只回报给发起连接，不会广播，也不会终止连接。
        """
        try:
            if connection.state is not ConnectionState.ONLINE:
                raise ValidationError(
                    f"Connection is {connection.state.value}, events are not accepted",
                )
            event, payload = parse_event(raw)
            await self._handlers[event](connection, payload)
        except ChatError as e:
            logger.warning("事件处理失败 | %r | %s", connection, e.message)
            await self._send_error(connection, e.message)

    async def _on_join_room(self, connection: ChatConnection, payload: JoinRoomPayload) -> None:
        room_id = room_for(connection.identity, payload.receiver)
        self.broadcaster.subscribe(room_id, connection)
        self.presence.join_room(connection.identity, room_id)
        logger.info("%s 加入房间 %s", connection.display_name, room_id)

    async def _on_send_message(
        self, connection: ChatConnection, payload: SendMessagePayload,
    ) -> None:
        _check_claimed_identity(connection, payload.sender_id, payload.sender_kind)
        room_id = room_for(connection.identity, payload.receiver)
        message = ChatMessage(
            room_id=room_id,
            sender_id=connection.identity.participant_id,
            sender_kind=connection.identity.kind,
            sender_name=payload.sender_name or connection.display_name,
            receiver_id=payload.receiver_id,
            receiver_kind=payload.receiver_kind,
            body=payload.body,
        )
        try:
            persisted = await self.store.append(message)
        except PersistenceError as e:
            logger.error("消息保存失败 | room=%s | %s", room_id, e.message)
            raise PersistenceError("Failed to send message") from e

        delivered = await self.broadcaster.publish(
            room_id, OutboundEvent.RECEIVE_MESSAGE.value, persisted.to_wire(),
        )
        logger.info("消息已保存并投递 | room=%s | delivered=%d", room_id, delivered)

    async def _on_get_messages(
        self, connection: ChatConnection, payload: GetMessagesPayload,
    ) -> None:
        _check_claimed_identity(connection, payload.self_id, payload.self_kind)
        try:
            room_id, messages = await self.history.fetch_history(
                connection.identity, payload.other,
            )
            await connection.send(
                OutboundEvent.MESSAGE_HISTORY, [m.to_wire() for m in messages],
            )
            await self.history.mark_room_read(room_id, connection.identity)
        except PersistenceError as e:
            logger.error("历史拉取失败 | %r | %s", connection, e.message)
            raise PersistenceError("Failed to fetch messages") from e

    # ── 出站 ──────────────────────────────────────────────────────────

    async def broadcast_online_users(self) -> None:
        """向当前全部连接广播在线列表。单个连接发送失败只记日志。"""
        users = [OnlineUser.from_record(r).to_wire() for r in self.presence.snapshot()]
        targets = list(self.connections.values())
        if not targets:
            return
        results = await asyncio.gather(
            *[conn.send(OutboundEvent.ONLINE_USERS, users) for conn in targets],
            return_exceptions=True,
        )
        for conn, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning("在线列表推送失败 | %r | %s", conn, result)

    async def _send_error(self, connection: ChatConnection, message: str) -> None:
        try:
            await connection.send(OutboundEvent.ERROR, ErrorPayload(message=message).to_wire())
        except Exception as e:
            logger.debug("错误事件发送失败 | %r | %s", connection, e)
