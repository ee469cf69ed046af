"""
app.schemas.chat
~~~~~~~~~~~~~~~~

聊天核心的 Pydantic 模型：参与者身份、消息记录、在线会话与实时事件载荷。

线上传输统一使用 camelCase 字段（``participantId``、``receiverKind`` ...），
Python 侧使用 snake_case 属性名，二者通过 ``alias_generator`` 自动映射。
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ParticipantKind(str, Enum):
    """参与者类型。相同 ID 在不同类型下视为不同的人。"""

    CANDIDATE = "candidate"
    HR = "hr"


class WireModel(BaseModel):
    """线上模型基类：按 camelCase 收发，同时允许 snake_case 构造。"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )

    def to_wire(self) -> dict[str, Any]:
        """序列化为可直接 ``send_json`` 的字典。"""
        return self.model_dump(mode="json", by_alias=True)


class Participant(WireModel):
    """参与者身份 ``(id, kind)``，全局寻址的最小单位。"""

    model_config = ConfigDict(frozen=True)

    participant_id: str = Field(..., min_length=1, description="参与者 ID")
    kind: ParticipantKind = Field(
        ..., alias="participantKind", description="参与者类型",
    )

    @property
    def key(self) -> str:
        """渲染为 ``"<id>_<kind>"``，作为房间计算与索引的键。"""
        return f"{self.participant_id}_{self.kind.value}"

    def __str__(self) -> str:
        return self.key


class ChatMessage(WireModel):
    """一条聊天消息。

    ``id`` 与 ``timestamp`` 由消息存储在落库时分配；落库后除 ``read`` 外不可变。
    """

    id: str | None = Field(default=None, description="存储分配的消息 ID")
    room_id: str = Field(..., description="房间 ID")
    sender_id: str = Field(..., min_length=1)
    sender_kind: ParticipantKind
    sender_name: str = Field(default="", description="发送者展示名")
    receiver_id: str = Field(..., min_length=1)
    receiver_kind: ParticipantKind
    body: str = Field(..., min_length=1, description="消息正文")
    timestamp: datetime | None = Field(default=None, description="服务端时间戳（UTC）")
    read: bool = Field(default=False, description="接收方是否已读")

    @property
    def sender(self) -> Participant:
        return Participant(participant_id=self.sender_id, kind=self.sender_kind)

    @property
    def receiver(self) -> Participant:
        return Participant(participant_id=self.receiver_id, kind=self.receiver_kind)


class SessionRecord(WireModel):
    """一条在线会话记录，每个存活连接一条，从不持久化。"""

    model_config = ConfigDict(frozen=True)

    connection_id: str
    identity: Participant
    display_name: str = ""


class OnlineUser(WireModel):
    """``online-users`` 广播中的单个条目。"""

    participant_id: str
    participant_kind: ParticipantKind
    display_name: str

    @classmethod
    def from_record(cls, record: SessionRecord) -> OnlineUser:
        return cls(
            participant_id=record.identity.participant_id,
            participant_kind=record.identity.kind,
            display_name=record.display_name,
        )


# ── 客户端 → 服务端事件载荷 ───────────────────────────────────────────

class HandshakeMetadata(WireModel):
    """建立连接时携带的身份信息（上游已认证）。"""

    participant_id: str = Field(..., min_length=1)
    participant_kind: ParticipantKind
    display_name: str = Field(default="", max_length=100)

    @property
    def identity(self) -> Participant:
        return Participant(participant_id=self.participant_id, kind=self.participant_kind)


class JoinRoomPayload(WireModel):
    receiver_id: str = Field(..., min_length=1)
    receiver_kind: ParticipantKind

    @property
    def receiver(self) -> Participant:
        return Participant(participant_id=self.receiver_id, kind=self.receiver_kind)


class SendMessagePayload(WireModel):
    """发送消息。``sender*`` 字段可省略，默认取连接自身身份。"""

    sender_id: str | None = None
    sender_kind: ParticipantKind | None = None
    sender_name: str | None = Field(default=None, max_length=100)
    receiver_id: str = Field(..., min_length=1)
    receiver_kind: ParticipantKind
    body: str = Field(..., min_length=1, max_length=5000)

    @property
    def receiver(self) -> Participant:
        return Participant(participant_id=self.receiver_id, kind=self.receiver_kind)


class GetMessagesPayload(WireModel):
    """拉取与某人的历史。``self*`` 字段可省略，默认取连接自身身份。"""

    self_id: str | None = None
    self_kind: ParticipantKind | None = None
    other_id: str = Field(..., min_length=1)
    other_kind: ParticipantKind

    @property
    def other(self) -> Participant:
        return Participant(participant_id=self.other_id, kind=self.other_kind)


class ErrorPayload(WireModel):
    message: str


# ── REST 响应数据 ─────────────────────────────────────────────────────

class UnreadCountData(WireModel):
    count: int = Field(..., ge=0, description="未读消息数")


class ConversationListData(WireModel):
    conversations: list[str] = Field(..., description="参与过的房间 ID 列表")


class HistoryData(WireModel):
    room_id: str = Field(..., description="房间 ID")
    messages: list[ChatMessage] = Field(..., description="按时间正序的消息")
    total: int = Field(..., description="本次返回条数")
