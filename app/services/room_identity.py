"""
app.services.room_identity
~~~~~~~~~~~~~~~~~~~~~~~~~~

两人房间 ID 的计算。

房间不是独立存储的实体：ID 永远由两个参与者身份重新计算得出，
只作为消息字段和查询键落库。因此计算必须是纯函数、与参数顺序无关、
跨进程重启稳定（不加任何随机盐）。
"""
from __future__ import annotations

from app.schemas.chat import Participant, ParticipantKind

ROOM_SEPARATOR: str = "_"


def _render(participant_id: str, kind: ParticipantKind | str) -> str:
    kind_value = kind.value if isinstance(kind, ParticipantKind) else kind
    return f"{participant_id}_{kind_value}"


def resolve_room_id(
    id_a: str,
    kind_a: ParticipantKind | str,
    id_b: str,
    kind_b: ParticipantKind | str,
) -> str:
    """把两个参与者映射为唯一的房间 ID。

    两侧分别渲染为 ``"<id>_<kind>"``，按字典序排序后用 ``_`` 拼接，
    所以 ``resolve_room_id(a, ka, b, kb) == resolve_room_id(b, kb, a, ka)``。

    Args:
        id_a: 参与者 A 的 ID。
        kind_a: 参与者 A 的类型。
        id_b: 参与者 B 的 ID。
        kind_b: 参与者 B 的类型。

    Returns:
        规范化的房间 ID。
    """
    rendered = sorted([_render(id_a, kind_a), _render(id_b, kind_b)])
    return ROOM_SEPARATOR.join(rendered)


def room_for(a: Participant, b: Participant) -> str:
    """``resolve_room_id`` 的身份对象版本。"""
    return resolve_room_id(a.participant_id, a.kind, b.participant_id, b.kind)
