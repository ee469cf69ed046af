"""
app.api.deps
~~~~~~~~~~~~

FastAPI 依赖：从 ``app.state`` 取出 lifespan 中装配的服务，
以及读取上游认证层注入的调用方身份。
"""
from __future__ import annotations

from fastapi import Header, Request

from app.core.errors import AuthorizationError, ForbiddenError, PersistenceError
from app.db.directory_repository import DirectoryRepository
from app.schemas.chat import Participant, ParticipantKind
from app.services.history_service import HistoryService


def get_history_service(request: Request) -> HistoryService:
    return request.app.state.history_service


def get_directory(request: Request) -> DirectoryRepository:
    directory: DirectoryRepository | None = request.app.state.directory
    if directory is None:
        raise PersistenceError("Participant directory is not configured")
    return directory


def get_current_identity(
    x_participant_id: str | None = Header(default=None),
    x_participant_kind: str | None = Header(default=None),
) -> Participant:
    """读取认证网关写入的 ``X-Participant-Id`` / ``X-Participant-Kind``。

    凭证的签发与校验由上游负责，这里只确认身份头存在且类型合法。

    Raises:
        AuthorizationError: 身份头缺失或类型非法。
    """
    if not x_participant_id or not x_participant_kind:
        raise AuthorizationError("Authenticated identity required")
    try:
        kind = ParticipantKind(x_participant_kind)
    except ValueError:
        raise AuthorizationError("Invalid participant kind") from None
    return Participant(participant_id=x_participant_id, kind=kind)


def ensure_self(caller: Participant, participant_id: str, kind: ParticipantKind) -> Participant:
    """路径中的身份必须就是调用方本人。

    Raises:
        ForbiddenError: 调用方试图读取他人的会话或未读数。
    """
    target = Participant(participant_id=participant_id, kind=kind)
    if target != caller:
        raise ForbiddenError("Cannot access another participant's conversations")
    return target
