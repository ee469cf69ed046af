"""
app.api.chat_endpoints
~~~~~~~~~~~~~~~~~~~~~~

聊天 REST 接口 —— 通讯录、未读数、会话列表与历史回看。

路由前缀 ``/api/chat``，所有端点都要求上游认证层注入的身份头。

端点:
  - ``GET /chat/hr-list``                              → HR 通讯录
  - ``GET /chat/candidate-list``                       → 候选人通讯录
  - ``GET /chat/unread/{participant_id}/{kind}``        → 未读消息数
  - ``GET /chat/conversations/{participant_id}/{kind}`` → 参与过的房间列表
  - ``GET /chat/history/{other_id}/{other_kind}``       → 与某人的历史（拉取即已读）
"""
from typing import Any

from fastapi import APIRouter, Depends, Request

from app.api.deps import (
    ensure_self,
    get_current_identity,
    get_directory,
    get_history_service,
)
from app.core.rate_limit import limiter
from app.db.directory_repository import DirectoryRepository
from app.schemas.api_response import ApiResponse
from app.schemas.chat import (
    ConversationListData,
    HistoryData,
    Participant,
    ParticipantKind,
    UnreadCountData,
)
from app.services.history_service import HistoryService

router: APIRouter = APIRouter()


# ── 通讯录端点 ────────────────────────────────────────────────────────

@router.get("/chat/hr-list", summary="获取 HR 通讯录", response_model=ApiResponse[list[dict[str, Any]]])
@limiter.limit("10/second")
async def hr_list(
    request: Request,
    caller: Participant = Depends(get_current_identity),
    directory: DirectoryRepository = Depends(get_directory),
):
    """返回全部 HR 用户，供候选人选择对话对象。"""
    return ApiResponse.ok(data=await directory.list_hr())


@router.get(
    "/chat/candidate-list",
    summary="获取候选人通讯录",
    response_model=ApiResponse[list[dict[str, Any]]],
)
@limiter.limit("10/second")
async def candidate_list(
    request: Request,
    caller: Participant = Depends(get_current_identity),
    directory: DirectoryRepository = Depends(get_directory),
):
    """返回全部候选人，供 HR 选择对话对象。"""
    return ApiResponse.ok(data=await directory.list_candidates())


# ── 未读与会话 ────────────────────────────────────────────────────────

@router.get(
    "/chat/unread/{participant_id}/{kind}",
    summary="获取未读消息数",
    response_model=ApiResponse[UnreadCountData],
)
@limiter.limit("20/second")
async def unread_count(
    request: Request,
    participant_id: str,
    kind: ParticipantKind,
    caller: Participant = Depends(get_current_identity),
    history: HistoryService = Depends(get_history_service),
):
    """统计所有房间内发给调用方本人的未读消息。

    Args:
        request: FastAPI Request 对象（用于限流判断）。
        participant_id: 参与者 ID，必须与调用方一致。
        kind: 参与者类型，必须与调用方一致。
    """
    identity = ensure_self(caller, participant_id, kind)
    count = await history.unread_count(identity)
    return ApiResponse.ok(data=UnreadCountData(count=count))


@router.get(
    "/chat/conversations/{participant_id}/{kind}",
    summary="获取会话列表",
    response_model=ApiResponse[ConversationListData],
)
@limiter.limit("20/second")
async def conversations(
    request: Request,
    participant_id: str,
    kind: ParticipantKind,
    caller: Participant = Depends(get_current_identity),
    history: HistoryService = Depends(get_history_service),
):
    """返回调用方作为发送方或接收方出现过的全部房间 ID。"""
    identity = ensure_self(caller, participant_id, kind)
    rooms = await history.conversations(identity)
    return ApiResponse.ok(data=ConversationListData(conversations=rooms))


# ── 历史回看端点 ──────────────────────────────────────────────────────

@router.get(
    "/chat/history/{other_id}/{other_kind}",
    summary="获取与某人的对话历史",
    response_model=ApiResponse[HistoryData],
)
@limiter.limit("10/second")
async def history_with(
    request: Request,
    other_id: str,
    other_kind: ParticipantKind,
    caller: Participant = Depends(get_current_identity),
    history: HistoryService = Depends(get_history_service),
):
    """返回调用方与 ``other`` 的完整历史（按时间正序）。

    副作用：其中发给调用方的未读消息会被标记为已读。
    返回体中的 ``read`` 字段反映拉取之前的状态。
    """
    other = Participant(participant_id=other_id, kind=other_kind)
    room_id, messages = await history.history_between(caller, other)
    return ApiResponse.ok(
        data=HistoryData(room_id=room_id, messages=messages, total=len(messages)),
    )
