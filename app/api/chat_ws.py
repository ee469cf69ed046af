"""
app.api.chat_ws
~~~~~~~~~~~~~~~

WebSocket 实时聊天接口。

提供 ``/ws/chat`` 端点，握手查询参数携带身份（上游已认证）::

    /ws/chat?participantId=u1&participantKind=candidate&displayName=Alice

收发帧均为 JSON：``{"event": "<事件名>", "data": {...}}``。
事件语义见 ``app.services.session_manager``。
"""
from __future__ import annotations

import asyncio
import json
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from fastapi.websockets import WebSocketState
from pydantic import ValidationError as PydanticValidationError

from app.core.logging import get_logger, request_id_ctx_var
from app.core.rate_limit import WebSocketRateLimiter
from app.core.settings import settings
from app.schemas.chat import HandshakeMetadata
from app.services.session_manager import (
    ChatConnection,
    InboundEvent,
    OutboundEvent,
    SessionManager,
)

logger = get_logger(__name__)

router: APIRouter = APIRouter()


def _error_frame(message: str) -> dict[str, Any]:
    return {"event": OutboundEvent.ERROR.value, "data": {"message": message}}


async def _close_quietly(websocket: WebSocket, code: int) -> None:
    """连接仍处于打开状态时主动关闭。"""
    if websocket.application_state is not WebSocketState.CONNECTED:
        return
    try:
        await websocket.close(code=code)
    except RuntimeError as e:
        logger.debug("WebSocket 关闭失败: %s", e)


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket 聊天端点。

    握手身份缺失或非法时以 1008 关闭连接，不进入 ONLINE 状态。

    每条连接拆成两个协程：接收协程负责解析与限流并写入队列，
    处理协程按到达顺序逐条分派，保证同一客户端的事件不会乱序。

    Args:
        websocket: FastAPI WebSocket 连接对象。
    """
    try:
        metadata = HandshakeMetadata.model_validate(dict(websocket.query_params))
    except PydanticValidationError:
        logger.warning("握手身份缺失或非法，拒绝连接 | query=%s", websocket.query_params)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    manager: SessionManager = websocket.app.state.session_manager
    await websocket.accept()
    connection = ChatConnection(websocket, metadata)
    token = request_id_ctx_var.set(f"ws-{connection.connection_id[:8]}")

    try:
        await manager.connect(connection)

        # 当前连接专用的限流器，只约束 send-message
        ws_limiter = WebSocketRateLimiter(interval_seconds=settings.WS_RATE_LIMIT_INTERVAL)
        client_id = connection.connection_id
        # 隔离接收与处理：无论处理多慢，接收端都按到达时间判断限流
        queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=settings.WS_QUEUE_SIZE)
        closed = object()

        async def receive_loop() -> None:
            try:
                while True:
                    message = await websocket.receive()
                    if message["type"] == "websocket.disconnect":
                        raise WebSocketDisconnect(message.get("code", status.WS_1000_NORMAL_CLOSURE))
                    text = message.get("text")
                    if text is None:
                        # 只接受文本帧，二进制帧回报错误后继续
                        await websocket.send_json(_error_frame("Malformed frame"))
                        continue
                    try:
                        raw = json.loads(text)
                    except json.JSONDecodeError:
                        await websocket.send_json(_error_frame("Malformed JSON frame"))
                        continue

                    is_send = isinstance(raw, dict) and raw.get("event") == InboundEvent.SEND_MESSAGE.value
                    if is_send and not ws_limiter.is_allowed(client_id):
                        await websocket.send_json(_error_frame("Sending too fast, slow down"))
                        continue
                    try:
                        queue.put_nowait(raw)
                    except asyncio.QueueFull:
                        await websocket.send_json(_error_frame("Server busy, try again later"))
                        logger.warning("WS 队列已满，丢弃事件 | %r", connection)
            except WebSocketDisconnect:
                pass  # 正常断开
            except Exception as e:
                logger.error("WebSocket 接收异常: %s | %r", e, connection, exc_info=True)
                await _close_quietly(websocket, status.WS_1011_INTERNAL_ERROR)
            finally:
                await queue.put(closed)  # 通知处理协程结束

        async def process_loop() -> None:
            while True:
                raw = await queue.get()
                if raw is closed:
                    break
                try:
                    await manager.dispatch(connection, raw)
                except Exception as e:
                    logger.error("WebSocket 处理异常: %s | %r", e, connection, exc_info=True)

        try:
            await asyncio.gather(receive_loop(), process_loop())
        finally:
            ws_limiter.remove_client(client_id)
    finally:
        await manager.disconnect(connection)
        request_id_ctx_var.reset(token)
