"""
app.main
~~~~~~~~

FastAPI 应用入口 —— 注册路由、挂载中间件、定义生命周期。

在线目录、消息存储与会话管理器都在 lifespan 中创建并挂载到 ``app.state``，
进程关闭时统一拆除。
"""
from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.api import chat_endpoints, chat_ws
from app.core.errors import ChatError
from app.core.logging import get_logger, setup_logging
from app.core.rate_limit import limiter
from app.core.settings import settings
from app.db import build_message_store, close_mongo, connect_mongo, get_database
from app.db.directory_repository import DirectoryRepository
from app.schemas.api_response import ApiResponse
from app.services.presence import PresenceDirectory
from app.services.session_manager import SessionManager

# 初始化日志系统（必须在其他模块之前）
setup_logging()
logger = get_logger(__name__)


# ── 生命周期 ──────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期钩子，仅在 worker 启动/关闭时各执行一次。"""
    # ── 启动 ──
    use_mongo = settings.MESSAGE_STORE_BACKEND == "mongo"
    if use_mongo:
        await connect_mongo()
    store = build_message_store()
    manager = SessionManager(presence=PresenceDirectory(), store=store)

    app.state.session_manager = manager
    app.state.history_service = manager.history
    app.state.directory = DirectoryRepository(get_database()) if use_mongo else None
    logger.info(
        "🚀 应用已启动 | env=%s | store=%s | log_level=%s",
        settings.ENVIRONMENT,
        settings.MESSAGE_STORE_BACKEND,
        settings.effective_log_level,
    )
    yield
    # ── 关闭 ──
    await manager.shutdown()
    await store.close()
    if use_mongo:
        await close_mongo()
    logger.info("👋 应用已关闭")


# ── 创建 FastAPI 实例 ─────────────────────────────────────────────────

app: FastAPI = FastAPI(
    title=settings.PROJECT_NAME,
    description="招聘平台实时聊天核心 API",
    version=settings.VERSION,
    debug=settings.debug,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ── CORS 中间件 ───────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=not settings.allow_cors_all_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# ── 路由挂载 ──────────────────────────────────────────────────────────
app.include_router(chat_endpoints.router, prefix="/api", tags=["Chat"])
app.include_router(chat_ws.router, tags=["WebSocket Chat"])


# ── 异常处理器 ────────────────────────────────────────────────────────

@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    """聊天核心错误 → 对应 HTTP 状态码 + 统一失败应答体。"""
    logger.warning("请求失败: %s %s -> %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.code,
        content=ApiResponse.from_error(exc).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError,
) -> JSONResponse:
    """路径 / 查询参数校验失败，保持 ApiResponse 格式。"""
    response = ApiResponse.fail(
        msg="Invalid request parameters", code=422, data=jsonable_encoder(exc.errors()),
    )
    return JSONResponse(status_code=422, content=response.model_dump())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """捕获所有未处理异常，返回统一的 ApiResponse.fail() 格式。"""
    logger.error("未捕获异常: %s %s -> %s", request.method, request.url, exc, exc_info=True)
    # 非 prod 环境返回详细错误信息，prod 环境隐藏内部细节
    detail = str(exc) if not settings.is_prod else "Something went wrong on the server"
    response = ApiResponse.fail(msg=detail, code=500, data=None)
    return JSONResponse(
        status_code=500,
        content=response.model_dump(),
    )


@app.get("/health", tags=["System"])
async def health_check(request: Request) -> JSONResponse:
    """验证服务是否正常运行。"""
    manager: SessionManager | None = getattr(request.app.state, "session_manager", None)
    return JSONResponse(
        content={
            "status": "ok",
            "environment": settings.ENVIRONMENT,
            "store": settings.MESSAGE_STORE_BACKEND,
            "online_connections": len(manager.connections) if manager else 0,
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.reload,  # 仅 dev 环境开启热重载
        log_level=settings.effective_log_level.lower(),
    )
