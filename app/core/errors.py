"""
app.core.errors
~~~~~~~~~~~~~~~

聊天核心的错误分类。

每个错误只作用于失败的那一次操作 / 那一条连接，不会影响进程：

- ``ValidationError``   : 事件字段缺失或非法、连接状态不允许、身份不一致
- ``PersistenceError``  : 消息存储不可用或写入被拒绝
- ``AuthorizationError``: 缺少上游认证层提供的身份信息
- ``ForbiddenError``    : 已认证身份试图访问他人的数据

``code`` 同时作为 HTTP 状态码使用。
"""
from __future__ import annotations


class ChatError(Exception):
    """聊天核心错误基类。"""

    code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ChatError):
    code = 422


class PersistenceError(ChatError):
    code = 503


class AuthorizationError(ChatError):
    code = 401


class ForbiddenError(AuthorizationError):
    code = 403
