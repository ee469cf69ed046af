"""
app.db.directory_repository
~~~~~~~~~~~~~~~~~~~~~~~~~~~

参与者通讯录 —— 只读访问外部维护的 HR / 候选人集合。

这两个集合由招聘业务的其它模块写入，聊天核心只按固定投影读取，
供前端渲染"可以发起对话的人"列表。
"""
from __future__ import annotations

from typing import Any

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from app.core.errors import PersistenceError
from app.core.logging import get_logger
from app.core.settings import settings

logger = get_logger(__name__)

_HR_PROJECTION: dict[str, int] = {
    "_id": 1, "name": 1, "email": 1, "contact": 1, "gender": 1, "age": 1,
}
_CANDIDATE_PROJECTION: dict[str, int] = {
    "_id": 1, "name": 1, "email": 1, "number": 1,
}


class DirectoryRepository:
    """HR 与候选人目录的只读仓库。"""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.db = db

    async def _list(self, collection: str, projection: dict[str, int]) -> list[dict[str, Any]]:
        try:
            docs = await self.db[collection].find({}, projection).to_list(length=None)
        except PyMongoError as e:
            logger.error("读取 %s 目录失败: %s", collection, e, exc_info=True)
            raise PersistenceError(f"Failed to fetch {collection}") from e
        for doc in docs:
            doc["_id"] = str(doc["_id"])
        logger.info("已获取 %d 条 %s 记录", len(docs), collection)
        return docs

    async def list_hr(self) -> list[dict[str, Any]]:
        """全部 HR 用户（供候选人发起对话）。"""
        return await self._list(settings.HR_COLLECTION, _HR_PROJECTION)

    async def list_candidates(self) -> list[dict[str, Any]]:
        """全部候选人（供 HR 发起对话）。"""
        return await self._list(settings.CANDIDATE_COLLECTION, _CANDIDATE_PROJECTION)
