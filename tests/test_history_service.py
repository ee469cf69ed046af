"""
tests.test_history_service
~~~~~~~~~~~~~~~~~~~~~~~~~~

历史与未读查询服务测试。
"""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.errors import PersistenceError
from app.db.memory_store import InMemoryMessageStore
from app.schemas.chat import ChatMessage, Participant, ParticipantKind
from app.services.history_service import HistoryService
from app.services.room_identity import room_for


async def _say(store: InMemoryMessageStore, sender: Participant, receiver: Participant, body: str) -> None:
    await store.append(ChatMessage(
        room_id=room_for(sender, receiver),
        sender_id=sender.participant_id,
        sender_kind=sender.kind,
        receiver_id=receiver.participant_id,
        receiver_kind=receiver.kind,
        body=body,
    ))


class TestHistoryService:
    """测试会话列表、未读数与拉取即已读。"""

    @pytest.mark.asyncio
    async def test_history_between_returns_pre_read_state(
        self, store: InMemoryMessageStore, candidate: Participant, hr: Participant,
    ) -> None:
        await _say(store, candidate, hr, "hello")
        service = HistoryService(store)

        room_id, messages = await service.history_between(hr, candidate)

        assert room_id == room_for(candidate, hr)
        assert [m.read for m in messages] == [False]
        assert await service.unread_count(hr) == 0

        _, again = await service.history_between(hr, candidate)
        assert [m.read for m in again] == [True]

    @pytest.mark.asyncio
    async def test_fetch_history_does_not_mark(
        self, store: InMemoryMessageStore, candidate: Participant, hr: Participant,
    ) -> None:
        await _say(store, candidate, hr, "hello")
        service = HistoryService(store)

        await service.fetch_history(hr, candidate)

        assert await service.unread_count(hr) == 1

    @pytest.mark.asyncio
    async def test_mark_room_read_returns_count(
        self, store: InMemoryMessageStore, candidate: Participant, hr: Participant,
    ) -> None:
        await _say(store, candidate, hr, "a")
        await _say(store, candidate, hr, "b")
        service = HistoryService(store)

        assert await service.mark_room_read(room_for(candidate, hr), hr) == 2
        assert await service.mark_room_read(room_for(candidate, hr), hr) == 0

    @pytest.mark.asyncio
    async def test_conversations_sorted(
        self, store: InMemoryMessageStore, candidate: Participant, hr: Participant,
    ) -> None:
        other = Participant(participant_id="a0", kind=ParticipantKind.HR)
        await _say(store, candidate, hr, "a")
        await _say(store, other, candidate, "b")
        service = HistoryService(store)

        rooms = await service.conversations(candidate)

        assert rooms == sorted([room_for(candidate, hr), room_for(candidate, other)])

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, candidate: Participant, hr: Participant) -> None:
        store = MagicMock()
        store.history_for_room = AsyncMock(side_effect=PersistenceError("down"))
        service = HistoryService(store)

        with pytest.raises(PersistenceError):
            await service.history_between(hr, candidate)

    @pytest.mark.asyncio
    async def test_mark_failure_after_fetch_propagates(
        self, candidate: Participant, hr: Participant,
    ) -> None:
        store = MagicMock()
        store.history_for_room = AsyncMock(return_value=[])
        store.mark_read = AsyncMock(side_effect=PersistenceError("down"))
        service = HistoryService(store)

        with pytest.raises(PersistenceError):
            await service.history_between(hr, candidate)
        store.history_for_room.assert_awaited_once_with(room_for(hr, candidate))
