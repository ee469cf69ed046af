"""
tests.test_presence
~~~~~~~~~~~~~~~~~~~

在线目录单元测试。
"""
from __future__ import annotations

import random

from app.schemas.chat import Participant, ParticipantKind
from app.services.presence import PresenceDirectory


def _person(pid: str, kind: ParticipantKind = ParticipantKind.CANDIDATE) -> Participant:
    return Participant(participant_id=pid, kind=kind)


class TestPresenceDirectory:
    """测试登记、注销、快照与房间集合。"""

    def test_register_creates_record_and_room_set(self, presence: PresenceDirectory) -> None:
        record = presence.register("c1", _person("u1"), "Alice")

        assert record.connection_id == "c1"
        assert record.display_name == "Alice"
        assert presence.snapshot() == [record]
        assert presence.joined_rooms(_person("u1")) == set()

    def test_register_same_handle_last_write_wins(self, presence: PresenceDirectory) -> None:
        presence.register("c1", _person("u1"), "Old")
        presence.register("c1", _person("u1"), "New")

        snapshot = presence.snapshot()
        assert len(snapshot) == 1
        assert snapshot[0].display_name == "New"

    def test_register_keeps_existing_rooms(self, presence: PresenceDirectory) -> None:
        """同一身份的第二条连接登记时不应清空已加入的房间。"""
        presence.register("c1", _person("u1"), "Alice")
        presence.join_room(_person("u1"), "room-a")
        presence.register("c2", _person("u1"), "Alice")

        assert presence.joined_rooms(_person("u1")) == {"room-a"}

    def test_deregister_unknown_handle_is_noop(self, presence: PresenceDirectory) -> None:
        assert presence.deregister("missing") is None
        assert presence.snapshot() == []

    def test_rooms_cleared_only_after_last_connection(self, presence: PresenceDirectory) -> None:
        """同一身份还有其它存活连接时，保留其房间集合。"""
        user = _person("u1")
        presence.register("c1", user, "Alice")
        presence.register("c2", user, "Alice")
        presence.join_room(user, "room-a")

        presence.deregister("c1")
        assert presence.joined_rooms(user) == {"room-a"}
        assert presence.is_online(user)

        presence.deregister("c2")
        assert presence.joined_rooms(user) == set()
        assert user.key not in presence.rooms
        assert not presence.is_online(user)

    def test_snapshot_is_point_in_time_copy(self, presence: PresenceDirectory) -> None:
        presence.register("c1", _person("u1"), "Alice")
        snapshot = presence.snapshot()
        presence.register("c2", _person("u2"), "Bob")

        assert len(snapshot) == 1
        assert len(presence.snapshot()) == 2

    def test_n_register_then_n_deregister_is_empty(self, presence: PresenceDirectory) -> None:
        """任意交错顺序下，N 次登记后 N 次注销，快照为空。"""
        rng = random.Random(7)
        handles = [f"c{i}" for i in range(30)]
        for i, handle in enumerate(handles):
            kind = ParticipantKind.HR if i % 2 else ParticipantKind.CANDIDATE
            presence.register(handle, _person(str(i % 5), kind), f"user-{i}")
            presence.join_room(_person(str(i % 5), kind), f"room-{i % 3}")

        rng.shuffle(handles)
        for handle in handles:
            presence.deregister(handle)

        assert presence.snapshot() == []
        assert presence.rooms == {}
        assert len(presence) == 0

    def test_connections_for_identity(self, presence: PresenceDirectory) -> None:
        presence.register("c1", _person("u1"), "Alice")
        presence.register("c2", _person("u1"), "Alice")
        presence.register("c3", _person("u1", ParticipantKind.HR), "Alice HR")

        assert sorted(presence.connections_for(_person("u1"))) == ["c1", "c2"]

    def test_clear(self, presence: PresenceDirectory) -> None:
        presence.register("c1", _person("u1"), "Alice")
        presence.join_room(_person("u1"), "room-a")

        presence.clear()

        assert presence.snapshot() == []
        assert presence.rooms == {}
