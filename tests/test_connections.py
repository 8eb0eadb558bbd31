"""
Tests for the connection lifecycle, join authorization and message fan-out
"""

import threading

import pytest

from unipool.errors import CLOSE_INTERNAL_ERROR
from unipool.websockets.connections import ConnectionManager, ConnectionState
from unipool.websockets.frames import parse_frame
from unipool.websockets.rooms import RoomRegistry
from conftest import FakeMessageStore, FakeTransport, StaticAuthorizer

RIDE = 1
OTHER_RIDE = 2


def display_name(user_id):
    return f"user{user_id}" if user_id != 99 else None


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def store():
    return FakeMessageStore()


@pytest.fixture
def authorizer():
    return StaticAuthorizer({RIDE: {1, 2}, OTHER_RIDE: {1}})


@pytest.fixture
def manager(transport, authorizer, store):
    return ConnectionManager(RoomRegistry(), transport, authorizer, display_name, message_store=store)


def join(manager, sid, ride_id=RIDE):
    manager.handle_frame(sid, parse_frame("join", {"rideId": ride_id}))


def send(manager, sid, content):
    manager.handle_frame(sid, parse_frame("message", {"content": content}))


class TestConnectionLifecycle:

    def test_open_authenticates_and_greets(self, manager, transport):
        connection = manager.open("sid-1", 1)

        assert connection.state is ConnectionState.AUTHENTICATED
        assert connection.ride_id is None
        assert transport.frames("sid-1", "connected") == [{"type": "connected", "userId": 1}]

    def test_close_is_exactly_once(self, manager):
        manager.open("sid-1", 1)
        join(manager, "sid-1")

        assert manager.close("sid-1") is True
        assert manager.close("sid-1") is False
        assert not manager.registry.has_room(RIDE)
        assert manager.get("sid-1") is None

    def test_leave_then_close_matches_close(self, manager, transport):
        manager.open("sid-1", 1)
        manager.open("sid-2", 2)
        join(manager, "sid-1")
        join(manager, "sid-2")

        manager.handle_frame("sid-2", parse_frame("leave"))
        assert transport.frames("sid-2", "left") == [{"type": "left", "rideId": RIDE, "reason": "left"}]
        assert manager.registry.get_members(RIDE) == {"sid-1"}

        manager.close("sid-2")
        assert manager.registry.get_members(RIDE) == {"sid-1"}

    def test_leave_without_ride_is_a_noop(self, manager, transport):
        manager.open("sid-1", 1)
        manager.handle_frame("sid-1", parse_frame("leave"))

        assert transport.frames("sid-1", "left") == []
        assert transport.frames("sid-1", "error") == []

    def test_frames_after_close_are_dropped(self, manager, transport):
        manager.open("sid-1", 1)
        manager.close("sid-1")

        join(manager, "sid-1")

        assert transport.frames("sid-1", "joined") == []
        assert not manager.registry.has_room(RIDE)

    def test_stats(self, manager):
        manager.open("sid-1", 1)
        manager.open("sid-2", 2)
        join(manager, "sid-1")

        assert manager.get_stats() == {"active_connections": 2, "active_rooms": 1, "rooms": {RIDE: 1}}


class TestJoin:

    def test_authorized_join_subscribes_and_sends_history(self, manager, transport, store):
        store.create_message(2, RIDE, "earlier")
        manager.open("sid-1", 1)

        join(manager, "sid-1")

        connection = manager.get("sid-1")
        assert connection.state is ConnectionState.JOINED
        assert connection.ride_id == RIDE
        assert manager.registry.get_members(RIDE) == {"sid-1"}

        joined = transport.frames("sid-1", "joined")
        assert len(joined) == 1
        assert joined[0]["rideId"] == RIDE
        assert [m["content"] for m in joined[0]["messages"]] == ["earlier"]

    def test_numeric_string_ride_id_is_accepted(self, manager):
        manager.open("sid-1", 1)
        manager.handle_frame("sid-1", parse_frame(None, {"type": "join", "rideId": "1"}))

        assert manager.get("sid-1").ride_id == RIDE

    def test_unauthorized_join_is_never_subscribed(self, manager, transport):
        manager.open("sid-3", 3)

        join(manager, "sid-3")

        assert transport.frames("sid-3", "joined") == []
        assert transport.frames("sid-3", "error") == [
            {"type": "error", "message": f"Not authorized to join ride {RIDE}"}
        ]
        assert not manager.registry.has_room(RIDE)
        assert manager.get("sid-3").state is ConnectionState.AUTHENTICATED

    @pytest.mark.parametrize("ride_id", [None, "abc", 0, -4, [1]])
    def test_invalid_ride_id(self, manager, transport, authorizer, ride_id):
        manager.open("sid-1", 1)

        join(manager, "sid-1", ride_id)

        assert transport.frames("sid-1", "error") == [{"type": "error", "message": "Invalid rideId"}]
        assert authorizer.calls == 0

    def test_join_checks_membership_every_time(self, manager, authorizer):
        manager.open("sid-1", 1)
        join(manager, "sid-1")
        join(manager, "sid-1")

        assert authorizer.calls == 2
        assert manager.registry.get_members(RIDE) == {"sid-1"}

    def test_switching_rides_leaves_previous_room(self, manager):
        manager.open("sid-1", 1)
        join(manager, "sid-1", RIDE)
        join(manager, "sid-1", OTHER_RIDE)

        assert not manager.registry.has_room(RIDE)
        assert manager.registry.get_members(OTHER_RIDE) == {"sid-1"}
        assert manager.get("sid-1").ride_id == OTHER_RIDE

    def test_rejoin_after_membership_revoked_drops_subscription(self, manager, authorizer, transport):
        manager.open("sid-2", 2)
        join(manager, "sid-2")

        authorizer.participants[RIDE].discard(2)
        join(manager, "sid-2")

        assert not manager.registry.has_room(RIDE)
        assert manager.get("sid-2").ride_id is None
        assert len(transport.frames("sid-2", "error")) == 1

    def test_history_failure_still_joins(self, manager, transport, store, monkeypatch):
        def broken(ride_id):
            raise RuntimeError("db down")

        monkeypatch.setattr(store, "list_messages_with_authors", broken)
        manager.open("sid-1", 1)

        join(manager, "sid-1")

        assert transport.frames("sid-1", "joined")[0]["messages"] == []
        assert manager.registry.get_members(RIDE) == {"sid-1"}


class TestMessages:

    def test_message_reaches_every_member_including_sender(self, manager, transport, store):
        manager.open("sid-1", 1)
        manager.open("sid-2", 2)
        join(manager, "sid-1")
        join(manager, "sid-2")

        send(manager, "sid-1", "  hi  ")

        to_sender = transport.frames("sid-1", "message")
        to_peer = transport.frames("sid-2", "message")
        assert len(to_sender) == 1
        assert to_sender == to_peer

        message = to_peer[0]["message"]
        assert message["content"] == "hi"
        assert message["userId"] == 1
        assert message["username"] == "user1"
        assert message["rideId"] == RIDE
        assert message["id"] == store.messages[0].id

    def test_message_stays_in_its_room(self, manager, transport):
        manager.open("sid-1", 1)
        manager.open("sid-2", 2)
        join(manager, "sid-1", OTHER_RIDE)
        join(manager, "sid-2", RIDE)

        send(manager, "sid-1", "only ride two")

        assert transport.frames("sid-2", "message") == []

    def test_message_before_join(self, manager, transport, store):
        manager.open("sid-1", 1)

        send(manager, "sid-1", "hello?")

        assert transport.frames("sid-1", "error") == [{"type": "error", "message": "No active ride"}]
        assert store.messages == []

    @pytest.mark.parametrize("content", ["", "   ", None, 42])
    def test_empty_or_non_text_content_is_rejected(self, manager, transport, store, content):
        manager.open("sid-1", 1)
        join(manager, "sid-1")

        send(manager, "sid-1", content)

        assert transport.frames("sid-1", "error") == [{"type": "error", "message": "Message cannot be empty"}]
        assert store.messages == []
        assert transport.frames("sid-1", "message") == []

    def test_persistence_failure_broadcasts_nothing(self, manager, transport, store):
        manager.open("sid-1", 1)
        manager.open("sid-2", 2)
        join(manager, "sid-1")
        join(manager, "sid-2")
        store.fail = True

        send(manager, "sid-1", "lost")

        assert transport.frames("sid-1", "message") == []
        assert transport.frames("sid-2", "message") == []
        assert transport.frames("sid-1", "error") == [{"type": "error", "message": "Failed to send message"}]
        assert manager.get("sid-1").state is ConnectionState.JOINED

    def test_unknown_author(self, transport, store):
        manager = ConnectionManager(
            RoomRegistry(), transport, StaticAuthorizer({RIDE: {99}}), display_name, message_store=store
        )
        manager.open("sid-x", 99)
        join(manager, "sid-x")

        send(manager, "sid-x", "ghost")

        assert transport.frames("sid-x", "error") == [{"type": "error", "message": "User not found"}]
        assert store.messages == []

    def test_failed_delivery_does_not_block_other_members(self, manager, transport):
        manager.open("sid-1", 1)
        manager.open("sid-2", 2)
        join(manager, "sid-1")
        join(manager, "sid-2")
        transport.failing.add("sid-2")

        send(manager, "sid-1", "still works")

        assert len(transport.frames("sid-1", "message")) == 1

    def test_closed_connection_receives_no_broadcast(self, manager, transport):
        manager.open("sid-1", 1)
        manager.open("sid-2", 2)
        join(manager, "sid-1")
        join(manager, "sid-2")

        manager.close("sid-2")
        send(manager, "sid-1", "after close")

        assert transport.frames("sid-2", "message") == []
        assert len(transport.frames("sid-1", "message")) == 1

    def test_concurrent_senders_are_seen_in_one_order(self, transport, store):
        participants = {RIDE: set(range(1, 6))}
        manager = ConnectionManager(
            RoomRegistry(), transport, StaticAuthorizer(participants), display_name, message_store=store
        )
        listener = "sid-listener"
        manager.open(listener, 5)
        join(manager, listener)

        senders = [f"sid-{n}" for n in range(1, 5)]
        for n, sid in enumerate(senders, start=1):
            manager.open(sid, n)
            join(manager, sid)

        def chatter(sid):
            for i in range(25):
                send(manager, sid, f"{sid} #{i}")

        threads = [threading.Thread(target=chatter, args=(sid,)) for sid in senders]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        store_order = [m.id for m in store.messages]
        assert len(store_order) == 100

        for sid in [listener] + senders:
            seen = [frame["message"]["id"] for frame in transport.frames(sid, "message")]
            assert seen == store_order


class TestBadFrames:

    def test_malformed_frame_reports_error_and_keeps_connection(self, manager, transport):
        manager.open("sid-1", 1)

        manager.handle_frame("sid-1", parse_frame("message", "{broken"))

        assert transport.frames("sid-1", "error") == [{"type": "error", "message": "Invalid JSON format"}]
        assert manager.get("sid-1") is not None

    def test_unknown_frame_is_ignored(self, manager, transport):
        manager.open("sid-1", 1)
        before = len(transport.sent)

        manager.handle_frame("sid-1", parse_frame("typing", {"rideId": 1}))

        assert len(transport.sent) == before
        assert manager.get("sid-1").state is ConnectionState.AUTHENTICATED

    def test_unexpected_error_closes_with_internal_error(self, transport, store):
        class ExplodingAuthorizer:
            def authorize(self, user_id, ride_id):
                raise RuntimeError("boom")

        manager = ConnectionManager(RoomRegistry(), transport, ExplodingAuthorizer(), display_name, message_store=store)
        manager.open("sid-1", 1)

        join(manager, "sid-1")

        assert transport.frames("sid-1", "error") == [
            {"type": "error", "message": "Internal server error", "code": CLOSE_INTERNAL_ERROR}
        ]
        assert transport.closed == [("sid-1", CLOSE_INTERNAL_ERROR, "Internal server error")]
        assert manager.get("sid-1") is None


class TestEviction:

    def test_evict_one_user(self, manager, transport):
        manager.open("sid-1", 1)
        manager.open("sid-2", 2)
        join(manager, "sid-1")
        join(manager, "sid-2")

        assert manager.evict(RIDE, 2, reason="removed by host") == 1

        assert manager.registry.get_members(RIDE) == {"sid-1"}
        assert transport.frames("sid-2", "left") == [
            {"type": "left", "rideId": RIDE, "reason": "removed by host"}
        ]
        assert manager.get("sid-2").state is ConnectionState.AUTHENTICATED

        send(manager, "sid-1", "bye")
        assert transport.frames("sid-2", "message") == []

    def test_evict_everyone(self, manager):
        manager.open("sid-1", 1)
        manager.open("sid-2", 2)
        join(manager, "sid-1")
        join(manager, "sid-2")

        assert manager.evict(RIDE, reason="ride deleted") == 2
        assert not manager.registry.has_room(RIDE)

    def test_evict_without_live_connections(self, manager):
        assert manager.evict(RIDE, 2) == 0

    def test_kick_while_join_is_in_flight(self, transport, store):
        class SlowAuthorizer(StaticAuthorizer):
            """Pauses user 2's join after the membership check passed"""

            def __init__(self, participants):
                super().__init__(participants)
                self.checked = threading.Event()
                self.resume = threading.Event()

            def authorize(self, user_id, ride_id):
                allowed = super().authorize(user_id, ride_id)
                if user_id == 2:
                    self.checked.set()
                    self.resume.wait(5)
                return allowed

        authorizer = SlowAuthorizer({RIDE: {1, 2}})
        manager = ConnectionManager(RoomRegistry(), transport, authorizer, display_name, message_store=store)
        manager.open("host", 1)
        manager.open("kicked", 2)
        join(manager, "host")

        joining = threading.Thread(target=join, args=(manager, "kicked"))
        joining.start()
        assert authorizer.checked.wait(5)

        # The kick commits, then evicts, while the join is still running
        authorizer.participants[RIDE].discard(2)
        results = []
        evicting = threading.Thread(target=lambda: results.append(manager.evict(RIDE, 2, reason="removed by host")))
        evicting.start()
        evicting.join(0.2)

        authorizer.resume.set()
        joining.join(5)
        evicting.join(5)

        assert results == [1]
        assert manager.registry.get_members(RIDE) == {"host"}
        assert transport.frames("kicked", "left") == [
            {"type": "left", "rideId": RIDE, "reason": "removed by host"}
        ]

        send(manager, "host", "kicked users hear nothing")
        assert transport.frames("kicked", "message") == []
        assert len(transport.frames("host", "message")) == 1

    def test_evict_skips_connections_in_other_rides(self, manager, transport):
        manager.open("sid-1", 1)
        join(manager, "sid-1", OTHER_RIDE)

        assert manager.evict(RIDE, 1) == 0
        assert manager.registry.get_members(OTHER_RIDE) == {"sid-1"}
        assert transport.frames("sid-1", "left") == []
