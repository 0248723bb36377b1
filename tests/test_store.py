"""Tests for the in-memory room document store."""

import pytest

from bottleship.document import RoomStatus, Role, new_room_document
from bottleship.errors import JoinError, OwnershipError, RoomNotFound
from bottleship.scheduler import ManualScheduler
from bottleship.store import MemoryDocumentStore


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def store():
    store = MemoryDocumentStore()
    store.create("ROOM01", new_room_document("uid-host", "Ann"))
    return store


def test_create_rejects_taken_codes(store):
    with pytest.raises(JoinError):
        store.create("ROOM01", new_room_document("someone"))


def test_reads_are_copies(store):
    document = store.get("ROOM01")
    document.host_bottles.append("A1")
    assert store.get("ROOM01").host_bottles == []
    assert store.get("NOPE00") is None


def test_update_enforces_ownership_and_stamps_versions(store):
    updated = store.update("ROOM01", {"hostName": "Annie"}, writer=Role.HOST)
    assert updated.host_name == "Annie"
    assert updated.version == 1

    with pytest.raises(OwnershipError):
        store.update("ROOM01", {"hostName": "Mallory"}, writer=Role.GUEST)
    assert store.get("ROOM01").version == 1

    with pytest.raises(RoomNotFound):
        store.update("NOPE00", {"status": RoomStatus.SETUP})


def test_subscribers_get_current_then_every_change(store):
    seen = []
    unsubscribe = store.subscribe("ROOM01", seen.append)
    store.update("ROOM01", {"status": RoomStatus.SETUP})
    assert [doc.version for doc in seen] == [0, 1]

    unsubscribe()
    store.update("ROOM01", {"status": RoomStatus.PLAYING})
    assert len(seen) == 2


def test_writes_during_delivery_are_queued_not_nested(store):
    order = []

    def first(document):
        order.append(("first", document.version))
        if document.version == 1:
            store.update("ROOM01", {"turn": Role.GUEST})

    def second(document):
        order.append(("second", document.version))

    store.subscribe("ROOM01", first)
    store.subscribe("ROOM01", second)
    order.clear()
    store.update("ROOM01", {"status": RoomStatus.SETUP})
    assert order == [("first", 1), ("second", 1), ("first", 2), ("second", 2)]


def test_delete_delivers_none(store):
    seen = []
    store.subscribe("ROOM01", seen.append)
    store.delete("ROOM01")
    assert seen[-1] is None
    assert "ROOM01" not in store
    with pytest.raises(RoomNotFound):
        store.delete("ROOM01")


def test_scheduled_delivery_waits_for_the_scheduler():
    scheduler = ManualScheduler()
    store = MemoryDocumentStore(scheduler=scheduler)
    store.create("ROOM01", new_room_document("uid-host"))
    seen = []
    unsubscribe = store.subscribe("ROOM01", seen.append)
    store.update("ROOM01", {"status": RoomStatus.SETUP})
    assert seen == []
    scheduler.run_until_idle()
    assert [doc.version for doc in seen] == [0, 1]

    store.update("ROOM01", {"status": RoomStatus.PLAYING})
    unsubscribe()
    scheduler.run_until_idle()
    assert len(seen) == 2


def test_cleanup_drops_idle_unwatched_rooms():
    clock = FakeClock()
    store = MemoryDocumentStore(clock=clock)
    store.create("IDLE01", new_room_document("a"))
    store.create("BUSY01", new_room_document("b"))
    store.subscribe("BUSY01", lambda document: None)

    clock.now += 60
    assert store.cleanup(max_age=120) == []
    clock.now += 120
    assert store.cleanup(max_age=120) == ["IDLE01"]
    assert "BUSY01" in store
