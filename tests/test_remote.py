"""Two remote clients sharing an in-memory room document."""

import random

import pytest

from bottleship.board import parse_coordinate
from bottleship.document import RoomStatus, Role
from bottleship.errors import JoinError, TurnError
from bottleship.game import EventKind, Phase
from bottleship.remote import RemoteClient
from bottleship.scheduler import ManualScheduler
from bottleship.store import MemoryDocumentStore

HOST_BOTTLES = ["A1", "A2", "A3", "A4"]
GUEST_BOTTLES = ["B1", "C2", "D3", "D4"]


def cells(*labels):
    return [parse_coordinate(label) for label in labels]


def client(store, identity, seed=0):
    remote = RemoteClient(store, identity, rng=random.Random(seed))
    remote.events = []
    remote.subscribe(remote.events.append)
    return remote


def kinds(remote):
    return [event.kind for event in remote.events]


def assert_mirrored(host, guest):
    assert host.view.my_placement == guest.view.opponent_placement
    assert host.view.opponent_placement == guest.view.my_placement
    assert host.view.my_ledger == guest.view.opponent_ledger
    assert host.view.opponent_ledger == guest.view.my_ledger
    assert host.view.my_turn != guest.view.my_turn or host.view.winner is not None


@pytest.fixture
def store():
    return MemoryDocumentStore()


@pytest.fixture
def pair(store):
    host = client(store, "uid-host", seed=1)
    guest = client(store, "uid-guest", seed=2)
    code = host.create_room("Ann")
    guest.join_room(code.lower(), "Bo")
    return host, guest


@pytest.fixture
def playing(pair):
    host, guest = pair
    host.finalize_placement(cells(*HOST_BOTTLES))
    guest.finalize_placement(cells(*GUEST_BOTTLES))
    return host, guest


def test_create_and_join(store, pair):
    host, guest = pair
    assert host.role is Role.HOST
    assert guest.role is Role.GUEST
    assert host.room_code == guest.room_code
    assert host.document.status is RoomStatus.SETUP
    assert host.view.opponent_name == "Bo"
    assert guest.view.opponent_name == "Ann"
    assert host.phase is Phase.PLACING


def test_host_starts_play_once_both_sides_placed(pair):
    host, guest = pair
    host.finalize_placement(cells(*HOST_BOTTLES))
    assert host.document.status is RoomStatus.SETUP
    assert host.notices[-1] == "Waiting for opponent..."

    guest.finalize_placement(cells(*GUEST_BOTTLES))
    assert host.document.status is RoomStatus.PLAYING
    assert guest.document.status is RoomStatus.PLAYING
    assert host.view.my_turn
    assert not guest.view.my_turn
    assert guest.phase is Phase.GUESSING


def test_incomplete_placement_is_not_written(store, pair):
    host, _ = pair
    before = host.document.version
    with pytest.raises(ValueError):
        host.finalize_placement(cells("A1", "A2"))
    assert store.get(host.room_code).version == before
    assert store.get(host.room_code).host_bottles == []


def test_draft_toggles_feed_placement(pair):
    host, guest = pair
    for cell in cells(*HOST_BOTTLES):
        assert host.toggle_placement(cell)
    assert not host.toggle_placement(parse_coordinate("D4"))
    host.finalize_placement()
    assert guest.view.opponent_placement == host.draft


def test_four_straight_hits_win_without_passing_the_turn(playing):
    host, guest = playing
    for label in GUEST_BOTTLES[:-1]:
        result = host.guess(parse_coordinate(label))
        assert result.hit
        assert result.message == "Hit! Go again"
        assert host.view.my_turn

    result = host.guess(parse_coordinate("D4"))
    assert result.finished
    assert result.message == "Ann Wins!"
    assert host.document.winner is Role.HOST
    assert guest.phase is Phase.FINISHED
    assert host.view.i_won and not guest.view.i_won
    assert guest.notices[-1] == "Ann Wins!"
    assert kinds(guest).count(EventKind.FINISHED) == 1
    assert guest.document.turn is Role.HOST
    assert_mirrored(host, guest)


def test_miss_passes_turn_and_guesses_are_gated(playing):
    host, guest = playing
    with pytest.raises(TurnError):
        guest.guess(parse_coordinate("A1"))

    result = host.guess(parse_coordinate("A1"))
    assert not result.hit
    assert result.message == "Opponent's Turn"
    assert guest.view.my_turn
    with pytest.raises(TurnError):
        host.guess(parse_coordinate("A2"))

    assert guest.guess(parse_coordinate("A1")).hit
    repeat = guest.guess(parse_coordinate("A1"))
    assert not repeat.accepted
    assert repeat.message == "Already guessed"
    assert_mirrored(host, guest)


def test_duplicate_snapshots_are_idempotent(store, playing):
    host, guest = playing
    for label in GUEST_BOTTLES:
        host.guess(parse_coordinate(label))
    snapshot = store.get(host.room_code)
    notices = list(guest.notices)
    events = list(guest.events)

    guest.on_snapshot(snapshot)
    guest.on_snapshot(snapshot)
    host.on_snapshot(snapshot)

    assert guest.notices == notices
    assert guest.events == events
    assert kinds(host).count(EventKind.FINISHED) == 1


def test_stale_snapshot_is_ignored(store, playing):
    host, guest = playing
    stale = store.get(guest.room_code)
    host.guess(parse_coordinate("B1"))
    version = guest.document.version

    guest.on_snapshot(stale)
    assert guest.document.version == version
    assert len(guest.view.opponent_ledger) == 1


def test_leaving_notifies_only_the_opponent(store, playing):
    host, guest = playing
    code = host.room_code
    host.leave()

    assert host.phase is Phase.MENU
    assert host.room_code is None
    assert EventKind.OPPONENT_LEFT not in kinds(host)
    assert guest.opponent_left
    assert guest.notices[-1] == "Opponent left the game"
    assert kinds(guest).count(EventKind.OPPONENT_LEFT) == 1
    assert store.get(code).status is RoomStatus.ABANDONED

    with pytest.raises(JoinError):
        client(store, "late").join_room(code)


def test_rematch_resets_both_clients(playing):
    host, guest = playing
    host.guess(parse_coordinate("A1"))
    for label in HOST_BOTTLES:
        guest.guess(parse_coordinate(label))
    assert guest.view.i_won

    with pytest.raises(TurnError):
        host.guess(parse_coordinate("B1"))
    host.rematch()

    for remote in (host, guest):
        assert remote.document.status is RoomStatus.SETUP
        assert remote.document.round == 1
        assert remote.phase is Phase.PLACING
        assert len(remote.view.my_placement) == 0
        assert len(remote.view.my_ledger) == 0
        assert len(remote.draft) == 0
        assert kinds(remote).count(EventKind.REMATCH) == 1
        assert remote.notices[-1] == "Rematch! Place your bottles."

    host.finalize_placement(cells("D1", "D2", "D3", "D4"))
    guest.finalize_placement(cells(*GUEST_BOTTLES))
    assert host.document.status is RoomStatus.PLAYING
    assert host.document.turn is Role.HOST


def test_rematch_requires_a_finished_match(playing):
    host, _ = playing
    with pytest.raises(TurnError):
        host.rematch()


def test_guest_sees_deleted_room(store, pair):
    host, guest = pair
    store.delete(host.room_code)
    assert guest.closed
    assert guest.notices[-1] == "Room destroyed or invalid"
    assert EventKind.ROOM_CLOSED in kinds(guest)
    assert not host.closed


def test_join_errors(store, pair):
    host, _ = pair
    with pytest.raises(JoinError, match="Please enter a room code"):
        client(store, "x").join_room("  ")
    with pytest.raises(JoinError, match="Room not found"):
        client(store, "x").join_room("ZZZZZZ")
    with pytest.raises(JoinError, match="Room full"):
        client(store, "x").join_room(host.room_code)


def test_one_identity_can_play_both_sides(store):
    host = client(store, "me", seed=3)
    guest = client(store, "me", seed=4)
    code = host.create_room("Left")
    guest.join_room(code, "Right")
    host.finalize_placement(cells(*HOST_BOTTLES))
    guest.finalize_placement(cells(*GUEST_BOTTLES))

    assert host.view.role is Role.HOST
    assert guest.view.role is Role.GUEST
    host.guess(parse_coordinate("A1"))
    assert guest.view.my_turn
    assert_mirrored(host, guest)

    with pytest.raises(JoinError):
        client(store, "me").resume(code)
    again = client(store, "me")
    assert again.resume(code, Role.GUEST) is Role.GUEST
    assert again.view.my_turn


def test_resume_matches_identity(store, playing):
    host, _ = playing
    host.guess(parse_coordinate("B1"))
    reloaded = client(store, "uid-guest")
    assert reloaded.resume(host.room_code) is Role.GUEST
    assert reloaded.phase is Phase.GUESSING
    assert len(reloaded.view.opponent_ledger) == 1
    assert reloaded.draft == reloaded.view.my_placement


def test_deferred_delivery_converges():
    scheduler = ManualScheduler()
    store = MemoryDocumentStore(scheduler=scheduler)
    host = client(store, "uid-host")
    guest = client(store, "uid-guest")

    code = host.create_room("Ann")
    scheduler.run_until_idle()
    guest.join_room(code, "Bo")
    scheduler.run_until_idle()
    host.finalize_placement(cells(*HOST_BOTTLES))
    guest.finalize_placement(cells(*GUEST_BOTTLES))
    scheduler.run_until_idle()
    assert host.document.status is RoomStatus.PLAYING
    assert guest.document.status is RoomStatus.PLAYING

    host.guess(parse_coordinate("B1"))
    host.guess(parse_coordinate("C2"))
    # Own writes are visible at once; the opponent waits for delivery
    assert len(host.view.my_ledger) == 2
    assert len(guest.view.opponent_ledger) == 0

    scheduler.run_until_idle()
    assert len(guest.view.opponent_ledger) == 2
    assert host.document.version == guest.document.version
    assert_mirrored(host, guest)


def test_subscriber_errors_are_reported(store, pair, caplog):
    host, _ = pair
    errors = []

    def broken(snapshot):
        raise RuntimeError("boom")

    store.subscribe(host.room_code, broken, errors.append)
    assert len(errors) == 1
    assert "failed" in caplog.text


def test_opponent_leaving_ends_the_room_for_good(store, playing):
    host, guest = playing
    for label in GUEST_BOTTLES:
        host.guess(parse_coordinate(label))
    guest.leave()

    assert host.opponent_left
    assert host.phase is Phase.MENU
    with pytest.raises(TurnError, match="Opponent left"):
        host.rematch()
    with pytest.raises(TurnError):
        host.finalize_placement(cells(*HOST_BOTTLES))
    assert store.get(host.room_code).status is RoomStatus.ABANDONED


def test_host_claims_a_win_written_without_a_winner(store, playing):
    host, guest = playing
    hits = {label: "hit" for label in GUEST_BOTTLES}
    store.update(host.room_code, {"hostMoves": hits})

    document = store.get(host.room_code)
    assert document.winner is Role.HOST
    assert document.status is RoomStatus.FINISHED
    assert host.phase is Phase.FINISHED
    assert guest.phase is Phase.FINISHED
    assert kinds(host).count(EventKind.FINISHED) == 1
    assert kinds(guest).count(EventKind.FINISHED) == 1
    assert host.notices.count("Ann Wins!") == 1


def test_both_clients_see_guesses_and_turn_changes(store, playing):
    host, guest = playing
    host.events.clear()
    guest.events.clear()

    host.guess(parse_coordinate("B1"))
    host.guess(parse_coordinate("A1"))

    for remote in (host, guest):
        guesses = [e for e in remote.events if e.kind is EventKind.GUESS]
        assert [(e.side, str(e.coordinate), e.outcome.value) for e in guesses] == [
            ("host", "B1", "hit"),
            ("host", "A1", "miss"),
        ]
        turns = [e.side for e in remote.events if e.kind is EventKind.TURN]
        assert turns == ["guest"]

    events = list(guest.events)
    guest.on_snapshot(store.get(guest.room_code))
    assert guest.events == events

    guest.guess(parse_coordinate("A1"))
    assert host.events[-1].kind is EventKind.GUESS
    assert host.events[-1].side == "guest"
    assert host.events[-1].outcome.value == "hit"
