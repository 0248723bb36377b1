"""Remote-peer resolver: one client's side of a shared room document."""

from __future__ import annotations

import itertools
import logging
import random
from typing import Any, Callable, Dict, Iterable, List, Optional

from .board import Coordinate, Ledger, Outcome, Placement, parse_coordinate
from .document import (
    RoomDocument,
    RoomStatus,
    RoomView,
    Role,
    derive_view,
    generate_room_code,
    join_changes,
    new_room_document,
    normalize_room_code,
    rematch_changes,
    resolve_role,
    should_claim_win,
)
from .errors import JoinError, PlacementError, RoomNotFound, TurnError
from .game import (
    EventKind,
    GuessResult,
    MatchEvent,
    Phase,
    has_won,
    next_turn,
    resolve_outcome,
)
from .modes import ModeResolver
from .store import DocumentStore

logger = logging.getLogger(__name__)

CREATE_ATTEMPTS = 10

Listener = Callable[[MatchEvent], None]


class RemoteClient(ModeResolver):
    """Plays one role of a room; all shown state is re-derived per snapshot."""

    def __init__(
        self,
        store: DocumentStore,
        identity: str,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.store = store
        self.identity = identity
        self.rng = rng or random.Random()
        self._listeners: List[Listener] = []
        self._event_ids = itertools.count(1)
        self._reset()

    def _reset(self) -> None:
        self.role: Optional[Role] = None
        self.room_code: Optional[str] = None
        self.document: Optional[RoomDocument] = None
        self.view: Optional[RoomView] = None
        self.phase = Phase.MENU
        self.draft = Placement()
        self.notices: List[str] = []
        self.opponent_left = False
        self.closed = False
        self._leaving = False
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._seen_round: Optional[int] = None
        self._announced_round: Optional[int] = None

    # ---- events ----

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _emit(self, kind: EventKind, **details: Any) -> None:
        event = MatchEvent(kind=kind, event_id=next(self._event_ids), **details)
        for listener in list(self._listeners):
            listener(event)

    def _notify(self, message: str) -> None:
        self.notices.append(message)

    # ---- room lifecycle ----

    def create_room(self, name: str = "") -> str:
        self._require_detached()
        for _ in range(CREATE_ATTEMPTS):
            code = generate_room_code(self.rng)
            try:
                self.store.create(code, new_room_document(self.identity, name))
            except JoinError:
                continue
            break
        else:
            raise JoinError("Unable to allocate room")
        self.role = Role.HOST
        self._attach(code)
        return code

    def join_room(self, code: str, name: str = "") -> Role:
        self._require_detached()
        code = normalize_room_code(code)
        changes = join_changes(self.store.get(code), self.identity, name)
        try:
            self.store.update(code, changes, writer=Role.GUEST)
        except RoomNotFound as exc:
            raise JoinError("Room not found") from exc
        self.role = Role.GUEST
        self._attach(code)
        return self.role

    def resume(self, code: str, role: Optional[Role] = None) -> Role:
        """Re-attach to a room this identity already plays in, e.g. after a reload."""

        self._require_detached()
        code = normalize_room_code(code)
        document = self.store.get(code)
        if document is None:
            raise JoinError("Room not found")
        self.role = resolve_role(document, self.identity, role)
        self._attach(code)
        return self.role

    def leave(self) -> None:
        """Mark the room abandoned and return to the menu."""

        self._leaving = True
        if self.room_code is not None and self.role is not None:
            try:
                self.store.update(
                    self.room_code, {"status": RoomStatus.ABANDONED}, writer=self.role
                )
            except RoomNotFound:
                logger.warning(
                    "Room %s vanished before it could be left", self.room_code
                )
        if self._unsubscribe is not None:
            self._unsubscribe()
        self._reset()

    def _require_detached(self) -> None:
        if self.room_code is not None:
            raise JoinError("Already attached to a room")

    def _attach(self, code: str) -> None:
        self.room_code = code
        self.phase = Phase.PLACING
        logger.info("Attached to room %s as %s", code, self.role.value)
        self._unsubscribe = self.store.subscribe(code, self.on_snapshot, self._on_error)

    def _on_error(self, exc: Exception) -> None:
        # Not retried: the next snapshot carries the whole document again
        logger.warning("Room %s sync error: %s", self.room_code, exc)

    # ---- setup ----

    @property
    def active_side(self) -> Optional[Role]:
        return self.role

    def toggle_placement(self, cell: Coordinate) -> bool:
        self._require_setup()
        return self.draft.toggle(cell)

    def finalize_placement(
        self, cells: Optional[Iterable[Coordinate]] = None
    ) -> None:
        placement = Placement(cells) if cells is not None else self.draft
        if not placement.is_complete():
            raise PlacementError("Place exactly 4 bottles")
        self._require_setup()
        self.draft = Placement(placement.cells)
        self._write({f"{self.role.value}_bottles": placement.to_list()})
        self._notify("Waiting for opponent...")

    def _require_setup(self) -> None:
        if self.document is None or self.document.status not in (
            RoomStatus.WAITING,
            RoomStatus.SETUP,
        ):
            raise TurnError("Bottles can only be placed during setup")

    # ---- guessing ----

    def guess(self, cell: Coordinate) -> GuessResult:
        document, view, role = self.document, self.view, self.role
        if document is None or view is None or role is None:
            raise TurnError("Not attached to a room")
        if document.status is not RoomStatus.PLAYING or document.winner is not None:
            raise TurnError("Match is not accepting guesses")
        if document.turn is not role:
            raise TurnError("Opponent's turn")
        if cell in view.my_ledger:
            return GuessResult(
                accepted=False,
                coordinate=cell,
                outcome=view.my_ledger.outcome_at(cell),
                message="Already guessed",
            )

        outcome = resolve_outcome(view.opponent_placement, cell)
        moves: Dict[str, Any] = view.my_ledger.to_mapping()
        moves[str(cell)] = outcome.value
        changes: Dict[str, Any] = {f"{role.value}_moves": moves}
        finished = has_won(Ledger.from_mapping(moves))
        if finished:
            changes.update(winner=role, status=RoomStatus.FINISHED)
        elif next_turn(role, outcome) is not role:
            changes["turn"] = role.other

        # GUESS and TURN events come from adopting the written document
        self._write(changes)
        if finished:
            message = f"{view.my_name} Wins!"
        elif outcome is Outcome.HIT:
            message = "Hit! Go again"
        else:
            message = "Opponent's Turn"
        return GuessResult(
            accepted=True,
            coordinate=cell,
            outcome=outcome,
            finished=finished,
            message=message,
        )

    def rematch(self) -> None:
        if self.document is None or self.view is None:
            raise TurnError("Not attached to a room")
        if self.opponent_left or self.document.status is RoomStatus.ABANDONED:
            raise TurnError("Opponent left the game")
        if self.view.phase is not Phase.FINISHED:
            raise TurnError("A rematch is only possible once the match is over")
        self.draft = Placement()
        self._write(rematch_changes(self.document))

    # ---- document plumbing ----

    def _write(self, changes: Dict[str, Any]) -> None:
        document = self.store.update(self.room_code, changes, writer=self.role)
        # Read-your-writes; notices and win claims wait for the snapshot
        if self.document is None or document.version > self.document.version:
            self._adopt(document)

    def _adopt(self, document: RoomDocument) -> RoomView:
        previous = self.document
        self.document = document
        role = resolve_role(document, self.identity, self.role)
        self.view = derive_view(document, role)
        self.phase = self.view.phase
        if previous is not None and previous.round == document.round:
            self._emit_changes(previous, document)
        return self.view

    def _emit_changes(self, previous: RoomDocument, document: RoomDocument) -> None:
        """Emit the guesses and turn change between two versions of one round."""

        for side in Role:
            seen = previous.moves_of(side)
            for cell, outcome in document.moves_of(side).items():
                if cell not in seen:
                    self._emit(
                        EventKind.GUESS,
                        side=side.value,
                        coordinate=parse_coordinate(cell),
                        outcome=outcome,
                    )
        if document.status is RoomStatus.PLAYING and document.turn is not previous.turn:
            self._emit(EventKind.TURN, side=document.turn.value)

    def on_snapshot(self, document: Optional[RoomDocument]) -> None:
        """Apply one delivered snapshot; safe to call repeatedly with the same one."""

        if self.room_code is None:
            return
        if document is None:
            if self.role is Role.GUEST and not self._leaving and not self.closed:
                self.closed = True
                self._notify("Room destroyed or invalid")
                self._emit(EventKind.ROOM_CLOSED)
            return
        if self.document is not None and document.version < self.document.version:
            logger.debug(
                "Ignoring stale snapshot v%d of room %s",
                document.version,
                self.room_code,
            )
            return

        if document.status is RoomStatus.ABANDONED:
            notify = (
                not self._leaving
                and self.phase is not Phase.MENU
                and not self.opponent_left
            )
            self._adopt(document)
            if notify:
                self.opponent_left = True
                self._notify("Opponent left the game")
                self._emit(EventKind.OPPONENT_LEFT)
            return

        previous_phase = self.phase
        view = self._adopt(document)
        role = view.role

        rematch = document.status is RoomStatus.SETUP and (
            previous_phase in (Phase.GUESSING, Phase.FINISHED)
            or (self._seen_round is not None and document.round > self._seen_round)
        )
        if rematch:
            self.draft = Placement()
            self._notify("Rematch! Place your bottles.")
            self._emit(EventKind.REMATCH)
        self._seen_round = document.round

        if len(view.my_placement) > 0 or self.phase is not Phase.PLACING:
            self.draft = Placement(view.my_placement.cells)

        if (
            role is Role.HOST
            and document.status is RoomStatus.SETUP
            and view.my_placement.is_complete()
            and view.opponent_placement.is_complete()
        ):
            logger.info("Both sides placed in room %s; starting", self.room_code)
            self._write({"status": RoomStatus.PLAYING})

        if should_claim_win(document, role):
            self._write({"winner": role, "status": RoomStatus.FINISHED})

        if document.winner is not None and self._announced_round != document.round:
            self._announced_round = document.round
            name = document.name_of(document.winner)
            self._notify(f"{name} Wins!")
            self._emit(EventKind.FINISHED, side=document.winner.value)
