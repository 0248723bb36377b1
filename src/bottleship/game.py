"""Core rules for Bottleship: phases, turn order and win detection."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from .board import (
    BOTTLES_PER_SIDE,
    Coordinate,
    Ledger,
    Outcome,
    Placement,
)
from .errors import PlacementError, TurnError

logger = logging.getLogger(__name__)

WINNING_HITS = BOTTLES_PER_SIDE


class Mode(str, Enum):
    SCRIPTED = "scripted"
    HOTSEAT = "hotseat"
    REMOTE = "remote"


class Phase(str, Enum):
    MENU = "menu"
    NAMING = "naming"
    PLACING = "placing"
    PLACING_OTHER = "placing_other"
    GUESSING = "guessing"
    FINISHED = "finished"


class Side(str, Enum):
    ONE = "one"
    TWO = "two"

    @property
    def other(self) -> "Side":
        return Side.TWO if self is Side.ONE else Side.ONE


class EventKind(str, Enum):
    PHASE = "phase"
    GUESS = "guess"
    TURN = "turn"
    FINISHED = "finished"
    # Remote matches only
    REMATCH = "rematch"
    OPPONENT_LEFT = "opponent_left"
    ROOM_CLOSED = "room_closed"


@dataclass(frozen=True)
class MatchEvent:
    kind: EventKind
    event_id: int
    side: Optional[str] = None
    coordinate: Optional[Coordinate] = None
    outcome: Optional[Outcome] = None


@dataclass(frozen=True)
class GuessResult:
    accepted: bool
    coordinate: Coordinate
    outcome: Optional[Outcome] = None
    finished: bool = False
    message: str = ""

    @property
    def hit(self) -> bool:
        return self.outcome is Outcome.HIT


# ---------- Rules shared by every mode ----------


def resolve_outcome(target: Placement, cell: Coordinate) -> Outcome:
    return Outcome.HIT if cell in target else Outcome.MISS


def next_turn(mover, outcome: Outcome):
    """A hit keeps the turn; a miss hands it to the other side."""

    return mover if outcome is Outcome.HIT else mover.other


def has_won(ledger: Ledger) -> bool:
    return ledger.hits >= WINNING_HITS


# ---------- Match ----------

Listener = Callable[[MatchEvent], None]


@dataclass
class Match:
    """Two placements, two ledgers and whose guess is next."""

    mode: Mode
    phase: Phase = Phase.NAMING
    names: Dict[Side, str] = field(
        default_factory=lambda: {Side.ONE: "Player 1", Side.TWO: "Player 2"}
    )
    placements: Dict[Side, Placement] = field(
        default_factory=lambda: {Side.ONE: Placement(), Side.TWO: Placement()}
    )
    ledgers: Dict[Side, Ledger] = field(
        default_factory=lambda: {Side.ONE: Ledger(), Side.TWO: Ledger()}
    )
    ready: Dict[Side, bool] = field(
        default_factory=lambda: {Side.ONE: False, Side.TWO: False}
    )
    turn: Side = Side.ONE
    winner: Optional[Side] = None

    _listeners: List[Listener] = field(default_factory=list, init=False, repr=False)
    _event_ids: "itertools.count[int]" = field(
        default_factory=lambda: itertools.count(1), init=False, repr=False
    )

    @classmethod
    def create(cls, mode: Mode) -> "Match":
        match = cls(mode=mode)
        if mode is Mode.SCRIPTED:
            match.names[Side.TWO] = "AI"
        return match

    # ---- events ----

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, kind: EventKind, **details) -> None:
        event = MatchEvent(kind=kind, event_id=next(self._event_ids), **details)
        for listener in list(self._listeners):
            listener(event)

    def _set_phase(self, phase: Phase) -> None:
        if phase is self.phase:
            return
        self.phase = phase
        self._emit(EventKind.PHASE)

    # ---- setup ----

    @property
    def placing_side(self) -> Optional[Side]:
        if self.phase is Phase.PLACING:
            return Side.ONE
        if self.phase is Phase.PLACING_OTHER:
            return Side.TWO
        return None

    def set_names(self, first: str = "", second: str = "") -> None:
        if self.phase is not Phase.NAMING:
            raise TurnError("Names can only be set before placing bottles")
        if first.strip():
            self.names[Side.ONE] = first.strip()
        if second.strip():
            self.names[Side.TWO] = second.strip()
        self._set_phase(Phase.PLACING)

    def _require_placing(self, side: Side) -> None:
        if self.phase not in (Phase.PLACING, Phase.PLACING_OTHER) or self.ready[side]:
            raise TurnError("Bottles can only be placed during setup")

    def toggle_placement(self, side: Side, cell: Coordinate) -> bool:
        self._require_placing(side)
        return self.placements[side].toggle(cell)

    def set_placement(self, side: Side, placement: Placement) -> None:
        self._require_placing(side)
        self.placements[side] = placement

    def finalize_placement(
        self, side: Side, placement: Optional[Placement] = None
    ) -> None:
        self._require_placing(side)
        placement = placement if placement is not None else self.placements[side]
        if not placement.is_complete():
            raise PlacementError(f"Place exactly {BOTTLES_PER_SIDE} bottles")
        self.placements[side] = placement
        self.ready[side] = True
        logger.debug("%s finalized placement %s", side.value, self.placements[side])
        if all(self.ready.values()):
            self.turn = Side.ONE
            self._set_phase(Phase.GUESSING)
        elif not self.ready[Side.TWO]:
            self._set_phase(Phase.PLACING_OTHER)

    # ---- guessing ----

    def guess(self, side: Side, cell: Coordinate) -> GuessResult:
        if self.phase is not Phase.GUESSING:
            raise TurnError("Match is not accepting guesses")
        if side is not self.turn:
            raise TurnError(f"It is not {self.names[side]}'s turn")

        ledger = self.ledgers[side]
        if cell in ledger:
            return GuessResult(
                accepted=False,
                coordinate=cell,
                outcome=ledger.outcome_at(cell),
                message="Already guessed",
            )

        outcome = resolve_outcome(self.placements[side.other], cell)
        ledger.record(cell, outcome)
        self._emit(EventKind.GUESS, side=side.value, coordinate=cell, outcome=outcome)

        if has_won(ledger):
            self._finish(side)
            return GuessResult(
                accepted=True,
                coordinate=cell,
                outcome=outcome,
                finished=True,
                message=f"{self.names[side]} Wins!",
            )

        turn = next_turn(side, outcome)
        if turn is not self.turn:
            self.turn = turn
            self._emit(EventKind.TURN, side=turn.value)
            message = f"{self.names[turn]}'s turn"
        else:
            message = f"Hit! {self.names[side]} goes again"
        return GuessResult(
            accepted=True, coordinate=cell, outcome=outcome, message=message
        )

    def forfeit(self, side: Side) -> None:
        """End the match in favour of the other side."""

        if self.phase is not Phase.GUESSING:
            raise TurnError("Only a match in progress can be forfeited")
        self._finish(side.other)

    def _finish(self, winner: Side) -> None:
        if self.winner is not None:
            return
        self.winner = winner
        self._set_phase(Phase.FINISHED)
        self._emit(EventKind.FINISHED, side=winner.value)
        logger.info("%s match won by %s", self.mode.value, self.names[winner])

    # ---- lifecycle ----

    def rematch(self) -> None:
        if self.phase is not Phase.FINISHED:
            raise TurnError("A rematch is only possible once the match is over")
        self._clear_round()
        self._set_phase(Phase.PLACING)

    def abandon(self) -> None:
        self._clear_round()
        self._set_phase(Phase.MENU)

    def _clear_round(self) -> None:
        self.placements = {Side.ONE: Placement(), Side.TWO: Placement()}
        self.ledgers = {Side.ONE: Ledger(), Side.TWO: Ledger()}
        self.ready = {Side.ONE: False, Side.TWO: False}
        self.turn = Side.ONE
        self.winner = None
