"""Mode resolvers: who computes outcomes and who the local actor is."""

from __future__ import annotations

import logging
import random
from abc import ABC, abstractmethod
from typing import Iterable, Optional

from .ai import HuntTargetAI
from .board import Coordinate, Ledger, Placement, random_placement
from .errors import TurnError
from .game import GuessResult, Match, Mode, Phase, Side
from .scheduler import Handle, Scheduler

logger = logging.getLogger(__name__)

AI_THINK_DELAY = 0.7
AI_CHAIN_DELAY = 0.5


class ModeResolver(ABC):
    """Resolves guesses for one mode on top of the shared rules."""

    @property
    @abstractmethod
    def active_side(self) -> Optional[str]:
        """The side (or remote role) the local user is currently acting for."""

    @abstractmethod
    def finalize_placement(
        self, cells: Optional[Iterable[Coordinate]] = None
    ) -> None:
        ...

    @abstractmethod
    def guess(self, cell: Coordinate) -> GuessResult:
        ...

    @abstractmethod
    def rematch(self) -> None:
        ...


class ScriptedResolver(ModeResolver):
    """Human (side one) against the hunt/target opponent (side two)."""

    def __init__(
        self,
        match: Match,
        scheduler: Scheduler,
        ai: Optional[HuntTargetAI] = None,
        rng: Optional[random.Random] = None,
        think_delay: float = AI_THINK_DELAY,
        chain_delay: float = AI_CHAIN_DELAY,
    ) -> None:
        if match.mode is not Mode.SCRIPTED:
            raise ValueError("ScriptedResolver needs a scripted match")
        self.match = match
        self.scheduler = scheduler
        self.rng = rng or random.Random()
        self.ai = ai or HuntTargetAI(rng=self.rng)
        self.think_delay = think_delay
        self.chain_delay = chain_delay
        self._pending: Optional[Handle] = None
        self.ai.reset()

    @property
    def ai_pending(self) -> bool:
        return self._pending is not None and not self._pending.cancelled

    @property
    def active_side(self) -> Optional[Side]:
        return Side.ONE

    def finalize_placement(
        self, cells: Optional[Iterable[Coordinate]] = None
    ) -> None:
        match = self.match
        placement = Placement(cells) if cells is not None else None
        match.finalize_placement(Side.ONE, placement)
        match.finalize_placement(Side.TWO, random_placement(self.rng))
        self.ai.reset()

    def guess(self, cell: Coordinate) -> GuessResult:
        if self.ai_pending:
            raise TurnError("AI is completing its move")
        result = self.match.guess(Side.ONE, cell)
        if result.accepted and not result.finished and not result.hit:
            self._schedule(self.think_delay)
        return result

    def rematch(self) -> None:
        self._cancel()
        self.match.rematch()
        self.ai.reset()

    def abandon(self) -> None:
        self._cancel()
        self.match.abandon()
        self.ai.reset()

    # ---- AI turns ----

    def _schedule(self, delay: float) -> None:
        self._pending = self.scheduler.call_later(delay, self._ai_turn)

    def _cancel(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
        self._pending = None

    def _ai_turn(self) -> None:
        self._pending = None
        match = self.match
        if match.phase is not Phase.GUESSING or match.turn is not Side.TWO:
            return

        cell = self.ai.choose()
        if cell is None:
            logger.warning("AI ran out of cells to try; forfeiting")
            match.forfeit(Side.TWO)
            return

        if cell in match.ledgers[Side.TWO]:
            self.ai.register_result(cell, False)
            self._schedule(0.0)
            return

        result = match.guess(Side.TWO, cell)
        self.ai.register_result(cell, result.hit)
        if result.hit and not result.finished:
            self._schedule(self.chain_delay)


class HotseatResolver(ModeResolver):
    """Two people sharing one device; the turn decides who may act."""

    def __init__(self, match: Match) -> None:
        if match.mode is not Mode.HOTSEAT:
            raise ValueError("HotseatResolver needs a hotseat match")
        self.match = match

    @property
    def active_side(self) -> Optional[Side]:
        if self.match.phase is Phase.GUESSING:
            return self.match.turn
        return self.match.placing_side

    def visible_ledger(self) -> Optional[Ledger]:
        side = self.active_side
        return self.match.ledgers[side] if side is not None else None

    def finalize_placement(
        self, cells: Optional[Iterable[Coordinate]] = None
    ) -> None:
        side = self.match.placing_side
        if side is None:
            raise TurnError("No side is placing bottles")
        placement = Placement(cells) if cells is not None else None
        self.match.finalize_placement(side, placement)

    def guess(self, cell: Coordinate) -> GuessResult:
        return self.match.guess(self.match.turn, cell)

    def rematch(self) -> None:
        self.match.rematch()
