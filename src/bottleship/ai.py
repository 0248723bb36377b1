"""Hunt/target search for the scripted Bottleship opponent."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Optional, Set
import random

from .board import ALL_COORDINATES, Coordinate, index_of, neighbors_of


@dataclass
class HuntTargetAI:
    """Opponent that only knows its own guesses and their outcomes.

    Public surface used by the scripted resolver:
      - choose() -> next cell, or None when every cell has been tried
      - register_result(cell, was_hit)
      - reset() at the start of every match, rematches included
    """

    rng: random.Random = field(default_factory=random.Random, repr=False)
    tried: Set[Coordinate] = field(default_factory=set)
    pending: Deque[Coordinate] = field(default_factory=deque)

    # ---- public API ----

    def reset(self) -> None:
        self.tried = set()
        self.pending = deque()

    @property
    def mode(self) -> str:
        """'target' if a queued follow-up is still usable, else 'hunt'."""

        if any(self._usable(c) for c in self.pending):
            return "target"
        return "hunt"

    def choose(self) -> Optional[Coordinate]:
        # Target mode: follow up on earlier hits
        while self.pending:
            cell = self.pending.popleft()
            if self._usable(cell):
                return cell

        # Hunt mode: parity-filtered random search
        candidates = [c for c in ALL_COORDINATES if c not in self.tried]
        if not candidates:
            return None
        parity = [c for c in candidates if index_of(c) % 2 == 0]
        return self.rng.choice(parity or candidates)

    def register_result(self, cell: Optional[Coordinate], was_hit: bool) -> None:
        if cell is None:
            return
        self.tried.add(cell)
        if not was_hit:
            return
        neighbours = [n for n in neighbors_of(cell) if n not in self.tried]
        self.rng.shuffle(neighbours)
        self.pending.extend(neighbours)

    # ---- helpers ----

    def _usable(self, cell: object) -> bool:
        return cell in ALL_COORDINATES and cell not in self.tried
