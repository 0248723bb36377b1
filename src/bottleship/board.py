"""Grid addressing, placements and guess ledgers for Bottleship."""

from __future__ import annotations

from enum import Enum
from typing import Dict, Iterable, Iterator, List, Mapping, NamedTuple, Optional, Tuple
import random

from .errors import InvalidCoordinate, PlacementError

COLUMNS: str = "ABCD"
ROWS: Tuple[int, ...] = (1, 2, 3, 4)
BOTTLES_PER_SIDE = 4


# ---------- Coordinates ----------


class Coordinate(NamedTuple):
    column: str
    row: int

    def __str__(self) -> str:
        return f"{self.column}{self.row}"


# Column-major: A1, A2, A3, A4, B1, ... D4
ALL_COORDINATES: Tuple[Coordinate, ...] = tuple(
    Coordinate(c, r) for c in COLUMNS for r in ROWS
)
_INDEX: Dict[Coordinate, int] = {c: i for i, c in enumerate(ALL_COORDINATES)}


def all_coordinates() -> Tuple[Coordinate, ...]:
    return ALL_COORDINATES


def index_of(coordinate: Coordinate) -> int:
    try:
        return _INDEX[coordinate]
    except KeyError as exc:
        raise InvalidCoordinate(f"{coordinate!r} is not on the grid") from exc


def coordinate_of(index: int) -> Coordinate:
    if not 0 <= index < len(ALL_COORDINATES):
        raise InvalidCoordinate(f"Index {index} is outside 0..15")
    return ALL_COORDINATES[index]


def is_on_grid(column: str, row: int) -> bool:
    return column in COLUMNS and len(column) == 1 and row in ROWS


def neighbors_of(coordinate: Coordinate) -> List[Coordinate]:
    """Up/down/left/right neighbours that stay on the grid."""

    col = COLUMNS.index(coordinate.column)
    candidates = [
        (col - 1, coordinate.row),
        (col + 1, coordinate.row),
        (col, coordinate.row - 1),
        (col, coordinate.row + 1),
    ]
    return [
        Coordinate(COLUMNS[c], r)
        for c, r in candidates
        if 0 <= c < len(COLUMNS) and r in ROWS
    ]


def parse_coordinate(value: object) -> Coordinate:
    """Parse ``"b3"``/``"B3"``/``Coordinate`` input, rejecting off-grid cells."""

    if isinstance(value, Coordinate):
        if value not in _INDEX:
            raise InvalidCoordinate(f"{value!r} is not on the grid")
        return value
    if not isinstance(value, str):
        raise InvalidCoordinate(f"Expected a cell name like 'A1', got {value!r}")
    text = value.strip().upper()
    if len(text) != 2 or not text[1].isdigit():
        raise InvalidCoordinate(f"Unknown cell {value!r}")
    column, row = text[0], int(text[1])
    if not is_on_grid(column, row):
        raise InvalidCoordinate(f"Unknown cell {value!r}")
    return Coordinate(column, row)


# ---------- Placement ----------


class Placement:
    """A side's hidden bottles: up to four distinct cells, in placement order."""

    def __init__(self, cells: Iterable[Coordinate] = ()) -> None:
        self._cells: List[Coordinate] = []
        for cell in cells:
            if cell in self._cells:
                raise PlacementError(f"Duplicate cell {cell}")
            if len(self._cells) >= BOTTLES_PER_SIDE:
                raise PlacementError(f"Place exactly {BOTTLES_PER_SIDE} bottles")
            self._cells.append(cell)

    @classmethod
    def from_cells(cls, values: Iterable[object]) -> "Placement":
        return cls(parse_coordinate(v) for v in values)

    def toggle(self, cell: Coordinate) -> bool:
        """Add or remove ``cell``. Returns False when the placement is full."""

        if cell in self._cells:
            self._cells.remove(cell)
            return True
        if len(self._cells) >= BOTTLES_PER_SIDE:
            return False
        self._cells.append(cell)
        return True

    def clear(self) -> None:
        self._cells.clear()

    def is_complete(self) -> bool:
        return len(self._cells) == BOTTLES_PER_SIDE

    @property
    def cells(self) -> Tuple[Coordinate, ...]:
        return tuple(self._cells)

    def to_list(self) -> List[str]:
        return [str(c) for c in self._cells]

    def __contains__(self, cell: object) -> bool:
        return cell in self._cells

    def __len__(self) -> int:
        return len(self._cells)

    def __iter__(self) -> Iterator[Coordinate]:
        return iter(tuple(self._cells))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Placement):
            return NotImplemented
        return set(self._cells) == set(other._cells)

    def __repr__(self) -> str:
        return f"Placement({self.to_list()})"


def random_placement(rng: Optional[random.Random] = None) -> Placement:
    rng = rng or random.Random()
    return Placement(rng.sample(ALL_COORDINATES, BOTTLES_PER_SIDE))


# ---------- Ledger ----------


class Outcome(str, Enum):
    HIT = "hit"
    MISS = "miss"


class Ledger:
    """Append-only record of one side's guesses and their outcomes."""

    def __init__(self) -> None:
        self._entries: Dict[Coordinate, Outcome] = {}
        self._hits = 0

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, object]]) -> "Ledger":
        ledger = cls()
        for key, value in (data or {}).items():
            ledger.record(parse_coordinate(key), Outcome(value))
        return ledger

    def record(self, cell: Coordinate, outcome: Outcome) -> None:
        if cell in self._entries:
            raise ValueError(f"{cell} has already been guessed")
        self._entries[cell] = outcome
        if outcome is Outcome.HIT:
            self._hits += 1

    def outcome_at(self, cell: Coordinate) -> Optional[Outcome]:
        return self._entries.get(cell)

    @property
    def hits(self) -> int:
        return self._hits

    def as_grid(self) -> List[Optional[str]]:
        """Sixteen entries in board order: 'hit', 'miss' or None."""

        return [
            self._entries[c].value if c in self._entries else None
            for c in ALL_COORDINATES
        ]

    def to_mapping(self) -> Dict[str, str]:
        return {str(c): o.value for c, o in self._entries.items()}

    def items(self) -> List[Tuple[Coordinate, Outcome]]:
        return list(self._entries.items())

    def __contains__(self, cell: object) -> bool:
        return cell in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Ledger):
            return NotImplemented
        return self._entries == other._entries

    def __repr__(self) -> str:
        return f"Ledger({self.to_mapping()})"
