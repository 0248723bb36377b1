"""Shared room document for remote matches and the pure views derived from it.

Both clients write to the same record without an arbiter. Safety comes from
partitioned ownership: every field declares which side may write it (the
``writer`` entry of its schema metadata) and ``check_write`` enforces it.
The shared ``turn``/``winner``/``status`` fields are only written by the side
that just moved, which the turn rule makes unique.
"""

from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .board import Ledger, Outcome, Placement, parse_coordinate
from .errors import JoinError, OwnershipError
from .game import Phase, has_won

ROOM_CODE_LENGTH = 6
ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits


class Role(str, Enum):
    HOST = "host"
    GUEST = "guest"

    @property
    def other(self) -> "Role":
        return Role.GUEST if self is Role.HOST else Role.HOST


class RoomStatus(str, Enum):
    WAITING = "waiting"
    SETUP = "setup"
    PLAYING = "playing"
    FINISHED = "finished"
    ABANDONED = "abandoned"


CREATOR = "creator"
BOTH = "both"
STORE = "store"


def _writer(who: str) -> Dict[str, str]:
    return {"writer": who}


class RoomDocument(BaseModel):
    """One remote match, keyed by its room code."""

    model_config = ConfigDict(populate_by_name=True)

    host: Optional[str] = Field(default=None, json_schema_extra=_writer(CREATOR))
    guest: Optional[str] = Field(default=None, json_schema_extra=_writer("guest"))
    host_name: str = Field(
        default="Player 1", alias="hostName", json_schema_extra=_writer("host")
    )
    guest_name: str = Field(
        default="Player 2", alias="guestName", json_schema_extra=_writer("guest")
    )
    status: RoomStatus = Field(
        default=RoomStatus.WAITING, json_schema_extra=_writer(BOTH)
    )
    turn: Role = Field(default=Role.HOST, json_schema_extra=_writer(BOTH))
    host_bottles: List[str] = Field(
        default_factory=list, alias="hostBottles", json_schema_extra=_writer("host")
    )
    guest_bottles: List[str] = Field(
        default_factory=list, alias="guestBottles", json_schema_extra=_writer("guest")
    )
    host_moves: Dict[str, Outcome] = Field(
        default_factory=dict, alias="hostMoves", json_schema_extra=_writer("host")
    )
    guest_moves: Dict[str, Outcome] = Field(
        default_factory=dict, alias="guestMoves", json_schema_extra=_writer("guest")
    )
    winner: Optional[Role] = Field(default=None, json_schema_extra=_writer(BOTH))
    # Bumped on every rematch; used to fire per-round effects at most once
    round: int = Field(default=0, ge=0, json_schema_extra=_writer(BOTH))
    created: float = Field(
        default_factory=time.time, json_schema_extra=_writer(CREATOR)
    )
    # Revision stamped by the store on every write; never written by clients
    version: int = Field(default=0, ge=0, json_schema_extra=_writer(STORE))

    @field_validator("host_bottles", "guest_bottles", mode="before")
    @classmethod
    def ensure_valid_bottles(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if not isinstance(value, (list, tuple)):
            raise ValueError("Bottles must be a list of cells")
        return Placement.from_cells(value).to_list()

    @field_validator("host_moves", "guest_moves", mode="before")
    @classmethod
    def ensure_valid_moves(cls, value: Any) -> Dict[str, Any]:
        if value is None:
            return {}
        if not isinstance(value, Mapping):
            raise ValueError("Moves must map cells to outcomes")
        return {str(parse_coordinate(k)): v for k, v in value.items()}

    def bottles_of(self, role: Role) -> List[str]:
        return self.host_bottles if role is Role.HOST else self.guest_bottles

    def moves_of(self, role: Role) -> Dict[str, Outcome]:
        return self.host_moves if role is Role.HOST else self.guest_moves

    def name_of(self, role: Role) -> str:
        return self.host_name if role is Role.HOST else self.guest_name

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def field_writer(name: str) -> str:
    extra = RoomDocument.model_fields[name].json_schema_extra or {}
    return extra["writer"]  # type: ignore[index]


_ALIASES = {
    info.alias: name for name, info in RoomDocument.model_fields.items() if info.alias
}
_ROUND_FIELDS = ("host_bottles", "guest_bottles", "host_moves", "guest_moves")


def normalize_changes(changes: Mapping[str, Any]) -> Dict[str, Any]:
    """Map wire aliases (``hostMoves``) onto field names (``host_moves``)."""

    normalized: Dict[str, Any] = {}
    for key, value in changes.items():
        name = _ALIASES.get(key, key)
        if name not in RoomDocument.model_fields:
            raise OwnershipError(f"Unknown room field {key!r}")
        normalized[name] = value
    return normalized


def is_rematch_reset(changes: Mapping[str, Any]) -> bool:
    """The cooperative rematch: back to setup with every round field emptied."""

    if changes.get("status") not in (RoomStatus.SETUP, RoomStatus.SETUP.value):
        return False
    return all(not changes.get(name, ()) for name in _ROUND_FIELDS) and all(
        name in changes for name in _ROUND_FIELDS
    )


def check_write(role: Role, changes: Mapping[str, Any]) -> Dict[str, Any]:
    """Validate that ``role`` owns every field in ``changes``.

    Returns the changes keyed by field name. Raises ``OwnershipError``.
    """

    normalized = normalize_changes(changes)
    rematch = is_rematch_reset(normalized)
    for name in normalized:
        writer = field_writer(name)
        if writer == BOTH or writer == role.value:
            continue
        if rematch and name in _ROUND_FIELDS:
            continue
        raise OwnershipError(f"{role.value} may not write {name!r}")
    return normalized


def apply_changes(document: RoomDocument, changes: Mapping[str, Any]) -> RoomDocument:
    data = document.model_dump()
    data.update(normalize_changes(changes))
    data["version"] = document.version + 1
    return RoomDocument.model_validate(data)


# ---------- Room codes ----------


def generate_room_code(rng: Optional[random.Random] = None) -> str:
    rng = rng or random.Random()
    return "".join(rng.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))


def normalize_room_code(code: str) -> str:
    normalized = (code or "").strip().upper()
    if not normalized:
        raise JoinError("Please enter a room code")
    if len(normalized) != ROOM_CODE_LENGTH or not normalized.isalnum():
        raise JoinError("Room not found")
    return normalized


# ---------- Writes with protocol meaning ----------


def new_room_document(identity: str, name: str = "") -> RoomDocument:
    return RoomDocument(
        host=identity,
        host_name=name.strip() or "Player 1",
        guest_name="Player 2",
    )


def join_changes(
    document: Optional[RoomDocument], identity: str, name: str = ""
) -> Dict[str, Any]:
    """The guest's attach write, or ``JoinError`` if the room cannot be joined."""

    if document is None:
        raise JoinError("Room not found")
    if document.status is RoomStatus.ABANDONED:
        raise JoinError("Room has been abandoned")
    if document.guest and document.guest != identity:
        raise JoinError("Room full")
    changes: Dict[str, Any] = {
        "guest": identity,
        "guest_name": name.strip() or "Guest",
    }
    # A returning guest must not knock a running match back to setup
    if document.status is RoomStatus.WAITING:
        changes["status"] = RoomStatus.SETUP
    return changes


def rematch_changes(document: RoomDocument) -> Dict[str, Any]:
    return {
        "status": RoomStatus.SETUP,
        "host_bottles": [],
        "guest_bottles": [],
        "host_moves": {},
        "guest_moves": {},
        "winner": None,
        "turn": Role.HOST,
        "round": document.round + 1,
    }


# ---------- Role-relative views ----------


def resolve_role(
    document: RoomDocument, identity: Optional[str], cached: Optional[Role]
) -> Role:
    """Which half of the document belongs to this client.

    The role remembered when the room was created or joined always wins, so
    one identity playing both sides still resolves correctly. Without one (a
    reloaded client) the identity is matched against the document.
    """

    if cached is not None:
        return cached
    if document.host is not None and document.host == document.guest:
        raise JoinError("Cannot tell host from guest without a remembered role")
    if identity is not None and identity == document.host:
        return Role.HOST
    if identity is not None and identity == document.guest:
        return Role.GUEST
    raise JoinError("This identity is not part of the room")


@dataclass(frozen=True)
class RoomView:
    role: Role
    status: RoomStatus
    round: int
    my_name: str
    opponent_name: str
    my_placement: Placement
    opponent_placement: Placement
    my_ledger: Ledger
    opponent_ledger: Ledger
    my_turn: bool
    winner: Optional[Role]

    @property
    def phase(self) -> Phase:
        if self.status is RoomStatus.ABANDONED:
            return Phase.MENU
        if self.winner is not None or self.status is RoomStatus.FINISHED:
            return Phase.FINISHED
        if self.status is RoomStatus.PLAYING:
            return Phase.GUESSING
        return Phase.PLACING

    @property
    def i_won(self) -> bool:
        return self.winner is self.role


def derive_view(document: RoomDocument, role: Role) -> RoomView:
    """Everything a client shows, computed from the document alone."""

    opponent = role.other
    return RoomView(
        role=role,
        status=document.status,
        round=document.round,
        my_name=document.name_of(role),
        opponent_name=document.name_of(opponent),
        my_placement=Placement.from_cells(document.bottles_of(role)),
        opponent_placement=Placement.from_cells(document.bottles_of(opponent)),
        my_ledger=Ledger.from_mapping(document.moves_of(role)),
        opponent_ledger=Ledger.from_mapping(document.moves_of(opponent)),
        my_turn=document.status is RoomStatus.PLAYING
        and document.winner is None
        and document.turn is role,
        winner=document.winner,
    )


def should_claim_win(document: RoomDocument, role: Role) -> bool:
    """Whether this client must write ``winner``/``finished`` for itself.

    Only the owner of a ledger that crossed the threshold claims. Should both
    ledgers ever cross in one snapshot, the side holding the turn (the one who
    hit last) claims and the other stays silent.
    """

    if document.status is not RoomStatus.PLAYING or document.winner is not None:
        return False
    mine = has_won(Ledger.from_mapping(document.moves_of(role)))
    theirs = has_won(Ledger.from_mapping(document.moves_of(role.other)))
    if mine and theirs:
        return document.turn is role
    return mine
