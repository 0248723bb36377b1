"""Bottleship package exposing the match engine, opponent search and remote protocol."""

from .ai import HuntTargetAI
from .board import Coordinate, Ledger, Outcome, Placement, parse_coordinate
from .document import RoomDocument, Role, RoomStatus, derive_view
from .game import Match, Mode, Phase, Side
from .modes import HotseatResolver, ScriptedResolver
from .remote import RemoteClient
from .store import MemoryDocumentStore

__all__ = [
    "Coordinate",
    "HotseatResolver",
    "HuntTargetAI",
    "Ledger",
    "Match",
    "MemoryDocumentStore",
    "Mode",
    "Outcome",
    "Phase",
    "Placement",
    "RemoteClient",
    "Role",
    "RoomDocument",
    "RoomStatus",
    "ScriptedResolver",
    "Side",
    "derive_view",
    "parse_coordinate",
]
