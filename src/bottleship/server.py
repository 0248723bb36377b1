"""FastAPI surface for Bottleship: local matches plus the shared room documents."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from fastapi import (
    FastAPI,
    HTTPException,
    Request,
    WebSocket,
    WebSocketDisconnect,
)
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .ai import HuntTargetAI
from .board import BOTTLES_PER_SIDE, parse_coordinate, random_placement
from .config import SETTINGS
from .document import (
    RoomDocument,
    Role,
    generate_room_code,
    join_changes,
    new_room_document,
    normalize_room_code,
)
from .errors import (
    InvalidCoordinate,
    JoinError,
    OwnershipError,
    PlacementError,
    RoomNotFound,
    TurnError,
)
from .game import EventKind, Match, MatchEvent, Mode, Side
from .modes import HotseatResolver, ModeResolver, ScriptedResolver
from .scheduler import AsyncioScheduler, Scheduler
from .store import MemoryDocumentStore

logger = logging.getLogger(__name__)


@dataclass
class GameSession:
    """Container for a local (scripted or hotseat) match and its resolver."""

    match: Match
    resolver: ModeResolver
    move_log: List[Dict[str, str]] = field(default_factory=list)
    message: str = ""

    def record(self, event: MatchEvent) -> None:
        if event.kind is EventKind.GUESS:
            self.move_log.append(
                {
                    "side": event.side,
                    "cell": str(event.coordinate),
                    "outcome": event.outcome.value,
                }
            )


SESSIONS: Dict[str, GameSession] = {}
STORE = MemoryDocumentStore()
SCHEDULER: Scheduler = AsyncioScheduler()
app = FastAPI(
    title="Bottleship", description="Find the hidden bottles before they find yours"
)

AI_THINK_DELAY: float = SETTINGS.ai_think_delay
AI_CHAIN_DELAY: float = SETTINGS.ai_chain_delay
ROOM_CREATE_ATTEMPTS = 10


class NewGameRequest(BaseModel):
    """Request payload for starting a local match."""

    mode: Mode = Field(default=Mode.SCRIPTED, description="scripted or hotseat")
    names: List[str] = Field(default_factory=list, max_length=2)

    @field_validator("mode")
    @classmethod
    def ensure_local_mode(cls, value: Mode) -> Mode:
        if value is Mode.REMOTE:
            raise ValueError("Remote matches are played through /api/room")
        return value


class PlacementRequest(BaseModel):
    """Request payload for finalizing the active side's bottles."""

    model_config = ConfigDict(populate_by_name=True)

    cells: List[str] = Field(default_factory=list, max_length=BOTTLES_PER_SIDE)
    auto_place: bool = Field(default=False, alias="autoPlace")

    @field_validator("cells")
    @classmethod
    def ensure_cells(cls, value: List[str]) -> List[str]:
        return [str(parse_coordinate(v)) for v in value]


class GuessRequest(BaseModel):
    cell: str

    @field_validator("cell")
    @classmethod
    def ensure_cell(cls, value: str) -> str:
        return str(parse_coordinate(value))


class RoomEntryRequest(BaseModel):
    """Create or join a room as ``identity`` (supplied by the identity provider)."""

    identity: str = Field(min_length=1)
    name: str = Field(default="", max_length=40)


class RoomWriteRequest(BaseModel):
    role: Role
    changes: Dict[str, Any]


# ---------- Local matches ----------


def _create_session(mode: Mode, names: List[str]) -> Tuple[str, GameSession]:
    """Create a new local match and register it for later access."""

    match = Match.create(mode)
    first, second = (names + ["", ""])[:2]
    match.set_names(first, second)
    resolver: ModeResolver
    if mode is Mode.SCRIPTED:
        resolver = ScriptedResolver(
            match,
            SCHEDULER,
            ai=HuntTargetAI(),
            think_delay=AI_THINK_DELAY,
            chain_delay=AI_CHAIN_DELAY,
        )
    else:
        resolver = HotseatResolver(match)
    session = GameSession(match=match, resolver=resolver)
    match.subscribe(session.record)
    session_id = uuid.uuid4().hex
    SESSIONS[session_id] = session
    return session_id, session


def _get_session(game_id: str) -> GameSession:
    try:
        return SESSIONS[game_id]
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Game not found") from exc


def _serialize_session(game_id: str, session: GameSession) -> Dict[str, object]:
    match = session.match
    hide_second = match.mode is Mode.SCRIPTED and match.winner is None
    placements = {
        Side.ONE.value: match.placements[Side.ONE].to_list(),
        Side.TWO.value: [] if hide_second else match.placements[Side.TWO].to_list(),
    }
    active = session.resolver.active_side
    state: Dict[str, object] = {
        "id": game_id,
        "mode": match.mode.value,
        "phase": match.phase.value,
        "names": {side.value: name for side, name in match.names.items()},
        "turn": match.turn.value,
        "activeSide": active.value if active is not None else None,
        "winner": match.winner.value if match.winner else None,
        "placements": placements,
        "grids": {s.value: ledger.as_grid() for s, ledger in match.ledgers.items()},
        "hits": {side.value: ledger.hits for side, ledger in match.ledgers.items()},
        "moveLog": list(session.move_log),
        "aiPending": getattr(session.resolver, "ai_pending", False),
        "message": session.message,
    }
    if session.move_log:
        state["lastMove"] = session.move_log[-1]
    return state


@app.post("/api/game")
async def create_game(request: NewGameRequest) -> Dict[str, object]:
    game_id, session = _create_session(request.mode, request.names)
    return _serialize_session(game_id, session)


@app.get("/api/game/{game_id}")
async def get_game(game_id: str) -> Dict[str, object]:
    session = _get_session(game_id)
    return _serialize_session(game_id, session)


@app.post("/api/game/{game_id}/placement")
async def place_bottles(game_id: str, request: PlacementRequest) -> Dict[str, object]:
    session = _get_session(game_id)
    cells = (
        random_placement().cells
        if request.auto_place
        else [parse_coordinate(c) for c in request.cells]
    )
    try:
        session.resolver.finalize_placement(cells)
    except (PlacementError, TurnError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    session.message = ""
    return _serialize_session(game_id, session)


@app.post("/api/game/{game_id}/guess")
async def make_guess(game_id: str, request: GuessRequest) -> Dict[str, object]:
    session = _get_session(game_id)
    try:
        result = session.resolver.guess(parse_coordinate(request.cell))
    except (TurnError, InvalidCoordinate) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    session.message = result.message
    return _serialize_session(game_id, session)


@app.post("/api/game/{game_id}/rematch")
async def rematch_game(game_id: str) -> Dict[str, object]:
    session = _get_session(game_id)
    try:
        session.resolver.rematch()
    except TurnError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    session.move_log.clear()
    session.message = "Rematch! Place your bottles."
    return _serialize_session(game_id, session)


# ---------- Remote rooms ----------


def _resolve_join_base_url(request: Request) -> str:
    """Determine the best base URL for shareable room links."""

    origin = request.headers.get("origin")
    if origin:
        return origin.rstrip("/")

    forwarded_host = request.headers.get("x-forwarded-host")
    if forwarded_host:
        scheme = request.headers.get("x-forwarded-proto") or request.url.scheme
        return f"{scheme}://{forwarded_host}".rstrip("/")

    host = request.headers.get("host")
    if host:
        return f"{request.url.scheme}://{host}".rstrip("/")

    return str(request.base_url).rstrip("/")


def _room_code(room_id: str) -> str:
    try:
        return normalize_room_code(room_id)
    except JoinError as exc:
        raise HTTPException(status_code=404, detail="Room not found") from exc


def _get_room(room_id: str) -> Tuple[str, RoomDocument]:
    code = _room_code(room_id)
    document = STORE.get(code)
    if document is None:
        raise HTTPException(status_code=404, detail="Room not found")
    return code, document


@app.post("/api/room")
async def create_room(request: Request, entry: RoomEntryRequest) -> Dict[str, str]:
    STORE.cleanup(SETTINGS.room_ttl_seconds)
    for _ in range(ROOM_CREATE_ATTEMPTS):
        room_id = generate_room_code()
        try:
            STORE.create(room_id, new_room_document(entry.identity, entry.name))
        except JoinError:
            continue
        break
    else:
        raise HTTPException(status_code=500, detail="Unable to allocate room")

    base_url = _resolve_join_base_url(request)
    join_url = f"{base_url}/?room={room_id}"
    return {"roomId": room_id, "joinUrl": join_url, "role": Role.HOST.value}


@app.get("/api/room/{room_id}")
async def inspect_room(room_id: str) -> Dict[str, object]:
    code, document = _get_room(room_id)
    return {
        "roomId": code,
        "available": document.guest is None,
        "document": document.to_wire(),
    }


@app.post("/api/room/{room_id}/join")
async def join_room(room_id: str, entry: RoomEntryRequest) -> Dict[str, object]:
    code, document = _get_room(room_id)
    try:
        changes = join_changes(document, entry.identity, entry.name)
        updated = STORE.update(code, changes, writer=Role.GUEST)
    except JoinError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except RoomNotFound as exc:
        raise HTTPException(status_code=404, detail="Room not found") from exc
    return {"roomId": code, "role": Role.GUEST.value, "document": updated.to_wire()}


@app.patch("/api/room/{room_id}")
async def write_room(room_id: str, write: RoomWriteRequest) -> Dict[str, object]:
    code = _room_code(room_id)
    try:
        updated = STORE.update(code, write.changes, writer=write.role)
    except RoomNotFound as exc:
        raise HTTPException(status_code=404, detail="Room not found") from exc
    except OwnershipError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(
            status_code=422,
            detail=exc.errors(
                include_url=False, include_context=False, include_input=False
            ),
        ) from exc
    return {"roomId": code, "document": updated.to_wire()}


@app.delete("/api/room/{room_id}")
async def delete_room(room_id: str) -> Dict[str, object]:
    code = _room_code(room_id)
    try:
        STORE.delete(code)
    except RoomNotFound as exc:
        raise HTTPException(status_code=404, detail="Room not found") from exc
    return {"roomId": code, "deleted": True}


async def _push_snapshots(
    websocket: WebSocket, queue: "asyncio.Queue[Optional[RoomDocument]]"
) -> None:
    while True:
        document = await queue.get()
        if document is None:
            await websocket.send_json({"type": "deleted"})
            return
        await websocket.send_json({"type": "snapshot", "document": document.to_wire()})


async def _handle_room_message(
    websocket: WebSocket, code: str, message: Dict[str, Any]
) -> None:
    if not isinstance(message, dict) or message.get("type") != "write":
        await websocket.send_json({"type": "error", "message": "Unknown message"})
        return
    try:
        write = RoomWriteRequest.model_validate(message)
        STORE.update(code, write.changes, writer=write.role)
    except (ValidationError, OwnershipError, RoomNotFound) as exc:
        await websocket.send_json({"type": "error", "message": str(exc)})


@app.websocket("/ws/room/{room_id}")
async def room_snapshots(websocket: WebSocket, room_id: str) -> None:
    await websocket.accept()
    try:
        code = normalize_room_code(room_id)
    except JoinError:
        code = ""
    if code not in STORE:
        await websocket.send_json({"type": "error", "message": "Room not found"})
        await websocket.close()
        return

    loop = asyncio.get_running_loop()
    queue: "asyncio.Queue[Optional[RoomDocument]]" = asyncio.Queue()

    def on_snapshot(document: Optional[RoomDocument]) -> None:
        # Writes may come from request handlers running on other loops
        loop.call_soon_threadsafe(queue.put_nowait, document)

    unsubscribe = STORE.subscribe(code, on_snapshot)
    sender = asyncio.create_task(_push_snapshots(websocket, queue))
    try:
        while True:
            message = await websocket.receive_json()
            await _handle_room_message(websocket, code, message)
    except WebSocketDisconnect:
        pass
    finally:
        unsubscribe()
        sender.cancel()
        logger.debug("Snapshot listener for room %s closed", code)
