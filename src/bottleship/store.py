"""Document stores that push whole-room snapshots to subscribers."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Tuple

from .document import RoomDocument, Role, apply_changes, check_write
from .errors import JoinError, RoomNotFound
from .scheduler import Scheduler

logger = logging.getLogger(__name__)

SnapshotHandler = Callable[[Optional[RoomDocument]], None]
ErrorHandler = Callable[[Exception], None]
Unsubscribe = Callable[[], None]

ROOM_TTL_SECONDS = 60 * 30  # 30 minutes


class DocumentStore(ABC):
    @abstractmethod
    def create(self, code: str, document: RoomDocument) -> None:
        """Store a new room; ``JoinError`` if the code is taken."""

    @abstractmethod
    def get(self, code: str) -> Optional[RoomDocument]:
        ...

    @abstractmethod
    def update(
        self,
        code: str,
        changes: Mapping[str, Any],
        writer: Optional[Role] = None,
    ) -> RoomDocument:
        """Merge ``changes`` into the room and return the new document.

        When ``writer`` is given, field ownership is enforced.
        """

    @abstractmethod
    def delete(self, code: str) -> None:
        ...

    @abstractmethod
    def subscribe(
        self,
        code: str,
        on_snapshot: SnapshotHandler,
        on_error: Optional[ErrorHandler] = None,
    ) -> Unsubscribe:
        """Deliver the current document now and after every change.

        ``None`` is delivered once the room has been deleted.
        """


@dataclass(eq=False)
class _Subscription:
    on_snapshot: SnapshotHandler
    on_error: Optional[ErrorHandler]
    active: bool = True


@dataclass
class _Room:
    document: RoomDocument
    updated_at: float
    subscribers: List[_Subscription] = field(default_factory=list)


class MemoryDocumentStore(DocumentStore):
    """In-process store.

    Snapshots are deep copies taken at write time and are handed out one at a
    time: a handler that writes while handling a snapshot queues the follow-up
    snapshot rather than being re-entered. With a scheduler, delivery is
    deferred to it instead of happening before ``update`` returns.
    """

    def __init__(
        self,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._rooms: Dict[str, _Room] = {}
        self._scheduler = scheduler
        self._clock = clock
        self._outbox: Deque[Tuple[str, _Subscription, Optional[RoomDocument]]] = deque()
        self._delivering = False

    # ---- reads & writes ----

    def create(self, code: str, document: RoomDocument) -> None:
        if code in self._rooms:
            raise JoinError(f"Room {code} already exists")
        self._rooms[code] = _Room(document=document, updated_at=self._clock())
        logger.info("Created room %s", code)

    def get(self, code: str) -> Optional[RoomDocument]:
        room = self._rooms.get(code)
        return room.document.model_copy(deep=True) if room else None

    def update(
        self,
        code: str,
        changes: Mapping[str, Any],
        writer: Optional[Role] = None,
    ) -> RoomDocument:
        room = self._rooms.get(code)
        if room is None:
            raise RoomNotFound(f"Room {code} not found")
        if writer is not None:
            changes = check_write(writer, changes)
        room.document = apply_changes(room.document, changes)
        room.updated_at = self._clock()
        self._publish(code, room)
        return room.document.model_copy(deep=True)

    def delete(self, code: str) -> None:
        room = self._rooms.pop(code, None)
        if room is None:
            raise RoomNotFound(f"Room {code} not found")
        for subscription in room.subscribers:
            self._enqueue(code, subscription, None)
        self._flush()
        logger.info("Deleted room %s", code)

    def cleanup(self, max_age: float = ROOM_TTL_SECONDS) -> List[str]:
        """Drop rooms nobody listens to that have been idle for ``max_age``."""

        now = self._clock()
        expired = [
            code
            for code, room in list(self._rooms.items())
            if not any(s.active for s in room.subscribers)
            and now - room.updated_at >= max_age
        ]
        for code in expired:
            self._rooms.pop(code, None)
        return expired

    def __contains__(self, code: object) -> bool:
        return code in self._rooms

    # ---- change notification ----

    def subscribe(
        self,
        code: str,
        on_snapshot: SnapshotHandler,
        on_error: Optional[ErrorHandler] = None,
    ) -> Unsubscribe:
        room = self._rooms.get(code)
        if room is None:
            raise RoomNotFound(f"Room {code} not found")
        subscription = _Subscription(on_snapshot=on_snapshot, on_error=on_error)
        room.subscribers.append(subscription)
        self._enqueue(code, subscription, room.document.model_copy(deep=True))
        self._flush()

        def unsubscribe() -> None:
            subscription.active = False
            current = self._rooms.get(code)
            if current is not None and subscription in current.subscribers:
                current.subscribers.remove(subscription)

        return unsubscribe

    def _publish(self, code: str, room: _Room) -> None:
        for subscription in list(room.subscribers):
            self._enqueue(code, subscription, room.document.model_copy(deep=True))
        self._flush()

    def _enqueue(
        self,
        code: str,
        subscription: _Subscription,
        snapshot: Optional[RoomDocument],
    ) -> None:
        if self._scheduler is not None:
            self._scheduler.call_later(
                0.0, lambda: self._deliver(code, subscription, snapshot)
            )
        else:
            self._outbox.append((code, subscription, snapshot))

    def _flush(self) -> None:
        if self._delivering:
            return
        self._delivering = True
        try:
            while self._outbox:
                self._deliver(*self._outbox.popleft())
        finally:
            self._delivering = False

    def _deliver(
        self,
        code: str,
        subscription: _Subscription,
        snapshot: Optional[RoomDocument],
    ) -> None:
        if not subscription.active:
            return
        try:
            subscription.on_snapshot(snapshot)
        except Exception as exc:
            logger.exception("Snapshot delivery for room %s failed", code)
            if subscription.on_error is not None:
                subscription.on_error(exc)
