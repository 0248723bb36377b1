"""Exception hierarchy shared by the Bottleship engine and its web layer."""


class BottleshipError(Exception):
    """Base class for recoverable, session-scoped errors."""


class InvalidCoordinate(BottleshipError, ValueError):
    """Raised when external input does not name one of the 16 grid cells."""


class PlacementError(BottleshipError, ValueError):
    """Raised when a placement is malformed or incomplete."""


class TurnError(BottleshipError):
    """Raised when a move is attempted out of phase or out of turn."""


class JoinError(BottleshipError):
    """Raised when a remote room cannot be created or attached to."""


class OwnershipError(BottleshipError):
    """Raised when a client writes document fields owned by the other side."""


class RoomNotFound(BottleshipError, KeyError):
    """Raised when a room code has no backing document."""

    def __str__(self) -> str:
        return Exception.__str__(self)
