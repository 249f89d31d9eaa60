"""Errors raised while synchronizing online games."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from .game import RejectReason

if TYPE_CHECKING:
    from .game import GameState


class SyncError(Exception):
    """Base class for anything that stops a move from syncing."""


class MoveRejectedError(SyncError):
    """The authoritative store refused the move. Never retried automatically."""

    def __init__(self, reason: RejectReason, message: Optional[str] = None) -> None:
        super().__init__(message or reason.message)
        self.reason = reason
        self.message = message or reason.message


class RoomNotFoundError(MoveRejectedError):
    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(RejectReason.NOT_FOUND, message)


class StaleStateError(MoveRejectedError):
    """The move targeted an old version; carries the current state to adopt."""

    def __init__(self, state: "GameState", version: int, message: Optional[str] = None) -> None:
        super().__init__(RejectReason.STALE_STATE, message)
        self.state = state
        self.version = version


class TransportError(SyncError):
    """The request may not have reached the server."""


class ServerFaultError(SyncError):
    """The server failed while processing; the move was not applied."""
