"""Authoritative room store for online games.

The store is the only place a room's state and version change. Every
version check and increment happens inside one critical section, so two
players racing on the same version get one acceptance and one stale-state
rejection.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Protocol
import logging
import threading
import time
import uuid

from .errors import MoveRejectedError, RoomNotFoundError, StaleStateError
from .game import GameState, Mark, Move

logger = logging.getLogger(__name__)

ROOM_CODE_LENGTH = 6
ROOM_TTL_SECONDS = 60 * 60 * 24  # 24 hours

CONNECTED = "connected"
WAITING = "waiting"
DISCONNECTED = "disconnected"

ADMIN_FIELDS = frozenset({"state", "players", "rematch_requests", "player_left", "password"})


def _fresh_players() -> Dict[str, str]:
    return {Mark.X.value: CONNECTED, Mark.O.value: WAITING}


def _fresh_rematch() -> Dict[str, bool]:
    return {Mark.X.value: False, Mark.O.value: False}


@dataclass(frozen=True)
class RoomRecord:
    """Snapshot of one room. Records are replaced, never mutated."""

    room_id: str
    state: GameState = field(default_factory=GameState.new)
    version: int = 0
    password: str = ""
    players: Dict[str, str] = field(default_factory=_fresh_players)
    rematch_requests: Dict[str, bool] = field(default_factory=_fresh_rematch)
    player_left: Optional[Mark] = None
    last_updated: float = field(default_factory=time.time)

    def check_password(self, password: Optional[str]) -> bool:
        return not self.password or self.password == (password or "")


class RoomStore(Protocol):
    def create(self, password: str, initial_state: GameState) -> str:
        ...

    def get(self, room_id: str) -> RoomRecord:
        ...

    def apply_validated_move(
        self, room_id: str, move: Move, expected_version: int
    ) -> RoomRecord:
        ...

    def update_raw(
        self, room_id: str, *, advance_version: bool = False, **changes: Any
    ) -> RoomRecord:
        ...


def normalize_room_id(room_id: str) -> str:
    return room_id.strip().upper()


class InMemoryRoomStore:
    """Process-local room store guarded by a single lock."""

    def __init__(self, ttl_seconds: float = ROOM_TTL_SECONDS) -> None:
        self.ttl_seconds = ttl_seconds
        self._rooms: Dict[str, RoomRecord] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: str) -> bool:
        return normalize_room_id(room_id) in self._rooms

    def _generate_room_code(self) -> str:
        return uuid.uuid4().hex[:ROOM_CODE_LENGTH].upper()

    def _require(self, room_id: str) -> RoomRecord:
        try:
            return self._rooms[normalize_room_id(room_id)]
        except KeyError as exc:
            raise RoomNotFoundError() from exc

    def create(self, password: str, initial_state: Optional[GameState] = None) -> str:
        state = initial_state if initial_state is not None else GameState.new()
        with self._lock:
            for _ in range(10):
                room_id = self._generate_room_code()
                if room_id not in self._rooms:
                    break
            else:
                raise RuntimeError("Unable to allocate room")
            self._rooms[room_id] = RoomRecord(
                room_id=room_id, state=state, password=password or ""
            )
        logger.info("created room %s", room_id)
        return room_id

    def get(self, room_id: str) -> RoomRecord:
        with self._lock:
            return self._require(room_id)

    def apply_validated_move(
        self, room_id: str, move: Move, expected_version: int
    ) -> RoomRecord:
        with self._lock:
            room = self._require(room_id)
            if expected_version != room.version:
                logger.info(
                    "room %s: stale move at version %d (current %d)",
                    room.room_id,
                    expected_version,
                    room.version,
                )
                raise StaleStateError(room.state, room.version)
            reason = room.state.rejection(move)
            if reason is not None:
                logger.info("room %s: rejected %s (%s)", room.room_id, move, reason.value)
                raise MoveRejectedError(reason)
            updated = replace(
                room,
                state=room.state.after(move),
                version=room.version + 1,
                last_updated=time.time(),
            )
            self._rooms[room.room_id] = updated
        logger.debug("room %s: accepted %s -> version %d", updated.room_id, move, updated.version)
        return updated

    def update_raw(
        self, room_id: str, *, advance_version: bool = False, **changes: Any
    ) -> RoomRecord:
        """Administrative update that bypasses move validation.

        ``players`` and ``rematch_requests`` are merged key by key so two
        players updating their own entries never overwrite each other.
        """

        unknown = set(changes) - ADMIN_FIELDS
        if unknown:
            raise ValueError(f"Cannot update room fields: {', '.join(sorted(unknown))}")

        with self._lock:
            room = self._require(room_id)
            if "players" in changes:
                changes["players"] = {**room.players, **changes["players"]}
            if "rematch_requests" in changes:
                changes["rematch_requests"] = {
                    **room.rematch_requests,
                    **changes["rematch_requests"],
                }
            if "state" in changes:
                changes["state"] = changes["state"].normalized()
            if advance_version:
                changes["version"] = room.version + 1
            updated = replace(room, last_updated=time.time(), **changes)
            self._rooms[room.room_id] = updated
        return updated

    def delete(self, room_id: str) -> bool:
        with self._lock:
            return self._rooms.pop(normalize_room_id(room_id), None) is not None

    def sweep_expired(self, now: Optional[float] = None) -> int:
        """Remove rooms idle for longer than the retention window."""

        now = time.time() if now is None else now
        with self._lock:
            expired = [
                room_id
                for room_id, room in self._rooms.items()
                if now - room.last_updated >= self.ttl_seconds
            ]
            for room_id in expired:
                del self._rooms[room_id]
        if expired:
            logger.info("swept %d expired rooms", len(expired))
        return len(expired)


def reset_for_rematch(store: RoomStore, room_id: str) -> RoomRecord:
    """Start a fresh game in ``room_id`` once both players asked for one."""

    return store.update_raw(
        room_id,
        advance_version=True,
        state=GameState.new(),
        rematch_requests=_fresh_rematch(),
        player_left=None,
    )

