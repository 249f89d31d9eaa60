"""Client side of online play: optimistic concurrency against the room store.

Each client keeps a read-only mirror of the room's game state tagged with the
version it last saw. Moves are sent with that version; the store accepts them
only if nobody moved in between. Network failures are retried with a fixed
backoff, everything else is surfaced to the player.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple
import logging
import threading
import time

import httpx

from .errors import (
    MoveRejectedError,
    RoomNotFoundError,
    ServerFaultError,
    StaleStateError,
    SyncError,
    TransportError,
)
from .game import GameState, Mark, Move, RejectReason, clickable_cells
from .store import RoomRecord, RoomStore

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_DELAY = 1.0  # seconds, fixed

POLL_GAME_OVER = 5.0
POLL_OWN_TURN = 2.0
POLL_OPPONENT_TURN = 0.5

TRANSPORT_FAILURE = "TRANSPORT"
SERVER_FAULT = "SERVER_FAULT"


# ---------- wire helpers ----------


def room_to_wire(room: RoomRecord) -> Dict[str, Any]:
    return {
        "roomId": room.room_id,
        "version": room.version,
        "state": room.state.to_wire(),
        "players": dict(room.players),
        "rematchRequests": dict(room.rematch_requests),
        "playerLeft": room.player_left.value if room.player_left else None,
    }


def room_from_wire(payload: Dict[str, Any]) -> RoomRecord:
    left = payload.get("playerLeft")
    return RoomRecord(
        room_id=payload["roomId"],
        state=GameState.from_wire(payload["state"]),
        version=int(payload["version"]),
        players=dict(payload.get("players") or {}),
        rematch_requests=dict(payload.get("rematchRequests") or {}),
        player_left=Mark(left) if left else None,
    )


# ---------- transports ----------


class Transport(Protocol):
    def submit_move(self, room_id: str, move: Move, expected_version: int) -> RoomRecord:
        ...

    def fetch(self, room_id: str) -> RoomRecord:
        ...


class StoreTransport:
    """Talks to a room store living in the same process."""

    def __init__(self, store: RoomStore) -> None:
        self.store = store

    def submit_move(self, room_id: str, move: Move, expected_version: int) -> RoomRecord:
        try:
            return self.store.apply_validated_move(room_id, move, expected_version)
        except SyncError:
            raise
        except Exception as exc:
            logger.exception("room %s: store failed while applying %s", room_id, move)
            raise ServerFaultError("Server error, the move was not applied") from exc

    def fetch(self, room_id: str) -> RoomRecord:
        return self.store.get(room_id)


class HttpTransport:
    """Talks to the web API over HTTP.

    ``client`` is any ``httpx.Client``; FastAPI's ``TestClient`` works too.
    """

    def __init__(self, client: httpx.Client, base_url: str = "") -> None:
        self.client = client
        self.base_url = base_url.rstrip("/")

    def submit_move(self, room_id: str, move: Move, expected_version: int) -> RoomRecord:
        payload = {
            "player": move.player.value,
            "boardIndex": move.board_index,
            "cellIndex": move.cell_index,
            "expectedVersion": expected_version,
        }
        response = self._request("POST", f"/api/room/{room_id}/move", json=payload)
        return self._decode(response)

    def fetch(self, room_id: str) -> RoomRecord:
        response = self._request("GET", f"/api/room/{room_id}")
        return self._decode(response)

    def _decode(self, response: httpx.Response) -> RoomRecord:
        try:
            return room_from_wire(response.json())
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("unreadable room payload (%s): %s", response.status_code, exc)
            raise ServerFaultError("Server sent an unreadable response") from exc

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self.client.request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.TransportError as exc:
            raise TransportError(str(exc) or exc.__class__.__name__) from exc
        if response.status_code >= 500:
            raise ServerFaultError("Server error, the move was not applied")
        if response.status_code >= 400:
            raise _rejection_from_response(response)
        return response


def _rejection_from_response(response: httpx.Response) -> SyncError:
    try:
        detail = response.json().get("detail")
    except ValueError:
        detail = None
    if not isinstance(detail, dict) or "kind" not in detail:
        return ServerFaultError(f"Unexpected response ({response.status_code})")

    reason = RejectReason(detail["kind"])
    message = detail.get("message")
    if reason is RejectReason.STALE_STATE:
        return StaleStateError(
            GameState.from_wire(detail["state"]), int(detail["version"]), message
        )
    if reason is RejectReason.NOT_FOUND:
        return RoomNotFoundError(message)
    return MoveRejectedError(reason, message)


# ---------- client state machine ----------


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


@dataclass(frozen=True)
class SyncErrorInfo:
    reason: str
    message: str
    retry_count: int = 0
    can_retry: bool = False


class SyncClient:
    """One player's view of an online room."""

    def __init__(
        self,
        transport: Transport,
        room_id: str,
        player: Mark,
        *,
        state: Optional[GameState] = None,
        version: int = 0,
        max_retries: int = MAX_RETRIES,
        retry_delay: float = RETRY_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.transport = transport
        self.room_id = room_id
        self.player = player
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._sleep = sleep

        self._state = state if state is not None else GameState.new()
        self._version = version
        self._room: Optional[RoomRecord] = None
        self._status = SyncStatus.IDLE
        self._error: Optional[SyncErrorInfo] = None
        self._pending: Optional[Tuple[Move, int]] = None
        self.notice: Optional[str] = None

        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._poller: Optional[threading.Thread] = None

    # ---- read-only view ----

    @property
    def state(self) -> GameState:
        return self._state

    @property
    def version(self) -> int:
        return self._version

    @property
    def room(self) -> Optional[RoomRecord]:
        return self._room

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def error(self) -> Optional[SyncErrorInfo]:
        return self._error

    @property
    def pending_move(self) -> Optional[Move]:
        return self._pending[0] if self._pending else None

    @property
    def my_turn(self) -> bool:
        return not self._state.over and self._state.current_player == self.player

    def clickable(self) -> List[Tuple[int, int]]:
        if self._status is not SyncStatus.IDLE or not self.my_turn:
            return []
        return clickable_cells(self._state)

    # ---- move submission ----

    def submit(self, board_index: int, cell_index: int) -> bool:
        """Send a move from IDLE. Returns True once the store accepted it."""

        with self._lock:
            if self._status is not SyncStatus.IDLE:
                logger.debug("ignoring move while %s", self._status.value)
                return False
            move = Move(board_index, cell_index, self.player)
            pending = self._pending = (move, self._version)
            self._status = SyncStatus.SYNCING
        return self._send(*pending)

    def retry(self) -> bool:
        """Resubmit the pending move after an error, with a fresh retry count."""

        with self._lock:
            if self._status is not SyncStatus.ERROR or self._pending is None:
                return False
            pending = self._pending
            self._status = SyncStatus.SYNCING
            self._error = None
        return self._send(*pending)

    def dismiss(self) -> None:
        """Leave the error state without resubmitting.

        A request already in flight is not cancelled; the version check keeps
        it from corrupting later moves.
        """

        with self._lock:
            self._pending = None
            self._error = None
            self.notice = None
            if self._status is SyncStatus.ERROR:
                self._status = SyncStatus.IDLE

    def _send(self, move: Move, expected_version: int) -> bool:
        attempt = 0
        while True:
            try:
                room = self.transport.submit_move(self.room_id, move, expected_version)
            except TransportError as exc:
                if attempt >= self.max_retries:
                    logger.warning(
                        "room %s: giving up on %s after %d retries: %s",
                        self.room_id,
                        move,
                        attempt,
                        exc,
                    )
                    self._fail(
                        SyncErrorInfo(
                            TRANSPORT_FAILURE,
                            "Connection problem, could not send your move",
                            retry_count=attempt,
                            can_retry=True,
                        ),
                        keep_pending=True,
                    )
                    return False
                attempt += 1
                logger.info(
                    "room %s: transport failure (%s), retry %d/%d",
                    self.room_id,
                    exc,
                    attempt,
                    self.max_retries,
                )
                self._sleep(self.retry_delay)
            except StaleStateError as exc:
                with self._lock:
                    self._adopt(exc.state, exc.version)
                    self.notice = exc.message
                self._fail(SyncErrorInfo(exc.reason.value, exc.message))
                return False
            except MoveRejectedError as exc:
                self._fail(SyncErrorInfo(exc.reason.value, exc.message))
                return False
            except ServerFaultError as exc:
                self._fail(
                    SyncErrorInfo(SERVER_FAULT, str(exc), can_retry=True),
                    keep_pending=True,
                )
                return False
            except Exception:
                logger.exception("room %s: unexpected failure sending %s", self.room_id, move)
                self._fail(
                    SyncErrorInfo(
                        SERVER_FAULT, "Server error, the move was not applied", can_retry=True
                    ),
                    keep_pending=True,
                )
                return False
            else:
                with self._lock:
                    self._room = room
                    self._adopt(room.state, room.version)
                    self._pending = None
                    self._error = None
                    self.notice = None
                    self._status = SyncStatus.IDLE
                return True

    def _fail(self, info: SyncErrorInfo, keep_pending: bool = False) -> None:
        with self._lock:
            if not keep_pending:
                self._pending = None
            self._error = info
            self._status = SyncStatus.ERROR
        logger.info("room %s: move failed (%s) %s", self.room_id, info.reason, info.message)

    def _adopt(self, state: GameState, version: int) -> None:
        self._state = state
        self._version = version

    # ---- read refresh ----

    def refresh(self) -> bool:
        """Fetch the room; apply it only if it is newer than the local copy."""

        with self._lock:
            if self._status is SyncStatus.SYNCING:
                return False
        room = self.transport.fetch(self.room_id)
        with self._lock:
            # A submission may have started or finished while fetching.
            if self._status is SyncStatus.SYNCING or room.version <= self._version:
                if room.version == self._version:
                    self._room = room
                return False
            self._room = room
            self._adopt(room.state, room.version)
        logger.debug("room %s: refreshed to version %d", self.room_id, room.version)
        return True

    def poll_interval(self) -> float:
        if self._state.over:
            return POLL_GAME_OVER
        if self.my_turn:
            return POLL_OWN_TURN
        return POLL_OPPONENT_TURN

    def start_polling(self) -> None:
        if self._poller is not None and self._poller.is_alive():
            return
        self._stop.clear()
        self._poller = threading.Thread(
            target=self._poll_loop, name=f"uttt-poll-{self.room_id}", daemon=True
        )
        self._poller.start()

    def stop_polling(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._poller is not None:
            self._poller.join(timeout)
            self._poller = None

    def _poll_loop(self) -> None:
        while not self._stop.wait(self.poll_interval()):
            try:
                self.refresh()
            except SyncError as exc:
                logger.warning("room %s: poll failed: %s", self.room_id, exc)
            except Exception:
                logger.exception("room %s: unexpected poll failure", self.room_id)
