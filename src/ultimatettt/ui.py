"""FastAPI web API serving solo, local two-player and online games."""

from __future__ import annotations

import logging
import random
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional, Tuple

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .ai import Difficulty, UltimateAI
from .errors import MoveRejectedError, RoomNotFoundError, StaleStateError
from .game import GameState, Mark, Move, RejectReason, apply_move, clickable_cells
from .store import (
    CONNECTED,
    DISCONNECTED,
    InMemoryRoomStore,
    RoomRecord,
    reset_for_rematch,
)
from .sync import room_to_wire

logger = logging.getLogger(__name__)

AI_THINK_DELAY: Tuple[float, float] = (0.25, 0.35)


@dataclass
class GameSession:
    """A game played on one device, optionally against the computer."""

    state: GameState
    ai: Optional[UltimateAI]
    move_log: List[Dict[str, int | str]] = field(default_factory=list)
    ai_pending: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def mode(self) -> str:
        return "solo" if self.ai else "local"


SESSIONS: Dict[str, GameSession] = {}
STORE = InMemoryRoomStore()
REMATCH_LOCK = threading.Lock()

app = FastAPI(
    title="Ultimate Tic-Tac-Toe",
    description="Ultimate tic-tac-toe against the computer, on one device, or online",
)


def get_store() -> InMemoryRoomStore:
    return STORE


# ---------- request models ----------


class NewGameRequest(BaseModel):
    """Request payload for starting a game on this device."""

    mode: Literal["solo", "local"] = "solo"
    difficulty: Difficulty = Field(
        default=Difficulty.MEDIUM, description="Computer strength in solo mode"
    )

    @field_validator("difficulty", mode="before")
    @classmethod
    def lowercase_difficulty(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class MoveRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    board_index: int = Field(alias="boardIndex", ge=0, le=8)
    cell_index: int = Field(alias="cellIndex", ge=0, le=8)


class RoomMoveRequest(BaseModel):
    """An online move; index ranges are checked by the store, not here."""

    model_config = ConfigDict(populate_by_name=True)

    player: Literal["X", "O"]
    board_index: int = Field(alias="boardIndex")
    cell_index: int = Field(alias="cellIndex")
    expected_version: int = Field(alias="expectedVersion", ge=0)


class CreateRoomRequest(BaseModel):
    password: str = ""


class JoinRoomRequest(BaseModel):
    password: Optional[str] = None


class PlayerRequest(BaseModel):
    player: Literal["X", "O"]


class RejoinRequest(PlayerRequest):
    password: Optional[str] = None


# ---------- local sessions ----------


def _create_session(mode: str, difficulty: Difficulty) -> Tuple[str, GameSession]:
    ai = UltimateAI(player=Mark.O, difficulty=difficulty) if mode == "solo" else None
    session = GameSession(state=GameState.new(), ai=ai)
    session_id = uuid.uuid4().hex
    SESSIONS[session_id] = session
    logger.info("created %s game %s", session.mode, session_id)
    return session_id, session


def _get_session(game_id: str) -> GameSession:
    try:
        return SESSIONS[game_id]
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Game not found") from exc


def _ai_should_move(session: GameSession) -> bool:
    state = session.state
    return bool(
        session.ai and not state.over and state.current_player == session.ai.player
    )


def _run_ai_turn(game_id: str) -> None:
    session = SESSIONS.get(game_id)
    if not session:
        return

    time.sleep(max(0.0, random.uniform(*AI_THINK_DELAY)))

    with session.lock:
        try:
            if not _ai_should_move(session):
                return
            move = session.ai.choose(session.state)
            if move is None:
                return
            result = apply_move(session.state, move)
            if not result.accepted:
                logger.error("AI produced illegal move %s (%s)", move, result.reason)
                return
            session.state = result.state
            session.move_log.append(
                {
                    "player": move.player.value,
                    "boardIndex": move.board_index,
                    "cellIndex": move.cell_index,
                }
            )
        finally:
            session.ai_pending = False


def _serialize_session(game_id: str, session: GameSession) -> Dict[str, object]:
    with session.lock:
        state = session.state
        payload: Dict[str, object] = {
            "id": game_id,
            "mode": session.mode,
            "difficulty": session.ai.difficulty.value if session.ai else None,
            **state.to_wire(),
            "clickable": [list(pair) for pair in clickable_cells(state)],
            "moveLog": list(session.move_log),
            "aiPending": session.ai_pending,
        }
        if session.ai and state.current_player == session.ai.player:
            payload["clickable"] = []
        if session.move_log:
            payload["lastMove"] = session.move_log[-1]
        return payload


def _apply_player_move(
    game_id: str,
    session: GameSession,
    board_index: int,
    cell_index: int,
    background_tasks: Optional[BackgroundTasks] = None,
) -> None:
    with session.lock:
        if session.ai_pending:
            raise HTTPException(status_code=400, detail="AI is completing its move")
        state = session.state
        if session.ai and state.current_player == session.ai.player and not state.over:
            raise HTTPException(status_code=400, detail=RejectReason.NOT_YOUR_TURN.message)

        move = Move(board_index, cell_index, state.current_player)
        result = apply_move(state, move)
        if not result.accepted:
            raise HTTPException(status_code=400, detail=result.reason.message)

        session.state = result.state
        session.move_log.append(
            {"player": move.player.value, "boardIndex": board_index, "cellIndex": cell_index}
        )
        should_schedule_ai = _ai_should_move(session)
        if should_schedule_ai:
            session.ai_pending = True

    if should_schedule_ai and background_tasks is not None:
        background_tasks.add_task(_run_ai_turn, game_id)


@app.post("/api/game")
def create_game(request: NewGameRequest) -> Dict[str, object]:
    game_id, session = _create_session(request.mode, request.difficulty)
    return _serialize_session(game_id, session)


@app.get("/api/game/{game_id}")
def get_game(game_id: str) -> Dict[str, object]:
    session = _get_session(game_id)
    return _serialize_session(game_id, session)


@app.post("/api/game/{game_id}/move")
def make_move(
    game_id: str, request: MoveRequest, background_tasks: BackgroundTasks
) -> Dict[str, object]:
    session = _get_session(game_id)
    _apply_player_move(
        game_id, session, request.board_index, request.cell_index, background_tasks
    )
    return _serialize_session(game_id, session)


@app.post("/api/game/{game_id}/reset")
def reset_game(game_id: str) -> Dict[str, object]:
    session = _get_session(game_id)
    with session.lock:
        if session.ai_pending:
            raise HTTPException(status_code=400, detail="AI is completing its move")
        session.state = GameState.new()
        session.move_log.clear()
    return _serialize_session(game_id, session)


# ---------- online rooms ----------


def _rejection(exc: MoveRejectedError, status_code: int = 400) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"kind": exc.reason.value, "message": exc.message},
    )


def _require_room(store: InMemoryRoomStore, room_id: str) -> RoomRecord:
    try:
        return store.get(room_id)
    except RoomNotFoundError as exc:
        raise _rejection(exc, 404) from exc


def _serialize_room(room: RoomRecord) -> Dict[str, object]:
    payload: Dict[str, object] = room_to_wire(room)
    payload["clickable"] = [list(pair) for pair in clickable_cells(room.state)]
    return payload


def _resolve_join_base_url(request: Request) -> str:
    """Determine the best base URL for shareable room links."""

    origin = request.headers.get("origin")
    if origin:
        return origin.rstrip("/")

    forwarded_host = request.headers.get("x-forwarded-host")
    if forwarded_host:
        scheme = request.headers.get("x-forwarded-proto") or request.url.scheme
        return f"{scheme}://{forwarded_host}".rstrip("/")

    return str(request.base_url).rstrip("/")


@app.post("/api/room")
def create_room(
    request: Request,
    payload: Optional[CreateRoomRequest] = None,
    store: InMemoryRoomStore = Depends(get_store),
) -> Dict[str, str]:
    store.sweep_expired()
    room_id = store.create((payload or CreateRoomRequest()).password, GameState.new())
    join_url = f"{_resolve_join_base_url(request)}/?room={room_id}"
    return {"roomId": room_id, "joinUrl": join_url}


@app.get("/api/room/{room_id}")
def get_room(
    room_id: str, store: InMemoryRoomStore = Depends(get_store)
) -> Dict[str, object]:
    return _serialize_room(_require_room(store, room_id))


@app.post("/api/room/{room_id}/join")
def join_room(
    room_id: str,
    payload: JoinRoomRequest,
    store: InMemoryRoomStore = Depends(get_store),
) -> Dict[str, object]:
    room = _require_room(store, room_id)
    if not room.check_password(payload.password):
        raise HTTPException(status_code=401, detail="Invalid password")
    if room.players.get(Mark.O.value) != CONNECTED:
        room = store.update_raw(room.room_id, players={Mark.O.value: CONNECTED})
        logger.info("room %s: O joined", room.room_id)
    return {"success": True, "player": Mark.O.value, "room": _serialize_room(room)}


@app.post("/api/room/{room_id}/leave")
async def leave_room(
    room_id: str,
    request: Request,
    store: InMemoryRoomStore = Depends(get_store),
) -> Dict[str, object]:
    # Page-unload beacons send the JSON body as text/plain.
    try:
        payload = PlayerRequest.model_validate_json(await request.body())
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail="Invalid request body") from exc

    try:
        store.update_raw(
            room_id,
            players={payload.player: DISCONNECTED},
            player_left=Mark(payload.player),
        )
    except RoomNotFoundError:
        return {"success": True, "message": "Room already gone"}
    logger.info("room %s: %s left", room_id, payload.player)
    return {"success": True}


@app.post("/api/room/{room_id}/rejoin")
def rejoin_room(
    room_id: str,
    payload: RejoinRequest,
    store: InMemoryRoomStore = Depends(get_store),
) -> Dict[str, object]:
    room = _require_room(store, room_id)
    if not room.check_password(payload.password):
        raise HTTPException(status_code=403, detail="Invalid password")
    room = store.update_raw(
        room.room_id, players={payload.player: CONNECTED}, player_left=None
    )
    return {"success": True, "room": _serialize_room(room)}


@app.post("/api/room/{room_id}/move")
def make_room_move(
    room_id: str,
    payload: RoomMoveRequest,
    store: InMemoryRoomStore = Depends(get_store),
) -> Dict[str, object]:
    move = Move(payload.board_index, payload.cell_index, Mark(payload.player))
    try:
        room = store.apply_validated_move(room_id, move, payload.expected_version)
    except StaleStateError as exc:
        raise HTTPException(
            status_code=409,
            detail={
                "kind": exc.reason.value,
                "message": exc.message,
                "state": exc.state.to_wire(),
                "version": exc.version,
            },
        ) from exc
    except RoomNotFoundError as exc:
        raise _rejection(exc, 404) from exc
    except MoveRejectedError as exc:
        raise _rejection(exc) from exc
    except Exception as exc:
        logger.exception("room %s: failed to apply %s", room_id, move)
        raise HTTPException(
            status_code=500,
            detail={"kind": "SERVER_FAULT", "message": "Server error, the move was not applied"},
        ) from exc
    return _serialize_room(room)


@app.post("/api/room/{room_id}/rematch")
def request_rematch(
    room_id: str,
    payload: PlayerRequest,
    store: InMemoryRoomStore = Depends(get_store),
) -> Dict[str, object]:
    with REMATCH_LOCK:
        try:
            room = store.update_raw(room_id, rematch_requests={payload.player: True})
        except RoomNotFoundError as exc:
            raise _rejection(exc, 404) from exc
        if all(room.rematch_requests.values()):
            room = reset_for_rematch(store, room.room_id)
            logger.info("room %s: rematch started at version %d", room.room_id, room.version)
    return _serialize_room(room)
