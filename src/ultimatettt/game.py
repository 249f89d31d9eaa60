"""Core rules for Ultimate Tic-Tac-Toe: line evaluation, moves, and state."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Collection, Dict, List, Optional, Sequence, Tuple, TypeVar

T = TypeVar("T")

WINNING_LINES: Tuple[Tuple[int, int, int], ...] = (
    (0, 1, 2),
    (3, 4, 5),
    (6, 7, 8),
    (0, 3, 6),
    (1, 4, 7),
    (2, 5, 8),
    (0, 4, 8),
    (2, 4, 6),
)

CENTER = 4
CORNERS: Tuple[int, ...] = (0, 2, 6, 8)


class Mark(str, Enum):
    X = "X"
    O = "O"
    EMPTY = " "

    @property
    def opponent(self) -> "Mark":
        if self is Mark.EMPTY:
            raise ValueError("Empty cells have no opponent")
        return Mark.O if self is Mark.X else Mark.X


class Outcome(str, Enum):
    X = "X"
    O = "O"
    DRAW = "DRAW"
    UNDECIDED = "UNDECIDED"

    @property
    def decided(self) -> bool:
        return self is not Outcome.UNDECIDED

    @classmethod
    def of(cls, player: Mark) -> "Outcome":
        return cls(player.value)


class RejectReason(str, Enum):
    """Why a move was refused, shared by the engine and the room store."""

    NOT_FOUND = "NOT_FOUND"
    STALE_STATE = "STALE_STATE"
    NOT_YOUR_TURN = "NOT_YOUR_TURN"
    GAME_OVER = "GAME_OVER"
    INVALID_BOARD = "INVALID_BOARD"
    INVALID_CELL = "INVALID_CELL"
    BOARD_ALREADY_WON = "BOARD_ALREADY_WON"
    WRONG_BOARD = "WRONG_BOARD"
    CELL_TAKEN = "CELL_TAKEN"

    @property
    def message(self) -> str:
        return _REJECT_MESSAGES[self]


_REJECT_MESSAGES: Dict[RejectReason, str] = {
    RejectReason.NOT_FOUND: "Room not found",
    RejectReason.STALE_STATE: "Opponent moved, try again",
    RejectReason.NOT_YOUR_TURN: "It is not your turn",
    RejectReason.GAME_OVER: "Game already finished",
    RejectReason.INVALID_BOARD: "Board index must be between 0 and 8",
    RejectReason.INVALID_CELL: "Cell index must be between 0 and 8",
    RejectReason.BOARD_ALREADY_WON: "That board is already decided",
    RejectReason.WRONG_BOARD: "You must play in the active board",
    RejectReason.CELL_TAKEN: "Cell already occupied",
}


class IllegalMoveError(ValueError):
    def __init__(self, reason: RejectReason) -> None:
        super().__init__(reason.message)
        self.reason = reason


# ---------- Line evaluation ----------


def line_winner(cells: Sequence[T], blanks: Collection[T]) -> Optional[T]:
    """Return the value filling any complete line, ignoring ``blanks``."""

    for a, b, c in WINNING_LINES:
        v = cells[a]
        if v not in blanks and v == cells[b] == cells[c]:
            return v
    return None


def small_board_outcome(cells: Sequence[Mark]) -> Outcome:
    winner = line_winner(cells, (Mark.EMPTY,))
    if winner is not None:
        return Outcome.of(winner)
    if all(c is not Mark.EMPTY for c in cells):
        return Outcome.DRAW
    return Outcome.UNDECIDED


def _line_open_for(outcomes: Sequence[Outcome], line: Tuple[int, int, int], player: Outcome) -> bool:
    blockers = (Outcome.DRAW, Outcome.X if player is Outcome.O else Outcome.O)
    return all(outcomes[i] not in blockers for i in line)


def meta_outcome(outcomes: Sequence[Outcome]) -> Outcome:
    """Decide the overall game from the nine small-board outcomes.

    Drawn boards never count toward a line. Besides the full-board draw, the
    game is drawn early once every line is blocked for both players, either by
    an opposing capture or by a drawn board.
    """

    winner = line_winner(outcomes, (Outcome.UNDECIDED, Outcome.DRAW))
    if winner is not None:
        return winner
    if all(o.decided for o in outcomes):
        return Outcome.DRAW
    for player in (Outcome.X, Outcome.O):
        if any(_line_open_for(outcomes, line, player) for line in WINNING_LINES):
            return Outcome.UNDECIDED
    return Outcome.DRAW


# ---------- Moves & state ----------


@dataclass(frozen=True)
class Move:
    board_index: int
    cell_index: int
    player: Mark


Board = Tuple[Mark, ...]

_EMPTY_BOARD: Board = (Mark.EMPTY,) * 9


@dataclass(frozen=True)
class GameState:
    boards: Tuple[Board, ...] = (_EMPTY_BOARD,) * 9
    outcomes: Tuple[Outcome, ...] = (Outcome.UNDECIDED,) * 9
    current_player: Mark = Mark.X
    # None means "play anywhere"
    active_board: Optional[int] = None
    winner: Outcome = Outcome.UNDECIDED

    @classmethod
    def new(cls) -> "GameState":
        return cls()

    @property
    def over(self) -> bool:
        return self.winner.decided

    def normalized(self) -> "GameState":
        """Drop an active-board constraint that points at a decided board."""

        if self.active_board is not None and self.outcomes[self.active_board].decided:
            return replace(self, active_board=None)
        return self

    def rejection(self, move: Move) -> Optional[RejectReason]:
        """First reason ``move`` is illegal here, or None if it may be played."""

        if move.player != self.current_player:
            return RejectReason.NOT_YOUR_TURN
        if self.over:
            return RejectReason.GAME_OVER
        if not 0 <= move.board_index <= 8:
            return RejectReason.INVALID_BOARD
        if not 0 <= move.cell_index <= 8:
            return RejectReason.INVALID_CELL
        if self.outcomes[move.board_index].decided:
            return RejectReason.BOARD_ALREADY_WON
        if self.active_board is not None and self.active_board != move.board_index:
            return RejectReason.WRONG_BOARD
        if self.boards[move.board_index][move.cell_index] is not Mark.EMPTY:
            return RejectReason.CELL_TAKEN
        return None

    def after(self, move: Move) -> "GameState":
        """Successor state for a move already known to be legal."""

        big, cell = move.board_index, move.cell_index
        board = list(self.boards[big])
        board[cell] = move.player
        boards = self.boards[:big] + (tuple(board),) + self.boards[big + 1 :]

        outcome = small_board_outcome(board)
        outcomes = self.outcomes[:big] + (outcome,) + self.outcomes[big + 1 :]
        winner = meta_outcome(outcomes)

        # Deciding a board always frees the opponent, whatever cell was used.
        if outcome.decided or outcomes[cell].decided:
            next_board = None
        else:
            next_board = cell

        return GameState(
            boards=boards,
            outcomes=outcomes,
            current_player=move.player.opponent,
            active_board=next_board,
            winner=winner,
        )

    def play(self, board_index: int, cell_index: int) -> "GameState":
        """Play for the current player, raising IllegalMoveError if refused."""

        result = apply_move(self, Move(board_index, cell_index, self.current_player))
        if not result.accepted:
            raise IllegalMoveError(result.reason)
        return result.state

    # ---- wire format ----

    def to_wire(self) -> Dict[str, Any]:
        return {
            "boards": [[None if c is Mark.EMPTY else c.value for c in b] for b in self.boards],
            "boardWinners": [None if o is Outcome.UNDECIDED else o.value for o in self.outcomes],
            "currentPlayer": self.current_player.value,
            "activeBoard": self.active_board,
            "gameWinner": None if self.winner is Outcome.UNDECIDED else self.winner.value,
        }

    @classmethod
    def from_wire(cls, payload: Dict[str, Any]) -> "GameState":
        boards = payload["boards"]
        winners = payload["boardWinners"]
        if len(boards) != 9 or any(len(b) != 9 for b in boards) or len(winners) != 9:
            raise ValueError("Game state must hold 9 boards of 9 cells")
        current = Mark(payload["currentPlayer"])
        if current is Mark.EMPTY:
            raise ValueError("currentPlayer must be X or O")
        active = payload.get("activeBoard")
        if active is not None and not 0 <= active <= 8:
            raise ValueError("activeBoard must be between 0 and 8")
        game_winner = payload.get("gameWinner")
        state = cls(
            boards=tuple(tuple(Mark(c) if c else Mark.EMPTY for c in b) for b in boards),
            outcomes=tuple(Outcome(o) if o else Outcome.UNDECIDED for o in winners),
            current_player=current,
            active_board=active,
            winner=Outcome(game_winner) if game_winner else Outcome.UNDECIDED,
        )
        return state.normalized()


@dataclass(frozen=True)
class MoveResult:
    accepted: bool
    state: GameState
    reason: Optional[RejectReason] = None


def apply_move(state: GameState, move: Move) -> MoveResult:
    """The single move-application path used by every game mode."""

    reason = state.rejection(move)
    if reason is not None:
        return MoveResult(False, state, reason)
    return MoveResult(True, state.after(move))


def legal_moves(state: GameState) -> List[Move]:
    """All legal moves for the player to move, board-major order."""

    if state.over:
        return []
    if state.active_board is not None and not state.outcomes[state.active_board].decided:
        candidates: Sequence[int] = (state.active_board,)
    else:
        candidates = range(9)

    player = state.current_player
    moves: List[Move] = []
    for i in candidates:
        if state.outcomes[i].decided:
            continue
        for j, c in enumerate(state.boards[i]):
            if c is Mark.EMPTY:
                moves.append(Move(i, j, player))
    return moves


def clickable_cells(state: GameState) -> List[Tuple[int, int]]:
    """(board, cell) pairs the presentation layer should leave enabled."""

    return [(m.board_index, m.cell_index) for m in legal_moves(state)]
