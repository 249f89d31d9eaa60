"""Computer opponents for Ultimate Tic-Tac-Toe: random, heuristic and minimax."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Set
import logging
import math
import random

from .game import (
    CENTER,
    CORNERS,
    WINNING_LINES,
    GameState,
    Mark,
    Move,
    Outcome,
    legal_moves,
)

logger = logging.getLogger(__name__)

EASY_RANDOM_RATE = 0.7
WIN_SCORE = 10_000.0
SEND_WEIGHT = 0.1


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


# ---- small-board helpers ----


def winning_cells(cells: Sequence[Mark], player: Mark) -> List[int]:
    """Empty cells that would complete a line for ``player``."""

    found: List[int] = []
    for line in WINNING_LINES:
        trio = [cells[i] for i in line]
        if trio.count(player) == 2 and trio.count(Mark.EMPTY) == 1:
            gap = line[trio.index(Mark.EMPTY)]
            if gap not in found:
                found.append(gap)
    return found


def positional_score(cells: Sequence[Mark], me: Mark) -> float:
    """Static value of one small board for ``me``; mirrored for the opponent."""

    opp = me.opponent
    score = 0.0
    if cells[CENTER] == me:
        score += 4
    elif cells[CENTER] == opp:
        score -= 4
    for k in CORNERS:
        if cells[k] == me:
            score += 2
        elif cells[k] == opp:
            score -= 2
    for line in WINNING_LINES:
        trio = [cells[i] for i in line]
        mine, theirs = trio.count(me), trio.count(opp)
        if theirs == 0:
            score += 10 if mine == 2 else (2 if mine == 1 else 0)
        if mine == 0:
            score -= 10 if theirs == 2 else (2 if theirs == 1 else 0)
    return score


def _wins_board(state: GameState, move: Move, player: Mark) -> bool:
    return move.cell_index in winning_cells(state.boards[move.board_index], player)


def _meta_threat_boards(outcomes: Sequence[Outcome], player: Mark) -> Set[int]:
    """Undecided boards that would complete a meta line for ``player``."""

    owner = Outcome.of(player)
    boards: Set[int] = set()
    for line in WINNING_LINES:
        trio = [outcomes[i] for i in line]
        if trio.count(owner) == 2 and trio.count(Outcome.UNDECIDED) == 1:
            boards.add(line[trio.index(Outcome.UNDECIDED)])
    return boards


def send_score(state: GameState, move: Move) -> float:
    """How good it is for the mover to route the opponent where ``move`` does."""

    me = move.player
    child = state.after(move)
    if child.active_board is None:
        return -50.0
    target = child.boards[child.active_board]
    if winning_cells(target, me.opponent):
        return -30.0
    if winning_cells(target, me):
        return 20.0
    return positional_score(target, me) / 10


# ---- easy ----


def _easy_move(state: GameState, moves: List[Move], rng: random.Random) -> Move:
    if rng.random() < EASY_RANDOM_RATE:
        return rng.choice(moves)
    me = state.current_player
    for player in (me, me.opponent):
        hits = [m for m in moves if _wins_board(state, m, player)]
        if hits:
            return hits[0]
    return rng.choice(moves)


# ---- medium ----


def heuristic_score(state: GameState, move: Move) -> float:
    """Deterministic part of the medium difficulty score for ``move``."""

    me = move.player
    opp = me.opponent
    child = state.after(move)
    score = 0.0

    if child.outcomes[move.board_index] == Outcome.of(me):
        score += 1000
        if child.winner == Outcome.of(me):
            score += 5000
    if _wins_board(state, move, opp):
        score += 500

    if move.board_index in _meta_threat_boards(state.outcomes, opp):
        if winning_cells(state.boards[move.board_index], opp):
            score += 300
        else:
            score += 200

    score += positional_score(child.boards[move.board_index], me) / 10
    if move.cell_index == CENTER:
        score += 15
    elif move.cell_index in CORNERS:
        score += 8
    score += send_score(state, move)
    return score


def _medium_move(state: GameState, moves: List[Move], rng: random.Random) -> Move:
    best_move = moves[0]
    best_score = -math.inf
    for move in moves:
        score = heuristic_score(state, move) + rng.uniform(0, 5)
        if score > best_score:
            best_move, best_score = move, score
    return best_move


# ---- hard ----


def search_depth(move_count: int) -> int:
    if move_count >= 31:
        return 3
    if move_count >= 16:
        return 4
    return 5


def _order_key(state: GameState, move: Move) -> int:
    if _wins_board(state, move, move.player):
        return 0
    if _wins_board(state, move, move.player.opponent):
        return 1
    if move.cell_index == CENTER:
        return 2
    return 3


def order_moves(state: GameState, moves: List[Move]) -> List[Move]:
    """Wins first, then blocks, then center cells; stable otherwise."""

    return sorted(moves, key=lambda m: _order_key(state, m))


def meta_score(state: GameState, me: Mark) -> float:
    mine, theirs = Outcome.of(me), Outcome.of(me.opponent)
    score = 0.0
    for line in WINNING_LINES:
        trio = [state.outcomes[i] for i in line]
        if Outcome.DRAW in trio:
            continue
        m, o = trio.count(mine), trio.count(theirs)
        if m and not o:
            score += 500 if m == 2 else 50
        elif o and not m:
            score -= 500 if o == 2 else 50

    if state.outcomes[CENTER] == mine:
        score += 100
    elif state.outcomes[CENTER] == theirs:
        score -= 100
    for k in CORNERS:
        if state.outcomes[k] == mine:
            score += 30
        elif state.outcomes[k] == theirs:
            score -= 30
    return score


def _minimax(
    state: GameState,
    depth: int,
    alpha: float,
    beta: float,
    maximizing: bool,
    me: Mark,
    ply: int,
) -> float:
    if state.over:
        if state.winner is Outcome.DRAW:
            return 0.0
        # Prefer quick wins and slow losses
        value = WIN_SCORE - ply
        return value if state.winner == Outcome.of(me) else -value
    if depth == 0:
        return meta_score(state, me)

    moves = order_moves(state, legal_moves(state))
    if not moves:
        return meta_score(state, me)

    if maximizing:
        value = -math.inf
        for move in moves:
            value = max(
                value,
                _minimax(state.after(move), depth - 1, alpha, beta, False, me, ply + 1),
            )
            alpha = max(alpha, value)
            if beta <= alpha:
                break
        return value

    value = math.inf
    for move in moves:
        value = min(
            value,
            _minimax(state.after(move), depth - 1, alpha, beta, True, me, ply + 1),
        )
        beta = min(beta, value)
        if beta <= alpha:
            break
    return value


def _hard_move(state: GameState, moves: List[Move]) -> Move:
    me = state.current_player
    depth = search_depth(len(moves))
    index = {m: i for i, m in enumerate(moves)}
    candidates = order_moves(state, moves)

    for move in moves:
        if state.after(move).winner == Outcome.of(me):
            return move

    best_move = candidates[0]
    best_score = -math.inf
    for move in candidates:
        child = state.after(move)
        score = _minimax(child, depth - 1, -math.inf, math.inf, False, me, 1)
        score += SEND_WEIGHT * send_score(state, move)
        if score > best_score or (
            score == best_score and index[move] < index[best_move]
        ):
            best_move, best_score = move, score
    logger.debug("hard search depth=%d over %d moves: %s (%.1f)", depth, len(moves), best_move, best_score)
    return best_move


# ---- public API ----


def select_move(
    state: GameState,
    difficulty: Difficulty = Difficulty.HARD,
    rng: Optional[random.Random] = None,
) -> Optional[Move]:
    """Pick a move for ``state.current_player``; None if no move exists."""

    moves = legal_moves(state)
    if not moves:
        return None
    rng = rng or random.Random()
    difficulty = Difficulty(difficulty)
    if difficulty is Difficulty.EASY:
        return _easy_move(state, moves, rng)
    if difficulty is Difficulty.MEDIUM:
        return _medium_move(state, moves, rng)
    return _hard_move(state, moves)


@dataclass
class UltimateAI:
    """Computer player bound to one mark and difficulty.

    The solo mode keeps one of these per session:
      - UltimateAI(player=Mark.O, difficulty=Difficulty.MEDIUM)
      - choose(state) -> Move or None
    """

    player: Mark = Mark.O
    difficulty: Difficulty = Difficulty.HARD
    rng: random.Random = field(default_factory=random.Random, repr=False)

    def choose(self, state: GameState) -> Optional[Move]:
        if state.current_player != self.player:
            raise ValueError("It is not this AI player's turn")
        move = select_move(state, self.difficulty, self.rng)
        logger.debug("%s AI (%s) chose %s", self.player.value, self.difficulty.value, move)
        return move
