"""Shared helpers for building game positions."""

from __future__ import annotations

from typing import Dict, Optional, Sequence

import pytest

from ultimatettt.game import GameState, Mark, Outcome, small_board_outcome

_MARKS = {"X": Mark.X, "O": Mark.O, ".": Mark.EMPTY}


def board(cells: str):
    """Build a small board from a 9-character string such as ``"XX.O....."``."""

    assert len(cells) == 9
    return tuple(_MARKS[c] for c in cells)


def position(
    boards: Dict[int, str],
    current_player: Mark = Mark.X,
    active_board: Optional[int] = None,
    outcomes: Optional[Sequence[Outcome]] = None,
) -> GameState:
    """A mid-game state; unspecified boards are empty, outcomes are derived."""

    all_boards = tuple(board(boards.get(i, ".........")) for i in range(9))
    if outcomes is None:
        outcomes = [small_board_outcome(b) for b in all_boards]
    return GameState(
        boards=all_boards,
        outcomes=tuple(outcomes),
        current_player=current_player,
        active_board=active_board,
    )


@pytest.fixture
def fresh() -> GameState:
    return GameState.new()
