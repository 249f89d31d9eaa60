"""Unit tests for the Ultimate Tic-Tac-Toe rules engine."""

import pytest

from conftest import board, position
from ultimatettt.game import (
    GameState,
    IllegalMoveError,
    Mark,
    Move,
    Outcome,
    RejectReason,
    apply_move,
    clickable_cells,
    legal_moves,
    line_winner,
    meta_outcome,
    small_board_outcome,
)

U, D, X, O = Outcome.UNDECIDED, Outcome.DRAW, Outcome.X, Outcome.O


def test_initial_state_allows_any_board(fresh):
    moves = legal_moves(fresh)
    assert len(moves) == 9 * 9
    assert all(m.player is Mark.X for m in moves)


def test_directed_move_after_play(fresh):
    state = fresh.play(0, 4)
    moves = legal_moves(state)
    assert all(m.board_index == 4 for m in moves)
    assert len(moves) == 9


def test_line_winner_on_top_row():
    assert line_winner(board("XXX......"), (Mark.EMPTY,)) is Mark.X
    assert small_board_outcome(board("XXX......")) is Outcome.X


def test_line_winner_ignores_blanks():
    assert line_winner(board("........."), (Mark.EMPTY,)) is None
    assert small_board_outcome(board("X.O......")) is Outcome.UNDECIDED


def test_full_board_without_line_is_draw():
    assert small_board_outcome(board("XOXXOOOXX")) is Outcome.DRAW


def test_diagonal_win_for_o():
    assert small_board_outcome(board("O.X.OX..O")) is Outcome.O


def test_meta_line_win():
    assert meta_outcome([X, X, X, U, U, U, U, U, U]) is X


def test_drawn_boards_never_complete_a_meta_line():
    assert meta_outcome([D, D, D, U, U, U, U, U, U]) is U


def test_meta_full_without_line_is_draw():
    assert meta_outcome([X, O, X, X, O, O, O, X, D]) is D


def test_meta_draw_when_every_line_is_blocked():
    outcomes = [X, U, O, O, D, X, X, U, O]
    assert meta_outcome(outcomes) is D


def test_meta_undecided_while_a_line_stays_open():
    # Column 0, 3, 6 is still open for X.
    outcomes = [X, U, O, U, D, X, X, U, O]
    assert meta_outcome(outcomes) is U


def test_end_to_end_routing_and_board_capture(fresh):
    state = fresh.play(0, 4)
    assert state.active_board == 4
    assert state.current_player is Mark.O

    state = state.play(4, 0)
    assert state.active_board == 0
    assert state.current_player is Mark.X

    for x_cell, o_move in ((1, (1, 0)), (2, (2, 0))):
        state = state.play(0, x_cell)
        state = state.play(*o_move)
        assert state.active_board == 0

    state = state.play(0, 0)
    assert state.outcomes[0] is Outcome.X
    assert state.active_board is None
    assert state.current_player is Mark.O


def test_winning_a_board_frees_the_opponent_regardless_of_cell():
    state = position({3: "XX.OO...."}, current_player=Mark.X, active_board=3)
    state = state.play(3, 2)
    assert state.outcomes[3] is Outcome.X
    assert state.outcomes[2] is Outcome.UNDECIDED
    assert state.active_board is None


def test_sent_to_decided_board_plays_anywhere():
    state = position({4: "XOXXOOOXX"})
    assert state.outcomes[4] is Outcome.DRAW
    state = state.play(0, 4)
    assert state.active_board is None
    assert all(m.board_index != 4 for m in legal_moves(state))


def test_non_winning_move_routes_to_cell_board(fresh):
    state = fresh.play(2, 4)
    assert state.outcomes[2] is Outcome.UNDECIDED
    assert state.active_board == 4


@pytest.mark.parametrize(
    "move, reason",
    [
        (Move(0, 0, Mark.O), RejectReason.NOT_YOUR_TURN),
        (Move(9, 0, Mark.X), RejectReason.INVALID_BOARD),
        (Move(0, -1, Mark.X), RejectReason.INVALID_CELL),
        (Move(3, 0, Mark.X), RejectReason.WRONG_BOARD),
        (Move(4, 4, Mark.X), RejectReason.CELL_TAKEN),
    ],
)
def test_rejections(move, reason):
    state = GameState.new().play(0, 4).play(4, 4)
    assert state.active_board == 4
    result = apply_move(state, move)
    assert not result.accepted
    assert result.reason is reason
    assert result.state is state


def test_board_already_won_rejected():
    state = position({1: "XXX.OO..."}, current_player=Mark.O)
    result = apply_move(state, Move(1, 8, Mark.O))
    assert result.reason is RejectReason.BOARD_ALREADY_WON


def test_rejection_is_idempotent(fresh):
    state = fresh.play(0, 4)
    illegal = Move(0, 4, Mark.O)
    first = apply_move(state, illegal)
    second = apply_move(first.state, illegal)
    assert first.reason is second.reason is RejectReason.WRONG_BOARD
    assert first.state == second.state == state


def test_play_raises_for_illegal_move(fresh):
    state = fresh.play(0, 0)
    with pytest.raises(IllegalMoveError) as excinfo:
        state.play(0, 0)
    assert excinfo.value.reason is RejectReason.CELL_TAKEN
    assert isinstance(excinfo.value, ValueError)


def test_game_over_flips_player_and_blocks_moves():
    state = position(
        {0: "XXX......", 1: "XXX......", 2: "XX......."},
        current_player=Mark.X,
        active_board=2,
    )
    state = state.play(2, 2)
    assert state.winner is Outcome.X
    assert state.current_player is Mark.O
    assert legal_moves(state) == []
    assert clickable_cells(state) == []
    assert apply_move(state, Move(5, 5, Mark.O)).reason is RejectReason.GAME_OVER


def test_clickable_cells_follow_active_board(fresh):
    state = fresh.play(0, 4)
    cells = clickable_cells(state)
    assert (4, 0) in cells
    assert all(b == 4 for b, _ in cells)


def test_wire_round_trip():
    state = GameState.new().play(0, 4).play(4, 0).play(0, 1)
    assert GameState.from_wire(state.to_wire()) == state


def test_wire_round_trip_with_decided_boards():
    state = position({4: "XOXXOOOXX", 6: "OOO.XX.X."}, current_player=Mark.O, active_board=1)
    payload = state.to_wire()
    assert payload["boardWinners"][4] == "DRAW"
    assert payload["boardWinners"][6] == "O"
    assert payload["boards"][0][0] is None
    assert GameState.from_wire(payload) == state


def test_from_wire_normalizes_active_board():
    payload = position({4: "XOXXOOOXX"}).to_wire()
    payload["activeBoard"] = 4
    assert GameState.from_wire(payload).active_board is None


def test_from_wire_rejects_malformed_state():
    payload = GameState.new().to_wire()
    payload["boards"] = payload["boards"][:8]
    with pytest.raises(ValueError):
        GameState.from_wire(payload)
