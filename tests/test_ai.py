"""Tests for the computer opponents."""

import math
import random

import pytest

from conftest import board, position
from ultimatettt import ai
from ultimatettt.ai import (
    WIN_SCORE,
    Difficulty,
    UltimateAI,
    heuristic_score,
    meta_score,
    order_moves,
    positional_score,
    search_depth,
    select_move,
    send_score,
    winning_cells,
)
from ultimatettt.game import GameState, Mark, Move, Outcome, legal_moves


class AlwaysHigh(random.Random):
    """Never takes the easy player's random branch."""

    def random(self):
        return 0.99


def _meta_win_for(player: Mark) -> GameState:
    row = player.value * 3 + "......"
    near = player.value * 2 + "......."
    return position(
        {0: row, 1: row, 2: near},
        current_player=player,
        active_board=2,
    )


@pytest.mark.parametrize("player", [Mark.X, Mark.O])
def test_hard_takes_immediate_game_win(player):
    state = _meta_win_for(player)
    move = select_move(state, Difficulty.HARD, random.Random(1))
    assert move == Move(2, 2, player)


def test_hard_respects_forced_board():
    state = GameState.new().play(0, 4)
    move = select_move(state, Difficulty.HARD)
    assert move in legal_moves(state)
    assert move.board_index == 4


@pytest.mark.parametrize("difficulty", list(Difficulty))
def test_no_move_when_game_is_over(difficulty):
    state = _meta_win_for(Mark.X).play(2, 2)
    assert state.over
    assert select_move(state, difficulty) is None


def test_medium_takes_small_board_win():
    state = position({3: "OO..X.X.."}, current_player=Mark.O, active_board=3)
    move = select_move(state, Difficulty.MEDIUM, random.Random(7))
    assert move == Move(3, 2, Mark.O)


def test_medium_blocks_opponent():
    state = position({6: "X...X...."}, current_player=Mark.O, active_board=6)
    for seed in range(5):
        assert select_move(state, Difficulty.MEDIUM, random.Random(seed)) == Move(6, 8, Mark.O)


def test_easy_without_random_branch_prefers_win_then_block():
    win = position({3: "OO..X.X.."}, current_player=Mark.O, active_board=3)
    assert select_move(win, Difficulty.EASY, AlwaysHigh()) == Move(3, 2, Mark.O)

    block = position({6: "X...X...."}, current_player=Mark.O, active_board=6)
    assert select_move(block, Difficulty.EASY, AlwaysHigh()) == Move(6, 8, Mark.O)


def test_easy_always_legal():
    state = GameState.new().play(4, 4)
    rng = random.Random(3)
    for _ in range(20):
        assert select_move(state, Difficulty.EASY, rng) in legal_moves(state)


def test_search_depth_adapts_to_branching():
    assert search_depth(81) == 3
    assert search_depth(31) == 3
    assert search_depth(30) == 4
    assert search_depth(16) == 4
    assert search_depth(15) == 5
    assert search_depth(1) == 5


def test_order_moves_puts_wins_blocks_and_center_first():
    state = position({0: "XX....OO."}, current_player=Mark.X, active_board=0)
    ordered = order_moves(state, legal_moves(state))
    assert [m.cell_index for m in ordered] == [2, 8, 4, 3, 5]


def _random_midgame(seed: int, plies: int = 14) -> GameState:
    rng = random.Random(seed)
    while True:
        state = GameState.new()
        for _ in range(plies):
            state = state.after(rng.choice(legal_moves(state)))
            if state.over:
                break
        if not state.over and state.active_board is not None:
            return state


@pytest.mark.parametrize("seed", [3, 11, 29])
@pytest.mark.parametrize(
    "reorder",
    [lambda state, moves: list(moves), lambda state, moves: list(reversed(moves))],
    ids=["unordered", "reversed"],
)
def test_hard_choice_does_not_depend_on_move_ordering(monkeypatch, seed, reorder):
    monkeypatch.setattr(ai, "search_depth", lambda move_count: 3)
    state = _random_midgame(seed)
    expected = select_move(state, Difficulty.HARD)

    monkeypatch.setattr(ai, "order_moves", reorder)
    assert select_move(state, Difficulty.HARD) == expected


def test_hard_takes_first_of_several_game_wins_in_any_ordering(monkeypatch):
    state = position(
        {0: "XXX......", 1: "XXX......", 2: "XX.X....."},
        current_player=Mark.X,
        active_board=2,
    )
    assert select_move(state, Difficulty.HARD) == Move(2, 2, Mark.X)
    monkeypatch.setattr(ai, "order_moves", lambda state, moves: list(reversed(moves)))
    assert select_move(state, Difficulty.HARD) == Move(2, 2, Mark.X)


def _forced_win_for_x() -> GameState:
    # O's only cell sends X to board 2, where X completes the top row.
    return position(
        {0: "XXX......", 1: "XXX......", 2: "XX.......", 4: "XO.OXXOXO"},
        current_player=Mark.O,
        active_board=4,
    )


@pytest.mark.parametrize("depth", [2, 4])
def test_search_scores_wins_by_distance(depth):
    state = _forced_win_for_x()
    score = ai._minimax(state, depth, -math.inf, math.inf, False, Mark.X, 1)
    assert score == WIN_SCORE - 3
    loss = ai._minimax(state, depth, -math.inf, math.inf, True, Mark.O, 1)
    assert loss == -(WIN_SCORE - 3)


def test_search_prefers_faster_win():
    state = _forced_win_for_x()
    quick = ai._minimax(state, 2, -math.inf, math.inf, False, Mark.X, 1)
    slow = ai._minimax(state, 2, -math.inf, math.inf, False, Mark.X, 3)
    assert quick > slow > meta_score(state, Mark.X)


def test_winning_cells_and_positional_score():
    cells = board("XX..O....")
    assert winning_cells(cells, Mark.X) == [2]
    assert winning_cells(cells, Mark.O) == []
    assert positional_score(board("....X...."), Mark.X) > 0
    assert positional_score(board("....X...."), Mark.O) < 0


def test_send_score_penalizes_free_choice():
    state = position({4: "XOXXOOOXX"}, current_player=Mark.X)
    assert send_score(state, Move(0, 4, Mark.X)) == -50.0


def test_send_score_penalizes_sending_into_opponent_win():
    state = position({1: "OO......."}, current_player=Mark.X)
    assert send_score(state, Move(0, 1, Mark.X)) == -30.0


def test_send_score_rewards_forcing_a_block():
    state = position({1: "XX......."}, current_player=Mark.X)
    assert send_score(state, Move(0, 1, Mark.X)) == 20.0


def test_heuristic_values_meta_win_highest():
    state = _meta_win_for(Mark.X)
    scores = {m: heuristic_score(state, m) for m in legal_moves(state)}
    assert max(scores, key=scores.get) == Move(2, 2, Mark.X)
    assert scores[Move(2, 2, Mark.X)] >= 6000 - 50


def test_meta_score_is_symmetric():
    outcomes = [Outcome.X, Outcome.X] + [Outcome.UNDECIDED] * 7
    state = position({0: "XXX......", 1: "XXX......"}, outcomes=outcomes)
    assert meta_score(state, Mark.X) > 0
    assert meta_score(state, Mark.O) == -meta_score(state, Mark.X)


def test_ai_refuses_to_move_out_of_turn():
    ai = UltimateAI(player=Mark.O, difficulty=Difficulty.EASY)
    with pytest.raises(ValueError):
        ai.choose(GameState.new())


def test_ai_does_not_mutate_state():
    state = GameState.new().play(0, 4)
    snapshot = state.to_wire()
    UltimateAI(player=Mark.O, difficulty=Difficulty.MEDIUM, rng=random.Random(0)).choose(state)
    assert state.to_wire() == snapshot
