"""Ultimate Tic-Tac-Toe: rules engine, computer opponents, and online sync."""

from .ai import Difficulty, UltimateAI, select_move
from .game import GameState, Mark, Move, Outcome, apply_move, legal_moves
from .store import InMemoryRoomStore
from .sync import SyncClient
from .ui import app

__all__ = [
    "Difficulty",
    "GameState",
    "InMemoryRoomStore",
    "Mark",
    "Move",
    "Outcome",
    "SyncClient",
    "UltimateAI",
    "app",
    "apply_move",
    "legal_moves",
    "select_move",
]
