"""I/O utilities for AutoGarou."""

from autogarou.io.logging import (
    GameLogLevel,
    GameLogger,
    LogEntry,
    create_game_logger,
)
from autogarou.io.persistence import (
    GameSnapshot,
    capture_snapshot,
    load_snapshot,
    restore_snapshot,
    save_snapshot,
)
from autogarou.io.store import GameStore, InMemoryGameStore, StoreCommit

__all__ = [
    "GameLogLevel",
    "GameLogger",
    "GameSnapshot",
    "GameStore",
    "InMemoryGameStore",
    "LogEntry",
    "StoreCommit",
    "capture_snapshot",
    "create_game_logger",
    "load_snapshot",
    "restore_snapshot",
    "save_snapshot",
]
