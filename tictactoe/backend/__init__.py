"""Backend package for the two-player tic-tac-toe coordinator."""

from .arbiter import ConcurrencyArbiter
from .board import Cell, Outcome, evaluate
from .config import BackendSettings, configure_logging, load_settings
from .directory import SessionDirectory
from .engine import apply_intent
from .host import GameHost, SubmitResult, retry_unavailable
from .models import AcceptIntent, MoveIntent, Player, ReadyIntent, Session, SessionState, Snapshot
from .security import generate_token, hash_token, verify_token
from .store import GameStore, InMemoryGameStore, PostgresGameStore, create_store

__all__ = [
    "AcceptIntent",
    "apply_intent",
    "BackendSettings",
    "Cell",
    "ConcurrencyArbiter",
    "configure_logging",
    "create_store",
    "evaluate",
    "GameHost",
    "GameStore",
    "generate_token",
    "hash_token",
    "InMemoryGameStore",
    "load_settings",
    "MoveIntent",
    "Outcome",
    "Player",
    "PostgresGameStore",
    "ReadyIntent",
    "retry_unavailable",
    "Session",
    "SessionDirectory",
    "SessionState",
    "Snapshot",
    "SubmitResult",
    "verify_token",
]
