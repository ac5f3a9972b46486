"""Failure kinds raised by the session engine, arbiter and directory."""

from __future__ import annotations


class GameError(Exception):
    """Base class for every rejected intent or storage failure."""

    code = "game_error"
    retryable = False


class Unauthorized(GameError):
    code = "unauthorized"


class NotYourTurn(GameError):
    code = "not_your_turn"


class IllegalMove(GameError):
    code = "illegal_move"


class GameOver(GameError):
    code = "game_over"


class Conflict(GameError):
    """The stored revision moved on; re-read before trying again."""

    code = "conflict"

    def __init__(self, session_id: str, expected_revision: int, current_revision: int | None = None) -> None:
        self.session_id = session_id
        self.expected_revision = expected_revision
        self.current_revision = current_revision
        super().__init__(
            f"Session {session_id} is not at revision {expected_revision}"
            + (f" (current {current_revision})" if current_revision is not None else "")
        )


class InvalidTarget(GameError):
    code = "invalid_target"


class StorageUnavailable(GameError):
    code = "storage_unavailable"
    retryable = True


class SessionNotFound(GameError):
    code = "session_not_found"

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class PlayerNotFound(GameError):
    code = "player_not_found"

    def __init__(self, player_id: str) -> None:
        self.player_id = player_id
        super().__init__(f"Player {player_id} not found")


class InvalidName(GameError):
    code = "invalid_name"
