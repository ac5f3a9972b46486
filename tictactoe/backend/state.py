"""Record builders for freshly created sessions and players."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from .board import empty_board
from .models import Player, Session, SessionState, player_to_record, session_to_record


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_initial_session(player1_id: str, player2_id: str, session_id: str = "") -> dict[str, Any]:
    """Return the record of a new challenge: an empty board waiting in the invite state."""
    now = utc_now_iso()
    session = Session(
        id=session_id,
        player1_id=player1_id,
        player2_id=player2_id,
        state=SessionState.INVITE,
        board=empty_board(),
        created_at=now,
        updated_at=now,
    )
    return session_to_record(session)


def build_player(name: str, token_hash: str | None = None, player_id: str = "") -> dict[str, Any]:
    return player_to_record(Player(id=player_id, name=name, token_hash=token_hash))
