"""Domain models for players, sessions and the intents applied to them."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from .board import Board, Cell, empty_board


class SessionState(str, Enum):
    INVITE = "invite"
    PLAYER1_TURN = "player1_turn"
    PLAYER2_TURN = "player2_turn"
    PLAYER1_WON = "player1_won"
    PLAYER2_WON = "player2_won"
    DRAW = "draw"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({SessionState.PLAYER1_WON, SessionState.PLAYER2_WON, SessionState.DRAW})


@dataclass(frozen=True)
class Player:
    id: str
    name: str
    token_hash: str | None = None


@dataclass(frozen=True)
class Session:
    id: str
    player1_id: str
    player2_id: str
    state: SessionState = SessionState.INVITE
    board: Board = field(default_factory=empty_board)
    player1_ready: bool = False
    player2_ready: bool = False
    created_at: str = ""
    updated_at: str = ""

    def involves(self, player_id: str) -> bool:
        return player_id in (self.player1_id, self.player2_id)


@dataclass(frozen=True)
class Snapshot:
    session: Session
    revision: int


@dataclass(frozen=True)
class AcceptIntent:
    pass


@dataclass(frozen=True)
class MoveIntent:
    cell: int


@dataclass(frozen=True)
class ReadyIntent:
    pass


Intent = Union[AcceptIntent, MoveIntent, ReadyIntent]


def session_to_record(session: Session) -> dict[str, Any]:
    return {
        "id": session.id,
        "board": [int(cell) for cell in session.board],
        "state": session.state.value,
        "player1Id": session.player1_id,
        "player2Id": session.player2_id,
        "player1Ready": session.player1_ready,
        "player2Ready": session.player2_ready,
        "meta": {
            "createdAt": session.created_at,
            "updatedAt": session.updated_at,
        },
    }


def session_from_record(record: dict[str, Any]) -> Session:
    meta = record.get("meta", {})
    return Session(
        id=str(record["id"]),
        player1_id=str(record["player1Id"]),
        player2_id=str(record["player2Id"]),
        state=SessionState(record["state"]),
        board=tuple(Cell(int(cell)) for cell in record["board"]),
        player1_ready=bool(record.get("player1Ready", False)),
        player2_ready=bool(record.get("player2Ready", False)),
        created_at=str(meta.get("createdAt", "")),
        updated_at=str(meta.get("updatedAt", "")),
    )


def player_to_record(player: Player) -> dict[str, Any]:
    return {"id": player.id, "name": player.name, "tokenHash": player.token_hash}


def player_from_record(record: dict[str, Any]) -> Player:
    return Player(id=str(record["id"]), name=str(record["name"]), token_hash=record.get("tokenHash"))
