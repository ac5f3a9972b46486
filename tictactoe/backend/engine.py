"""Session state machine: validates intents and computes the next snapshot."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

from .board import BOARD_SIZE, Cell, Outcome, evaluate, place_mark
from .errors import GameOver, IllegalMove, NotYourTurn, Unauthorized
from .models import AcceptIntent, Intent, MoveIntent, ReadyIntent, Session, SessionState
from .state import utc_now_iso


@dataclass(frozen=True)
class TransitionResult:
    session: Session
    events: list[dict[str, Any]]


_OUTCOME_STATES = {
    Outcome.WINNER_A: SessionState.PLAYER1_WON,
    Outcome.WINNER_B: SessionState.PLAYER2_WON,
    Outcome.DRAW: SessionState.DRAW,
}


def apply_intent(session: Session, actor_id: str, intent: Intent) -> TransitionResult:
    """Apply ``intent`` by ``actor_id`` and return the next session value.

    Rejections raise a ``GameError`` subclass and leave ``session`` untouched.
    """
    if session.state.is_terminal:
        raise GameOver(f"Session {session.id} already finished as {session.state.value}")

    if isinstance(intent, MoveIntent):
        return _apply_move(session=session, actor_id=actor_id, cell=intent.cell)
    if isinstance(intent, AcceptIntent):
        return _apply_accept(session=session, actor_id=actor_id)
    if isinstance(intent, ReadyIntent):
        return _apply_ready(session=session, actor_id=actor_id)
    raise TypeError(f"Unsupported intent {intent!r}")


def _touched(session: Session, **changes: Any) -> Session:
    return replace(session, updated_at=utc_now_iso(), **changes)


def _apply_accept(session: Session, actor_id: str) -> TransitionResult:
    if actor_id != session.player2_id:
        raise Unauthorized(f"Only the challenged player may accept session {session.id}")
    if session.state is not SessionState.INVITE:
        raise IllegalMove(f"Session {session.id} is not awaiting acceptance")

    next_session = _touched(session, state=SessionState.PLAYER1_TURN)
    return TransitionResult(session=next_session, events=[{"kind": "accepted", "playerId": actor_id}])


def _apply_ready(session: Session, actor_id: str) -> TransitionResult:
    if actor_id == session.player1_id:
        next_session = _touched(session, player1_ready=True)
    elif actor_id == session.player2_id:
        next_session = _touched(session, player2_ready=True)
    else:
        raise Unauthorized(f"Player {actor_id} is not part of session {session.id}")
    return TransitionResult(session=next_session, events=[{"kind": "ready", "playerId": actor_id}])


def _apply_move(session: Session, actor_id: str, cell: int) -> TransitionResult:
    if not session.involves(actor_id):
        raise Unauthorized(f"Player {actor_id} is not part of session {session.id}")
    if isinstance(cell, bool) or not isinstance(cell, int) or not 0 <= cell < BOARD_SIZE:
        raise IllegalMove(f"Cell {cell!r} is outside the board")
    if session.board[cell] is not Cell.EMPTY:
        raise IllegalMove(f"Cell {cell} is already occupied")

    if session.state is SessionState.PLAYER1_TURN and actor_id == session.player1_id:
        mark, following = Cell.MARK_A, SessionState.PLAYER2_TURN
    elif session.state is SessionState.PLAYER2_TURN and actor_id == session.player2_id:
        mark, following = Cell.MARK_B, SessionState.PLAYER1_TURN
    else:
        raise NotYourTurn(f"Player {actor_id} cannot move while session is {session.state.value}")

    board = place_mark(session.board, cell, mark)
    outcome = evaluate(board)
    events: list[dict[str, Any]] = [{"kind": "mark_placed", "playerId": actor_id, "cell": cell, "mark": int(mark)}]
    if outcome is not Outcome.NONE:
        following = _OUTCOME_STATES[outcome]
        events.append({"kind": "finished", "outcome": outcome.value})

    next_session = _touched(session, board=board, state=following)
    return TransitionResult(session=next_session, events=events)
