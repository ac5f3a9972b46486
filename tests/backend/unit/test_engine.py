from dataclasses import replace

import pytest

from tictactoe.backend.board import Cell, Outcome, evaluate
from tictactoe.backend.engine import apply_intent
from tictactoe.backend.errors import GameOver, IllegalMove, NotYourTurn, Unauthorized
from tictactoe.backend.models import (
    AcceptIntent,
    MoveIntent,
    ReadyIntent,
    Session,
    SessionState,
    session_to_record,
)

A = Cell.MARK_A
B = Cell.MARK_B
E = Cell.EMPTY


def _session(state: SessionState = SessionState.PLAYER1_TURN, board: tuple[Cell, ...] | None = None) -> Session:
    session = Session(id="s-1", player1_id="p1", player2_id="p2", state=state)
    if board is not None:
        session = replace(session, board=board)
    return session


def test_accept_by_challenged_player_starts_game() -> None:
    result = apply_intent(session=_session(SessionState.INVITE), actor_id="p2", intent=AcceptIntent())

    assert result.session.state is SessionState.PLAYER1_TURN
    assert result.events == [{"kind": "accepted", "playerId": "p2"}]


@pytest.mark.parametrize("actor_id", ["p1", "stranger"])
def test_accept_by_anyone_else_is_unauthorized(actor_id: str) -> None:
    with pytest.raises(Unauthorized):
        apply_intent(session=_session(SessionState.INVITE), actor_id=actor_id, intent=AcceptIntent())


def test_accept_on_started_game_is_rejected() -> None:
    with pytest.raises(IllegalMove):
        apply_intent(session=_session(SessionState.PLAYER2_TURN), actor_id="p2", intent=AcceptIntent())


def test_player1_move_places_mark_a_and_hands_turn_over() -> None:
    result = apply_intent(session=_session(), actor_id="p1", intent=MoveIntent(cell=4))

    assert result.session.board[4] is A
    assert result.session.state is SessionState.PLAYER2_TURN
    assert result.events[0] == {"kind": "mark_placed", "playerId": "p1", "cell": 4, "mark": 1}


def test_player2_move_places_mark_b_and_hands_turn_back() -> None:
    board = (A, E, E, E, E, E, E, E, E)
    result = apply_intent(session=_session(SessionState.PLAYER2_TURN, board), actor_id="p2", intent=MoveIntent(cell=8))

    assert result.session.board[8] is B
    assert result.session.state is SessionState.PLAYER1_TURN


def test_move_out_of_turn_fails_and_leaves_session_unchanged() -> None:
    session = _session(SessionState.PLAYER1_TURN, (A, B, E, E, E, E, E, E, E))
    before = session_to_record(session)

    with pytest.raises(NotYourTurn):
        apply_intent(session=session, actor_id="p2", intent=MoveIntent(cell=4))

    assert session_to_record(session) == before


@pytest.mark.parametrize("actor_id", ["p1", "p2"])
def test_move_on_occupied_cell_is_illegal_regardless_of_turn(actor_id: str) -> None:
    session = _session(SessionState.PLAYER1_TURN, (A, B, E, E, E, E, E, E, E))

    with pytest.raises(IllegalMove):
        apply_intent(session=session, actor_id=actor_id, intent=MoveIntent(cell=0))


@pytest.mark.parametrize("cell", [-1, 9, 42])
def test_move_outside_board_is_illegal(cell: int) -> None:
    with pytest.raises(IllegalMove):
        apply_intent(session=_session(), actor_id="p1", intent=MoveIntent(cell=cell))


def test_move_by_stranger_is_unauthorized() -> None:
    with pytest.raises(Unauthorized):
        apply_intent(session=_session(), actor_id="stranger", intent=MoveIntent(cell=0))


def test_move_before_acceptance_is_not_anyones_turn() -> None:
    with pytest.raises(NotYourTurn):
        apply_intent(session=_session(SessionState.INVITE), actor_id="p1", intent=MoveIntent(cell=0))


def test_diagonal_scenario_ends_with_player1_win() -> None:
    session = _session()
    for actor_id, cell in [("p1", 0), ("p2", 1), ("p1", 4), ("p2", 2), ("p1", 8)]:
        session = apply_intent(session=session, actor_id=actor_id, intent=MoveIntent(cell=cell)).session

    assert evaluate(session.board) is Outcome.WINNER_A
    assert session.state is SessionState.PLAYER1_WON


def test_player2_win_is_detected() -> None:
    board = (A, A, E, B, B, E, A, E, E)
    result = apply_intent(session=_session(SessionState.PLAYER2_TURN, board), actor_id="p2", intent=MoveIntent(cell=5))

    assert result.session.state is SessionState.PLAYER2_WON
    assert result.events[-1] == {"kind": "finished", "outcome": "winner_b"}


def test_last_move_without_line_is_a_draw() -> None:
    board = (A, B, A, A, B, B, B, A, E)
    result = apply_intent(session=_session(SessionState.PLAYER1_TURN, board), actor_id="p1", intent=MoveIntent(cell=8))

    assert result.session.board == (A, B, A, A, B, B, B, A, A)
    assert result.session.state is SessionState.DRAW


@pytest.mark.parametrize("state", [SessionState.PLAYER1_WON, SessionState.PLAYER2_WON, SessionState.DRAW])
@pytest.mark.parametrize("intent", [MoveIntent(cell=5), AcceptIntent(), ReadyIntent()])
def test_terminal_sessions_reject_every_intent(state: SessionState, intent) -> None:
    with pytest.raises(GameOver):
        apply_intent(session=_session(state), actor_id="p1", intent=intent)


def test_ready_sets_flag_of_acting_player_only() -> None:
    result = apply_intent(session=_session(SessionState.INVITE), actor_id="p2", intent=ReadyIntent())

    assert result.session.player2_ready is True
    assert result.session.player1_ready is False
    assert result.session.state is SessionState.INVITE


def test_ready_by_stranger_is_unauthorized() -> None:
    with pytest.raises(Unauthorized):
        apply_intent(session=_session(), actor_id="stranger", intent=ReadyIntent())
