import pytest

from tictactoe.backend.directory import SessionDirectory
from tictactoe.backend.errors import InvalidName, InvalidTarget, PlayerNotFound, Unauthorized
from tictactoe.backend.models import SessionState
from tictactoe.backend.store import InMemoryGameStore


def _directory_with_players() -> tuple[SessionDirectory, str, str]:
    directory = SessionDirectory(store=InMemoryGameStore())
    ada = directory.register_player("Ada")
    grace = directory.register_player("Grace")
    return directory, ada.id, grace.id


def test_register_player_assigns_id_and_trims_name() -> None:
    directory = SessionDirectory(store=InMemoryGameStore())

    player = directory.register_player("  Ada  ", token_hash="hash")

    assert player.id
    assert player.name == "Ada"
    assert directory.get_player(player.id) == player


def test_register_player_rejects_blank_name() -> None:
    directory = SessionDirectory(store=InMemoryGameStore())

    with pytest.raises(InvalidName):
        directory.register_player("   ")


def test_rename_player_only_by_owner() -> None:
    directory, ada_id, grace_id = _directory_with_players()

    renamed = directory.rename_player(player_id=ada_id, actor_id=ada_id, name="Ada L.")
    with pytest.raises(Unauthorized):
        directory.rename_player(player_id=ada_id, actor_id=grace_id, name="Mallory")

    assert renamed.name == "Ada L."
    assert directory.get_player(ada_id).name == "Ada L."


def test_get_unknown_player_raises() -> None:
    directory = SessionDirectory(store=InMemoryGameStore())

    with pytest.raises(PlayerNotFound):
        directory.get_player("missing")


def test_create_challenge_opens_invite() -> None:
    directory, ada_id, grace_id = _directory_with_players()

    snapshot = directory.create_challenge(ada_id, grace_id)

    assert snapshot.revision == 1
    assert snapshot.session.id
    assert snapshot.session.state is SessionState.INVITE
    assert snapshot.session.player1_id == ada_id
    assert snapshot.session.player2_id == grace_id


def test_create_challenge_against_self_is_invalid_target() -> None:
    directory, ada_id, _ = _directory_with_players()

    with pytest.raises(InvalidTarget):
        directory.create_challenge(ada_id, ada_id)


def test_create_challenge_against_unknown_player_is_invalid_target() -> None:
    directory, ada_id, _ = _directory_with_players()

    with pytest.raises(InvalidTarget):
        directory.create_challenge(ada_id, "nobody")


def test_duplicate_challenge_returns_pending_invite() -> None:
    directory, ada_id, grace_id = _directory_with_players()

    first = directory.create_challenge(ada_id, grace_id)
    second = directory.create_challenge(ada_id, grace_id)
    reverse = directory.create_challenge(grace_id, ada_id)

    assert second == first
    assert reverse.session.id != first.session.id


def test_list_visible_sessions_only_returns_own_sessions() -> None:
    directory, ada_id, grace_id = _directory_with_players()
    linus = directory.register_player("Linus")
    mine = directory.create_challenge(ada_id, grace_id)
    directory.create_challenge(grace_id, linus.id)

    visible = list(directory.list_visible_sessions(ada_id))

    assert [snapshot.session.id for snapshot in visible] == [mine.session.id]


def test_list_visible_sessions_reflects_records_at_call_time() -> None:
    directory, ada_id, grace_id = _directory_with_players()
    directory.create_challenge(ada_id, grace_id)

    visible = directory.list_visible_sessions(grace_id)
    directory.create_challenge(grace_id, ada_id)

    assert len(list(visible)) == 1


def test_accept_challenge_goes_through_arbiter() -> None:
    directory, ada_id, grace_id = _directory_with_players()
    invite = directory.create_challenge(ada_id, grace_id)

    with pytest.raises(Unauthorized):
        directory.accept_challenge(invite.session.id, ada_id, invite.revision)
    accepted = directory.accept_challenge(invite.session.id, grace_id, invite.revision)

    assert accepted.revision == 2
    assert accepted.session.state is SessionState.PLAYER1_TURN


def test_rename_player_rejects_blank_name() -> None:
    directory, ada_id, _ = _directory_with_players()

    with pytest.raises(InvalidName):
        directory.rename_player(player_id=ada_id, actor_id=ada_id, name=" ")

    assert directory.get_player(ada_id).name == "Ada"
