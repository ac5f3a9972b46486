"""Player registry and matchmaking on top of the game store."""

from __future__ import annotations

from dataclasses import replace
import logging
from typing import Iterator

from .arbiter import ConcurrencyArbiter
from .errors import InvalidName, InvalidTarget, PlayerNotFound, Unauthorized
from .models import (
    AcceptIntent,
    Player,
    SessionState,
    Snapshot,
    player_from_record,
    player_to_record,
    session_from_record,
)
from .state import build_initial_session, build_player
from .store import PLAYERS, SESSIONS, GameStore

logger = logging.getLogger(__name__)


def _clean_name(name: str) -> str:
    cleaned = name.strip()
    if not cleaned:
        raise InvalidName("Player name must not be empty")
    return cleaned


class SessionDirectory:
    def __init__(self, store: GameStore, arbiter: ConcurrencyArbiter | None = None) -> None:
        self.store = store
        self.arbiter = arbiter if arbiter is not None else ConcurrencyArbiter(store=store)

    def register_player(self, name: str, token_hash: str | None = None) -> Player:
        record = build_player(name=_clean_name(name), token_hash=token_hash)
        player_id, _ = self.store.insert(PLAYERS, record)
        logger.info("registered player %s", player_id)
        return replace(player_from_record(record), id=player_id)

    def get_player(self, player_id: str) -> Player:
        stored = self.store.get(PLAYERS, player_id)
        if stored is None:
            raise PlayerNotFound(player_id)
        return player_from_record(stored.record)

    def list_players(self) -> list[Player]:
        return [player_from_record(stored.record) for stored in self.store.list_records(PLAYERS)]

    def rename_player(self, player_id: str, actor_id: str, name: str) -> Player:
        if player_id != actor_id:
            raise Unauthorized(f"Player {actor_id} cannot rename player {player_id}")
        stored = self.store.get(PLAYERS, player_id)
        if stored is None:
            raise PlayerNotFound(player_id)
        renamed = replace(player_from_record(stored.record), name=_clean_name(name))
        self.store.conditional_commit(PLAYERS, player_id, player_to_record(renamed), stored.revision)
        return renamed

    def create_challenge(self, challenger_id: str, target_id: str) -> Snapshot:
        """Open an invite from ``challenger_id`` to ``target_id``.

        A pending invite for the same ordered pair is returned as-is instead
        of opening a second one.
        """
        if challenger_id == target_id:
            raise InvalidTarget("Players cannot challenge themselves")
        if self.store.get(PLAYERS, challenger_id) is None:
            raise PlayerNotFound(challenger_id)
        if self.store.get(PLAYERS, target_id) is None:
            raise InvalidTarget(f"Player {target_id} does not exist")

        for snapshot in self.list_visible_sessions(challenger_id):
            session = snapshot.session
            if (
                session.state is SessionState.INVITE
                and session.player1_id == challenger_id
                and session.player2_id == target_id
            ):
                logger.info("reusing pending invite %s for %s -> %s", session.id, challenger_id, target_id)
                return snapshot

        record = build_initial_session(player1_id=challenger_id, player2_id=target_id)
        session_id, revision = self.store.insert(SESSIONS, record)
        logger.info("player %s challenged %s in session %s", challenger_id, target_id, session_id)
        return Snapshot(session=replace(session_from_record(record), id=session_id), revision=revision)

    def list_visible_sessions(self, player_id: str) -> Iterator[Snapshot]:
        """Iterate the sessions ``player_id`` takes part in, as stored at call time."""
        snapshots = [
            Snapshot(session=session_from_record(stored.record), revision=stored.revision)
            for stored in self.store.list_records(SESSIONS)
        ]
        return (snapshot for snapshot in snapshots if snapshot.session.involves(player_id))

    def accept_challenge(self, session_id: str, player_id: str, expected_revision: int) -> Snapshot:
        return self.arbiter.apply(session_id, player_id, AcceptIntent(), expected_revision)
