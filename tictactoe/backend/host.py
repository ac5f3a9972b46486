"""Client-side host: live caches fed by store subscriptions plus intent submission.

The host owns the player and session maps a user interface renders from.
Intents are always validated by the arbiter; the caches are only used to
pick the revision an intent is computed against.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from types import MappingProxyType
from typing import Callable, Mapping, TypeVar

from .directory import SessionDirectory
from .errors import Conflict, GameError, StorageUnavailable
from .models import (
    AcceptIntent,
    Intent,
    MoveIntent,
    Player,
    ReadyIntent,
    SessionState,
    Snapshot,
    player_from_record,
    session_from_record,
)
from .store import PLAYERS, SESSIONS, ChangeEvent, GameStore, Subscription

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class SubmitResult:
    snapshot: Snapshot | None = None
    error: GameError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def retry_unavailable(
    operation: Callable[[], T],
    attempts: int = 3,
    base_delay: float = 0.1,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation`` again with exponential backoff while storage is unavailable.

    Any other ``GameError`` is raised immediately; those need fresh input.
    """
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except StorageUnavailable:
            if attempt == attempts:
                raise
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning("storage unavailable, retrying in %.2fs (attempt %s/%s)", delay, attempt, attempts)
            sleep(delay)
    raise AssertionError("unreachable")


class GameHost:
    def __init__(self, store: GameStore, local_player_id: str, directory: SessionDirectory | None = None) -> None:
        self.store = store
        self.local_player_id = local_player_id
        self.directory = directory if directory is not None else SessionDirectory(store=store)
        self._players: dict[str, Player] = {}
        self._sessions: dict[str, Snapshot] = {}
        self._player_revisions: dict[str, int] = {}
        self._subscriptions: list[Subscription] = []

    @property
    def players(self) -> Mapping[str, Player]:
        return MappingProxyType(self._players)

    @property
    def sessions(self) -> Mapping[str, Snapshot]:
        return MappingProxyType(self._sessions)

    def start(self) -> None:
        if self._subscriptions:
            return
        self._subscriptions = [self.store.subscribe(PLAYERS), self.store.subscribe(SESSIONS)]
        self.pump()

    def close(self) -> None:
        for subscription in self._subscriptions:
            subscription.close()
        self._subscriptions = []

    def pump(self, timeout: float | None = 0.0) -> int:
        """Apply every change already delivered by the subscriptions."""
        applied = 0
        for subscription in self._subscriptions:
            event = subscription.poll(timeout)
            while event is not None:
                self.apply_change(event)
                applied += 1
                event = subscription.poll(0)
        return applied

    def apply_change(self, event: ChangeEvent) -> None:
        if event.collection == PLAYERS:
            if event.kind == "delete" or event.record is None:
                self._players.pop(event.record_id, None)
                self._player_revisions.pop(event.record_id, None)
            elif event.revision > self._player_revisions.get(event.record_id, 0):
                self._players[event.record_id] = player_from_record(event.record)
                self._player_revisions[event.record_id] = event.revision
        elif event.collection == SESSIONS:
            if event.kind == "delete" or event.record is None:
                self._sessions.pop(event.record_id, None)
            else:
                self._remember(Snapshot(session=session_from_record(event.record), revision=event.revision))

    def _remember(self, snapshot: Snapshot) -> None:
        cached = self._sessions.get(snapshot.session.id)
        if cached is None or snapshot.revision > cached.revision:
            self._sessions[snapshot.session.id] = snapshot

    def incoming_challenges(self) -> list[Snapshot]:
        return [
            snapshot
            for snapshot in self._sessions.values()
            if snapshot.session.state is SessionState.INVITE and snapshot.session.player2_id == self.local_player_id
        ]

    def active_session(self) -> Snapshot | None:
        for snapshot in self._sessions.values():
            session = snapshot.session
            if session.involves(self.local_player_id) and session.state in (
                SessionState.PLAYER1_TURN,
                SessionState.PLAYER2_TURN,
            ):
                return snapshot
        return None

    def resync(self, session_id: str) -> Snapshot:
        snapshot = self.directory.arbiter.read(session_id)
        self._remember(snapshot)
        return snapshot

    def submit_challenge(self, target_id: str) -> SubmitResult:
        try:
            snapshot = self.directory.create_challenge(self.local_player_id, target_id)
        except GameError as exc:
            return SubmitResult(error=exc)
        self._remember(snapshot)
        return SubmitResult(snapshot=snapshot)

    def submit_accept(self, session_id: str) -> SubmitResult:
        return self._submit(session_id, AcceptIntent())

    def submit_ready(self, session_id: str) -> SubmitResult:
        return self._submit(session_id, ReadyIntent())

    def submit_move(self, session_id: str, cell: int) -> SubmitResult:
        return self._submit(session_id, MoveIntent(cell=cell))

    def _submit(self, session_id: str, intent: Intent) -> SubmitResult:
        try:
            cached = self._sessions.get(session_id)
            if cached is None:
                cached = self.resync(session_id)
            snapshot = self.directory.arbiter.apply(session_id, self.local_player_id, intent, cached.revision)
        except Conflict as exc:
            try:
                self.resync(session_id)
            except GameError as resync_error:
                logger.warning("resync of session %s failed: %s", session_id, resync_error)
            return SubmitResult(error=exc)
        except GameError as exc:
            return SubmitResult(error=exc)
        self._remember(snapshot)
        return SubmitResult(snapshot=snapshot)
