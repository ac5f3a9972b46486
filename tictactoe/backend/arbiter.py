"""Optimistic concurrency control for session transitions."""

from __future__ import annotations

from dataclasses import dataclass
import logging

from .engine import apply_intent
from .errors import Conflict, GameError, SessionNotFound
from .models import Intent, Snapshot, session_from_record, session_to_record
from .store import SESSIONS, GameStore

logger = logging.getLogger(__name__)


@dataclass
class ConcurrencyArbiter:
    """Commits at most one transition per session revision.

    ``apply`` reads the stored snapshot, validates the intent against it and
    writes the result back with a compare-and-set on the revision the caller
    observed. Losing writers get ``Conflict`` and are expected to re-read.
    """

    store: GameStore

    def read(self, session_id: str) -> Snapshot:
        stored = self.store.get(SESSIONS, session_id)
        if stored is None:
            raise SessionNotFound(session_id)
        return Snapshot(session=session_from_record(stored.record), revision=stored.revision)

    def apply(self, session_id: str, actor_id: str, intent: Intent, expected_revision: int) -> Snapshot:
        current = self.read(session_id)
        if current.revision != expected_revision:
            logger.warning(
                "stale intent for session %s: expected revision %s, current %s",
                session_id,
                expected_revision,
                current.revision,
            )
            raise Conflict(session_id, expected_revision, current.revision)

        try:
            result = apply_intent(session=current.session, actor_id=actor_id, intent=intent)
        except GameError as exc:
            logger.info("rejected %s on session %s by %s: %s", type(intent).__name__, session_id, actor_id, exc.code)
            raise

        try:
            revision = self.store.conditional_commit(
                SESSIONS,
                session_id,
                session_to_record(result.session),
                expected_revision,
            )
        except Conflict:
            logger.warning("lost commit race on session %s at revision %s", session_id, expected_revision)
            raise

        logger.info(
            "committed session %s revision %s state %s events %s",
            session_id,
            revision,
            result.session.state.value,
            [event["kind"] for event in result.events],
        )
        return Snapshot(session=result.session, revision=revision)
