"""Storage interfaces and implementations for player and session records.

Every record carries a revision that starts at 1 and is bumped by each
committed write. Writes to existing records only go through
``conditional_commit``, which compares the stored revision against the one
the caller read.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
import json
import logging
from pathlib import Path
import queue
import threading
import time
from typing import Any, Callable, Iterator, Optional, Protocol
import uuid

from .errors import Conflict, StorageUnavailable

logger = logging.getLogger(__name__)

PLAYERS = "players"
SESSIONS = "sessions"

NOTIFY_CHANNEL = "record_changes"
SCHEMA_PATH = Path(__file__).with_name("db_schema.sql")

RecordFilter = Callable[[dict[str, Any]], bool]


@dataclass(frozen=True)
class StoredRecord:
    record_id: str
    record: dict[str, Any]
    revision: int


@dataclass(frozen=True)
class ChangeEvent:
    collection: str
    record_id: str
    record: Optional[dict[str, Any]]
    revision: int
    kind: str


class Subscription(Protocol):
    def poll(self, timeout: float | None = 0.0) -> ChangeEvent | None:
        """Return the next change, or None when nothing arrived in time."""

    def __iter__(self) -> Iterator[ChangeEvent]:
        """Yield changes until the subscription is closed."""

    def close(self) -> None:
        """Stop delivering changes."""


class GameStore(Protocol):
    def get(self, collection: str, record_id: str) -> StoredRecord | None:
        """Point read of a record and its revision."""

    def list_records(self, collection: str) -> list[StoredRecord]:
        """Return every record currently stored in ``collection``."""

    def subscribe(self, collection: str, record_filter: RecordFilter | None = None) -> Subscription:
        """Open a live feed starting with the current records of ``collection``."""

    def conditional_commit(
        self, collection: str, record_id: str, record: dict[str, Any], expected_revision: int
    ) -> int:
        """Replace the record when its revision still equals ``expected_revision``."""

    def insert(self, collection: str, record: dict[str, Any]) -> tuple[str, int]:
        """Store a new record under a fresh id and return ``(id, revision)``."""


_CLOSED = object()


class QueueSubscription:
    def __init__(self, on_close: Callable[["QueueSubscription"], None]) -> None:
        self._queue: queue.Queue = queue.Queue()
        self._on_close = on_close
        self.closed = False

    def push(self, event: ChangeEvent) -> None:
        self._queue.put(event)

    def poll(self, timeout: float | None = 0.0) -> ChangeEvent | None:
        if self.closed:
            return None
        try:
            if timeout == 0:
                item = self._queue.get_nowait()
            else:
                item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _CLOSED:
            return None
        return item

    def __iter__(self) -> Iterator[ChangeEvent]:
        while not self.closed:
            item = self._queue.get()
            if item is _CLOSED:
                return
            yield item

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._on_close(self)
        self._queue.put(_CLOSED)


@dataclass
class _Listener:
    collection: str
    record_filter: RecordFilter | None
    subscription: QueueSubscription

    def wants(self, collection: str, record: dict[str, Any] | None) -> bool:
        if collection != self.collection:
            return False
        if self.record_filter is None or record is None:
            return True
        return self.record_filter(record)


class InMemoryGameStore:
    """Process-local store; a single lock makes compare-and-set atomic."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._collections: dict[str, dict[str, StoredRecord]] = {}
        self._listeners: list[_Listener] = []

    def get(self, collection: str, record_id: str) -> StoredRecord | None:
        with self._lock:
            stored = self._collections.get(collection, {}).get(record_id)
            return _copy(stored) if stored is not None else None

    def list_records(self, collection: str) -> list[StoredRecord]:
        with self._lock:
            return [_copy(stored) for stored in self._collections.get(collection, {}).values()]

    def subscribe(self, collection: str, record_filter: RecordFilter | None = None) -> QueueSubscription:
        subscription = QueueSubscription(on_close=self._remove_listener)
        listener = _Listener(collection=collection, record_filter=record_filter, subscription=subscription)
        with self._lock:
            for stored in self._collections.get(collection, {}).values():
                if listener.wants(collection, stored.record):
                    subscription.push(_event(collection, _copy(stored), "insert"))
            self._listeners.append(listener)
        return subscription

    def conditional_commit(
        self, collection: str, record_id: str, record: dict[str, Any], expected_revision: int
    ) -> int:
        with self._lock:
            records = self._collections.get(collection, {})
            current = records.get(record_id)
            if current is None or current.revision != expected_revision:
                raise Conflict(
                    record_id,
                    expected_revision,
                    current.revision if current is not None else None,
                )
            stored = StoredRecord(
                record_id=record_id,
                record=_with_id(record, record_id),
                revision=current.revision + 1,
            )
            records[record_id] = stored
            self._publish(collection, stored, "update")
            return stored.revision

    def insert(self, collection: str, record: dict[str, Any]) -> tuple[str, int]:
        record_id = str(uuid.uuid4())
        with self._lock:
            stored = StoredRecord(record_id=record_id, record=_with_id(record, record_id), revision=1)
            self._collections.setdefault(collection, {})[record_id] = stored
            self._publish(collection, stored, "insert")
        return record_id, stored.revision

    def _publish(self, collection: str, stored: StoredRecord, kind: str) -> None:
        for listener in self._listeners:
            if listener.wants(collection, stored.record):
                listener.subscription.push(_event(collection, _copy(stored), kind))

    def _remove_listener(self, subscription: QueueSubscription) -> None:
        with self._lock:
            self._listeners = [item for item in self._listeners if item.subscription is not subscription]


def _with_id(record: dict[str, Any], record_id: str) -> dict[str, Any]:
    stored = json.loads(json.dumps(record))
    stored["id"] = record_id
    return stored


def _copy(stored: StoredRecord) -> StoredRecord:
    return StoredRecord(
        record_id=stored.record_id,
        record=json.loads(json.dumps(stored.record)),
        revision=stored.revision,
    )


def _event(collection: str, stored: StoredRecord, kind: str) -> ChangeEvent:
    return ChangeEvent(
        collection=collection,
        record_id=stored.record_id,
        record=stored.record,
        revision=stored.revision,
        kind=kind,
    )


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    import psycopg

    try:
        yield
    except (psycopg.OperationalError, psycopg.InterfaceError) as exc:
        logger.warning("storage operation %s failed: %s", operation, exc)
        raise StorageUnavailable(f"{operation} failed: {exc}") from exc


class PostgresSubscription:
    def __init__(self, conn: Any, collection: str, initial: list[ChangeEvent], record_filter: RecordFilter | None) -> None:
        self._conn = conn
        self._collection = collection
        self._pending = list(initial)
        self._record_filter = record_filter
        self.closed = False

    def _decode(self, payload: str) -> ChangeEvent | None:
        data = json.loads(payload)
        if data.get("collection") != self._collection:
            return None
        record = data.get("record")
        if self._record_filter is not None and record is not None and not self._record_filter(record):
            return None
        return ChangeEvent(
            collection=data["collection"],
            record_id=data["id"],
            record=record,
            revision=int(data["revision"]),
            kind=data.get("kind", "update"),
        )

    def poll(self, timeout: float | None = 0.0) -> ChangeEvent | None:
        if self._pending:
            return self._pending.pop(0)
        if self.closed:
            return None
        deadline = None if timeout is None else time.monotonic() + timeout
        with _storage_errors("subscription poll"):
            while True:
                remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                notify = next(iter(self._conn.notifies(timeout=remaining, stop_after=1)), None)
                if notify is None:
                    return None
                # the channel carries every collection
                event = self._decode(notify.payload)
                if event is not None:
                    return event

    def __iter__(self) -> Iterator[ChangeEvent]:
        while self._pending:
            yield self._pending.pop(0)
        with _storage_errors("subscription"):
            for notify in self._conn.notifies():
                if self.closed:
                    return
                event = self._decode(notify.payload)
                if event is not None:
                    yield event

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._conn.close()


@dataclass
class PostgresGameStore:
    database_url: str

    def _connect(self, autocommit: bool = False) -> Any:
        import psycopg

        return psycopg.connect(self.database_url, autocommit=autocommit)

    def ensure_schema(self) -> None:
        schema_sql = SCHEMA_PATH.read_text(encoding="utf-8")
        with _storage_errors("schema"):
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(schema_sql)
                conn.commit()
        logger.info("applied schema from %s", SCHEMA_PATH.name)

    def get(self, collection: str, record_id: str) -> StoredRecord | None:
        with _storage_errors("get"):
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        SELECT record, revision
                        FROM records
                        WHERE collection = %s AND id = %s
                        """,
                        (collection, record_id),
                    )
                    row = cur.fetchone()

        if row is None:
            return None
        record, revision = row
        return StoredRecord(record_id=record_id, record=_decode_json(record), revision=int(revision))

    def list_records(self, collection: str) -> list[StoredRecord]:
        with _storage_errors("list"):
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        SELECT id, record, revision
                        FROM records
                        WHERE collection = %s
                        ORDER BY created_at
                        """,
                        (collection,),
                    )
                    rows = cur.fetchall()
        return [
            StoredRecord(record_id=record_id, record=_decode_json(record), revision=int(revision))
            for record_id, record, revision in rows
        ]

    def subscribe(self, collection: str, record_filter: RecordFilter | None = None) -> PostgresSubscription:
        with _storage_errors("subscribe"):
            conn = self._connect(autocommit=True)
            conn.execute(f"LISTEN {NOTIFY_CHANNEL}")
        initial = [
            _event(collection, stored, "insert")
            for stored in self.list_records(collection)
            if record_filter is None or record_filter(stored.record)
        ]
        return PostgresSubscription(conn=conn, collection=collection, initial=initial, record_filter=record_filter)

    def conditional_commit(
        self, collection: str, record_id: str, record: dict[str, Any], expected_revision: int
    ) -> int:
        stored = _with_id(record, record_id)
        now = datetime.now(timezone.utc)
        with _storage_errors("conditional commit"):
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        UPDATE records
                        SET record = %s::jsonb, revision = revision + 1, updated_at = %s
                        WHERE collection = %s AND id = %s AND revision = %s
                        RETURNING revision
                        """,
                        (json.dumps(stored), now, collection, record_id, expected_revision),
                    )
                    row = cur.fetchone()
                    if row is None:
                        conn.rollback()
                        current = self.get(collection, record_id)
                        raise Conflict(
                            record_id,
                            expected_revision,
                            current.revision if current is not None else None,
                        )
                    revision = int(row[0])
                    self._record_history(cur, collection, record_id, revision, stored, now)
                    self._notify(cur, collection, record_id, revision, stored, "update")
                conn.commit()
        return revision

    def insert(self, collection: str, record: dict[str, Any]) -> tuple[str, int]:
        record_id = str(uuid.uuid4())
        stored = _with_id(record, record_id)
        now = datetime.now(timezone.utc)
        with _storage_errors("insert"):
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        INSERT INTO records (collection, id, revision, record, created_at, updated_at)
                        VALUES (%s, %s, 1, %s::jsonb, %s, %s)
                        """,
                        (collection, record_id, json.dumps(stored), now, now),
                    )
                    self._record_history(cur, collection, record_id, 1, stored, now)
                    self._notify(cur, collection, record_id, 1, stored, "insert")
                conn.commit()
        return record_id, 1

    def _record_history(
        self, cur: Any, collection: str, record_id: str, revision: int, record: dict[str, Any], now: datetime
    ) -> None:
        cur.execute(
            """
            INSERT INTO record_history (collection, id, revision, record, created_at)
            VALUES (%s, %s, %s, %s::jsonb, %s)
            """,
            (collection, record_id, revision, json.dumps(record), now),
        )

    def _notify(
        self, cur: Any, collection: str, record_id: str, revision: int, record: dict[str, Any], kind: str
    ) -> None:
        payload = {"collection": collection, "id": record_id, "revision": revision, "record": record, "kind": kind}
        cur.execute("SELECT pg_notify(%s, %s)", (NOTIFY_CHANNEL, json.dumps(payload)))


def _decode_json(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else json.loads(value)


def create_store(database_url: str | None) -> GameStore:
    if database_url:
        return PostgresGameStore(database_url=database_url)
    return InMemoryGameStore()
