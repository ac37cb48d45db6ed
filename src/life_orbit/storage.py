"""SQLite storage. Un archivo = una órbita."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import numpy as np

from life_orbit.errors import ImportFormatError, StoreError
from life_orbit.models import EventKind, OrbitLevel, StoreEvent, Thought

logger = logging.getLogger(__name__)

EXPORT_FORMAT = "LifeOrbit-JSON-Export"
EXPORT_ENGINE = "SQLite"

Subscriber = Callable[[StoreEvent], None]


@dataclass
class StoreStats:
    count: int
    size_bytes: int
    last_updated: float


def _encode_vector(vector: list[float] | None) -> bytes | None:
    if vector is None:
        return None
    # float64 so that export -> import reproduces the exact values
    return np.asarray(vector, dtype=np.float64).tobytes()


def _decode_vector(blob: bytes | None) -> list[float] | None:
    if blob is None:
        return None
    return np.frombuffer(blob, dtype=np.float64).tolist()


class Storage:
    """SQLite backend. Zero config. Portable.

    Every sqlite3 failure surfaces as StoreError. Every operation, failed
    or not, is announced to subscribers as a StoreEvent.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._subscribers: list[Subscriber] = []
        # one connection shared with worker threads (check_same_thread=False)
        self._lock = threading.RLock()
        try:
            self.conn = sqlite3.connect(str(self.path), check_same_thread=False)
            self.conn.execute("PRAGMA journal_mode=WAL")
            self._init_schema()
        except sqlite3.Error as exc:
            raise StoreError(f"cannot open {self.path}: {exc}") from exc
        self._emit(EventKind.SYNC, str(self.path), message="Engine connected.")

    def _init_schema(self) -> None:
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS thoughts (
                id TEXT PRIMARY KEY,
                content TEXT NOT NULL,
                level TEXT NOT NULL DEFAULT 'FLOATING',
                timestamp INTEGER NOT NULL,
                reasoning TEXT NOT NULL DEFAULT '',
                completed INTEGER NOT NULL DEFAULT 0,
                connections TEXT NOT NULL DEFAULT '[]',
                vector BLOB
            );

            CREATE INDEX IF NOT EXISTS idx_thoughts_timestamp
                ON thoughts(timestamp DESC);
            CREATE INDEX IF NOT EXISTS idx_thoughts_level
                ON thoughts(level);
        """)
        self.conn.commit()

    # ── Events ─────────────────────────────────────────────────────────

    def subscribe(self, fn: Subscriber) -> Callable[[], None]:
        """Register a listener. Returns a function that removes it again."""
        self._subscribers.append(fn)

        def _unsubscribe() -> None:
            if fn in self._subscribers:
                self._subscribers.remove(fn)

        return _unsubscribe

    def _emit(self, kind: EventKind, subject: str, ok: bool = True,
              message: str = "") -> None:
        event = StoreEvent(kind=kind, subject=subject, ok=ok, message=message)
        for fn in list(self._subscribers):
            try:
                fn(event)
            except Exception:
                logger.exception("store subscriber %r failed", fn)

    # ── Thought CRUD ───────────────────────────────────────────────────

    def _row_values(self, t: Thought) -> tuple:
        return (
            t.id, t.content, t.level.value, t.timestamp, t.reasoning,
            int(t.completed), json.dumps(t.connections), _encode_vector(t.vector),
        )

    _UPSERT = """INSERT OR REPLACE INTO thoughts
                 (id, content, level, timestamp, reasoning, completed,
                  connections, vector)
                 VALUES (?, ?, ?, ?, ?, ?, ?, ?)"""

    def save_thought(self, t: Thought) -> None:
        """Upsert by id."""
        try:
            with self._lock:
                existed = self.conn.execute(
                    "SELECT 1 FROM thoughts WHERE id = ?", (t.id,)
                ).fetchone() is not None
                self.conn.execute(self._UPSERT, self._row_values(t))
                self.conn.commit()
        except sqlite3.Error as exc:
            self._rollback()
            self._emit(EventKind.INSERT, t.id, ok=False,
                       message=f"Failed to save record {t.id}. Rolled back.")
            raise StoreError(f"save {t.id}: {exc}") from exc
        kind = EventKind.UPDATE if existed else EventKind.INSERT
        self._emit(kind, t.id, message="Transaction committed.")

    def load_thought(self, thought_id: str) -> Thought | None:
        try:
            with self._lock:
                row = self.conn.execute(
                    "SELECT * FROM thoughts WHERE id = ?", (thought_id,)
                ).fetchone()
        except sqlite3.Error as exc:
            raise StoreError(f"load {thought_id}: {exc}") from exc
        if row is None:
            return None
        return self._row_to_thought(row)

    def all_thoughts(self) -> list[Thought]:
        """Every stored thought, in storage order."""
        try:
            with self._lock:
                rows = self.conn.execute("SELECT * FROM thoughts").fetchall()
        except sqlite3.Error as exc:
            self._emit(EventKind.QUERY, "*", ok=False, message=str(exc))
            raise StoreError(f"read all: {exc}") from exc
        self._emit(EventKind.QUERY, "*", message=f"Fetched {len(rows)} rows.")
        return [self._row_to_thought(r) for r in rows]

    def delete_thought(self, thought_id: str) -> bool:
        """Remove a thought. An absent id is not an error; returns whether a row went away."""
        try:
            with self._lock:
                cursor = self.conn.execute(
                    "DELETE FROM thoughts WHERE id = ?", (thought_id,)
                )
                self.conn.commit()
        except sqlite3.Error as exc:
            self._rollback()
            self._emit(EventKind.DELETE, thought_id, ok=False, message=str(exc))
            raise StoreError(f"delete {thought_id}: {exc}") from exc
        self._emit(EventKind.DELETE, thought_id, message="Row pruned.")
        return cursor.rowcount > 0

    def count(self) -> int:
        try:
            with self._lock:
                return self.conn.execute("SELECT COUNT(*) FROM thoughts").fetchone()[0]
        except sqlite3.Error as exc:
            raise StoreError(f"count: {exc}") from exc

    def stats(self) -> StoreStats:
        size = 0
        for suffix in ("", "-wal"):
            p = Path(str(self.path) + suffix)
            if p.exists():
                size += p.stat().st_size
        return StoreStats(count=self.count(), size_bytes=size,
                          last_updated=time.time())

    # ── Export / import ────────────────────────────────────────────────

    def export_document(self) -> dict:
        thoughts = self.all_thoughts()
        self._emit(EventKind.SYNC, "export",
                   message=f"Database dump: {len(thoughts)} rows.")
        return {
            "engine": EXPORT_ENGINE,
            "format": EXPORT_FORMAT,
            "exportDate": datetime.now(timezone.utc).isoformat(),
            "payload": [t.to_dict() for t in thoughts],
        }

    def import_document(self, document: dict) -> int:
        """Upsert every record of an export document, all or nothing.

        Accepts ``payload`` or the legacy ``data`` key. Every record is
        validated before anything is written. Returns the number of rows.
        """
        thoughts = self._parse_document(document)
        try:
            with self._lock, self.conn:
                self.conn.executemany(
                    self._UPSERT, [self._row_values(t) for t in thoughts]
                )
        except sqlite3.Error as exc:
            self._emit(EventKind.SYNC, "import", ok=False,
                       message=f"Batch import failed: {exc}")
            raise StoreError(f"import: {exc}") from exc
        self._emit(EventKind.SYNC, "import",
                   message=f"Batch import: {len(thoughts)} rows restored.")
        return len(thoughts)

    def _parse_document(self, document: dict) -> list[Thought]:
        if not isinstance(document, dict):
            raise ImportFormatError("import document must be a JSON object")
        records = document.get("payload")
        if records is None:
            records = document.get("data")
        if not isinstance(records, list):
            raise ImportFormatError("import document needs a 'payload' or 'data' array")
        try:
            return [Thought.from_dict(r) for r in records]
        except ValueError as exc:
            raise ImportFormatError(str(exc)) from exc

    # ── Helpers ────────────────────────────────────────────────────────

    @staticmethod
    def _row_to_thought(row: tuple) -> Thought:
        return Thought(
            id=row[0],
            content=row[1],
            level=OrbitLevel(row[2]),
            timestamp=row[3],
            reasoning=row[4],
            completed=bool(row[5]),
            connections=json.loads(row[6]),
            vector=_decode_vector(row[7]),
        )

    def _rollback(self) -> None:
        try:
            with self._lock:
                self.conn.rollback()
        except sqlite3.Error as exc:
            # Connection already unusable; the original error is what matters
            logger.debug("rollback failed: %s", exc)

    def close(self) -> None:
        with self._lock:
            self.conn.close()
