from __future__ import annotations

import os
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

from .errors import UpstreamFailure
from .models import NodeRecord
from .runtime import RWLock


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class Registry(ABC):
    """Durable store of node records keyed by node id.

    Duplicate ids are not rejected here; the provisioning workflow is the
    only writer and allocates ids under its own lock. Reads share a lock,
    writes are exclusive.
    """

    @abstractmethod
    def add(self, record: NodeRecord) -> None: ...

    @abstractmethod
    def get(self, node_id: int) -> NodeRecord | None: ...

    @abstractmethod
    def list(self) -> list[NodeRecord]:
        """All records, ascending by id."""

    @abstractmethod
    def count(self) -> int: ...

    @abstractmethod
    def delete(self, node_id: int) -> None:
        """Remove a record. Unknown ids are ignored."""

    @abstractmethod
    def log_event(self, level: str, message: str, node_id: int | None = None) -> None: ...

    @abstractmethod
    def latest_events(self, limit: int = 100) -> list[dict[str, Any]]: ...

    def ids(self) -> set[int]:
        return {r.id for r in self.list()}


def _resolve_db_path(db_path: str) -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory (Docker creates one when a missing
    bind-mounted file path is mounted), the DB file is placed inside it.
    """
    p = os.path.abspath(db_path)
    if os.path.isdir(p):
        p = os.path.join(p, "ruche.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def _row_to_record(row: sqlite3.Row) -> NodeRecord:
    return NodeRecord(
        id=row["id"],
        neighborhood=row["neighborhood"],
        full_node=bool(row["full_node"]),
        swap_enable=bool(row["swap_enable"]),
        reserve_doubling=bool(row["reserve_doubling"]),
        data_dir=row["data_dir"],
    )


class SqliteRegistry(Registry):
    def __init__(self, db_path: str):
        self.path = _resolve_db_path(db_path)
        self._lock = RWLock()
        self.init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.path, check_same_thread=False)
        except sqlite3.Error as e:
            raise UpstreamFailure("registry", f"Unable to open {self.path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        except sqlite3.Error as e:
            raise UpstreamFailure("registry", str(e)) from e
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create tables if they do not exist."""
        with self._lock.write(), self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS nodes (
                  pk INTEGER PRIMARY KEY AUTOINCREMENT,
                  id INTEGER NOT NULL,
                  neighborhood TEXT NOT NULL,
                  full_node INTEGER NOT NULL,
                  swap_enable INTEGER NOT NULL,
                  reserve_doubling INTEGER NOT NULL,
                  data_dir TEXT NOT NULL,
                  created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS events (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  ts TEXT NOT NULL,
                  level TEXT NOT NULL,
                  node_id INTEGER,
                  message TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_nodes_id ON nodes(id);
                CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
                """
            )

    def add(self, record: NodeRecord) -> None:
        with self._lock.write(), self._connect() as conn:
            conn.execute(
                """
                INSERT INTO nodes (id, neighborhood, full_node, swap_enable, reserve_doubling, data_dir, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.neighborhood,
                    int(record.full_node),
                    int(record.swap_enable),
                    int(record.reserve_doubling),
                    record.data_dir,
                    utc_now(),
                ),
            )

    def get(self, node_id: int) -> NodeRecord | None:
        with self._lock.read(), self._connect() as conn:
            row = conn.execute("SELECT * FROM nodes WHERE id=? ORDER BY pk LIMIT 1", (node_id,)).fetchone()
            return _row_to_record(row) if row else None

    def list(self) -> list[NodeRecord]:
        with self._lock.read(), self._connect() as conn:
            rows = conn.execute("SELECT * FROM nodes ORDER BY id, pk").fetchall()
            return [_row_to_record(r) for r in rows]

    def count(self) -> int:
        with self._lock.read(), self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM nodes").fetchone()[0]

    def delete(self, node_id: int) -> None:
        # One document per call, like a delete_one on a document store.
        with self._lock.write(), self._connect() as conn:
            conn.execute(
                "DELETE FROM nodes WHERE pk = (SELECT pk FROM nodes WHERE id=? ORDER BY pk LIMIT 1)",
                (node_id,),
            )

    def log_event(self, level: str, message: str, node_id: int | None = None) -> None:
        with self._lock.write(), self._connect() as conn:
            conn.execute(
                "INSERT INTO events (ts, level, node_id, message) VALUES (?, ?, ?, ?)",
                (utc_now(), level.upper(), node_id, message),
            )

    def latest_events(self, limit: int = 100) -> list[dict[str, Any]]:
        with self._lock.read(), self._connect() as conn:
            rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
            return [dict(r) for r in rows]


class InMemoryRegistry(Registry):
    """Registry kept in a list; same contract as SqliteRegistry, nothing on disk."""

    def __init__(self) -> None:
        self._lock = RWLock()
        self._records: list[NodeRecord] = []
        self._events: list[dict[str, Any]] = []

    def add(self, record: NodeRecord) -> None:
        with self._lock.write():
            self._records.append(record)

    def get(self, node_id: int) -> NodeRecord | None:
        with self._lock.read():
            for r in self._records:
                if r.id == node_id:
                    return r
            return None

    def list(self) -> list[NodeRecord]:
        with self._lock.read():
            # sorted() is stable, so duplicate ids keep insertion order.
            return sorted(self._records, key=lambda r: r.id)

    def count(self) -> int:
        with self._lock.read():
            return len(self._records)

    def delete(self, node_id: int) -> None:
        with self._lock.write():
            for i, r in enumerate(self._records):
                if r.id == node_id:
                    del self._records[i]
                    return

    def log_event(self, level: str, message: str, node_id: int | None = None) -> None:
        with self._lock.write():
            self._events.append(
                {
                    "id": len(self._events) + 1,
                    "ts": utc_now(),
                    "level": level.upper(),
                    "node_id": node_id,
                    "message": message,
                }
            )

    def latest_events(self, limit: int = 100) -> list[dict[str, Any]]:
        with self._lock.read():
            return list(reversed(self._events))[:limit]
