"""SQLite implementation of the entity table contract."""
from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Final, Iterator

from .table import Entity, TableError, entity_key

__all__ = ["SQLiteTable", "SQLiteTableService"]


class SQLiteTableService:
    """Owns one SQLite connection shared by every logical table."""

    _SCHEMA: Final[str] = """
    PRAGMA journal_mode=WAL;

    CREATE TABLE IF NOT EXISTS entities (
        table_name TEXT NOT NULL,
        partition_key TEXT NOT NULL,
        row_key TEXT NOT NULL,
        body_json TEXT NOT NULL,
        PRIMARY KEY (table_name, partition_key, row_key)
    );

    CREATE INDEX IF NOT EXISTS idx_entities_row
        ON entities(table_name, row_key);
    """

    def __init__(self, db_path: str | Path) -> None:
        self._path = Path(db_path)
        if not self._path.parent.exists():
            self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self._path, isolation_level=None, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._tables: dict[str, SQLiteTable] = {}
        with self._lock:
            self._conn.executescript(self._SCHEMA)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def table(self, name: str) -> "SQLiteTable":
        with self._lock:
            if name not in self._tables:
                self._tables[name] = SQLiteTable(name, self)
            return self._tables[name]

    def close(self) -> None:
        with self._lock:
            self._conn.close()


class SQLiteTable:
    def __init__(self, name: str, service: SQLiteTableService) -> None:
        self.name = name
        self._service = service

    def _execute(self, sql: str, params: tuple) -> sqlite3.Cursor:
        try:
            with self._service.lock:
                return self._service.connection.execute(sql, params)
        except sqlite3.Error as exc:
            raise TableError(f"{self.name}: {exc}") from exc

    def get(self, partition_key: str, row_key: str) -> Entity | None:
        row = self._execute(
            "SELECT body_json FROM entities WHERE table_name = ? AND partition_key = ? AND row_key = ?",
            (self.name, partition_key, row_key),
        ).fetchone()
        if row is None:
            return None
        return json.loads(row["body_json"])

    def upsert(self, entity: Entity) -> None:
        pk, rk = entity_key(entity)
        self._execute(
            "INSERT OR REPLACE INTO entities(table_name, partition_key, row_key, body_json) VALUES(?, ?, ?, ?)",
            (self.name, pk, rk, json.dumps(entity, sort_keys=True)),
        )

    def merge(self, entity: Entity) -> None:
        pk, rk = entity_key(entity)
        with self._service.lock:
            current = self.get(pk, rk) or {}
            current.update(entity)
            self.upsert(current)

    def insert(self, entity: Entity) -> bool:
        pk, rk = entity_key(entity)
        cursor = self._execute(
            "INSERT OR IGNORE INTO entities(table_name, partition_key, row_key, body_json) VALUES(?, ?, ?, ?)",
            (self.name, pk, rk, json.dumps(entity, sort_keys=True)),
        )
        return cursor.rowcount == 1

    def delete(self, partition_key: str, row_key: str) -> None:
        self._execute(
            "DELETE FROM entities WHERE table_name = ? AND partition_key = ? AND row_key = ?",
            (self.name, partition_key, row_key),
        )

    def query(self, *, partition_key: str | None = None, row_key: str | None = None) -> Iterator[Entity]:
        sql = "SELECT body_json FROM entities WHERE table_name = ?"
        params: list[str] = [self.name]
        if partition_key is not None:
            sql += " AND partition_key = ?"
            params.append(partition_key)
        if row_key is not None:
            sql += " AND row_key = ?"
            params.append(row_key)
        rows = self._execute(sql, tuple(params)).fetchall()
        return iter([json.loads(row["body_json"]) for row in rows])
