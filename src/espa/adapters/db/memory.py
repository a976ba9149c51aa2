"""In-memory table store, used when no persistent storage is configured."""
from __future__ import annotations

import copy
import logging
import threading
from typing import Iterator

from .table import Entity, entity_key

__all__ = ["MemoryTable", "MemoryTableService"]

_log = logging.getLogger("espa.storage")


class MemoryTable:
    def __init__(self, name: str) -> None:
        self.name = name
        self._rows: dict[tuple[str, str], Entity] = {}
        self._lock = threading.Lock()

    def get(self, partition_key: str, row_key: str) -> Entity | None:
        with self._lock:
            row = self._rows.get((partition_key, row_key))
            return copy.deepcopy(row) if row is not None else None

    def upsert(self, entity: Entity) -> None:
        key = entity_key(entity)
        with self._lock:
            self._rows[key] = copy.deepcopy(entity)

    def merge(self, entity: Entity) -> None:
        key = entity_key(entity)
        with self._lock:
            current = self._rows.get(key, {})
            current.update(copy.deepcopy(entity))
            self._rows[key] = current

    def insert(self, entity: Entity) -> bool:
        key = entity_key(entity)
        with self._lock:
            if key in self._rows:
                return False
            self._rows[key] = copy.deepcopy(entity)
            return True

    def delete(self, partition_key: str, row_key: str) -> None:
        with self._lock:
            self._rows.pop((partition_key, row_key), None)

    def query(self, *, partition_key: str | None = None, row_key: str | None = None) -> Iterator[Entity]:
        with self._lock:
            snapshot = [
                copy.deepcopy(row)
                for (pk, rk), row in self._rows.items()
                if (partition_key is None or pk == partition_key) and (row_key is None or rk == row_key)
            ]
        return iter(snapshot)


class MemoryTableService:
    def __init__(self) -> None:
        self._tables: dict[str, MemoryTable] = {}
        self._lock = threading.Lock()
        _log.warning("no persistent storage configured, using in-memory tables")

    def table(self, name: str) -> MemoryTable:
        with self._lock:
            if name not in self._tables:
                self._tables[name] = MemoryTable(name)
            return self._tables[name]

    def close(self) -> None:
        pass
