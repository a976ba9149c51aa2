"""Contract of the external key/value entity store.

Entities are flat dictionaries addressed by ``partitionKey`` and ``rowKey``,
the same shape an Azure Tables deployment uses.
"""
from __future__ import annotations

from typing import Any, Iterator, Protocol

__all__ = ["Entity", "Table", "TableError", "TableService", "entity_key"]

Entity = dict[str, Any]


class TableError(RuntimeError):
    """Raised when the backing store fails."""


def entity_key(entity: Entity) -> tuple[str, str]:
    try:
        return str(entity["partitionKey"]), str(entity["rowKey"])
    except KeyError as exc:
        raise TableError(f"entity is missing {exc.args[0]}") from exc


class Table(Protocol):
    name: str

    def get(self, partition_key: str, row_key: str) -> Entity | None: ...

    def upsert(self, entity: Entity) -> None:
        """Replace the entity (create when absent)."""

    def merge(self, entity: Entity) -> None:
        """Update only the given fields (create when absent)."""

    def insert(self, entity: Entity) -> bool:
        """Create the entity only if absent; return whether it was created."""

    def delete(self, partition_key: str, row_key: str) -> None: ...

    def query(self, *, partition_key: str | None = None, row_key: str | None = None) -> Iterator[Entity]: ...


class TableService(Protocol):
    def table(self, name: str) -> Table: ...

    def close(self) -> None: ...
