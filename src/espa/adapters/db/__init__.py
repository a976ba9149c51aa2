from .table import Entity, Table, TableError, TableService
from .memory import MemoryTable, MemoryTableService
from .sqlite import SQLiteTable, SQLiteTableService

__all__ = [
    "Entity",
    "Table",
    "TableError",
    "TableService",
    "MemoryTable",
    "MemoryTableService",
    "SQLiteTable",
    "SQLiteTableService",
]
