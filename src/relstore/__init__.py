"""relstore: typed CRUD stores over SQLite tables.

A RelationalStore binds an entity type to one table through an explicit
EntityMapping and provides single and batch add/update/delete plus load,
with serial (AUTOINCREMENT) primary keys assigned by the database.
"""

from .db import SqliteDatabase
from .errors import NotFoundError, StorageError, StoreError, ValidationError
from .mapping import EntityMapping, FieldMapping, KeyMapping, load_mappings, mapping_for
from .store import RelationalStore

__version__ = "0.1.0"

__all__ = [
    "EntityMapping",
    "FieldMapping",
    "KeyMapping",
    "NotFoundError",
    "RelationalStore",
    "SqliteDatabase",
    "StorageError",
    "StoreError",
    "ValidationError",
    "load_mappings",
    "mapping_for",
]
