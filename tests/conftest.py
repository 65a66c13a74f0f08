"""Test configuration and fixtures for relstore.

Fixtures:
  - Redirect SqliteDatabase.named() storage to a temp dir
  - A named test database with a freshly created Property table
  - The Property entity and its store
"""

from dataclasses import dataclass
from typing import Optional

import pytest

from relstore.db import SqliteDatabase
from relstore.store import RelationalStore

PROPERTY_TABLE_SQL = (
    "CREATE TABLE Property (Id INTEGER PRIMARY KEY AUTOINCREMENT NOT NULL, Name text, Address text)"
)


@dataclass
class Property:
    name: str = ""
    address: str = ""
    id: Optional[int] = None


@pytest.fixture(autouse=True)
def _isolate_data_dir(tmp_path):
    """Redirect SqliteDatabase storage to temp dir so tests don't pollute ~/.relstore/data/."""
    old = SqliteDatabase.base_dir
    SqliteDatabase.base_dir = str(tmp_path / "relstore-data")
    yield
    SqliteDatabase.base_dir = old


@pytest.fixture
def db():
    """Named test database with an empty Property table."""
    database = SqliteDatabase.named("RelstoreTestSQLiteRelational")
    database.try_drop_table("Property")
    database.transact_ddl(PROPERTY_TABLE_SQL)
    yield database
    database.close()


@pytest.fixture
def property_store(db):
    return RelationalStore[Property](db, Property)
