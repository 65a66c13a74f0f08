"""Typed CRUD store over one SQLite table.

RelationalStore[T] moves entities of type T in and out of the table named by
its EntityMapping. It holds no state besides the borrowed database and the
mapping; every public call is its own transaction.

Batch operations (add_many, update_many, delete_many) are all-or-nothing:
they run inside a single transaction and a failure on any entity rolls back
the whole batch. Keys assigned by add_many are written back onto the
entities only after the commit succeeds, so add_many rejects a batch that
holds the same instance twice.

Missing rows:
  - update / update_many raise NotFoundError (the batch is rolled back)
  - delete raises NotFoundError
  - delete_many ignores rows that are already gone and returns the count
    actually removed
"""

import logging
from typing import Any, Generic, Iterable, List, Optional, TypeVar, Union

from .db import SqliteDatabase
from .errors import NotFoundError, ValidationError
from .mapping import EntityMapping, mapping_for, quote_identifier

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RelationalStore(Generic[T]):
    """CRUD façade for one entity type and its table."""

    def __init__(self, db: SqliteDatabase, mapping: Union[EntityMapping, type]):
        """Bind a store to a database and an entity mapping.

        Args:
            db: Open database; the store never closes it
            mapping: EntityMapping, or a dataclass to derive one from with
                mapping_for() defaults (table = class name, key = "id")
        """
        if not isinstance(mapping, EntityMapping):
            mapping = mapping_for(mapping)

        self.db = db
        self.mapping = mapping
        self.table = mapping.table

        table = quote_identifier(mapping.table)
        key = quote_identifier(mapping.key.column)
        columns = [quote_identifier(c) for c in mapping.columns]

        insert_columns = columns if mapping.key.serial else [key] + columns
        if insert_columns:
            placeholders = ", ".join("?" for _ in insert_columns)
            self._insert_sql = (
                f"INSERT INTO {table} ({', '.join(insert_columns)}) VALUES ({placeholders})"
            )
        else:
            self._insert_sql = f"INSERT INTO {table} DEFAULT VALUES"

        # A table with no data columns has nothing to overwrite
        if columns:
            assignments = ", ".join(f"{c} = ?" for c in columns)
            self._update_sql = f"UPDATE {table} SET {assignments} WHERE {key} = ?"
        else:
            self._update_sql = None

        self._select_sql = f"SELECT {', '.join([key] + columns)} FROM {table}"
        self._exists_sql = f"SELECT 1 FROM {table} WHERE {key} = ?"
        self._delete_sql = f"DELETE FROM {table} WHERE {key} = ?"
        self._delete_all_sql = f"DELETE FROM {table}"
        self._count_sql = f"SELECT COUNT(*) FROM {table}"
        self._order_by = f" ORDER BY {key}"

        if mapping.key.serial and db.table_exists(mapping.table) and not db.uses_autoincrement(mapping.table):
            logger.warning(
                "Table %s has no AUTOINCREMENT key; ids of deleted rows may be reused",
                mapping.table,
            )

    def __repr__(self):
        return f"RelationalStore({self.mapping.entity_type.__name__} -> {self.table})"

    # --- Validation helpers ---

    def _insert_params(self, entity: T) -> tuple:
        key_spec = self.mapping.key
        key = self.mapping.key_of(entity)
        values = self.mapping.values_of(entity)
        if key_spec.serial:
            if not key_spec.is_unset(key):
                raise ValidationError(
                    f"{self.table} entity already has key {key!r}; use update() instead"
                )
            return values
        if key_spec.is_unset(key):
            raise ValidationError(f"{self.table} entity needs a {key_spec.name} before add()")
        return (key,) + values

    def _require_key(self, entity: T, operation: str) -> Any:
        key = self.mapping.key_of(entity)
        if self.mapping.key.is_unset(key):
            raise ValidationError(
                f"Cannot {operation} {self.table} entity without a {self.mapping.key.name}"
            )
        return key

    @staticmethod
    def _as_batch(entities: Iterable[T]) -> List[T]:
        batch = list(entities)
        if len({id(e) for e in batch}) != len(batch):
            raise ValidationError("The same entity instance appears more than once in the batch")
        return batch

    def _update_row(self, cursor, entity: T, key: Any) -> None:
        if self._update_sql is None:
            cursor.execute(self._exists_sql, (key,))
            found = cursor.fetchone() is not None
        else:
            cursor.execute(self._update_sql, self.mapping.values_of(entity) + (key,))
            found = cursor.rowcount > 0
        if not found:
            raise NotFoundError(self.table, key)

    # --- Writes ---

    def add(self, entity: T) -> T:
        """Insert one entity.

        For serial keys the new id is written back onto the entity.

        Raises:
            ValidationError: Serial key already set, or non-serial key missing
            StorageError: The insert was rejected
        """
        params = self._insert_params(entity)
        with self.db.transaction() as cursor:
            cursor.execute(self._insert_sql, params)
            new_key = cursor.lastrowid

        if self.mapping.key.serial:
            self.mapping.set_key(entity, new_key)
        logger.debug("Inserted %s %s=%s", self.table, self.mapping.key.name, self.mapping.key_of(entity))
        return entity

    def add_many(self, entities: Iterable[T]) -> List[T]:
        """Insert a batch of entities in one transaction.

        Every entity is validated before any row is written. Serial ids are
        assigned in batch order and written back only after commit; on
        failure no row is kept and no entity is modified.

        Returns:
            The entities, in the order given
        """
        batch = self._as_batch(entities)
        if not batch:
            return []
        params = [self._insert_params(e) for e in batch]

        new_keys = []
        with self.db.transaction() as cursor:
            for p in params:
                cursor.execute(self._insert_sql, p)
                new_keys.append(cursor.lastrowid)

        if self.mapping.key.serial:
            for entity, key in zip(batch, new_keys):
                self.mapping.set_key(entity, key)
        logger.debug("Inserted %d rows into %s", len(batch), self.table)
        return batch

    def update(self, entity: T) -> T:
        """Overwrite the non-key columns of an existing row.

        Raises:
            ValidationError: The entity has no key
            NotFoundError: No row has the entity's key
        """
        key = self._require_key(entity, "update")
        with self.db.transaction() as cursor:
            self._update_row(cursor, entity, key)
        logger.debug("Updated %s %s=%s", self.table, self.mapping.key.name, key)
        return entity

    def update_many(self, entities: Iterable[T]) -> int:
        """Update a batch of entities in one transaction.

        A missing row raises NotFoundError and rolls back the whole batch.

        Returns:
            Number of rows updated
        """
        batch = list(entities)
        keys = [self._require_key(e, "update") for e in batch]
        if not batch:
            return 0

        with self.db.transaction() as cursor:
            for entity, key in zip(batch, keys):
                self._update_row(cursor, entity, key)
        logger.debug("Updated %d rows in %s", len(batch), self.table)
        return len(batch)

    def delete(self, entity: T) -> T:
        """Remove the row matching the entity's key.

        Raises:
            ValidationError: The entity has no key
            NotFoundError: No row has the entity's key
        """
        key = self._require_key(entity, "delete")
        with self.db.transaction() as cursor:
            cursor.execute(self._delete_sql, (key,))
            if cursor.rowcount == 0:
                raise NotFoundError(self.table, key)
        logger.debug("Deleted %s %s=%s", self.table, self.mapping.key.name, key)
        return entity

    def delete_many(self, entities: Iterable[T]) -> int:
        """Remove the rows matching the entities' keys in one transaction.

        Keys with no matching row are skipped.

        Returns:
            Number of rows actually removed
        """
        keys = [self._require_key(e, "delete") for e in entities]
        if not keys:
            return 0
        with self.db.transaction() as cursor:
            cursor.executemany(self._delete_sql, [(k,) for k in keys])
            removed = cursor.rowcount
        logger.debug("Deleted %d of %d requested rows from %s", removed, len(keys), self.table)
        return removed

    def delete_all(self) -> int:
        """Remove every row. The serial counter is not reset.

        Returns:
            Number of rows removed
        """
        with self.db.transaction() as cursor:
            cursor.execute(self._delete_all_sql)
            removed = cursor.rowcount
        logger.debug("Deleted all %d rows from %s", removed, self.table)
        return removed

    # --- Reads ---

    def load(self) -> List[T]:
        """Return every row as an entity, ordered by key. Empty table -> []."""
        rows = self.db.query(self._select_sql + self._order_by)
        return [self.mapping.build(row) for row in rows]

    def get(self, key: Any) -> Optional[T]:
        """Return the entity with the given key, or None."""
        rows = self.db.query(
            f"{self._select_sql} WHERE {quote_identifier(self.mapping.key.column)} = ?",
            (key,)
        )
        return self.mapping.build(rows[0]) if rows else None

    def count(self) -> int:
        return self.db.query(self._count_sql)[0][0]
