"""Error types raised by the relational store.

All store failures derive from StoreError so callers can catch one type.
The three concrete kinds tell a caller whether a retry could help:
  - ValidationError: the input was malformed, retrying will not help
  - NotFoundError: the target row does not exist
  - StorageError: the database rejected the operation (possibly transient)
"""


class StoreError(Exception):
    """Base class for relational store errors."""
    pass


class ValidationError(StoreError):
    """Raised when caller input or a mapping declaration is malformed."""
    pass


class NotFoundError(StoreError):
    """Raised when an update or delete targets a row that does not exist."""

    def __init__(self, table: str, key):
        super().__init__(f"No row in {table} with key {key!r}")
        self.table = table
        self.key = key


class StorageError(StoreError):
    """Raised when the underlying database rejects an operation."""
    pass
