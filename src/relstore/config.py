"""Database settings for relstore.

Settings come from a YAML file (all keys optional):

    data_dir: ~/.relstore/data
    journal_mode: WAL
    foreign_keys: true
    timeout: 5.0

and are applied when opening a SqliteDatabase through StoreConfig.open().
"""

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import yaml

from .db import SqliteDatabase
from .errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass
class StoreConfig:
    """Connection settings shared by every database a process opens."""
    data_dir: Optional[str] = None  # None: SqliteDatabase.base_dir
    journal_mode: str = "WAL"
    foreign_keys: bool = True
    timeout: float = 5.0

    @classmethod
    def from_yaml(cls, path: str) -> "StoreConfig":
        """Load settings from a YAML file.

        Raises:
            ValidationError: If the file is missing, unparsable, or has
                unknown keys or values of the wrong type
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except FileNotFoundError as e:
            raise ValidationError(f"Config file not found: {path}") from e
        except yaml.YAMLError as e:
            raise ValidationError(f"Failed to parse config file {path}: {e}") from e

        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValidationError(f"{path}: config must be a mapping")

        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValidationError(f"{path}: unknown config keys: {', '.join(sorted(map(str, unknown)))}")

        config = cls(**data)
        config.validate()
        logger.debug("Loaded config from %s", path)
        return config

    def validate(self) -> None:
        if not isinstance(self.journal_mode, str):
            raise ValidationError(f"journal_mode must be a string, got {self.journal_mode!r}")
        if not isinstance(self.foreign_keys, bool):
            raise ValidationError(f"foreign_keys must be true or false, got {self.foreign_keys!r}")
        if isinstance(self.timeout, bool) or not isinstance(self.timeout, (int, float)) or self.timeout < 0:
            raise ValidationError(f"timeout must be a non-negative number, got {self.timeout!r}")

    def resolve_path(self, name_or_path: str) -> str:
        """Map a bare database name to <data_dir>/<name>.db; pass paths through."""
        if name_or_path == ":memory:" or Path(name_or_path).name != name_or_path or name_or_path.endswith(".db"):
            return name_or_path
        base = Path(self.data_dir).expanduser() if self.data_dir else Path(SqliteDatabase.base_dir)
        return str(base / f"{name_or_path}.db")

    def open(self, name_or_path: str) -> SqliteDatabase:
        """Open a database with these settings."""
        self.validate()
        return SqliteDatabase(
            self.resolve_path(name_or_path),
            journal_mode=self.journal_mode,
            foreign_keys=self.foreign_keys,
            timeout=self.timeout,
        )
