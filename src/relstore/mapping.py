"""Explicit entity-to-table mappings.

A mapping declares, per entity type, the table it lives in, the attribute
holding its primary key and the attributes stored as data columns:

    EntityMapping(Property, "Property",
                  key=KeyMapping("id", "Id"),
                  fields=[FieldMapping("name", "Name", str),
                          FieldMapping("address", "Address", str)])

Mappings can also be built from a dataclass (mapping_for) or read from a
YAML document (load_mappings). Column names default to the attribute name
and are matched exactly; SQLite compares identifiers case-insensitively, so
"Name" and "name" address the same column.
"""

import dataclasses
import importlib
import logging
import re
import typing
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml

from .errors import ValidationError

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Type names accepted in YAML declarations
FIELD_TYPES: Dict[str, type] = {
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "bytes": bytes,
}


def quote_identifier(name: str) -> str:
    """Validate a table/column name and return it double-quoted for SQL."""
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise ValidationError(f"Invalid SQL identifier: {name!r}")
    return f'"{name}"'


@dataclass(frozen=True)
class FieldMapping:
    """Binds one entity attribute to one data column."""
    name: str
    column: str = ""
    type: Optional[type] = None  # None: values pass through unconverted

    def __post_init__(self):
        if not self.column:
            object.__setattr__(self, "column", self.name)
        quote_identifier(self.column)
        if not self.name.isidentifier():
            raise ValidationError(f"Invalid attribute name: {self.name!r}")

    def to_python(self, value: Any) -> Any:
        """Coerce a value read from SQLite to the declared type."""
        if value is None or self.type is None or isinstance(value, self.type):
            return value
        try:
            return self.type(value)
        except (TypeError, ValueError) as e:
            raise ValidationError(
                f"Column {self.column} value {value!r} is not a valid {self.type.__name__}"
            ) from e


@dataclass(frozen=True)
class KeyMapping:
    """Binds the primary-key attribute to the primary-key column.

    Serial keys are assigned by the database on insert. Non-serial keys are
    supplied by the caller.
    """
    name: str = "id"
    column: str = ""
    serial: bool = True

    def __post_init__(self):
        if not self.column:
            object.__setattr__(self, "column", self.name)
        quote_identifier(self.column)
        if not self.name.isidentifier():
            raise ValidationError(f"Invalid attribute name: {self.name!r}")

    def is_unset(self, value: Any) -> bool:
        """A key is unset when None, or 0 for serial keys."""
        if value is None:
            return True
        return self.serial and value == 0


@dataclass
class EntityMapping:
    """Everything a store needs to move one entity type in and out of a table."""
    entity_type: type
    table: str
    key: KeyMapping = field(default_factory=KeyMapping)
    fields: List[FieldMapping] = field(default_factory=list)
    factory: Optional[Callable[..., Any]] = None

    def __post_init__(self):
        quote_identifier(self.table)
        self.fields = list(self.fields)
        if self.factory is None:
            self.factory = self.entity_type

        # Serial keys are written back onto the entity after insert
        if (
            self.key.serial
            and dataclasses.is_dataclass(self.entity_type)
            and self.entity_type.__dataclass_params__.frozen
        ):
            raise ValidationError(
                f"{self.entity_type.__name__} is a frozen dataclass; "
                f"its serial key {self.key.name} cannot be assigned on add"
            )

        seen = {self.key.column.lower(): self.key.name}
        for f in self.fields:
            col = f.column.lower()
            if col in seen:
                raise ValidationError(
                    f"Column {f.column} mapped twice in {self.table} "
                    f"({seen[col]} and {f.name})"
                )
            seen[col] = f.name
            if f.name == self.key.name:
                raise ValidationError(
                    f"Attribute {f.name} is the key of {self.table} and cannot be a data field"
                )

    @property
    def columns(self) -> List[str]:
        """Data column names, in declaration order."""
        return [f.column for f in self.fields]

    def key_of(self, entity: Any) -> Any:
        return getattr(entity, self.key.name, None)

    def set_key(self, entity: Any, value: Any) -> None:
        setattr(entity, self.key.name, value)

    def values_of(self, entity: Any) -> tuple:
        """Data column values of an entity, in column order."""
        try:
            return tuple(getattr(entity, f.name) for f in self.fields)
        except AttributeError as e:
            raise ValidationError(
                f"{type(entity).__name__} does not match mapping for {self.table}: {e}"
            ) from e

    def build(self, row) -> Any:
        """Create an entity from a row laid out as (key, *columns)."""
        kwargs = {self.key.name: row[0]}
        for i, f in enumerate(self.fields, start=1):
            kwargs[f.name] = f.to_python(row[i])
        return self.factory(**kwargs)


def _python_type(hint: Any) -> Optional[type]:
    """Reduce a type hint to one of FIELD_TYPES, unwrapping Optional."""
    if hint in FIELD_TYPES.values():
        return hint
    args = [a for a in typing.get_args(hint) if a is not type(None)]
    if len(args) == 1 and args[0] in FIELD_TYPES.values():
        return args[0]
    return None


def mapping_for(
    cls: type,
    table: str = None,
    key: str = "id",
    columns: Dict[str, str] = None,
    serial: bool = True,
    key_column: str = None,
) -> EntityMapping:
    """Build a mapping from a dataclass's declared fields.

    Args:
        cls: Dataclass describing the entity
        table: Table name (defaults to the class name)
        key: Name of the primary-key attribute
        columns: Attribute name -> column name overrides
        serial: Whether the database assigns the key
        key_column: Column name of the key (defaults to the attribute name)

    Returns:
        EntityMapping for cls

    Raises:
        ValidationError: If cls is not a dataclass or has no key attribute
    """
    if not dataclasses.is_dataclass(cls) or not isinstance(cls, type):
        raise ValidationError(f"{cls!r} is not a dataclass type")

    columns = columns or {}
    try:
        hints = typing.get_type_hints(cls)
    except (NameError, TypeError):
        hints = {}

    declared = [f for f in dataclasses.fields(cls) if f.init]
    if key not in {f.name for f in declared}:
        raise ValidationError(f"{cls.__name__} has no key attribute {key!r}")

    fields = [
        FieldMapping(f.name, columns.get(f.name, f.name), _python_type(hints.get(f.name)))
        for f in declared
        if f.name != key
    ]
    return EntityMapping(
        entity_type=cls,
        table=table or cls.__name__,
        key=KeyMapping(key, key_column or columns.get(key, key), serial),
        fields=fields,
    )


def _resolve_class(path: str) -> type:
    """Import 'package.module:ClassName'."""
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ValidationError(f"Entity class must look like 'module:Class', got {path!r}")
    try:
        module = importlib.import_module(module_name)
        return getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise ValidationError(f"Cannot import entity class {path}: {e}") from e


def _parse_field(spec: Any) -> FieldMapping:
    if isinstance(spec, str):
        return FieldMapping(spec)
    if not isinstance(spec, dict) or "name" not in spec:
        raise ValidationError(f"Field declaration needs a name: {spec!r}")
    type_name = spec.get("type")
    if type_name is not None and type_name not in FIELD_TYPES:
        raise ValidationError(f"Unknown field type {type_name!r} for {spec['name']}")
    return FieldMapping(
        spec["name"],
        spec.get("column", ""),
        FIELD_TYPES[type_name] if type_name else None,
    )


def _parse_key(spec: Any) -> KeyMapping:
    if spec is None:
        return KeyMapping()
    if isinstance(spec, str):
        return KeyMapping(spec)
    if not isinstance(spec, dict):
        raise ValidationError(f"Invalid key declaration: {spec!r}")
    return KeyMapping(
        spec.get("name", "id"),
        spec.get("column", ""),
        bool(spec.get("serial", True)),
    )


def mapping_from_dict(entity_name: str, spec: Dict[str, Any]) -> EntityMapping:
    """Build a mapping from a parsed declaration.

    Without a 'class' entry, a dataclass named entity_name is generated with
    the key and every declared field defaulting to None.
    """
    if not isinstance(spec, dict):
        raise ValidationError(f"Declaration for {entity_name} must be a mapping")

    key = _parse_key(spec.get("key"))
    fields = [_parse_field(f) for f in spec.get("fields") or []]

    if spec.get("class"):
        entity_type = _resolve_class(spec["class"])
    else:
        key_type = int if key.serial else Any
        attrs = [(key.name, Optional[key_type], field(default=None))]
        attrs += [(f.name, Optional[f.type or Any], field(default=None)) for f in fields]
        try:
            entity_type = dataclasses.make_dataclass(entity_name, attrs)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Cannot declare entity {entity_name}: {e}") from e

    return EntityMapping(
        entity_type=entity_type,
        table=spec.get("table", entity_name),
        key=key,
        fields=fields,
    )


def load_mappings(path: str) -> Dict[str, EntityMapping]:
    """Load entity mappings from a YAML file.

    Expected layout:

        entities:
          Property:
            table: Property
            class: myapp.models:Property   # optional
            key: {name: id, column: Id}
            fields:
              - {name: name, column: Name, type: str}
              - address

    Raises:
        ValidationError: If the file is missing, unparsable or malformed
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ValidationError(f"Mapping file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ValidationError(f"Failed to parse mapping file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict) or not isinstance(data.get("entities", {}), dict):
        raise ValidationError(f"{path}: expected an 'entities' mapping at top level")

    mappings = {
        name: mapping_from_dict(name, spec)
        for name, spec in (data.get("entities") or {}).items()
    }
    logger.debug("Loaded %d entity mappings from %s", len(mappings), Path(path).name)
    return mappings
