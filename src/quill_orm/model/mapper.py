"""
Record ⇄ column value mapping.

Reads column values out of records (following embedded attribute
paths) and rebuilds records from result rows.  Enum members are stored
by value.
"""

from __future__ import annotations

import dataclasses
import enum
import typing
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import ArgumentError
from .metadata import unwrap_annotation

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .metadata import FieldMetadata, TableMetadata


def read_field(record: Any, field: FieldMetadata) -> Any:
    """Follow ``field.path`` on *record*; missing intermediates read as ``None``."""
    value = record
    for part in field.path:
        if value is None:
            return None
        value = value.get(part) if isinstance(value, dict) else getattr(value, part, None)
    return value


def write_field(record: Any, field: FieldMetadata, value: Any) -> None:
    """Assign *value* on *record* at ``field.path`` (top-level or embedded)."""
    target = record
    for part in field.path[:-1]:
        target = getattr(target, part, None)
        if target is None:
            return
    if isinstance(target, dict):
        target[field.path[-1]] = value
    elif _is_frozen(target):
        object.__setattr__(target, field.path[-1], value)
    else:
        setattr(target, field.path[-1], value)


def coerce(value: Any) -> Any:
    """Driver-friendly representation of a python value."""
    if isinstance(value, enum.Enum):
        return value.value
    return value


def to_values(
    table: TableMetadata,
    record: Any,
    *,
    include_primary_keys: bool = True,
) -> dict[str, Any]:
    """
    Column → value mapping for *record*, in table column order.

    An auto-increment primary key that is still unset is left out so
    the backend can assign it.
    """
    values: dict[str, Any] = {}
    for field in table.fields:
        value = read_field(record, field)
        if field.primary_key:
            if not include_primary_keys:
                continue
            if field.auto_increment and not value:
                continue
        values[field.column] = coerce(value)
    return values


def primary_key_values(table: TableMetadata, record: Any) -> dict[str, Any]:
    """
    Primary key column → value for *record*.

    Raises:
        ArgumentError: If the table has no primary key or a value is unset.
    """
    if not table.primary_key_columns:
        raise ArgumentError(
            f"Table '{table.name}' has no primary key", argument="record"
        )
    values: dict[str, Any] = {}
    for field in table.primary_keys:
        value = read_field(record, field)
        if value is None:
            raise ArgumentError(
                f"Primary key '{field.name}' of {table.name} is not set",
                argument=field.name,
            )
        values[field.column] = coerce(value)
    return values


def from_row(table: TableMetadata, row: Mapping[str, Any]) -> Any:
    """
    Build a record of ``table.record_type`` from a result row.

    Columns not present in the row are left to the record's defaults.
    Without a record type (bare descriptors) the nested dict is returned.
    """
    data: dict[str, Any] = {}
    for field in table.fields:
        if field.column not in row:
            continue
        target = data
        for part in field.path[:-1]:
            target = target.setdefault(part, {})
        target[field.path[-1]] = row[field.column]
    _collapse_empty(data)

    record_type = table.record_type
    if record_type is None:
        return data
    try:
        if issubclass(record_type, BaseModel):
            return record_type.model_validate(data)
        return _build_dataclass(record_type, data)
    except (PydanticValidationError, TypeError) as exc:
        raise ArgumentError(
            f"Cannot build {record_type.__name__} from row: {exc}",
            argument="row",
        ) from exc


def _collapse_empty(data: dict[str, Any]) -> None:
    """Embedded groups whose columns are all NULL read back as ``None``."""
    for key, value in data.items():
        if isinstance(value, dict):
            _collapse_empty(value)
            if all(v is None for v in value.values()):
                data[key] = None


def _build_dataclass(record_type: type[Any], data: dict[str, Any]) -> Any:
    hints = typing.get_type_hints(record_type)
    kwargs: dict[str, Any] = {}
    for f in dataclasses.fields(record_type):
        if f.name not in data:
            continue
        value = data[f.name]
        nested, _, _ = unwrap_annotation(hints.get(f.name))
        if isinstance(value, dict) and dataclasses.is_dataclass(nested):
            value = _build_dataclass(nested, value)  # type: ignore[arg-type]
        kwargs[f.name] = value
    return record_type(**kwargs)


def _is_frozen(obj: Any) -> bool:
    if isinstance(obj, BaseModel):
        return bool(obj.model_config.get("frozen"))
    params = getattr(obj, "__dataclass_params__", None)
    return bool(params is not None and params.frozen)
