"""Record shapes, table metadata and the shared metadata cache."""

from __future__ import annotations

from .cache import MetadataCache
from .mapper import from_row, primary_key_values, read_field, to_values, write_field
from .metadata import (
    CREATED_AT_COLUMN,
    SOFT_DELETE_COLUMN,
    UPDATED_AT_COLUMN,
    FieldMetadata,
    JoinTable,
    RelationKind,
    Relationship,
    TableMetadata,
    derive_table_metadata,
    unwrap_annotation,
)
from .shape import MISSING, FieldDescriptor, ShapeDescriptor, Tag, describe

__all__ = [
    "CREATED_AT_COLUMN",
    "MISSING",
    "SOFT_DELETE_COLUMN",
    "UPDATED_AT_COLUMN",
    "FieldDescriptor",
    "FieldMetadata",
    "JoinTable",
    "MetadataCache",
    "RelationKind",
    "Relationship",
    "ShapeDescriptor",
    "TableMetadata",
    "Tag",
    "derive_table_metadata",
    "describe",
    "from_row",
    "primary_key_values",
    "read_field",
    "to_values",
    "unwrap_annotation",
    "write_field",
]
