"""
Table metadata derivation.

:func:`derive_table_metadata` is a pure function of a record shape and
the singular-table setting: calling it twice yields structurally equal
results, which is what lets :class:`~quill_orm.model.cache.MetadataCache`
memoise it and share the result between threads.

Relationships never trigger derivation of the target shape.  Only the
target's table name and primary key columns are read (a shallow scan),
so mutually referencing shapes (``User.posts`` / ``Post.user``) derive
without recursion.
"""

from __future__ import annotations

import logging
import types
import typing
from collections.abc import Sequence
from dataclasses import dataclass, replace
from enum import Enum
from typing import Annotated, Any, get_args, get_origin

from ..exceptions import ShapeError
from ..naming import snake_case, table_name_for
from .shape import (
    MISSING,
    FieldDescriptor,
    ShapeDescriptor,
    describe,
    is_record_type,
)

logger = logging.getLogger(__name__)

SOFT_DELETE_COLUMN = "deleted_at"
CREATED_AT_COLUMN = "created_at"
UPDATED_AT_COLUMN = "updated_at"

_SEQUENCE_ORIGINS = (list, tuple, set, frozenset, Sequence)


class RelationKind(str, Enum):
    """Supported relationship kinds."""

    BELONGS_TO = "belongs_to"
    HAS_ONE = "has_one"
    HAS_MANY = "has_many"
    MANY_TO_MANY = "many_to_many"


@dataclass(frozen=True)
class FieldMetadata:
    """A single mapped column."""

    name: str
    column: str
    python_type: Any
    path: tuple[str, ...]
    sql_type: str | None = None
    size: int | None = None
    nullable: bool = True
    primary_key: bool = False
    auto_increment: bool | None = None
    unique: bool = False
    default: Any = MISSING
    default_sql: str | None = None
    embedded: bool = False

    @property
    def has_default(self) -> bool:
        return self.default is not MISSING and self.default is not None


@dataclass(frozen=True)
class JoinTable:
    """Association table of a many-to-many relationship."""

    name: str
    owner_columns: tuple[FieldMetadata, ...]
    target_columns: tuple[FieldMetadata, ...]


@dataclass(frozen=True)
class Relationship:
    """
    Relation from the owning shape to ``target``.

    For ``belongs_to`` the foreign keys are columns of the owning table
    and ``references`` are columns of the target table.  For ``has_one``
    and ``has_many`` the foreign keys live on the target table and
    ``references`` are the owner's primary key columns.
    """

    kind: RelationKind
    field_name: str
    target: Any
    target_table: str
    foreign_keys: tuple[str, ...]
    references: tuple[str, ...]
    join_table: JoinTable | None = None


@dataclass(frozen=True)
class TableMetadata:
    """Derived table description for one record shape."""

    shape: Any
    name: str
    fields: tuple[FieldMetadata, ...]
    primary_key_columns: tuple[str, ...] = ()
    relationships: tuple[Relationship, ...] = ()
    record_type: type[Any] | None = None

    @property
    def columns(self) -> tuple[str, ...]:
        return tuple(f.column for f in self.fields)

    @property
    def primary_keys(self) -> tuple[FieldMetadata, ...]:
        by_column = {f.column: f for f in self.fields}
        return tuple(by_column[c] for c in self.primary_key_columns)

    @property
    def soft_delete(self) -> bool:
        return self.has_column(SOFT_DELETE_COLUMN)

    def has_column(self, column: str) -> bool:
        return any(f.column == column for f in self.fields)

    def field(self, name: str) -> FieldMetadata | None:
        """
        Look a field up by column name, dotted path or attribute name.

        Embedded fields match on their column or full path only.
        """
        for f in self.fields:
            if f.column == name or ".".join(f.path) == name:
                return f
            if f.name == name and not f.embedded:
                return f
        return None

    def relationship(self, field_name: str) -> Relationship | None:
        for rel in self.relationships:
            if rel.field_name == field_name:
                return rel
        return None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def derive_table_metadata(shape: Any, *, singular: bool = False) -> TableMetadata:
    """
    Derive :class:`TableMetadata` for *shape*.

    Raises:
        ShapeError: If the shape is not a structured record, has no
            mapped columns or declares an ambiguous primary key.
    """
    desc = describe(shape)
    pending: list[tuple[FieldDescriptor, Any, bool]] = []
    fields = _scan(desc, prefix="", path=(), parent_nullable=False, relations=pending)
    if not fields:
        raise ShapeError(desc.name, "no mapped columns")

    fields, pk_columns = _resolve_primary_keys(desc, fields)
    table = _table_name(desc, singular)
    relationships = tuple(
        _relationship(desc, fields, pk_columns, fd, target, many, singular)
        for fd, target, many in pending
    )
    logger.debug(
        "Derived metadata for %s: table=%s columns=%d relationships=%d",
        desc.name,
        table,
        len(fields),
        len(relationships),
    )
    return TableMetadata(
        shape=shape if isinstance(shape, ShapeDescriptor | type) else type(shape),
        name=table,
        fields=tuple(fields),
        primary_key_columns=pk_columns,
        relationships=relationships,
        record_type=desc.record_type,
    )


def unwrap_annotation(annotation: Any) -> tuple[Any, bool, bool]:
    """
    Split a declared type into ``(base_type, nullable, is_record_list)``.

    ``int | None`` → ``(int, True, False)``;
    ``list[Post]`` → ``(Post, False, True)``.
    """
    nullable = False
    if get_origin(annotation) is Annotated:
        annotation = get_args(annotation)[0]

    if get_origin(annotation) in (typing.Union, types.UnionType):
        args = get_args(annotation)
        non_null = [a for a in args if a is not type(None)]
        nullable = len(non_null) != len(args)
        if len(non_null) != 1:
            return annotation, nullable, False
        annotation = non_null[0]

    if get_origin(annotation) in _SEQUENCE_ORIGINS:
        args = get_args(annotation)
        if args and is_record_type(args[0]):
            return args[0], nullable, True
    return annotation, nullable, False


# ---------------------------------------------------------------------------
# Column scan
# ---------------------------------------------------------------------------


def _scan(
    desc: ShapeDescriptor,
    *,
    prefix: str,
    path: tuple[str, ...],
    parent_nullable: bool,
    relations: list[tuple[FieldDescriptor, Any, bool]] | None,
) -> list[FieldMetadata]:
    fields: list[FieldMetadata] = []
    for fd in desc.fields:
        tag = fd.tag
        if tag.ignore:
            continue
        base, nullable, many = unwrap_annotation(fd.annotation)

        if tag.embedded:
            if not is_record_type(base) or many:
                raise ShapeError(
                    desc.name, f"embedded field '{fd.name}' must be a single record"
                )
            fields.extend(
                _scan(
                    describe(base),
                    prefix=prefix + (tag.embedded_prefix or ""),
                    path=(*path, fd.name),
                    parent_nullable=parent_nullable or nullable,
                    relations=None,
                )
            )
            continue

        if (many or is_record_type(base)) and tag.sql_type is None:
            if relations is not None:
                relations.append((fd, base, many))
            continue

        fields.append(
            FieldMetadata(
                name=fd.name,
                column=prefix + (tag.column or snake_case(fd.name)),
                python_type=base,
                path=(*path, fd.name),
                sql_type=tag.sql_type,
                size=tag.size,
                nullable=tag.nullable
                if tag.nullable is not None
                else (nullable or parent_nullable),
                primary_key=tag.primary_key and not path,
                auto_increment=tag.auto_increment,
                unique=tag.unique,
                default=fd.default,
                default_sql=tag.default,
                embedded=bool(path),
            )
        )

    seen: set[str] = set()
    for f in fields:
        if f.column in seen:
            raise ShapeError(desc.name, f"duplicate column '{f.column}'")
        seen.add(f.column)
    return fields


def _resolve_primary_keys(
    desc: ShapeDescriptor, fields: list[FieldMetadata]
) -> tuple[list[FieldMetadata], tuple[str, ...]]:
    """Mark primary key fields and decide auto-increment."""
    if desc.primary_key:
        chosen: list[FieldMetadata] = []
        for name in desc.primary_key:
            match = next((f for f in fields if name in (f.name, f.column)), None)
            if match is None:
                raise ShapeError(desc.name, f"primary key field '{name}' not found")
            chosen.append(match)
    else:
        chosen = [f for f in fields if f.primary_key]
        if len(chosen) > 1:
            names = ", ".join(f.name for f in chosen)
            raise ShapeError(
                desc.name,
                f"ambiguous primary key ({names}); "
                f"declare __primary_key__ to define a composite key",
            )
        if not chosen:
            chosen = [f for f in fields if f.name == "id" and not f.embedded]

    pk_columns = tuple(f.column for f in chosen)
    single_int = (
        len(chosen) == 1
        and chosen[0].python_type is int
        and chosen[0].sql_type is None
    )
    resolved: list[FieldMetadata] = []
    for f in fields:
        if f.column in pk_columns:
            auto = f.auto_increment if f.auto_increment is not None else single_int
            f = replace(
                f, primary_key=True, nullable=False, auto_increment=auto and single_int
            )
        else:
            f = replace(f, primary_key=False, auto_increment=False)
        resolved.append(f)
    return resolved, pk_columns


def _table_name(desc: ShapeDescriptor, singular: bool) -> str:
    return desc.table_name or table_name_for(desc.name, singular=singular)


def _primary_key_fields(target: Any) -> tuple[ShapeDescriptor, list[FieldMetadata]]:
    """Shallow primary key scan of a relationship target."""
    desc = describe(target)
    fields = _scan(desc, prefix="", path=(), parent_nullable=False, relations=None)
    fields, pk_columns = _resolve_primary_keys(desc, fields)
    return desc, [f for f in fields if f.column in pk_columns]


def _split(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _find_columns(fields: list[FieldMetadata], names: Sequence[str]) -> tuple[str, ...]:
    """Column names for *names* on the owning table, or ``()`` if any is missing."""
    columns: list[str] = []
    for name in names:
        match = next((f for f in fields if name in (f.name, f.column)), None)
        if match is None:
            return ()
        columns.append(match.column)
    return tuple(columns)


def _join_column(prefix: str, pk: FieldMetadata) -> FieldMetadata:
    column = f"{prefix}_{pk.column}"
    return FieldMetadata(
        name=column,
        column=column,
        python_type=pk.python_type,
        path=(column,),
        sql_type=pk.sql_type,
        size=pk.size,
        nullable=False,
        primary_key=True,
        auto_increment=False,
    )


def _relationship(
    desc: ShapeDescriptor,
    fields: list[FieldMetadata],
    pk_columns: tuple[str, ...],
    fd: FieldDescriptor,
    target: Any,
    many: bool,
    singular: bool,
) -> Relationship:
    tag = fd.tag
    target_desc, target_pks = _primary_key_fields(target)
    target_table = _table_name(target_desc, singular)
    owner_key = snake_case(desc.name)

    if not many:
        fk_names = _split(tag.foreign_key) or (f"{fd.name}_id",)
        local = _find_columns(fields, fk_names)
        if local:
            references = _split(tag.association_foreign_key) or tuple(
                f.column for f in target_pks
            )
            if len(references) != len(local):
                raise ShapeError(
                    desc.name,
                    f"relationship '{fd.name}' has {len(local)} foreign key(s) "
                    f"but references {len(references)} column(s)",
                )
            return Relationship(
                kind=RelationKind.BELONGS_TO,
                field_name=fd.name,
                target=target,
                target_table=target_table,
                foreign_keys=local,
                references=references,
            )
        return Relationship(
            kind=RelationKind.HAS_ONE,
            field_name=fd.name,
            target=target,
            target_table=target_table,
            foreign_keys=_split(tag.foreign_key) or (f"{owner_key}_id",),
            references=pk_columns,
        )

    if tag.many2many:
        owner_pks = [f for f in fields if f.column in pk_columns]
        if not owner_pks or not target_pks:
            raise ShapeError(
                desc.name,
                f"many-to-many '{fd.name}' needs primary keys on both sides",
            )
        target_key = snake_case(target_desc.name)
        if target_key == owner_key:
            target_key = snake_case(fd.name)
        join = JoinTable(
            name=tag.many2many,
            owner_columns=tuple(_join_column(owner_key, pk) for pk in owner_pks),
            target_columns=tuple(_join_column(target_key, pk) for pk in target_pks),
        )
        return Relationship(
            kind=RelationKind.MANY_TO_MANY,
            field_name=fd.name,
            target=target,
            target_table=target_table,
            foreign_keys=pk_columns,
            references=tuple(f.column for f in target_pks),
            join_table=join,
        )

    return Relationship(
        kind=RelationKind.HAS_MANY,
        field_name=fd.name,
        target=target,
        target_table=target_table,
        foreign_keys=_split(tag.foreign_key) or (f"{owner_key}_id",),
        references=pk_columns,
    )
