"""
Record shape descriptors.

A record shape is described once per record kind as a
:class:`ShapeDescriptor`: an ordered list of fields, each with a name,
a declared type and a :class:`Tag` annotation map.  Metadata
derivation operates on the descriptor only, so it never needs runtime
introspection beyond :func:`describe`.

Tags are attached with :data:`typing.Annotated`::

    class User(BaseModel):
        id: Annotated[int | None, Tag(primary_key=True)] = None
        email: Annotated[str, Tag(size=120, unique=True)]
        nickname: Annotated[str, Tag(ignore=True)] = ""
"""

from __future__ import annotations

import dataclasses
import typing
from dataclasses import dataclass, field
from typing import Any, Annotated, get_args, get_origin

from pydantic import BaseModel
from pydantic_core import PydanticUndefined

from ..exceptions import ShapeError


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


@dataclass(frozen=True)
class Tag:
    """
    Per-field mapping annotations.

    Attributes:
        column: Column name override.
        primary_key: Marks the field as (part of) the primary key.
        sql_type: Verbatim SQL type, bypassing the dialect type mapping.
        size: Length for string columns.
        nullable: Overrides nullability derived from ``Optional``.
        unique: Adds a ``UNIQUE`` constraint.
        default: Verbatim SQL default expression (e.g. ``CURRENT_TIMESTAMP``).
        auto_increment: Overrides auto-increment detection.
        embedded: Inline the columns of a record-typed field.
        embedded_prefix: Column prefix for embedded fields.
        foreign_key: Foreign key column(s), comma separated.
        association_foreign_key: Referenced column(s), comma separated.
        many2many: Join table name for a list-of-records field.
        ignore: Skip the field entirely.
    """

    column: str | None = None
    primary_key: bool = False
    sql_type: str | None = None
    size: int | None = None
    nullable: bool | None = None
    unique: bool = False
    default: str | None = None
    auto_increment: bool | None = None
    embedded: bool = False
    embedded_prefix: str | None = None
    foreign_key: str | None = None
    association_foreign_key: str | None = None
    many2many: str | None = None
    ignore: bool = False

    def merge(self, other: Tag) -> Tag:
        """Return a tag where every non-default value of *other* wins."""
        changes = {
            f.name: getattr(other, f.name)
            for f in dataclasses.fields(other)
            if getattr(other, f.name) != f.default
        }
        return dataclasses.replace(self, **changes)

    def as_dict(self) -> dict[str, Any]:
        """Only the values that differ from the defaults."""
        return {
            f.name: getattr(self, f.name)
            for f in dataclasses.fields(self)
            if getattr(self, f.name) != f.default
        }


@dataclass(frozen=True)
class FieldDescriptor:
    """One declared field of a record shape."""

    name: str
    annotation: Any
    tag: Tag = field(default_factory=Tag)
    default: Any = MISSING

    @property
    def has_default(self) -> bool:
        return self.default is not MISSING


@dataclass(frozen=True, eq=False)
class ShapeDescriptor:
    """
    Description of a record kind.

    ``eq=False`` keeps identity hashing: a descriptor is its own cache key.
    """

    name: str
    fields: tuple[FieldDescriptor, ...]
    table_name: str | None = None
    primary_key: tuple[str, ...] | None = None
    record_type: type[Any] | None = None


def is_record_type(annotation: Any) -> bool:
    """True for classes :func:`describe` can handle."""
    return isinstance(annotation, type) and (
        issubclass(annotation, BaseModel) or dataclasses.is_dataclass(annotation)
    )


def shape_of(shape: Any) -> Any:
    """Normalise a record instance to its shape; shapes pass through."""
    if isinstance(shape, ShapeDescriptor | type):
        return shape
    return type(shape)


def describe(shape: Any) -> ShapeDescriptor:
    """
    Build the :class:`ShapeDescriptor` for a pydantic model, a dataclass
    or an instance of either.  Descriptors are returned unchanged.

    Raises:
        ShapeError: If *shape* is not a structured record.
    """
    shape = shape_of(shape)
    if isinstance(shape, ShapeDescriptor):
        return shape

    if issubclass(shape, BaseModel):
        fields = _pydantic_fields(shape)
    elif dataclasses.is_dataclass(shape):
        fields = _dataclass_fields(shape)
    else:
        raise ShapeError(
            getattr(shape, "__name__", repr(shape)),
            "not a structured record (expected a pydantic model or a dataclass)",
        )

    primary_key = getattr(shape, "__primary_key__", None)
    return ShapeDescriptor(
        name=shape.__name__,
        fields=tuple(fields),
        table_name=getattr(shape, "__tablename__", None),
        primary_key=tuple(primary_key) if primary_key else None,
        record_type=shape,
    )


def _collect_tag(metadata: typing.Iterable[Any]) -> Tag:
    tag = Tag()
    for item in metadata:
        if isinstance(item, Tag):
            tag = tag.merge(item)
    return tag


def _pydantic_fields(model: type[BaseModel]) -> list[FieldDescriptor]:
    result: list[FieldDescriptor] = []
    for name, info in model.model_fields.items():
        default = MISSING if info.default is PydanticUndefined else info.default
        result.append(
            FieldDescriptor(
                name=name,
                annotation=info.annotation,
                tag=_collect_tag(info.metadata),
                default=default,
            )
        )
    return result


def _dataclass_fields(cls: type[Any]) -> list[FieldDescriptor]:
    hints = typing.get_type_hints(cls, include_extras=True)
    result: list[FieldDescriptor] = []
    for f in dataclasses.fields(cls):
        annotation = hints.get(f.name, f.type)
        tag = Tag()
        if get_origin(annotation) is Annotated:
            tag = _collect_tag(annotation.__metadata__)
            annotation = get_args(annotation)[0]
        default = MISSING if f.default is dataclasses.MISSING else f.default
        result.append(
            FieldDescriptor(name=f.name, annotation=annotation, tag=tag, default=default)
        )
    return result
