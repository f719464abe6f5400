"""
Dialect capability interface.

Each backend implements one :class:`Dialect` subclass.  Callers never
branch on the backend: identifier quoting, type names, placeholders,
``CREATE TABLE`` forms and batching support all go through these
capability calls.  Type names, literals and identifier quoting are
rendered by the matching SQLAlchemy dialect's compilers.
"""

from __future__ import annotations

import datetime
import decimal
import enum
import uuid
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    Integer,
    LargeBinary,
    Numeric,
    String,
    Time,
    Uuid,
    literal,
)
from sqlalchemy.exc import SQLAlchemyError

from ..exceptions import CompileError
from ..expressions import CompiledExpression
from ..model.mapper import coerce
from ..model.metadata import RelationKind

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine
    from sqlalchemy.engine.interfaces import Dialect as SADialect
    from sqlalchemy.types import TypeEngine

    from ..model.metadata import FieldMetadata, TableMetadata


class Dialect(ABC):
    """
    Strategy interface translating abstract SQL fragments into
    backend-specific text.

    Dialects are process-lifetime objects and hold no per-operation
    state, so one instance may serve any number of operations.
    """

    name: ClassVar[str]
    url_scheme: ClassVar[str]
    memory: ClassVar[bool] = False
    inline_primary_key: ClassVar[bool] = False
    timezone_aware: ClassVar[bool] = False
    pyformat: ClassVar[bool] = False
    default_string_size: ClassVar[int] = 255

    def __init__(self) -> None:
        self._sa_dialect = self._build_sa_dialect()
        self._preparer = self._sa_dialect.identifier_preparer
        # Literals are rendered raw and escaped for the driver by the caller.
        self._literal_dialect = self._build_sa_dialect(paramstyle="named")

    # -- backend specifics ---------------------------------------------------

    @abstractmethod
    def _build_sa_dialect(self, **kwargs: Any) -> SADialect:
        """The SQLAlchemy dialect used for type and literal compilation."""
        ...

    @abstractmethod
    def placeholder(self, index: int) -> str:
        """Positional placeholder for the *index*-th (1-based) argument."""
        ...

    @abstractmethod
    def auto_increment_clause(self) -> str:
        """Column constraint text for an auto-increment primary key."""
        ...

    @abstractmethod
    def has_table_sql(self, table_name: str) -> CompiledExpression:
        """Query returning a single count, non-zero when *table_name* exists."""
        ...

    def supports_multi_statement(self) -> bool:
        """True if one execute call may carry several statements."""
        return False

    def supports_returning(self) -> bool:
        return False

    def url(self, source: str | None, driver: str | None = None) -> str:
        """SQLAlchemy URL for a connection *source* such as ``user:pw@host/db``."""
        if source and "://" in source:
            return source
        scheme = f"{self.url_scheme}+{driver}" if driver else self.url_scheme
        return f"{scheme}://{source or ''}"

    def escape_literal_text(self, sql: str) -> str:
        """
        Caller text in the form the driver expects.  Pyformat drivers
        interpolate every statement sent through SQLAlchemy, so a literal
        ``%`` is doubled.
        """
        return sql.replace("%", "%%") if self.pyformat else sql

    def engine_options(self) -> dict[str, Any]:
        """Extra keyword arguments for ``sqlalchemy.create_engine``."""
        return {}

    def configure_engine(self, engine: Engine) -> None:
        """Adjust a SQLAlchemy engine before the first statement runs."""

    # -- rendering -----------------------------------------------------------

    def quote_identifier(self, name: str) -> str:
        return self._preparer.quote_identifier(name)

    def column_type(self, field: FieldMetadata) -> str:
        """
        SQL type name for *field*.

        Raises:
            CompileError: If the python type has no mapping on this dialect.
        """
        if field.sql_type:
            return field.sql_type
        sa_type = self._sa_type(field)
        try:
            return sa_type.compile(dialect=self._sa_dialect)
        except SQLAlchemyError as exc:
            raise CompileError(
                f"Cannot render type of '{field.name}' on {self.name}: {exc}",
                field=field.name,
            ) from exc

    def render_literal(self, value: Any) -> str:
        """
        Render a python value as an inline SQL literal (DDL defaults).

        Raises:
            CompileError: If the value has no literal form on this dialect.
        """
        try:
            compiled = literal(coerce(value)).compile(
                dialect=self._literal_dialect,
                compile_kwargs={"literal_binds": True},
            )
        except (SQLAlchemyError, NotImplementedError, TypeError) as exc:
            raise CompileError(
                f"Cannot render literal {value!r} on {self.name}: {exc}"
            ) from exc
        return str(compiled)

    def column_definition(self, field: FieldMetadata) -> str:
        parts = [self.quote_identifier(field.column), self.column_type(field)]
        if field.auto_increment:
            parts.append(self.auto_increment_clause())
        elif not field.nullable:
            parts.append("NOT NULL")
        if field.unique:
            parts.append("UNIQUE")
        if field.default_sql:
            parts.append(f"DEFAULT {self.escape_literal_text(field.default_sql)}")
        elif field.has_default and not field.auto_increment:
            default = self.escape_literal_text(self.render_literal(field.default))
            parts.append(f"DEFAULT {default}")
        return " ".join(parts)

    def render_create_table(self, table: TableMetadata) -> CompiledExpression:
        """
        ``CREATE TABLE`` for *table*.  DDL is literal text: no arguments.

        Raises:
            CompileError: If a column cannot be rendered.
        """
        definitions = [self.column_definition(f) for f in table.fields]
        inline_pk = self.inline_primary_key and any(
            f.auto_increment for f in table.fields
        )
        if table.primary_key_columns and not inline_pk:
            definitions.append(
                f"PRIMARY KEY ({self._column_list(table.primary_key_columns)})"
            )
        for rel in table.relationships:
            if rel.kind is not RelationKind.BELONGS_TO:
                continue
            definitions.append(
                f"FOREIGN KEY ({self._column_list(rel.foreign_keys)}) "
                f"REFERENCES {self.quote_identifier(rel.target_table)} "
                f"({self._column_list(rel.references)})"
            )
        sql = (
            f"CREATE TABLE {self.quote_identifier(table.name)} "
            f"({', '.join(definitions)})"
        )
        return CompiledExpression(sql)

    def render_limit_offset(self, limit: int | None, offset: int | None) -> str:
        clause = ""
        if limit is not None:
            clause += f" LIMIT {int(limit)}"
        if offset is not None:
            clause += f" OFFSET {int(offset)}"
        return clause

    def empty_insert_clause(self) -> str:
        """Tail of an INSERT that writes no explicit column."""
        return "DEFAULT VALUES"

    def returning_clause(self, columns: tuple[str, ...]) -> str:
        if not columns or not self.supports_returning():
            return ""
        return f" RETURNING {self._column_list(columns)}"

    # -- internals -----------------------------------------------------------

    def _column_list(self, columns: tuple[str, ...]) -> str:
        return ", ".join(self.quote_identifier(c) for c in columns)

    def _sa_type(self, field: FieldMetadata) -> TypeEngine[Any]:
        python_type = field.python_type
        size = field.size or self.default_string_size
        if isinstance(python_type, type) and issubclass(python_type, enum.Enum):
            if all(isinstance(m.value, int) for m in python_type):
                return Integer()
            return String(size)

        simple: dict[type, TypeEngine[Any]] = {
            bool: Boolean(),
            int: Integer(),
            float: Float(),
            decimal.Decimal: Numeric(),
            str: String(size),
            bytes: LargeBinary(),
            datetime.datetime: DateTime(timezone=self.timezone_aware),
            datetime.date: Date(),
            datetime.time: Time(),
            uuid.UUID: Uuid(),
        }
        for base in getattr(python_type, "__mro__", ()):
            if base in simple:
                return simple[base]
        raise CompileError(
            f"No {self.name} column type for '{field.name}' "
            f"({python_type!r}); set Tag(sql_type=...)",
            field=field.name,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
