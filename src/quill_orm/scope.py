"""
Scope: per-operation accumulator.

A :class:`Scope` holds everything one logical operation produces: the
target table metadata, the primary SQL text with its bound arguments,
auxiliary statements for multi-statement operations, and an error
slot.  It is created at the start of an operation, mutated by the
statement builders, hooks and search, consumed once, then discarded.
It is never shared between threads, so it takes no locks.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .exceptions import ArgumentError
from .expressions import CompiledExpression, substitute_markers
from .model.mapper import coerce, write_field

if TYPE_CHECKING:
    from .dialects.base import Dialect
    from .hooks.registry import OperationKind
    from .model.metadata import FieldMetadata, TableMetadata
    from .search import Search

logger = logging.getLogger(__name__)


class Scope:
    """Mutable state of a single operation."""

    def __init__(self, dialect: Dialect, kind: OperationKind | None = None) -> None:
        self.dialect = dialect
        self.kind = kind
        self.table: TableMetadata | None = None
        self.sql: str = ""
        self.args: list[Any] = []
        self.exprs: list[CompiledExpression] = []
        self.multi_expr = False
        self.error: BaseException | None = None
        self.search: Search | None = None

        # Write operations
        self.record: Any = None
        self.values: dict[str, Any] = {}
        self.soft_delete = False

        # Execution results, filled in by the caller
        self.result: Any = None
        self.records: list[Any] = []

    # -- mutation ------------------------------------------------------------

    def set_table(self, table: TableMetadata) -> None:
        self.table = table

    def append_expression(self, expr: CompiledExpression) -> None:
        self.exprs.append(expr)

    def mark_multi_expr(self) -> None:
        self.multi_expr = True

    def set_error(self, error: BaseException) -> None:
        """Record *error*; the first recorded error wins."""
        if self.error is None:
            self.error = error
        else:
            logger.debug("Ignoring additional scope error: %s", error)

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error

    def set_sql(self, sql: str) -> None:
        self.sql = sql

    # -- binding -------------------------------------------------------------

    def bind(self, expr: CompiledExpression) -> str:
        """
        Append *expr*'s arguments and return its text with every ``?``
        marker replaced by the dialect placeholder of its final position.
        Literal text is escaped for the driver first.
        """
        values = iter(expr.args)

        def _next_placeholder() -> str:
            self.args.append(next(values))
            return self.dialect.placeholder(len(self.args))

        return substitute_markers(
            self.dialect.escape_literal_text(expr.sql), _next_placeholder
        )

    def bind_value(self, value: Any) -> str:
        self.args.append(value)
        return self.dialect.placeholder(len(self.args))

    # -- table helpers -------------------------------------------------------

    @property
    def quoted_table(self) -> str:
        return self.dialect.quote_identifier(self.require_table().name)

    def require_table(self) -> TableMetadata:
        if self.table is None:
            raise ArgumentError("Scope has no table set", argument="table")
        return self.table

    def quote(self, name: str) -> str:
        """Quote a column given by attribute name or column name."""
        field = self.table.field(name) if self.table is not None else None
        return self.dialect.quote_identifier(field.column if field else name)

    def has_column(self, name: str) -> bool:
        return self.table is not None and self.table.field(name) is not None

    def set_column(self, name: str, value: Any) -> FieldMetadata:
        """
        Set the value written for column *name*, mirroring it onto the
        record being written when there is one.

        Raises:
            ArgumentError: If the table has no such column.
        """
        table = self.require_table()
        field = table.field(name)
        if field is None:
            raise ArgumentError(
                f"Table '{table.name}' has no column '{name}'", argument=name
            )
        self.values[field.column] = coerce(value)
        if self.record is not None:
            write_field(self.record, field, value)
        return field

    # -- results -------------------------------------------------------------

    def compiled(self) -> CompiledExpression:
        """The primary statement with its bound arguments."""
        return CompiledExpression(self.sql, tuple(self.args))

    def statements(self) -> list[CompiledExpression]:
        """Primary statement followed by auxiliary ones when multi-statement."""
        statements = [self.compiled()]
        if self.multi_expr:
            statements.extend(self.exprs)
        return statements

    def __repr__(self) -> str:
        table = self.table.name if self.table else None
        return f"Scope(kind={self.kind}, table={table!r}, sql={self.sql!r})"
