"""
Search: condition and clause building for one operation.

A :class:`Search` is bound to a :class:`~quill_orm.scope.Scope` and
accumulates WHERE / OR / NOT / HAVING conditions, ordering, grouping,
joins and paging.  It never executes SQL.  Conditions are kept as
marker expressions (``?``); the statement builders bind them into the
scope, which assigns the dialect placeholders.

Example::

    search = Search(scope)
    (
        search.where("age > ?", 18)
        .where({"status": "active"})
        .or_("role IN ?", ["admin", "owner"])
        .order("name")
        .limit(10)
    )

Conditions accept:

- an SQL fragment with ``?`` markers and its arguments (list arguments
  expand to ``(?, ?, ...)``),
- a mapping of field name → value (``None`` → ``IS NULL``, lists →
  ``IN``), or
- a bare primary key value.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .exceptions import ArgumentError
from .expressions import MARKER, CompiledExpression, expand

if TYPE_CHECKING:
    from .scope import Scope


@dataclass(frozen=True)
class _Deferred:
    """Condition that needs the table metadata to compile."""

    value: Any


_Condition = CompiledExpression | _Deferred


class Search:
    """Accumulates query clauses for a single operation."""

    def __init__(self, scope: Scope) -> None:
        self.scope = scope
        self._where: list[_Condition] = []
        self._not: list[_Condition] = []
        self._or: list[_Condition] = []
        self._having: list[_Condition] = []
        self._defaults: list[CompiledExpression] = []
        self._joins: list[CompiledExpression] = []
        self._select: list[str] = []
        self._order: list[str] = []
        self._group: list[str] = []
        self._limit: int | None = None
        self._offset: int | None = None
        self._unscoped = False

    # -- conditions ----------------------------------------------------------

    def where(self, condition: Any, *args: Any) -> Search:
        """AND a condition onto the current ones."""
        self._where.append(_condition(condition, args))
        return self

    def and_(self, condition: Any, *args: Any) -> Search:
        """Alias of :meth:`where`."""
        return self.where(condition, *args)

    def or_(self, condition: Any, *args: Any) -> Search:
        """OR a condition with everything ANDed so far."""
        self._or.append(_condition(condition, args))
        return self

    def not_(self, condition: Any, *args: Any) -> Search:
        """AND the negation of a condition."""
        self._not.append(_condition(condition, args))
        return self

    def having(self, condition: Any, *args: Any) -> Search:
        self._having.append(_condition(condition, args))
        return self

    def add_default_condition(self, fragment: str, *args: Any) -> Search:
        """Condition applied on top of all others unless :meth:`unscoped`."""
        self._defaults.append(expand(fragment, args))
        return self

    def unscoped(self) -> Search:
        """Drop default conditions (e.g. include soft-deleted rows)."""
        self._unscoped = True
        return self

    # -- clauses -------------------------------------------------------------

    def joins(self, fragment: str, *args: Any) -> Search:
        self._joins.append(expand(fragment, args))
        return self

    def select(self, *columns: str) -> Search:
        self._select.extend(columns)
        return self

    def order(self, *clauses: str) -> Search:
        self._order.extend(clauses)
        return self

    def group(self, *columns: str) -> Search:
        self._group.extend(columns)
        return self

    def limit(self, limit: int) -> Search:
        if limit < 0:
            raise ArgumentError("limit must be >= 0", argument="limit")
        self._limit = limit
        return self

    def offset(self, offset: int) -> Search:
        if offset < 0:
            raise ArgumentError("offset must be >= 0", argument="offset")
        self._offset = offset
        return self

    # -- inspection ----------------------------------------------------------

    @property
    def has_conditions(self) -> bool:
        return bool(self._where or self._or or self._not)

    @property
    def is_ordered(self) -> bool:
        return bool(self._order)

    @property
    def is_unscoped(self) -> bool:
        return self._unscoped

    # -- compilation (marker form) -------------------------------------------

    def where_expression(self) -> CompiledExpression | None:
        """
        The combined WHERE condition, without the ``WHERE`` keyword:
        ``defaults AND ((where AND NOT ...) OR or...)``.
        """
        and_items = [self._resolve(c) for c in self._where]
        and_items += [
            CompiledExpression(f"NOT ({e.sql})", e.args)
            for e in (self._resolve(c) for c in self._not)
        ]
        or_items = [self._resolve(c) for c in self._or]

        core: list[CompiledExpression] = []
        if or_items:
            groups: list[CompiledExpression] = []
            if and_items:
                groups.append(_join(and_items, " AND "))
            groups.extend(or_items)
            core.append(_join(groups, " OR "))
        else:
            core = and_items

        items = ([] if self._unscoped else list(self._defaults)) + core
        if not items:
            return None
        return _join(items, " AND ")

    def having_expression(self) -> CompiledExpression | None:
        if not self._having:
            return None
        return _join([self._resolve(c) for c in self._having], " AND ")

    def select_sql(self) -> str:
        if self._select:
            return self.scope.dialect.escape_literal_text(", ".join(self._select))
        table = self.scope.require_table()
        return ", ".join(self.scope.dialect.quote_identifier(c) for c in table.columns)

    def clauses_sql(self, *, paging: bool = True) -> str:
        """Bind and render the JOIN ... LIMIT tail of a SELECT."""
        scope = self.scope
        sql = ""
        for join in self._joins:
            sql += f" {scope.bind(join)}"
        where = self.where_expression()
        if where is not None:
            sql += f" WHERE {scope.bind(where)}"
        if self._group:
            group = ", ".join(self._group)
            sql += f" GROUP BY {scope.dialect.escape_literal_text(group)}"
        having = self.having_expression()
        if having is not None:
            sql += f" HAVING {scope.bind(having)}"
        if not paging:
            return sql
        if self._order:
            order = ", ".join(self._order)
            sql += f" ORDER BY {scope.dialect.escape_literal_text(order)}"
        return sql + scope.dialect.render_limit_offset(self._limit, self._offset)

    # -- internals -----------------------------------------------------------

    def _resolve(self, condition: _Condition) -> CompiledExpression:
        if isinstance(condition, CompiledExpression):
            return condition
        value = condition.value
        if isinstance(value, Mapping):
            return self._mapping_condition(value)
        return self._primary_key_condition(value)

    def _mapping_condition(self, values: Mapping[str, Any]) -> CompiledExpression:
        if not values:
            raise ArgumentError("Empty mapping condition", argument="condition")
        parts: list[CompiledExpression] = []
        for name, value in values.items():
            column = self.scope.quote(name)
            if value is None:
                parts.append(CompiledExpression(f"{column} IS NULL"))
            elif isinstance(value, list | tuple | set | frozenset):
                parts.append(expand(f"{column} IN {MARKER}", (value,)))
            else:
                parts.append(expand(f"{column} = {MARKER}", (value,)))
        return _join(parts, " AND ", wrap=False)

    def _primary_key_condition(self, value: Any) -> CompiledExpression:
        table = self.scope.require_table()
        if len(table.primary_key_columns) != 1:
            raise ArgumentError(
                f"Table '{table.name}' has no single-column primary key; "
                f"use a mapping condition",
                argument="condition",
            )
        column = self.scope.dialect.quote_identifier(table.primary_key_columns[0])
        if isinstance(value, list | tuple | set | frozenset):
            return expand(f"{column} IN {MARKER}", (value,))
        return expand(f"{column} = {MARKER}", (value,))


def _condition(condition: Any, args: tuple[Any, ...]) -> _Condition:
    if isinstance(condition, CompiledExpression):
        if args:
            raise ArgumentError(
                "Arguments are not accepted with a compiled expression",
                argument="args",
            )
        return condition
    if isinstance(condition, str):
        if not condition.strip():
            raise ArgumentError("Empty condition", argument="condition")
        return expand(condition, args)
    if args:
        raise ArgumentError(
            "Arguments are only accepted with an SQL fragment", argument="args"
        )
    return _Deferred(condition)


def _join(
    items: list[CompiledExpression], separator: str, *, wrap: bool = True
) -> CompiledExpression:
    if len(items) == 1 and not wrap:
        return items[0]
    texts = [f"({e.sql})" if wrap else e.sql for e in items]
    args: list[Any] = []
    for e in items:
        args.extend(e.args)
    return CompiledExpression(separator.join(texts), tuple(args))
