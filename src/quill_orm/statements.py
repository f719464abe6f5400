"""
Statement builders.

Each builder reads the table, values and search state of a
:class:`~quill_orm.scope.Scope` and writes the primary statement back
with :meth:`~quill_orm.scope.Scope.set_sql`.  Arguments are bound in
text order, so the placeholder count always equals ``len(scope.args)``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .exceptions import ArgumentError
from .expressions import CompiledExpression
from .model.metadata import SOFT_DELETE_COLUMN, RelationKind, TableMetadata

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .model.metadata import Relationship
    from .scope import Scope
    from .search import Search

logger = logging.getLogger(__name__)

TRANSACTION_BEGIN = "BEGIN TRANSACTION;"
TRANSACTION_COMMIT = "COMMIT;"


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------


def join_table_metadata(relationship: Relationship) -> TableMetadata:
    """Synthetic metadata of a many-to-many association table."""
    join = relationship.join_table
    if join is None:
        raise ArgumentError(
            f"Relationship '{relationship.field_name}' has no join table",
            argument="relationship",
        )
    fields = (*join.owner_columns, *join.target_columns)
    return TableMetadata(
        shape=None,
        name=join.name,
        fields=fields,
        primary_key_columns=tuple(f.column for f in fields),
    )


def build_create_table(scope: Scope, created: set[str] | None = None) -> None:
    """
    ``CREATE TABLE`` for the scope's table, plus one per join table.

    Join tables already named in *created* are skipped; the ones
    rendered here are added to it.
    """
    table = scope.require_table()
    created = set() if created is None else created
    scope.set_sql(scope.dialect.render_create_table(table).sql)
    created.add(table.name)
    for rel in table.relationships:
        if rel.kind is not RelationKind.MANY_TO_MANY:
            continue
        join = join_table_metadata(rel)
        if join.name in created:
            continue
        created.add(join.name)
        scope.append_expression(scope.dialect.render_create_table(join))
        scope.mark_multi_expr()


def render_script(
    statements: Iterable[CompiledExpression], *, envelope: bool
) -> CompiledExpression:
    """
    Aggregate argument-free statements into one multi-statement
    expression, wrapped in ``BEGIN TRANSACTION; ... COMMIT;`` when
    *envelope* is set.
    """
    components = tuple(statements)
    for statement in components:
        if statement.args:
            raise ArgumentError(
                "Only argument-free statements can be batched", argument="statements"
            )
    lines = [f"{s.sql};" for s in components]
    if envelope:
        lines = [TRANSACTION_BEGIN, *lines, TRANSACTION_COMMIT]
    return CompiledExpression("\n".join(lines), (), components)


# ---------------------------------------------------------------------------
# DML
# ---------------------------------------------------------------------------


def build_insert(scope: Scope) -> None:
    """``INSERT`` of ``scope.values``; returns generated keys where supported."""
    table = scope.require_table()
    dialect = scope.dialect
    if scope.values:
        columns = ", ".join(dialect.quote_identifier(c) for c in scope.values)
        placeholders = ", ".join(scope.bind_value(v) for v in scope.values.values())
        sql = f"INSERT INTO {scope.quoted_table} ({columns}) VALUES ({placeholders})"
    else:
        sql = f"INSERT INTO {scope.quoted_table} {dialect.empty_insert_clause()}"
    generated = tuple(f.column for f in table.primary_keys if f.auto_increment)
    scope.set_sql(sql + dialect.returning_clause(generated))


def build_select(scope: Scope, search: Search) -> None:
    scope.require_table()
    scope.set_sql(
        f"SELECT {search.select_sql()} FROM {scope.quoted_table}"
        f"{search.clauses_sql()}"
    )


def build_count(scope: Scope, search: Search) -> None:
    scope.require_table()
    scope.set_sql(
        f"SELECT count(*) FROM {scope.quoted_table}"
        f"{search.clauses_sql(paging=False)}"
    )


def build_update(scope: Scope, search: Search) -> None:
    """
    ``UPDATE`` of ``scope.values`` restricted by the search conditions.

    Raises:
        ArgumentError: If there is nothing to set or no condition.
    """
    scope.require_table()
    if not scope.values:
        raise ArgumentError("No values to update", argument="values")
    _require_conditions(search, "update")
    assignments = ", ".join(
        f"{scope.dialect.quote_identifier(column)} = {scope.bind_value(value)}"
        for column, value in scope.values.items()
    )
    scope.set_sql(
        f"UPDATE {scope.quoted_table} SET {assignments}"
        f"{search.clauses_sql(paging=False)}"
    )


def build_delete(scope: Scope, search: Search) -> None:
    """
    ``DELETE`` restricted by the search conditions, or an ``UPDATE`` of
    ``deleted_at`` when the scope is marked for soft deletion.

    Raises:
        ArgumentError: If there is no condition.
    """
    scope.require_table()
    _require_conditions(search, "delete")
    if scope.soft_delete:
        column = scope.dialect.quote_identifier(SOFT_DELETE_COLUMN)
        value = scope.bind_value(scope.values[SOFT_DELETE_COLUMN])
        scope.set_sql(
            f"UPDATE {scope.quoted_table} SET {column} = {value}"
            f"{search.clauses_sql(paging=False)}"
        )
    else:
        scope.set_sql(
            f"DELETE FROM {scope.quoted_table}{search.clauses_sql(paging=False)}"
        )


def _require_conditions(search: Search, operation: str) -> None:
    if not search.has_conditions:
        raise ArgumentError(
            f"Refusing to {operation} without conditions", argument="conditions"
        )
