"""
Engine: the per-operation façade.

An :class:`Engine` wires a dialect, the shared metadata cache, a fresh
:class:`~quill_orm.scope.Scope`, a :class:`~quill_orm.search.Search`
bound to it, the execution sink and the hook registry together for one
logical operation.  It compiles; it never executes.  The before-phase
hooks run while the scope is populated, the after phase runs from
:meth:`Engine.complete` once the caller has executed the statements.

Example::

    engine = db.new_engine()
    engine.search.where("age > ?", 18).order("name")
    expr = engine.compile_query(User)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .exceptions import ArgumentError, OperationCancelledError
from .hooks.registry import OperationKind, Phase
from .hooks.stages import get_default_hooks
from .model.mapper import primary_key_values, to_values
from .model.shape import ShapeDescriptor
from .scope import Scope
from .search import Search
from .statements import (
    build_count,
    build_create_table,
    build_delete,
    build_insert,
    build_select,
    build_update,
    render_script,
)

if TYPE_CHECKING:
    import threading
    from collections.abc import Mapping

    from .dialects.base import Dialect
    from .expressions import CompiledExpression
    from .hooks.registry import HookRegistry
    from .model.cache import MetadataCache
    from .model.metadata import TableMetadata
    from .sink import ExecutionSink

logger = logging.getLogger(__name__)


def is_shape(target: Any) -> bool:
    """True for record classes and descriptors, False for record instances."""
    return isinstance(target, type | ShapeDescriptor)


class Engine:
    """
    Compiles exactly one logical operation.

    Engines hold per-operation state and must not be shared between
    threads or reused for a second operation.
    """

    def __init__(
        self,
        dialect: Dialect,
        cache: MetadataCache,
        *,
        sink: ExecutionSink | None = None,
        hooks: HookRegistry | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        self.dialect = dialect
        self.cache = cache
        self.sink = sink
        self.hooks = hooks if hooks is not None else get_default_hooks()
        self.cancel = cancel
        self.scope = Scope(dialect)
        self.search = Search(self.scope)
        self.scope.search = self.search
        self._started = False

    # -- helpers -------------------------------------------------------------

    def check_cancelled(self) -> None:
        """
        Raises:
            OperationCancelledError: If the cancellation token is set.
        """
        if self.cancel is not None and self.cancel.is_set():
            raise OperationCancelledError("Operation cancelled")

    def table(self, shape: Any) -> TableMetadata:
        self.check_cancelled()
        return self.cache.get(shape, cancel=self.cancel)

    def _start(self, kind: OperationKind | None, shape: Any) -> TableMetadata:
        if self._started:
            raise ArgumentError(
                "Engine already compiled an operation; create a new one",
                argument="engine",
            )
        self._started = True
        table = self.table(shape)
        self.scope.kind = kind
        self.scope.set_table(table)
        return table

    def _run(self, phase: Phase) -> None:
        if self.scope.kind is not None:
            self.hooks.run(phase, self.scope.kind, self.scope)

    def _target(self, target: Any, table: TableMetadata) -> None:
        """Restrict the search to *target* when it is a record instance."""
        if is_shape(target):
            return
        self.scope.record = target
        self.search.where(primary_key_values(table, target))

    # -- entry points --------------------------------------------------------

    def compile_create_table(self, *shapes: Any) -> CompiledExpression:
        """
        One multi-statement expression creating every table of *shapes*
        (and their join tables).  Wrapped in ``BEGIN TRANSACTION; ...
        COMMIT;`` unless the dialect runs batches natively.

        Raises:
            ArgumentError: If no shape is given.
            ShapeError: If a shape cannot be mapped.
            CompileError: If a column cannot be rendered.
        """
        if not shapes:
            raise ArgumentError("At least one shape is required", argument="shapes")
        statements: list[CompiledExpression] = []
        created: set[str] = set()
        for index, shape in enumerate(shapes):
            table = self._start(None, shape) if index == 0 else self.table(shape)
            if table.name in created:
                continue
            scope = self.scope if index == 0 else Scope(self.dialect)
            scope.set_table(table)
            build_create_table(scope, created)
            statements.extend(scope.statements())
        expr = render_script(
            statements, envelope=not self.dialect.supports_multi_statement()
        )
        logger.debug("Compiled DDL for %d table(s)", len(statements))
        return expr

    def compile_create(self, record: Any) -> CompiledExpression:
        """``INSERT`` for *record*, after the before-create hooks."""
        if is_shape(record):
            raise ArgumentError("create needs a record instance", argument="record")
        table = self._start(OperationKind.CREATE, record)
        self.scope.record = record
        self._run(Phase.BEFORE)
        self.scope.values = {**to_values(table, record), **self.scope.values}
        build_insert(self.scope)
        return self.scope.compiled()

    def compile_query(self, shape: Any) -> CompiledExpression:
        self._start(OperationKind.QUERY, shape)
        self._run(Phase.BEFORE)
        build_select(self.scope, self.search)
        return self.scope.compiled()

    def compile_count(self, shape: Any) -> CompiledExpression:
        self._start(OperationKind.QUERY, shape)
        self._run(Phase.BEFORE)
        build_count(self.scope, self.search)
        return self.scope.compiled()

    def compile_update(
        self, target: Any, values: Mapping[str, Any] | None = None
    ) -> CompiledExpression:
        """
        ``UPDATE`` of *values* on *target*.

        A record target is matched by primary key; without *values* all
        its non-key columns are written.  A shape target updates the rows
        matched by the search conditions.
        """
        table = self._start(OperationKind.UPDATE, target)
        self._target(target, table)
        for name, value in (values or {}).items():
            self.scope.set_column(name, value)
        self._run(Phase.BEFORE)
        if not values and self.scope.record is not None:
            self.scope.values = {
                **to_values(table, self.scope.record, include_primary_keys=False),
                **self.scope.values,
            }
        build_update(self.scope, self.search)
        return self.scope.compiled()

    def compile_delete(self, target: Any) -> CompiledExpression:
        """``DELETE`` (or soft delete) of *target*."""
        table = self._start(OperationKind.DELETE, target)
        self._target(target, table)
        self._run(Phase.BEFORE)
        build_delete(self.scope, self.search)
        return self.scope.compiled()

    def complete(self) -> None:
        """Run the after-phase hooks once the statements were executed."""
        self._run(Phase.AFTER)

    def statements(self) -> list[CompiledExpression]:
        return self.scope.statements()

    def __repr__(self) -> str:
        return f"Engine(dialect={self.dialect.name!r}, scope={self.scope!r})"
