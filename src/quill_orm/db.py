"""
DB facade: opening a backend, transactional execution and CRUD.

Usage::

    db = open_db("sqlite-mem")
    db.create_table(User, Post)
    user = db.create(User(name="ada"))
    adults = db.find(User, "age >= ?", 18)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError

from .config import OpenConfig
from .dialects import get_dialect
from .engine import Engine
from .exceptions import ArgumentError, ExecutionError, OperationCancelledError
from .expressions import CompiledExpression
from .hooks.stages import get_default_hooks
from .model.cache import MetadataCache
from .model.mapper import from_row, read_field, write_field
from .sink import ExecResult, SQLAlchemySink

if TYPE_CHECKING:
    import threading
    from types import TracebackType

    from .dialects.base import Dialect
    from .hooks.registry import HookRegistry
    from .sink import ExecutionSink, Transaction

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Opening
# ---------------------------------------------------------------------------


class Opener(Protocol):
    """Turns a validated configuration into a sink and its dialect."""

    def open(self, config: OpenConfig) -> tuple[ExecutionSink, Dialect]: ...


class DefaultOpener:
    """Opens a :class:`~quill_orm.sink.SQLAlchemySink` for the configuration."""

    def open(self, config: OpenConfig) -> tuple[SQLAlchemySink, Dialect]:
        """
        Raises:
            UnsupportedDialectError: If the dialect is unknown.
            ArgumentError: If SQLAlchemy rejects the URL or the driver
                is not installed.
        """
        dialect = get_dialect(config.dialect)
        if config.engine is not None:
            sa_engine = config.engine
            owns_engine = False
        else:
            url = dialect.url(config.source, config.driver)
            try:
                sa_engine = create_engine(url, **dialect.engine_options())
            except (SQLAlchemyError, ImportError) as exc:
                raise ArgumentError(
                    f"Cannot open {dialect.name} source: {exc}", argument="source"
                ) from exc
            owns_engine = True
        dialect.configure_engine(sa_engine)
        logger.info("Opened %s backend", dialect.name)
        return SQLAlchemySink(sa_engine, owns_engine=owns_engine), dialect


def open_with_opener(opener: Opener, config: OpenConfig) -> DB:
    sink, dialect = opener.open(config)
    return DB(
        sink,
        dialect,
        cache=MetadataCache(singular_table=config.singular_table),
        hooks=config.hooks,
    )


def open_db(
    dialect: str,
    source: str | None = None,
    *,
    driver: str | None = None,
    engine: Any = None,
    singular_table: bool = False,
    hooks: HookRegistry | None = None,
) -> DB:
    """
    Open a :class:`DB` for *dialect*.

    Args:
        dialect: Registered dialect name (``sqlite``, ``sqlite-mem``,
            ``postgres``, ``mysql``).
        source: Connection source, e.g. a file path for SQLite or
            ``user:pw@host/db``; full SQLAlchemy URLs are used as-is.
        driver: DBAPI driver suffix of the URL (``psycopg``, ``pymysql``).
        engine: An existing SQLAlchemy ``Engine`` instead of *source*.
        singular_table: Use singular table names.
        hooks: Hook registry; the process-wide defaults otherwise.

    Raises:
        UnsupportedDialectError: If *dialect* is unknown; nothing is opened.
        ArgumentError: If the source arguments are missing, conflicting
            or malformed.
    """
    resolved = get_dialect(dialect)
    config = OpenConfig.build(
        dialect=dialect,
        source=source,
        driver=driver,
        engine=engine,
        memory=resolved.memory,
        singular_table=singular_table,
        hooks=hooks,
    )
    return open_with_opener(DefaultOpener(), config)


# ---------------------------------------------------------------------------
# DB
# ---------------------------------------------------------------------------


class DB:
    """
    A backend connection: dialect, sink, metadata cache and hooks.

    A ``DB`` may be shared between threads; every call assembles its own
    :class:`~quill_orm.engine.Engine`.
    """

    def __init__(
        self,
        sink: ExecutionSink,
        dialect: Dialect,
        *,
        cache: MetadataCache | None = None,
        hooks: HookRegistry | None = None,
    ) -> None:
        self.sink = sink
        self.dialect = dialect
        self.cache = cache if cache is not None else MetadataCache()
        self.hooks = hooks if hooks is not None else get_default_hooks()

    def new_engine(self, cancel: threading.Event | None = None) -> Engine:
        return Engine(
            self.dialect, self.cache, sink=self.sink, hooks=self.hooks, cancel=cancel
        )

    # -- DDL -----------------------------------------------------------------

    def create_table_sql(self, *shapes: Any) -> CompiledExpression:
        return self.new_engine().compile_create_table(*shapes)

    def create_table(self, *shapes: Any) -> ExecResult:
        return self.exec_tx(self.create_table_sql(*shapes))

    def has_table(self, shape: Any) -> bool:
        table = self.cache.get(shape)
        expr = self.dialect.has_table_sql(table.name)
        rows = self.sink.query(expr.sql, expr.args)
        return bool(rows) and _scalar(rows) > 0

    # -- execution -----------------------------------------------------------

    def exec_tx(
        self,
        statement: str | CompiledExpression,
        *args: Any,
        cancel: threading.Event | None = None,
    ) -> ExecResult:
        """
        Execute *statement* inside one transaction.

        Every component statement of a multi-statement expression is sent
        separately; the result is the last one's.

        Raises:
            ExecutionError: If the backend fails; the transaction is
                rolled back first.
            OperationCancelledError: If *cancel* is set before a
                statement is sent; the transaction is rolled back.
        """
        if isinstance(statement, CompiledExpression):
            if args:
                raise ArgumentError(
                    "Arguments are carried by the compiled expression",
                    argument="args",
                )
            expr = statement
        else:
            expr = CompiledExpression(statement, args)

        _check(cancel)
        try:
            tx = self.sink.begin()
        except Exception as exc:  # noqa: BLE001
            raise ExecutionError(expr.sql, exc) from exc
        result = ExecResult()
        current = expr.sql
        try:
            for part in expr.iter_statements():
                _check(cancel)
                current = part.sql
                result = tx.execute(part.sql, part.args)
            tx.commit()
        except OperationCancelledError:
            _rollback(tx)
            raise
        except Exception as exc:  # noqa: BLE001
            # Any backend failure: roll back, then report it
            _rollback(tx)
            raise ExecutionError(current, exc) from exc
        return result

    def _execute(self, engine: Engine, expr: CompiledExpression) -> ExecResult:
        result = self.exec_tx(expr, cancel=engine.cancel)
        engine.scope.result = result
        return result

    def _query(self, engine: Engine, expr: CompiledExpression) -> list[dict[str, Any]]:
        engine.check_cancelled()
        try:
            return self.sink.query(expr.sql, expr.args)
        except Exception as exc:  # noqa: BLE001
            raise ExecutionError(expr.sql, exc) from exc

    # -- CRUD ----------------------------------------------------------------

    def create(self, record: Any, *, engine: Engine | None = None) -> Any:
        """Insert *record*; a generated primary key is written back onto it."""
        engine = engine or self.new_engine()
        table = engine.table(record)
        result = self._execute(engine, engine.compile_create(record))
        for field in table.primary_keys:
            if not field.auto_increment or read_field(record, field):
                continue
            generated = result.rows[0].get(field.column) if result.rows else None
            if generated is None:
                generated = result.last_row_id
            if generated is not None:
                write_field(record, field, generated)
        engine.complete()
        return record

    def find(self, shape: Any, *where: Any, engine: Engine | None = None) -> list[Any]:
        """
        Records of *shape* matching *where* (a fragment with its
        arguments, a mapping or a primary key value) and the engine's
        search.
        """
        engine = engine or self.new_engine()
        _apply_where(engine, where)
        table = engine.table(shape)
        rows = self._query(engine, engine.compile_query(shape))
        engine.scope.records = [from_row(table, row) for row in rows]
        engine.complete()
        return engine.scope.records

    def first(self, shape: Any, *where: Any, engine: Engine | None = None) -> Any:
        """First record by primary key order, or ``None``."""
        engine = engine or self.new_engine()
        table = engine.table(shape)
        if not engine.search.is_ordered:
            engine.search.order(
                *(
                    f"{self.dialect.quote_identifier(table.name)}."
                    f"{self.dialect.quote_identifier(c)}"
                    for c in table.primary_key_columns
                )
            )
        engine.search.limit(1)
        records = self.find(shape, *where, engine=engine)
        return records[0] if records else None

    def count(self, shape: Any, *where: Any, engine: Engine | None = None) -> int:
        engine = engine or self.new_engine()
        _apply_where(engine, where)
        rows = self._query(engine, engine.compile_count(shape))
        engine.complete()
        return _scalar(rows)

    def update(
        self, target: Any, *where: Any, engine: Engine | None = None, **values: Any
    ) -> int:
        """
        Update a record (by primary key) or the rows of a shape matching
        *where*.  Returns the number of affected rows.
        """
        engine = engine or self.new_engine()
        _apply_where(engine, where)
        result = self._execute(engine, engine.compile_update(target, values))
        engine.complete()
        return result.rowcount

    def delete(
        self, target: Any, *where: Any, engine: Engine | None = None
    ) -> int:
        """
        Delete a record (by primary key) or the rows of a shape matching
        *where*.  Tables with ``deleted_at`` are soft deleted.
        """
        engine = engine or self.new_engine()
        _apply_where(engine, where)
        result = self._execute(engine, engine.compile_delete(target))
        engine.complete()
        return result.rowcount

    # -- lifecycle -----------------------------------------------------------

    def close(self) -> None:
        self.sink.close()
        logger.info("Closed %s backend", self.dialect.name)

    def __enter__(self) -> DB:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"DB(dialect={self.dialect.name!r}, sink={self.sink!r})"


def _apply_where(engine: Engine, where: tuple[Any, ...]) -> None:
    if where:
        engine.search.where(where[0], *where[1:])


def _scalar(rows: list[dict[str, Any]]) -> int:
    if not rows:
        return 0
    return int(next(iter(rows[0].values())))


def _check(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelledError("Operation cancelled")


def _rollback(tx: Transaction) -> None:
    try:
        tx.rollback()
    except Exception:  # noqa: BLE001
        # Logged only; the execution failure is the one raised
        logger.exception("Rollback failed")
