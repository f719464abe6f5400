"""
Execution sink: the only place SQL reaches a backend.

The compilation core depends on the :class:`ExecutionSink` protocol
only.  :class:`SQLAlchemySink` implements it over a SQLAlchemy
``Engine`` using driver-level SQL, so the text and arguments produced
by a dialect are sent unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.engine import Connection, CursorResult, Engine

logger = logging.getLogger(__name__)


@dataclass
class ExecResult:
    """Outcome of one executed statement."""

    rowcount: int = -1
    last_row_id: Any = None
    rows: list[dict[str, Any]] = field(default_factory=list)


@runtime_checkable
class Transaction(Protocol):
    """An open backend transaction."""

    def execute(self, sql: str, args: Sequence[Any] = ()) -> ExecResult: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


@runtime_checkable
class ExecutionSink(Protocol):
    """Executes SQL text plus arguments; knows nothing about records."""

    def begin(self) -> Transaction: ...

    def query(self, sql: str, args: Sequence[Any] = ()) -> list[dict[str, Any]]: ...

    def close(self) -> None: ...


def _run(connection: Connection, sql: str, args: Sequence[Any]) -> ExecResult:
    result: CursorResult[Any]
    if args:
        result = connection.exec_driver_sql(sql, tuple(args))
    else:
        result = connection.exec_driver_sql(sql)
    if result.returns_rows:
        rows = [dict(row._mapping) for row in result]
        return ExecResult(rowcount=len(rows), rows=rows)
    return ExecResult(rowcount=result.rowcount, last_row_id=result.lastrowid)


class SQLAlchemyTransaction:
    """A connection holding one open transaction; closed on commit/rollback."""

    def __init__(self, connection: Connection) -> None:
        self._connection = connection
        try:
            self._connection.begin()
        except Exception:
            connection.close()
            raise

    def execute(self, sql: str, args: Sequence[Any] = ()) -> ExecResult:
        logger.debug("Executing %s %r", sql, tuple(args))
        return _run(self._connection, sql, args)

    def commit(self) -> None:
        try:
            self._connection.commit()
        finally:
            self._connection.close()

    def rollback(self) -> None:
        try:
            self._connection.rollback()
        finally:
            self._connection.close()


class SQLAlchemySink:
    """
    :class:`ExecutionSink` over a SQLAlchemy ``Engine``.

    Args:
        engine: The engine to draw connections from.
        owns_engine: Dispose of the engine on :meth:`close`.
    """

    def __init__(self, engine: Engine, *, owns_engine: bool = True) -> None:
        self.engine = engine
        self._owns_engine = owns_engine

    def begin(self) -> SQLAlchemyTransaction:
        return SQLAlchemyTransaction(self.engine.connect())

    def query(self, sql: str, args: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Run a read-only statement and return its rows as dicts."""
        logger.debug("Querying %s %r", sql, tuple(args))
        with self.engine.connect() as connection:
            return _run(connection, sql, args).rows

    def close(self) -> None:
        if self._owns_engine:
            self.engine.dispose()

    def __repr__(self) -> str:
        return f"SQLAlchemySink(url={self.engine.url!r})"
