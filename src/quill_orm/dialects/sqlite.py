"""SQLite dialects (file and in-memory)."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import event
from sqlalchemy.dialects import sqlite
from sqlalchemy.pool import StaticPool

from ..expressions import CompiledExpression
from .base import Dialect

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection, Engine
    from sqlalchemy.engine.interfaces import Dialect as SADialect


class SQLiteDialect(Dialect):
    """
    SQLite: ``?`` placeholders, inline ``INTEGER PRIMARY KEY
    AUTOINCREMENT`` and one statement per execute call.
    """

    name = "sqlite"
    url_scheme = "sqlite"
    inline_primary_key = True

    def _build_sa_dialect(self, **kwargs: Any) -> SADialect:
        return sqlite.dialect(**kwargs)

    def placeholder(self, index: int) -> str:
        return "?"

    def auto_increment_clause(self) -> str:
        return "PRIMARY KEY AUTOINCREMENT"

    def has_table_sql(self, table_name: str) -> CompiledExpression:
        return CompiledExpression(
            "SELECT count(*) FROM sqlite_master WHERE type = 'table' AND name = ?",
            (table_name,),
        )

    def url(self, source: str | None, driver: str | None = None) -> str:
        if source and "://" in source:
            return source
        scheme = f"{self.url_scheme}+{driver}" if driver else self.url_scheme
        return f"{scheme}:///{source or ''}"

    def configure_engine(self, engine: Engine) -> None:
        """
        Let SQLAlchemy own transaction boundaries so that DDL is rolled
        back with everything else (pysqlite otherwise commits before
        ``CREATE TABLE``).
        """

        @event.listens_for(engine, "connect")
        def _disable_driver_transactions(dbapi_connection: Any, _record: Any) -> None:
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _emit_begin(connection: Connection) -> None:
            connection.exec_driver_sql("BEGIN")

    def render_limit_offset(self, limit: int | None, offset: int | None) -> str:
        if offset is not None and limit is None:
            limit = -1
        return super().render_limit_offset(limit, offset)


class SQLiteMemoryDialect(SQLiteDialect):
    """
    SQLite against a private in-memory database.  Every connection of
    the engine shares the one database.
    """

    name = "sqlite-mem"
    memory = True

    def url(self, source: str | None, driver: str | None = None) -> str:
        scheme = f"{self.url_scheme}+{driver}" if driver else self.url_scheme
        return f"{scheme}://"

    def engine_options(self) -> dict[str, Any]:
        return {
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        }
