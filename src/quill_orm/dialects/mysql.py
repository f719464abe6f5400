"""MySQL dialect."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy.dialects import mysql

from ..expressions import CompiledExpression
from .base import Dialect

if TYPE_CHECKING:
    from sqlalchemy.engine.interfaces import Dialect as SADialect

# MySQL has no "no limit" keyword; this is the documented maximum.
_MAX_LIMIT = 18446744073709551615


class MySQLDialect(Dialect):
    """MySQL: back-tick quoting, ``%s`` placeholders, ``AUTO_INCREMENT``."""

    name = "mysql"
    url_scheme = "mysql"
    pyformat = True

    def _build_sa_dialect(self, **kwargs: Any) -> SADialect:
        return mysql.dialect(**kwargs)

    def placeholder(self, index: int) -> str:
        return "%s"

    def auto_increment_clause(self) -> str:
        return "NOT NULL AUTO_INCREMENT"

    def has_table_sql(self, table_name: str) -> CompiledExpression:
        return CompiledExpression(
            "SELECT count(*) FROM information_schema.tables "
            "WHERE table_schema = DATABASE() AND table_name = %s",
            (table_name,),
        )

    def empty_insert_clause(self) -> str:
        return "() VALUES ()"

    def render_limit_offset(self, limit: int | None, offset: int | None) -> str:
        if offset is not None and limit is None:
            limit = _MAX_LIMIT
        return super().render_limit_offset(limit, offset)
