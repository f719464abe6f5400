"""PostgreSQL dialect."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy.dialects import postgresql

from ..expressions import CompiledExpression
from .base import Dialect

if TYPE_CHECKING:
    from sqlalchemy.engine.interfaces import Dialect as SADialect


class PostgreSQLDialect(Dialect):
    """
    PostgreSQL through a DBAPI driver (``%s`` placeholders), identity
    columns, ``RETURNING`` and native multi-statement execution.
    """

    name = "postgres"
    url_scheme = "postgresql"
    timezone_aware = True
    pyformat = True

    def _build_sa_dialect(self, **kwargs: Any) -> SADialect:
        return postgresql.dialect(**kwargs)

    def placeholder(self, index: int) -> str:
        return "%s"

    def auto_increment_clause(self) -> str:
        return "GENERATED BY DEFAULT AS IDENTITY"

    def supports_multi_statement(self) -> bool:
        return True

    def supports_returning(self) -> bool:
        return True

    def has_table_sql(self, table_name: str) -> CompiledExpression:
        return CompiledExpression(
            "SELECT count(*) FROM information_schema.tables "
            "WHERE table_schema = current_schema() AND table_name = %s",
            (table_name,),
        )
