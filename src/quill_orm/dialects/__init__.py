"""
Dialect registry.

Dialect selection is a lookup by name at open time::

    dialect = get_dialect("sqlite")
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from ..exceptions import UnsupportedDialectError
from .base import Dialect
from .mysql import MySQLDialect
from .postgresql import PostgreSQLDialect
from .sqlite import SQLiteDialect, SQLiteMemoryDialect

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

_lock = threading.Lock()
_factories: dict[str, Callable[[], Dialect]] = {
    "sqlite": SQLiteDialect,
    "sqlite-mem": SQLiteMemoryDialect,
    "postgres": PostgreSQLDialect,
    "postgresql": PostgreSQLDialect,
    "mysql": MySQLDialect,
}


def register_dialect(name: str, factory: Callable[[], Dialect]) -> None:
    """Register (or replace) the dialect factory for *name*."""
    with _lock:
        _factories[name] = factory
    logger.debug("Registered dialect %s", name)


def available_dialects() -> list[str]:
    return sorted(_factories)


def get_dialect(name: str) -> Dialect:
    """
    Instantiate the dialect registered under *name*.

    Raises:
        UnsupportedDialectError: If no dialect matches.
    """
    factory = _factories.get(name)
    if factory is None:
        raise UnsupportedDialectError(name, available_dialects())
    return factory()


__all__ = [
    "Dialect",
    "MySQLDialect",
    "PostgreSQLDialect",
    "SQLiteDialect",
    "SQLiteMemoryDialect",
    "available_dialects",
    "get_dialect",
    "register_dialect",
]
