"""
Compiled SQL expressions.

A :class:`CompiledExpression` pairs SQL text with its ordered bound
arguments.  Fragments written by callers use the neutral ``?`` marker;
the :class:`~quill_orm.scope.Scope` rewrites markers to the dialect's
placeholders when it binds a fragment into a statement.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any

from .exceptions import ArgumentError

MARKER = "?"

_QUOTES = frozenset({"'", '"', "`"})


@dataclass(frozen=True)
class CompiledExpression:
    """
    SQL text plus ordered arguments.

    Multi-statement expressions keep their component statements in
    ``statements``; ``sql`` then holds the rendered script.
    """

    sql: str
    args: tuple[Any, ...] = ()
    statements: tuple[CompiledExpression, ...] = ()

    @property
    def is_multi(self) -> bool:
        return bool(self.statements)

    def iter_statements(self) -> Iterator[CompiledExpression]:
        """Component statements, or the expression itself when single."""
        if self.statements:
            yield from self.statements
        else:
            yield self

    def __str__(self) -> str:
        return self.sql


def _scan(sql: str) -> Iterator[tuple[int, str]]:
    """Yield ``(index, char)`` for characters outside quoted sections."""
    quote: str | None = None
    for index, char in enumerate(sql):
        if quote is not None:
            if char == quote:
                quote = None
            continue
        if char in _QUOTES:
            quote = char
            continue
        yield index, char


def count_markers(sql: str) -> int:
    """Number of unquoted ``?`` markers in *sql*."""
    return sum(1 for _, char in _scan(sql) if char == MARKER)


def substitute_markers(sql: str, placeholder: Callable[[], str]) -> str:
    """Replace every unquoted ``?`` with the next value of *placeholder*."""
    positions = [index for index, char in _scan(sql) if char == MARKER]
    if not positions:
        return sql
    parts: list[str] = []
    last = 0
    for index in positions:
        parts.append(sql[last:index])
        parts.append(placeholder())
        last = index + 1
    parts.append(sql[last:])
    return "".join(parts)


def expand(fragment: str, args: tuple[Any, ...]) -> CompiledExpression:
    """
    Build a marker expression from a fragment and its arguments.

    List, tuple and set arguments expand to ``(?, ?, ...)`` and a
    :class:`CompiledExpression` argument is inlined as a sub-query.

    Raises:
        ArgumentError: If the marker count does not match ``len(args)``.
    """
    expected = count_markers(fragment)
    if expected != len(args):
        raise ArgumentError(
            f"Fragment {fragment!r} has {expected} placeholder(s) "
            f"but {len(args)} argument(s) were given",
            argument="args",
        )
    if not args:
        return CompiledExpression(fragment)

    values = iter(args)
    flat: list[Any] = []

    def _next_marker() -> str:
        value = next(values)
        if isinstance(value, CompiledExpression):
            flat.extend(value.args)
            return f"({value.sql})"
        if isinstance(value, list | tuple | set | frozenset):
            items = list(value)
            if not items:
                raise ArgumentError(
                    f"Empty collection bound in {fragment!r}", argument="args"
                )
            flat.extend(items)
            return "(" + ", ".join(MARKER for _ in items) + ")"
        flat.append(value)
        return MARKER

    sql = substitute_markers(fragment, _next_marker)
    return CompiledExpression(sql, tuple(flat))
