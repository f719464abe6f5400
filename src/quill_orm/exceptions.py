"""
Exception hierarchy for quill-orm.

All exceptions inherit from ``QuillError`` and provide ``to_dict()``
for API-friendly error responses.  Compilation errors (``ShapeError``,
``CompileError``, ``HookError``, ``ArgumentError``) are raised before
anything reaches the backend; ``ExecutionError`` always carries the
backend's own exception.
"""

from __future__ import annotations

from difflib import get_close_matches
from typing import Any


class QuillError(Exception):
    """Root exception for the entire quill-orm package."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "message": str(self),
        }


class ShapeError(QuillError):
    """A record shape cannot be mapped to a table."""

    def __init__(self, shape_name: str, reason: str) -> None:
        self.shape_name = shape_name
        self.reason = reason
        super().__init__(f"Cannot map '{shape_name}': {reason}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "SHAPE_ERROR",
            "shape": self.shape_name,
            "reason": self.reason,
        }


class UnsupportedDialectError(QuillError):
    """
    No dialect is registered under the requested name.

    Provides fuzzy-matched suggestions for likely intended dialects.
    """

    def __init__(self, dialect: str, available: list[str]) -> None:
        self.dialect = dialect
        self.available = available
        self.suggestions = get_close_matches(dialect, available, n=3, cutoff=0.6)

        message = f"Unsupported dialect: '{dialect}'."
        if self.suggestions:
            message += f" Did you mean: {', '.join(self.suggestions)}?"
        message += f" Available dialects: {', '.join(sorted(available))}"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "UNSUPPORTED_DIALECT",
            "dialect": self.dialect,
            "suggestions": self.suggestions,
            "available": sorted(self.available),
        }


class ArgumentError(QuillError):
    """Malformed caller input (open configuration, conditions, targets)."""

    def __init__(self, message: str, argument: str | None = None) -> None:
        self.message = message
        self.argument = argument
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "ARGUMENT_ERROR",
            "message": self.message,
            "argument": self.argument,
        }


class HookError(QuillError):
    """A hook stage rejected the operation."""

    def __init__(self, stage: str, cause: BaseException) -> None:
        self.stage = stage
        self.cause = cause
        super().__init__(f"Hook stage '{stage}' failed: {cause}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "HOOK_ERROR",
            "stage": self.stage,
            "cause": str(self.cause),
        }


class CompileError(QuillError):
    """The dialect failed to render a fragment."""

    def __init__(self, message: str, field: str | None = None) -> None:
        self.message = message
        self.field = field
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "COMPILE_ERROR",
            "message": self.message,
            "field": self.field,
        }


class ExecutionError(QuillError):
    """The backend rejected or failed a statement."""

    def __init__(self, sql: str, cause: BaseException) -> None:
        self.sql = sql
        self.cause = cause
        super().__init__(f"Failed to execute statement: {cause}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "EXECUTION_ERROR",
            "sql": self.sql,
            "cause": str(self.cause),
        }


class OperationCancelledError(QuillError):
    """The operation's cancellation token was set."""


__all__: list[str] = [
    "ArgumentError",
    "CompileError",
    "ExecutionError",
    "HookError",
    "OperationCancelledError",
    "QuillError",
    "ShapeError",
    "UnsupportedDialectError",
]
