"""
quill-orm: query construction and execution core of a small ORM.

Record shapes (pydantic models or dataclasses) are mapped to tables,
operations compile to dialect-specific SQL plus bound arguments and run
through a short-circuiting hook pipeline before reaching the backend.
"""

from __future__ import annotations

from .config import OpenConfig
from .db import DB, DefaultOpener, Opener, open_db, open_with_opener
from .dialects import Dialect, available_dialects, get_dialect, register_dialect
from .engine import Engine
from .exceptions import (
    ArgumentError,
    CompileError,
    ExecutionError,
    HookError,
    OperationCancelledError,
    QuillError,
    ShapeError,
    UnsupportedDialectError,
)
from .expressions import CompiledExpression
from .hooks import (
    HookRegistry,
    OperationKind,
    Phase,
    build_default_hooks,
    get_default_hooks,
)
from .model import MetadataCache, ShapeDescriptor, TableMetadata, Tag
from .scope import Scope
from .search import Search
from .sink import ExecResult, ExecutionSink, SQLAlchemySink, Transaction

__version__ = "0.1.0"

__all__ = [
    "DB",
    "ArgumentError",
    "CompileError",
    "CompiledExpression",
    "DefaultOpener",
    "Dialect",
    "Engine",
    "ExecResult",
    "ExecutionError",
    "ExecutionSink",
    "HookError",
    "HookRegistry",
    "MetadataCache",
    "OpenConfig",
    "OperationCancelledError",
    "OperationKind",
    "Opener",
    "Phase",
    "QuillError",
    "SQLAlchemySink",
    "Scope",
    "Search",
    "ShapeDescriptor",
    "ShapeError",
    "TableMetadata",
    "Tag",
    "Transaction",
    "UnsupportedDialectError",
    "available_dialects",
    "build_default_hooks",
    "get_default_hooks",
    "open_db",
    "open_with_opener",
    "register_dialect",
]
