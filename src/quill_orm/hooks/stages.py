"""
Default lifecycle stages.

Record methods named after a stage (``before_create``, ``after_find``
...) are called with the active scope when the record defines them;
raising from such a method rejects the operation.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from ..model.mapper import read_field
from ..model.metadata import (
    CREATED_AT_COLUMN,
    SOFT_DELETE_COLUMN,
    UPDATED_AT_COLUMN,
)
from .registry import HookRegistry, OperationKind, Phase

if TYPE_CHECKING:
    from collections.abc import Callable

    from ..scope import Scope

logger = logging.getLogger(__name__)

_default_hooks: HookRegistry | None = None
_default_lock = threading.Lock()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _call_record_method(record: Any, method_name: str, scope: Scope) -> None:
    method = getattr(record, method_name, None)
    if callable(method):
        method(scope)


def _record_method(method_name: str) -> Callable[[Scope], None]:
    def stage(scope: Scope) -> None:
        if scope.record is not None:
            _call_record_method(scope.record, method_name, scope)

    stage.__name__ = method_name
    return stage


# -- create / update ---------------------------------------------------------

before_create = _record_method("before_create")
after_create = _record_method("after_create")
before_update = _record_method("before_update")
after_update = _record_method("after_update")
before_delete = _record_method("before_delete")
after_delete = _record_method("after_delete")


def update_timestamps(scope: Scope) -> None:
    """Stamp ``created_at`` (when unset, on create) and ``updated_at``."""
    table = scope.require_table()
    now = _now()
    if scope.kind is OperationKind.CREATE:
        created = table.field(CREATED_AT_COLUMN)
        if created is not None and (
            scope.record is None or read_field(scope.record, created) is None
        ):
            scope.set_column(CREATED_AT_COLUMN, now)
    if table.has_column(UPDATED_AT_COLUMN):
        scope.set_column(UPDATED_AT_COLUMN, now)


# -- delete ------------------------------------------------------------------


def soft_delete(scope: Scope) -> None:
    """Turn the delete into an update of ``deleted_at`` when the table has one."""
    table = scope.require_table()
    if not table.soft_delete:
        return
    if scope.search is not None and scope.search.is_unscoped:
        return
    scope.soft_delete = True
    scope.set_column(SOFT_DELETE_COLUMN, _now())


# -- query -------------------------------------------------------------------


def exclude_soft_deleted(scope: Scope) -> None:
    table = scope.require_table()
    if not table.soft_delete or scope.search is None:
        return
    column = scope.dialect.quote_identifier(SOFT_DELETE_COLUMN)
    scope.search.add_default_condition(f"{scope.quoted_table}.{column} IS NULL")


def after_find(scope: Scope) -> None:
    for record in scope.records:
        _call_record_method(record, "after_find", scope)


# ---------------------------------------------------------------------------
# Registry construction
# ---------------------------------------------------------------------------


def build_default_hooks() -> HookRegistry:
    """A fresh registry holding the default stages."""
    registry = HookRegistry()
    before, after = Phase.BEFORE, Phase.AFTER

    registry.register(OperationKind.CREATE, before, "before_create", before_create)
    registry.register(
        OperationKind.CREATE, before, "update_timestamps", update_timestamps
    )
    registry.register(OperationKind.CREATE, after, "after_create", after_create)

    registry.register(OperationKind.UPDATE, before, "before_update", before_update)
    registry.register(
        OperationKind.UPDATE, before, "update_timestamps", update_timestamps
    )
    registry.register(OperationKind.UPDATE, after, "after_update", after_update)

    registry.register(OperationKind.DELETE, before, "before_delete", before_delete)
    registry.register(OperationKind.DELETE, before, "soft_delete", soft_delete)
    registry.register(OperationKind.DELETE, after, "after_delete", after_delete)

    registry.register(
        OperationKind.QUERY, before, "exclude_soft_deleted", exclude_soft_deleted
    )
    registry.register(OperationKind.QUERY, after, "after_find", after_find)
    return registry


def get_default_hooks() -> HookRegistry:
    """The process-wide default registry (frozen on first access)."""
    global _default_hooks
    with _default_lock:
        if _default_hooks is None:
            registry = build_default_hooks()
            registry.freeze()
            _default_hooks = registry
            logger.debug("Initialised default hook registry")
    return _default_hooks
