"""MetadataCache: thread-safe memoisation of derived table metadata."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any

from ..exceptions import OperationCancelledError
from .metadata import TableMetadata, derive_table_metadata
from .shape import shape_of

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class MetadataCache:
    """
    Maps record shapes to their :class:`TableMetadata`.

    The cache is the only component shared between concurrent
    operations.  Lookups are plain dictionary reads; a miss derives the
    metadata outside the lock and publishes it with ``setdefault`` under
    the lock, so at most one derivation is stored and every concurrent
    caller for the same shape receives that same object.
    """

    def __init__(
        self,
        *,
        singular_table: bool = False,
        derive: Callable[..., TableMetadata] = derive_table_metadata,
    ) -> None:
        self._singular_table = singular_table
        self._derive = derive
        self._entries: dict[Any, TableMetadata] = {}
        self._lock = threading.Lock()

    @property
    def singular_table(self) -> bool:
        return self._singular_table

    def get(
        self,
        shape: Any,
        *,
        cancel: threading.Event | None = None,
    ) -> TableMetadata:
        """
        Return the metadata for *shape* (a record class, instance or
        :class:`~quill_orm.model.shape.ShapeDescriptor`).

        Raises:
            ShapeError: If the shape cannot be mapped.
            OperationCancelledError: If *cancel* is set before derivation.
        """
        key = shape_of(shape)
        cached = self._entries.get(key)
        if cached is not None:
            return cached

        if cancel is not None and cancel.is_set():
            raise OperationCancelledError(
                f"Cancelled before deriving metadata for {key!r}"
            )

        derived = self._derive(key, singular=self._singular_table)
        with self._lock:
            stored = self._entries.setdefault(key, derived)
        if stored is derived:
            logger.debug("Cached metadata for table %s", derived.name)
        return stored

    def contains(self, shape: Any) -> bool:
        return shape_of(shape) in self._entries

    def clear(self) -> None:
        """Drop every cached entry (testing utility)."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
