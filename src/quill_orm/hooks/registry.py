"""HookRegistry: ordered, named lifecycle stages per operation."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from ..exceptions import HookError, QuillError

if TYPE_CHECKING:
    from collections.abc import Callable

    from ..scope import Scope

logger = logging.getLogger(__name__)


class OperationKind(str, Enum):
    CREATE = "create"
    QUERY = "query"
    UPDATE = "update"
    DELETE = "delete"


class Phase(str, Enum):
    BEFORE = "before"
    AFTER = "after"


@dataclass(frozen=True)
class HookStage:
    """A named callback bound to one operation kind and phase."""

    name: str
    callback: Callable[[Scope], None]


class HookRegistry:
    """Collects hook stages keyed by ``(OperationKind, Phase)``.

    Stages run in registration order.  Registering a name that already
    exists for the same kind and phase replaces that stage in place.
    Readers work on immutable tuple snapshots; mutation takes a lock and
    is refused once the registry is frozen.
    """

    def __init__(self) -> None:
        self._stages: dict[tuple[OperationKind, Phase], tuple[HookStage, ...]] = {}
        self._lock = threading.Lock()
        self._frozen = False

    # ── Registration ─────────────────────────────────────────────

    def register(
        self,
        kind: OperationKind | str,
        phase: Phase | str,
        name: str,
        callback: Callable[[Scope], None],
    ) -> None:
        """Register *callback* as stage *name*.

        Raises:
            QuillError: If the registry is frozen.
        """
        key = (OperationKind(kind), Phase(phase))
        stage = HookStage(name=name, callback=callback)
        with self._lock:
            self._check_mutable()
            current = list(self._stages.get(key, ()))
            for index, existing in enumerate(current):
                if existing.name == name:
                    current[index] = stage
                    break
            else:
                current.append(stage)
            self._stages[key] = tuple(current)
        logger.debug("Registered hook %s (%s/%s)", name, key[0].value, key[1].value)

    def stage(
        self,
        kind: OperationKind | str,
        phase: Phase | str,
        name: str | None = None,
    ) -> Callable[[Callable[[Scope], None]], Callable[[Scope], None]]:
        """Decorator-style registration.

        Usage::

            @registry.stage("create", "before")
            def stamp_owner(scope): ...
        """

        def wrapper(func: Callable[[Scope], None]) -> Callable[[Scope], None]:
            self.register(kind, phase, name or func.__name__, func)
            return func

        return wrapper

    def remove(self, kind: OperationKind | str, phase: Phase | str, name: str) -> bool:
        """Remove stage *name*; returns ``False`` if it was not registered."""
        key = (OperationKind(kind), Phase(phase))
        with self._lock:
            self._check_mutable()
            current = self._stages.get(key, ())
            remaining = tuple(s for s in current if s.name != name)
            if len(remaining) == len(current):
                return False
            self._stages[key] = remaining
        logger.debug("Removed hook %s (%s/%s)", name, key[0].value, key[1].value)
        return True

    def freeze(self) -> None:
        """End the setup phase; later mutation raises."""
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def copy(self) -> HookRegistry:
        """An unfrozen copy holding the same stages."""
        clone = HookRegistry()
        with self._lock:
            clone._stages = dict(self._stages)
        return clone

    # ── Retrieval ────────────────────────────────────────────────

    def stages(
        self, kind: OperationKind | str, phase: Phase | str
    ) -> tuple[HookStage, ...]:
        return self._stages.get((OperationKind(kind), Phase(phase)), ())

    def names(self, kind: OperationKind | str, phase: Phase | str) -> list[str]:
        return [s.name for s in self.stages(kind, phase)]

    # ── Execution ────────────────────────────────────────────────

    def run(self, phase: Phase | str, kind: OperationKind | str, scope: Scope) -> None:
        """Run every stage of *kind*/*phase* in order against *scope*.

        The first stage that raises, or leaves an error on the scope,
        stops the pipeline.

        Raises:
            HookError: Naming the failing stage, with the underlying error
                as ``cause``.
        """
        for stage in self.stages(kind, phase):
            try:
                stage.callback(scope)
            except HookError:
                raise
            except Exception as exc:
                scope.set_error(exc)
                logger.debug("Hook %s failed: %s", stage.name, exc)
                raise HookError(stage.name, exc) from exc
            if scope.error is not None:
                logger.debug("Hook %s rejected: %s", stage.name, scope.error)
                raise HookError(stage.name, scope.error) from scope.error

    # ── Internals ────────────────────────────────────────────────

    def _check_mutable(self) -> None:
        if self._frozen:
            raise QuillError("Hook registry is frozen")

    def __repr__(self) -> str:
        count = sum(len(s) for s in self._stages.values())
        return f"HookRegistry(stages={count}, frozen={self._frozen})"