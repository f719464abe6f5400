"""Lifecycle hook pipeline run around every operation."""

from __future__ import annotations

from .registry import HookRegistry, HookStage, OperationKind, Phase
from .stages import build_default_hooks, get_default_hooks

__all__ = [
    "HookRegistry",
    "HookStage",
    "OperationKind",
    "Phase",
    "build_default_hooks",
    "get_default_hooks",
]
