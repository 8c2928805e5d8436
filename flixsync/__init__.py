"""flixsync playlist ingestion and metadata reconciliation package."""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = ["Pipeline", "create_pipeline"]


def __getattr__(name: str) -> Any:
    if name in __all__:
        module = import_module("flixsync.main")
        return getattr(module, name)
    raise AttributeError(f"module 'flixsync' has no attribute {name}")
