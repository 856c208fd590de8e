"""Persistent store layer."""

from .base import Store, StatusConflict
from .memory import MemoryStore

__all__ = [
    "Store",
    "StatusConflict",
    "MemoryStore",
]
