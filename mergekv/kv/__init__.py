"""Cache store backends."""

from .base import Entry, KVStore
from .disk import Disk
from .memory import Memory

__all__ = ["Disk", "Entry", "KVStore", "Memory"]
