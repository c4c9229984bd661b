"""In-memory cache store."""

import itertools
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

from ..expiry import to_absolute
from .base import Entry, KVStore


@dataclass(frozen=True)
class _Slot:
    value: bytes
    revision: int
    expires_at: float  # 0 = never


class Memory(KVStore):
    """A memory-backed cache store.

    All operations are protected by a single lock, so ``add`` and
    ``cas`` are atomic across threads. CAS tokens are revision numbers
    drawn from one store-wide counter; a key that is deleted and
    recreated never reuses an old token.

    Expired entries are dropped lazily on access.

    Args:
        clock: Source of the current Unix time.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self.memory: dict[str, _Slot] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._revisions = itertools.count(1)

    def _live(self, key: str) -> _Slot | None:
        slot = self.memory.get(key)
        if slot is not None and slot.expires_at and slot.expires_at <= self._clock():
            del self.memory[key]
            return None
        return slot

    def _put(self, key: str, value: bytes, expiry: float) -> None:
        if not isinstance(value, bytes):
            raise TypeError(f"Expected bytes, got {type(value).__name__}")
        self.memory[key] = _Slot(
            value=value,
            revision=next(self._revisions),
            expires_at=to_absolute(expiry, now=self._clock()),
        )

    def get(self, key: str) -> Entry | None:
        with self._lock:
            slot = self._live(key)
            if slot is None:
                return None
            return Entry(slot.value, slot.revision)

    def set(self, key: str, value: bytes, expiry: float = 0) -> bool:
        with self._lock:
            self._put(key, value, expiry)
        return True

    def cas(self, token: Any, key: str, value: bytes, expiry: float = 0) -> bool:
        with self._lock:
            slot = self._live(key)
            if slot is None or slot.revision != token:
                return False
            self._put(key, value, expiry)
            return True

    def delete(self, key: str, delay: float = 0) -> bool:
        with self._lock:
            self.memory.pop(key, None)
        return True

    def add(self, key: str, value: bytes, expiry: float = 0) -> bool:
        with self._lock:
            if self._live(key) is not None:
                return False
            self._put(key, value, expiry)
            return True

    def replace(self, key: str, value: bytes, expiry: float = 0) -> bool:
        with self._lock:
            if self._live(key) is None:
                return False
            self._put(key, value, expiry)
            return True

    def delete_expired(self, before: float | None = None) -> int:
        if before is None:
            before = self._clock()
        with self._lock:
            stale = [
                key
                for key, slot in self.memory.items()
                if slot.expires_at and slot.expires_at <= before
            ]
            for key in stale:
                del self.memory[key]
        return len(stale)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return self._live(key) is not None
