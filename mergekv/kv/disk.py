"""Disk-backed cache store using diskcache."""

import uuid
from contextlib import contextmanager
from typing import Any, Iterator

from ..errors import StoreError
from ..expiry import to_relative
from .base import Entry, KVStore

ONE_GB = 1024 * 1024 * 1024


def _ttl(expiry: float) -> float | None:
    return None if expiry == 0 else to_relative(expiry)


class Disk(KVStore):
    """Cache store backed by diskcache (SQLite + mmap).

    Entries are stored as ``(token, value)`` pairs where the token is a
    random hex string regenerated on every write. Several processes
    may share one directory; ``add`` and ``cas`` run inside SQLite
    transactions.

    Args:
        directory: Cache directory, created if missing.
        size_limit: Eviction threshold in bytes.
        timeout: Seconds SQLite waits on a locked database before
            the call fails with ``StoreError``.
    """

    def __init__(
        self, directory: str, size_limit: int = ONE_GB, timeout: float = 60
    ) -> None:
        from diskcache import Cache as DiskCache

        self.store = DiskCache(directory, size_limit=size_limit, timeout=timeout)

    @contextmanager
    def _guard(self, op: str, key: str) -> Iterator[None]:
        from diskcache import Timeout

        try:
            yield
        except Timeout as e:
            raise StoreError(f"{op} timed out for key {key!r}") from e

    def get(self, key: str) -> Entry | None:
        with self._guard("get", key):
            stored = self.store.get(key)
        if stored is None:
            return None
        token, value = stored
        return Entry(value, token)

    def set(self, key: str, value: bytes, expiry: float = 0) -> bool:
        if not isinstance(value, bytes):
            raise TypeError(f"Expected bytes, got {type(value).__name__}")
        with self._guard("set", key):
            return self.store.set(key, (uuid.uuid4().hex, value), expire=_ttl(expiry))

    def cas(self, token: Any, key: str, value: bytes, expiry: float = 0) -> bool:
        if not isinstance(value, bytes):
            raise TypeError(f"Expected bytes, got {type(value).__name__}")
        with self._guard("cas", key), self.store.transact():
            stored = self.store.get(key)
            if stored is None or stored[0] != token:
                return False
            return self.store.set(key, (uuid.uuid4().hex, value), expire=_ttl(expiry))

    def delete(self, key: str, delay: float = 0) -> bool:
        with self._guard("delete", key):
            self.store.delete(key)
        return True

    def add(self, key: str, value: bytes, expiry: float = 0) -> bool:
        if not isinstance(value, bytes):
            raise TypeError(f"Expected bytes, got {type(value).__name__}")
        with self._guard("add", key):
            return self.store.add(key, (uuid.uuid4().hex, value), expire=_ttl(expiry))

    def delete_expired(self, before: float | None = None) -> int:
        with self._guard("delete_expired", "*"):
            return self.store.expire(now=before)

    def __contains__(self, key: str) -> bool:
        return key in self.store

    def close(self) -> None:
        self.store.close()
