"""Cache: the caller-facing facade over a ``KVStore``."""

import logging
import pickle
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Literal

from . import counter
from .kv.base import KVStore, check_key
from .kv.memory import Memory
from .lock import LOCK_TIMEOUT, POLICY_WAIT, DistributedLock, LockPolicy
from .merge import NO_CHANGE, BytesMergeFn, merge_via_cas, merge_via_lock

Strategy = Literal["auto", "cas", "lock"]


@dataclass(frozen=True)
class Hit:
    """A value found in the cache. ``None`` stands for a miss."""

    value: Any


MergeFn = Callable[[Hit | None], Any]
"""Merge function: current hit (None on a miss) -> new value or NO_CHANGE."""


class Cache:
    """Typed cache over a bytes-only ``KVStore``.

    Values are encoded on write and decoded on read with the
    configured encoder and decoder. ``merge`` performs an atomic
    read-modify-write, through ``cas`` when the backend supports it
    and through the key's lock otherwise.

    Args:
        backend: The store to use (default: a fresh ``Memory``).
        encoder: Value encoder (default ``pickle.dumps``).
        decoder: Value decoder (default ``pickle.loads``).
        strategy: ``"auto"`` picks the merge protocol from
            ``backend.supports_cas``; ``"cas"`` or ``"lock"`` force one.
        lock_policy: Backoff and expiry settings for locks.
        logger: Logger used by the cache and its lock.
    """

    def __init__(
        self,
        backend: KVStore | None = None,
        *,
        encoder: Callable[[Any], bytes] = pickle.dumps,
        decoder: Callable[[bytes], Any] = pickle.loads,
        strategy: Strategy = "auto",
        lock_policy: LockPolicy | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = backend if backend is not None else Memory()
        if strategy not in ("auto", "cas", "lock"):
            raise ValueError(f"Unknown strategy: {strategy!r}")
        if strategy == "cas" and not self._store.supports_cas:
            raise ValueError(f"{type(self._store).__name__} does not support cas")
        self._encoder = encoder
        self._decoder = decoder
        self._use_cas = strategy == "cas" or (
            strategy == "auto" and self._store.supports_cas
        )
        self._log = logger or logging.getLogger(__name__)
        self._lock = DistributedLock(self._store, lock_policy, logger=logger)

    @property
    def backend(self) -> KVStore:
        return self._store

    @property
    def strategy(self) -> str:
        """The merge protocol in use: ``"cas"`` or ``"lock"``."""
        return "cas" if self._use_cas else "lock"

    # -- Read operations --

    def lookup(self, key: str) -> Hit | None:
        """Get the value at key wrapped in a ``Hit``, or None on a miss.

        Unlike ``get``, a stored ``None`` or ``False`` is never
        mistaken for a miss.
        """
        entry = self._store.get(check_key(key))
        if entry is None:
            return None
        return Hit(self._decoder(entry.value))

    def get(self, key: str, default: Any = None) -> Any:
        hit = self.lookup(key)
        return default if hit is None else hit.value

    def get_many(self, *keys: str) -> dict[str, Any]:
        """Get multiple values, omitting misses."""
        raw = self._store.get_many(*(check_key(k) for k in keys))
        return {k: self._decoder(v) for k, v in raw.items()}

    def __contains__(self, key: str) -> bool:
        return self._store.get(check_key(key)) is not None

    # -- Write operations --

    def set(self, key: str, value: Any, expiry: float = 0) -> bool:
        return self._store.set(check_key(key), self._encoder(value), expiry)

    def add(self, key: str, value: Any, expiry: float = 0) -> bool:
        """Set key only if it is absent."""
        return self._store.add(check_key(key), self._encoder(value), expiry)

    def replace(self, key: str, value: Any, expiry: float = 0) -> bool:
        """Set key only if it is present."""
        return self._store.replace(check_key(key), self._encoder(value), expiry)

    def delete(self, key: str, delay: float = 0) -> bool:
        return self._store.delete(check_key(key), delay)

    def delete_expired(self, before: float | None = None) -> int:
        """Purge entries expiring before ``before`` (default: now)."""
        removed = self._store.delete_expired(before)
        if removed:
            self._log.debug("Purged %d expired entries", removed)
        return removed

    # -- Atomic updates --

    def merge(
        self, key: str, fn: MergeFn, expiry: float = 0, attempts: int = 10
    ) -> bool:
        """Atomically replace the value at key with ``fn(current)``.

        fn receives a ``Hit`` (or None if key is absent) and returns
        the new value, or ``NO_CHANGE`` to leave the key untouched.
        On the cas path fn may be called once per attempt; ``attempts``
        is ignored on the lock path.

        Returns:
            True if the new value was written (or no change was
            needed), False if every attempt lost a race or the lock
            could not be taken.
        """
        check_key(key)
        bytes_fn = self._as_bytes_fn(fn)
        if self._use_cas:
            ok = merge_via_cas(
                self._store, key, bytes_fn, expiry, attempts, logger=self._log
            )
        else:
            ok = merge_via_lock(self._store, self._lock, key, bytes_fn, expiry)
        if not ok:
            self._log.debug("Merge on %r did not apply", key)
        return ok

    def incr(self, key: str, delta: int = 1) -> int | None:
        """Add delta to the integer at key; None if there is none."""
        return counter.increment(
            self._store,
            self._lock,
            check_key(key),
            delta,
            encode=self._encoder,
            decode=self._decoder,
        )

    def decr(self, key: str, delta: int = 1) -> int | None:
        """Subtract delta from the integer at key, never going below 0."""
        return counter.decrement(
            self._store,
            self._lock,
            check_key(key),
            delta,
            encode=self._encoder,
            decode=self._decoder,
        )

    # -- Locking --

    def lock(
        self,
        key: str,
        timeout: float = LOCK_TIMEOUT,
        *,
        wait: float | None = POLICY_WAIT,
        cancel: threading.Event | None = None,
    ) -> bool:
        """Acquire the advisory lock on key. See ``DistributedLock.acquire``."""
        return self._lock.acquire(key, timeout, wait=wait, cancel=cancel)

    def unlock(self, key: str) -> bool:
        return self._lock.release(key)

    @contextmanager
    def locked(
        self,
        key: str,
        timeout: float = LOCK_TIMEOUT,
        *,
        wait: float | None = POLICY_WAIT,
        cancel: threading.Event | None = None,
    ) -> Iterator["Cache"]:
        """Hold the lock on key inside a ``with`` block.

        Raises:
            LockTimeout: If the lock could not be acquired.
        """
        with self._lock.held(key, timeout, wait=wait, cancel=cancel):
            yield self

    def _as_bytes_fn(self, fn: MergeFn) -> BytesMergeFn:
        def wrapped(raw: bytes | None) -> Any:
            current = None if raw is None else Hit(self._decoder(raw))
            value = fn(current)
            if value is NO_CHANGE:
                return NO_CHANGE
            return self._encoder(value)

        return wrapped
