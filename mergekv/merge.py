"""Read-modify-write protocols over a ``KVStore``.

``merge_via_cas`` retries get/compute/cas without locking and gives up
after a fixed number of attempts. ``merge_via_lock`` serializes
writers through a ``DistributedLock`` and is the fallback for
backends without ``cas``.
"""

import logging
from typing import Callable

from .kv.base import KVStore
from .lock import LOCK_TIMEOUT, DistributedLock

_log = logging.getLogger(__name__)


class _NoChange:
    """Marker returned by a merge function to skip the write."""

    def __repr__(self) -> str:
        return "NO_CHANGE"


NO_CHANGE = _NoChange()

BytesMergeFn = Callable[[bytes | None], "bytes | _NoChange"]
"""Merge function: current bytes (None if absent) -> new bytes or NO_CHANGE."""


def merge_via_cas(
    store: KVStore,
    key: str,
    fn: BytesMergeFn,
    expiry: float = 0,
    attempts: int = 10,
    *,
    logger: logging.Logger | None = None,
) -> bool:
    """Apply fn to the value at key using compare-and-swap.

    Each attempt reads the key, computes the new value and writes it
    with ``add`` (key was absent) or ``cas`` (key was present). A lost
    race starts a fresh attempt; fn may therefore run several times.

    Returns:
        True once a write lands or fn returns ``NO_CHANGE``; False if
        every attempt lost a race.
    """
    if attempts < 1:
        raise ValueError(f"attempts must be at least 1, got {attempts}")
    log = logger or _log

    for attempt in range(1, attempts + 1):
        entry = store.get(key)
        value = fn(None if entry is None else entry.value)
        if value is NO_CHANGE:
            return True
        if entry is None:
            if store.add(key, value, expiry):
                return True
            log.debug("%r was created concurrently (attempt %d/%d)", key, attempt, attempts)
        else:
            if store.cas(entry.token, key, value, expiry):
                return True
            log.debug("%r changed concurrently (attempt %d/%d)", key, attempt, attempts)

    log.debug("Merge on %r failed after %d attempts", key, attempts)
    return False


def merge_via_lock(
    store: KVStore,
    lock: DistributedLock,
    key: str,
    fn: BytesMergeFn,
    expiry: float = 0,
) -> bool:
    """Apply fn to the value at key while holding its lock.

    The lock is released even if fn or the write raises. A failed
    release is logged by the lock and does not affect the result.
    """
    if not lock.acquire(key, LOCK_TIMEOUT):
        return False
    try:
        entry = store.get(key)
        value = fn(None if entry is None else entry.value)
        if value is NO_CHANGE:
            return True
        return store.set(key, value, expiry)
    finally:
        lock.release(key)
