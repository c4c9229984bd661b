"""Lock-protected integer counters."""

from typing import Any, Callable

from .kv.base import KVStore
from .lock import LOCK_TIMEOUT, DistributedLock


def is_integer(value: Any) -> bool:
    """True for ints (not bools) and for strings or bytes of ASCII digits."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    if isinstance(value, str):
        return value.isascii() and value.isdigit()
    if isinstance(value, bytes):
        return value.isdigit()
    return False


def increment(
    store: KVStore,
    lock: DistributedLock,
    key: str,
    delta: int = 1,
    *,
    encode: Callable[[Any], bytes],
    decode: Callable[[bytes], Any],
) -> int | None:
    """Add delta to the integer at key, clamping the result at zero.

    Nothing is created for a missing key. The new value is written
    without an expiry, so any TTL the key had is dropped.

    Returns:
        The stored value, or None if the lock could not be taken, key
        holds no integer or the store rejected the write.
    """
    if not lock.acquire(key, LOCK_TIMEOUT):
        return None
    try:
        entry = store.get(key)
        if entry is None:
            return None
        current = decode(entry.value)
        if not is_integer(current):
            return None
        value = max(0, int(current) + int(delta))
        if not store.set(key, encode(value)):
            return None
        return value
    finally:
        lock.release(key)


def decrement(
    store: KVStore,
    lock: DistributedLock,
    key: str,
    delta: int = 1,
    *,
    encode: Callable[[Any], bytes],
    decode: Callable[[bytes], Any],
) -> int | None:
    """Subtract delta from the integer at key. See ``increment``."""
    return increment(store, lock, key, -delta, encode=encode, decode=decode)
