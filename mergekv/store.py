"""Cache factory function."""

import logging
import pickle
from typing import Any, Callable, Literal

from .cache import Cache, Strategy
from .kv.memory import Memory
from .lock import LockPolicy


def cache(
    kind: Literal["memory", "disk"] = "memory",
    *,
    path: str | None = None,
    size_limit: int | None = None,
    strategy: Strategy = "auto",
    encoder: Callable[[Any], bytes] = pickle.dumps,
    decoder: Callable[[bytes], Any] = pickle.loads,
    lock_policy: LockPolicy | None = None,
    logger: logging.Logger | None = None,
) -> Cache:
    """Create a Cache with sensible defaults.

    Args:
        kind: ``"memory"`` (default) or ``"disk"``.
        path: Required when ``kind="disk"``. Directory path for
            the disk backend; processes sharing it share the cache.
        size_limit: Disk eviction threshold in bytes (disk only).
        strategy: Merge protocol, ``"auto"``, ``"cas"`` or ``"lock"``.
        encoder: Value encoder (default ``pickle.dumps``).
        decoder: Value decoder (default ``pickle.loads``).
        lock_policy: Lock backoff and expiry settings.
        logger: Logger for the cache and its lock.

    Returns:
        A ``Cache`` instance.
    """
    # Build backend
    if kind == "memory":
        if size_limit is not None:
            raise ValueError("size_limit is only valid for kind='disk'")
        backend = Memory()
    elif kind == "disk":
        if path is None:
            raise ValueError("path is required when kind='disk'")
        from .kv.disk import ONE_GB, Disk

        backend = Disk(path, size_limit=ONE_GB if size_limit is None else size_limit)
    else:
        raise ValueError(f"Unknown kind: {kind!r}")

    return Cache(
        backend,
        encoder=encoder,
        decoder=decoder,
        strategy=strategy,
        lock_policy=lock_policy,
        logger=logger,
    )
