"""mergekv: atomic read-modify-write over pluggable key-value caches."""

from .cache import Cache, Hit, MergeFn
from .errors import InvalidKeyError, LockTimeout, MergeKVError, StoreError
from .expiry import RELATIVE_THRESHOLD, to_absolute, to_relative
from .kv.base import Entry, KVStore
from .lock import DistributedLock, LockPolicy
from .merge import NO_CHANGE, BytesMergeFn, merge_via_cas, merge_via_lock
from .store import cache

__all__ = [
    "BytesMergeFn",
    "Cache",
    "DistributedLock",
    "Entry",
    "Hit",
    "InvalidKeyError",
    "KVStore",
    "LockPolicy",
    "LockTimeout",
    "MergeFn",
    "MergeKVError",
    "NO_CHANGE",
    "RELATIVE_THRESHOLD",
    "StoreError",
    "cache",
    "merge_via_cas",
    "merge_via_lock",
    "to_absolute",
    "to_relative",
]
