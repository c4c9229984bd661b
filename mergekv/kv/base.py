"""Abstract cache store interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from ..errors import InvalidKeyError


@dataclass(frozen=True)
class Entry:
    """A stored value plus the CAS token it was read at.

    ``token`` is opaque to callers and only meaningful to the backend
    that produced it, for the same key.
    """

    value: bytes
    token: Any = None


def check_key(key: Any) -> str:
    """Reject anything that is not a non-empty string."""
    if not isinstance(key, str) or not key:
        raise InvalidKeyError(f"Keys must be non-empty strings, got {key!r}")
    return key


class KVStore(ABC):
    """Cache store operating on bytes only.

    Backends implement ``get``, ``set``, ``delete`` and, when they can,
    ``cas``. Backends that leave ``cas`` alone report ``supports_cas``
    as False and are merged through the key lock instead. ``add``,
    ``replace`` and ``get_many`` are emulated on top of those and may
    be overridden with native versions.

    Expiry arguments follow ``mergekv.expiry``: ``0`` never expires,
    small values are relative seconds, large ones absolute timestamps.
    """

    @property
    def supports_cas(self) -> bool:
        """True when the backend overrides ``cas``."""
        return type(self).cas is not KVStore.cas

    @abstractmethod
    def get(self, key: str) -> Entry | None:
        """Get the entry for key, or None if nothing is stored."""

    @abstractmethod
    def set(self, key: str, value: bytes, expiry: float = 0) -> bool:
        """Unconditionally store value under key."""

    def cas(self, token: Any, key: str, value: bytes, expiry: float = 0) -> bool:
        """Store value only if key is still at the version ``token`` names.

        Returns False, without raising, on a version mismatch or when
        the key no longer exists. Backends without versioning leave
        this unimplemented.
        """
        raise NotImplementedError(f"{type(self).__name__} does not support cas")

    @abstractmethod
    def delete(self, key: str, delay: float = 0) -> bool:
        """Delete key. True if it was deleted or was already absent.

        ``delay`` is a hint for backends with deferred deletion.
        """

    # -- Emulated operations --

    def add(self, key: str, value: bytes, expiry: float = 0) -> bool:
        """Store value only if key is absent.

        The emulation is a check followed by a set, so two callers can
        both win a close race. Backends with an atomic create should
        override it.
        """
        if self.get(key) is None:
            return self.set(key, value, expiry)
        return False

    def replace(self, key: str, value: bytes, expiry: float = 0) -> bool:
        """Store value only if key is present."""
        if self.get(key) is not None:
            return self.set(key, value, expiry)
        return False

    def get_many(self, *keys: str) -> dict[str, bytes]:
        """Get multiple keys, returning only keys that exist."""
        result: dict[str, bytes] = {}
        for key in keys:
            entry = self.get(key)
            if entry is not None:
                result[key] = entry.value
        return result

    def delete_expired(self, before: float | None = None) -> int:
        """Purge entries expiring before ``before`` (default: now).

        Returns the number of entries removed. Backends that expire
        lazily, or not at all, may leave this as a no-op.
        """
        return 0
