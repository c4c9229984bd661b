"""Advisory lock built from conditional create and delete.

A lock on ``key`` is the presence of the entry ``key + ":lock"``.
``acquire`` creates it with ``add`` and, under contention, retries
with exponential backoff; ``release`` deletes it. Nothing stops a
caller that skips the lock from writing ``key`` directly.
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

from .errors import LockTimeout
from .kv.base import KVStore, check_key

LOCK_TIMEOUT = 60

# Floor for the measured round trip, matching microsecond resolution.
MIN_RTT = 1e-6

POLICY_WAIT: Any = object()
"""Default for ``wait``: use ``LockPolicy.max_wait``."""


@dataclass(frozen=True)
class LockPolicy:
    """Tuning for ``DistributedLock``.

    Attributes:
        max_backoff: The backoff keeps doubling while it is at or below
            this many seconds.
        max_wait: Default bound, in seconds, on a single ``acquire``.
            ``None`` waits until the lock is free.
        bind_expiry: When True the lock entry is written with the
            lock timeout as its store-level expiry, so a holder that
            dies without releasing only blocks others for that long.
            When False the entry never expires and only ``release``
            (or the backend evicting it) frees the lock.
        suffix: Appended to a key to form its lock entry key.
    """

    max_backoff: float = 1.0
    max_wait: float | None = 60.0
    bind_expiry: bool = True
    suffix: str = ":lock"


class DistributedLock:
    """Mutex over a shared ``KVStore``.

    Holds no state of its own; every call goes to the store. There is
    no fairness between waiters.

    Args:
        store: The store holding lock entries.
        policy: Backoff and expiry settings.
        logger: Logger for contention and release failures.
    """

    def __init__(
        self,
        store: KVStore,
        policy: LockPolicy | None = None,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self.store = store
        self.policy = policy if policy is not None else LockPolicy()
        self.log = logger or logging.getLogger(__name__)

    def lock_key(self, key: str) -> str:
        return check_key(key) + self.policy.suffix

    def acquire(
        self,
        key: str,
        timeout: float = LOCK_TIMEOUT,
        *,
        wait: float | None = POLICY_WAIT,
        cancel: threading.Event | None = None,
    ) -> bool:
        """Take the lock on key.

        The first attempt never sleeps. After a failed attempt the
        backoff starts at twice that attempt's round trip and doubles
        from the third retry on, until it passes ``max_backoff``.

        Args:
            key: The key to lock.
            timeout: Stored as the lock payload and, with
                ``bind_expiry``, used as the entry's expiry.
            wait: Seconds to keep trying. ``0`` makes a single
                attempt; ``None`` retries forever.
            cancel: Setting this event abandons the wait.

        Returns:
            True if the lock is now held, False on timeout or cancel.
        """
        lock_key = self.lock_key(key)
        if wait is POLICY_WAIT:
            wait = self.policy.max_wait
        expiry = timeout if self.policy.bind_expiry else 0
        payload = str(timeout).encode()

        start = time.monotonic()
        if self.store.add(lock_key, payload, expiry):
            return True

        rtt = max(time.monotonic() - start, MIN_RTT)
        sleep = 2 * rtt
        deadline = None if wait is None else start + wait
        self.log.debug("Lock on %r is held, backing off from %.6fs", key, sleep)

        attempts = 0
        while True:
            attempts += 1
            if attempts >= 3 and sleep <= self.policy.max_backoff:
                sleep *= 2
            pause = sleep
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self.log.warning(
                        "Gave up on lock for %r after %d attempts", key, attempts
                    )
                    return False
                pause = min(sleep, remaining)
            if self._pause(pause, cancel):
                self.log.warning("Wait for lock on %r was cancelled", key)
                return False
            if self.store.add(lock_key, payload, expiry):
                self.log.debug("Acquired lock on %r after %d retries", key, attempts)
                return True

    def release(self, key: str) -> bool:
        """Drop the lock on key. True if the entry is gone.

        A failure leaves the entry in place, blocking every later
        ``acquire`` until it expires or is cleared by hand.
        """
        if self.store.delete(self.lock_key(key), 0):
            return True
        self.log.error("Could not release lock for key %r", key)
        return False

    @contextmanager
    def held(
        self,
        key: str,
        timeout: float = LOCK_TIMEOUT,
        *,
        wait: float | None = POLICY_WAIT,
        cancel: threading.Event | None = None,
    ) -> Iterator[None]:
        """Hold the lock on key for the duration of a ``with`` block.

        Raises:
            LockTimeout: If the lock could not be acquired.
        """
        if not self.acquire(key, timeout, wait=wait, cancel=cancel):
            raise LockTimeout(key)
        try:
            yield
        finally:
            self.release(key)

    @staticmethod
    def _pause(seconds: float, cancel: threading.Event | None) -> bool:
        """Sleep, returning True if cancelled."""
        if cancel is None:
            time.sleep(seconds)
            return False
        return cancel.wait(seconds)
