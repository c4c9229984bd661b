"""Expiry normalization.

Expiry values follow the memcached convention: ``0`` means never,
anything below ten years (in seconds) is relative to now, anything at
or above is an absolute Unix timestamp.
"""

import time

RELATIVE_THRESHOLD = 86400 * 3650


def to_absolute(expiry: float, now: float | None = None) -> float:
    """Convert an optionally relative expiry to an absolute timestamp."""
    if expiry != 0 and expiry < RELATIVE_THRESHOLD:
        if now is None:
            now = time.time()
        return now + expiry
    return expiry


def to_relative(expiry: float, now: float | None = None) -> float:
    """Convert an optionally absolute expiry to seconds from now.

    An absolute time in the past becomes ``1``, since backends read
    ``0`` as "never" and negative values as "already gone".
    """
    if expiry >= RELATIVE_THRESHOLD:
        if now is None:
            now = time.time()
        return max(expiry - now, 1)
    return expiry
