"""mergekv error types."""


class MergeKVError(Exception):
    """Base class for mergekv errors."""


class InvalidKeyError(MergeKVError, ValueError):
    """Raised when a key is not a non-empty string."""


class StoreError(MergeKVError):
    """Raised when a backend fails to carry out a primitive.

    The core never retries these: a version conflict is reported as
    ``False``, anything else surfaces here.
    """


class LockTimeout(MergeKVError):
    """Raised by the lock context managers when acquisition fails.

    Attributes:
        key: The key whose lock could not be taken.
    """

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Could not acquire lock for key {key!r}")
