"""Tests for the optimistic and lock-based merge engines."""

import logging
import threading

import pytest

from mergekv import NO_CHANGE, DistributedLock, LockPolicy, merge_via_cas, merge_via_lock
from mergekv.kv.memory import Memory


def append(suffix: bytes):
    def fn(current):
        return (current or b"") + suffix

    return fn


class AlwaysLoses(Memory):
    """Memory where another writer sneaks in before every add and cas."""

    def add(self, key, value, expiry=0):
        self.set(key, b"theirs")
        return super().add(key, value, expiry)

    def cas(self, token, key, value, expiry=0):
        self.set(key, b"theirs")
        return super().cas(token, key, value, expiry)


class FailingDelete(Memory):
    def delete(self, key, delay=0):
        return False


class TestMergeViaCas:
    def test_creates_missing_key(self):
        m = Memory()
        assert merge_via_cas(m, "k", append(b"a"))
        assert m.get("k").value == b"a"

    def test_updates_existing_key(self):
        m = Memory()
        m.set("k", b"a")
        assert merge_via_cas(m, "k", append(b"b"))
        assert m.get("k").value == b"ab"

    def test_fn_sees_none_for_missing(self):
        seen = []
        merge_via_cas(Memory(), "k", lambda cur: seen.append(cur) or b"x")
        assert seen == [None]

    def test_no_change_on_missing_key(self):
        m = Memory()
        assert merge_via_cas(m, "k", lambda cur: NO_CHANGE)
        assert m.get("k") is None

    def test_no_change_keeps_value(self):
        m = Memory()
        m.set("k", b"v")
        token = m.get("k").token
        assert merge_via_cas(m, "k", lambda cur: NO_CHANGE)
        assert m.get("k").token == token

    def test_expiry_is_applied(self):
        clock = {"now": 1_700_000_000.0}
        m = Memory(clock=lambda: clock["now"])
        merge_via_cas(m, "k", append(b"a"), expiry=10)
        clock["now"] += 10
        assert m.get("k") is None

    def test_exhausts_single_attempt(self):
        m = AlwaysLoses()
        m.set("k", b"mine")
        assert not merge_via_cas(m, "k", append(b"!"), attempts=1)
        assert m.get("k").value == b"theirs"

    def test_exhausts_on_create_race(self):
        m = AlwaysLoses()
        assert not merge_via_cas(m, "k", append(b"!"), attempts=1)
        assert m.get("k").value == b"theirs"

    def test_retries_up_to_attempts(self):
        m = AlwaysLoses()
        m.set("k", b"v")
        calls = []

        def fn(cur):
            calls.append(cur)
            return b"mine"

        assert not merge_via_cas(m, "k", fn, attempts=3)
        assert len(calls) == 3

    def test_retry_reads_fresh_value(self):
        m = Memory()
        m.set("k", b"1")
        calls = []

        def fn(cur):
            calls.append(cur)
            if len(calls) == 1:
                m.set("k", b"2")
            return cur + b"+"

        assert merge_via_cas(m, "k", fn)
        assert calls == [b"1", b"2"]
        assert m.get("k").value == b"2+"

    def test_invalid_attempts(self):
        with pytest.raises(ValueError, match="attempts"):
            merge_via_cas(Memory(), "k", append(b"a"), attempts=0)

    def test_conflicts_are_logged(self, caplog):
        m = AlwaysLoses()
        m.set("k", b"v")
        with caplog.at_level(logging.DEBUG, logger="mergekv.merge"):
            merge_via_cas(m, "k", append(b"!"), attempts=2)
        assert "changed concurrently" in caplog.text
        assert "failed after 2 attempts" in caplog.text

    def test_concurrent_commutative_merges(self):
        m = Memory()
        m.set("n", b"0")
        results = []

        def bump(cur):
            return str(int(cur) + 1).encode()

        def worker():
            for _ in range(25):
                results.append(merge_via_cas(m, "n", bump, attempts=1000))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert all(results)
        assert m.get("n").value == b"200"


class TestMergeViaLock:
    def test_creates_missing_key(self):
        m = Memory()
        assert merge_via_lock(m, DistributedLock(m), "k", append(b"a"))
        assert m.get("k").value == b"a"

    def test_updates_and_releases(self):
        m = Memory()
        m.set("k", b"a")
        assert merge_via_lock(m, DistributedLock(m), "k", append(b"b"))
        assert m.get("k").value == b"ab"
        assert "k:lock" not in m

    def test_no_change(self):
        m = Memory()
        assert merge_via_lock(m, DistributedLock(m), "k", lambda cur: NO_CHANGE)
        assert m.get("k") is None
        assert "k:lock" not in m

    def test_fails_when_lock_busy(self):
        m = Memory()
        m.set("k", b"a")
        lock = DistributedLock(m, LockPolicy(max_wait=0))
        assert lock.acquire("k")
        assert not merge_via_lock(m, lock, "k", append(b"b"))
        assert m.get("k").value == b"a"

    def test_releases_when_fn_raises(self):
        m = Memory()

        def boom(cur):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            merge_via_lock(m, DistributedLock(m), "k", boom)
        assert "k:lock" not in m

    def test_release_failure_does_not_fail_merge(self, caplog):
        m = FailingDelete()
        with caplog.at_level(logging.ERROR, logger="mergekv.lock"):
            assert merge_via_lock(m, DistributedLock(m), "k", append(b"a"))
        assert m.get("k").value == b"a"
        assert "Could not release lock" in caplog.text

    def test_concurrent_merges_serialize(self):
        m = Memory()
        m.set("n", b"0")
        lock = DistributedLock(m, LockPolicy(max_wait=None))
        results = []

        def bump(cur):
            return str(int(cur) + 1).encode()

        def worker():
            for _ in range(10):
                results.append(merge_via_lock(m, lock, "n", bump))

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert all(results)
        assert m.get("n").value == b"40"
