"""
Unit tests for claim serialization without Redis.
"""

import threading
import time

import pytest

from redpacket import database
from redpacket.database import claim_lock


class TestLocalClaimLock:
    """Test the process-local fallback lock."""

    def test_entry_dropped_after_release(self, db):
        with claim_lock("env-1"):
            assert "env-1" in database._local_locks
        assert "env-1" not in database._local_locks

    def test_entry_dropped_when_body_raises(self, db):
        with pytest.raises(RuntimeError):
            with claim_lock("env-1"):
                raise RuntimeError("boom")
        assert database._local_locks == {}

    def test_many_envelopes_leave_nothing_behind(self, db):
        for i in range(50):
            with claim_lock(f"env-{i}"):
                pass
        assert database._local_locks == {}

    def test_waiter_keeps_entry_and_is_serialized(self, db):
        order = []
        entered = threading.Event()

        def holder():
            with claim_lock("env-1"):
                entered.set()
                time.sleep(0.05)
                order.append("holder")

        def waiter():
            entered.wait()
            with claim_lock("env-1"):
                order.append("waiter")

        threads = [threading.Thread(target=holder), threading.Thread(target=waiter)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert order == ["holder", "waiter"]
        assert database._local_locks == {}

    def test_timeout_releases_reference(self, db, monkeypatch):
        monkeypatch.setattr(database, "CLAIM_LOCK_WAIT", 0.01)
        held = threading.Event()
        done = threading.Event()

        def holder():
            with claim_lock("env-1"):
                held.set()
                done.wait(1)

        thread = threading.Thread(target=holder)
        thread.start()
        held.wait(1)
        try:
            with pytest.raises(TimeoutError):
                with claim_lock("env-1"):
                    pass
            assert database._local_locks["env-1"].users == 1
        finally:
            done.set()
            thread.join()

        assert database._local_locks == {}
