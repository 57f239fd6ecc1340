"""
Tests for per-policy lock registry.
"""
import threading

import pytest

from hestia.services.errors import ConcurrencyConflictError, FailureCode
from hestia.services.locking import PolicyLockRegistry


@pytest.fixture
def registry():
    return PolicyLockRegistry(timeout=0.05)


class TestPolicyLockRegistry:

    def test_hold_and_release(self, registry):
        with registry.hold("p1"):
            assert registry.is_held("p1")
        assert not registry.is_held("p1")

    def test_released_on_exception(self, registry):
        with pytest.raises(RuntimeError):
            with registry.hold("p1"):
                raise RuntimeError("boom")
        assert not registry.is_held("p1")

    def test_contention_times_out(self, registry):
        with registry.hold("p1"):
            with pytest.raises(ConcurrencyConflictError) as exc:
                with registry.hold("p1"):
                    pass
        assert exc.value.code == FailureCode.CONCURRENCY_CONFLICT
        assert exc.value.details == {"policy_id": "p1"}

    def test_different_policies_independent(self, registry):
        with registry.hold("p1"):
            with registry.hold("p2"):
                assert registry.is_held("p1") and registry.is_held("p2")

    def test_released_locks_are_evicted(self, registry):
        with registry.hold("p1"):
            with registry.hold("p2"):
                assert registry.tracked() == 2
            assert registry.tracked() == 1
        assert registry.tracked() == 0

    def test_timed_out_waiter_is_evicted(self, registry):
        with registry.hold("p1"):
            with pytest.raises(ConcurrencyConflictError):
                with registry.hold("p1"):
                    pass
            assert registry.is_held("p1")
        assert registry.tracked() == 0

    def test_entry_survives_while_a_thread_waits(self):
        registry = PolicyLockRegistry(timeout=2)
        acquired = threading.Event()

        def waiter():
            with registry.hold("p1"):
                acquired.set()

        with registry.hold("p1"):
            thread = threading.Thread(target=waiter)
            thread.start()
            thread.join(0.1)
            assert not acquired.is_set()
        thread.join(2)

        assert acquired.is_set()
        assert registry.tracked() == 0

    def test_second_thread_waits_then_proceeds(self):
        registry = PolicyLockRegistry(timeout=2)
        held = threading.Event()
        release = threading.Event()
        order = []

        def first():
            with registry.hold("p1"):
                order.append("first")
                held.set()
                release.wait(1)

        def second():
            held.wait(1)
            with registry.hold("p1"):
                order.append("second")

        t1 = threading.Thread(target=first)
        t2 = threading.Thread(target=second)
        t1.start()
        t2.start()
        held.wait(1)
        release.set()
        t1.join(2)
        t2.join(2)

        assert order == ["first", "second"]
