"""
Per-policy serialization.

Every transition on one policy runs under that policy's lock so guards
see a consistent snapshot across actors, investigation and contracts.
Different policies never contend.
"""
import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from ..config import POLICY_LOCK_TIMEOUT_SECONDS
from .errors import ConcurrencyConflictError

logger = logging.getLogger(__name__)


class PolicyLockRegistry:
    """
    Lazily creates one lock per policy ID.

    Each entry counts the threads holding or waiting on it and is dropped
    when the count returns to zero, so the registry only grows with the
    number of policies in flight.
    """

    def __init__(self, timeout: float = POLICY_LOCK_TIMEOUT_SECONDS):
        self.timeout = timeout
        # policy_id -> [lock, users]
        self._locks: Dict[str, List] = {}
        self._guard = threading.Lock()

    def _checkout(self, policy_id: str) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(policy_id)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[policy_id] = entry
            entry[1] += 1
            return entry[0]

    def _checkin(self, policy_id: str) -> None:
        with self._guard:
            entry = self._locks[policy_id]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[policy_id]

    @contextmanager
    def hold(self, policy_id: str, timeout: Optional[float] = None) -> Iterator[None]:
        """
        Hold the policy's lock for the duration of the block.

        Raises ConcurrencyConflictError when the lock is not acquired in time.
        """
        lock = self._checkout(policy_id)
        wait = self.timeout if timeout is None else timeout
        try:
            if not lock.acquire(timeout=wait):
                logger.warning(f"Timed out after {wait}s waiting for policy {policy_id}")
                raise ConcurrencyConflictError(
                    "Another operation on this policy is in progress; retry",
                    details={"policy_id": policy_id},
                )
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(policy_id)

    def is_held(self, policy_id: str) -> bool:
        with self._guard:
            entry = self._locks.get(policy_id)
            return entry is not None and entry[0].locked()

    def tracked(self) -> int:
        """Number of policies with a lock held or awaited."""
        with self._guard:
            return len(self._locks)


# Process-wide registry shared by every request
policy_locks = PolicyLockRegistry()
