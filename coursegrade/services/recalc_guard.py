"""
Recalculation Recursion Guard

Per-lock-name re-entrancy guard. While a lecture (or exam) recalculation is
running, any nested attempt to start the same recalculation is skipped, so
the recalculation's own weight writes cannot re-trigger it.

States per lock name: UNLOCKED -> (acquire) -> LOCKED -> (release) -> UNLOCKED.
An acquire attempt while LOCKED is a no-op; the caller's function is not run.

One guard instance per engine / request. Not a distributed lock.
"""
import logging
from typing import Any, Awaitable, Callable, Set

logger = logging.getLogger(__name__)

LECTURES = "lectures"
EXAMS = "exams"

LOCK_NAMES = frozenset({LECTURES, EXAMS})


class RecalcGuard:
    """Injectable re-entrancy guard for weight recalculations."""

    def __init__(self):
        self._held: Set[str] = set()

    @staticmethod
    def _check_name(lock_name: str) -> None:
        if lock_name not in LOCK_NAMES:
            raise ValueError(f"Unknown recalculation lock: {lock_name!r}")

    def is_locked(self, lock_name: str) -> bool:
        self._check_name(lock_name)
        return lock_name in self._held

    def with_lock(self, lock_name: str, fn: Callable[[], Any]) -> bool:
        """
        Run fn while holding lock_name.

        Returns True if fn ran, False if the lock was already held.
        """
        self._check_name(lock_name)
        if lock_name in self._held:
            logger.debug("Recalculation lock %r already held; skipping nested call", lock_name)
            return False

        self._held.add(lock_name)
        try:
            fn()
        finally:
            self._held.discard(lock_name)
        return True

    async def run(self, lock_name: str, fn: Callable[[], Awaitable[Any]]) -> bool:
        """Async twin of with_lock: fn is a coroutine function."""
        self._check_name(lock_name)
        if lock_name in self._held:
            logger.debug("Recalculation lock %r already held; skipping nested call", lock_name)
            return False

        self._held.add(lock_name)
        try:
            await fn()
        finally:
            self._held.discard(lock_name)
        return True
