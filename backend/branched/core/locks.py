"""Per-session locks serialising structural mutations of a conversation tree."""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from branched.core.errors import ConflictError

logger = logging.getLogger(__name__)


class _SessionLock:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0  # holders plus waiters


class SessionLockRegistry:
    """Hands out one re-entrant lock per chat session id.

    Holding the lock of a session means no other insert, delete or read of
    that session's tree runs in this process at the same time. A lock only
    exists while someone holds or waits for it, so ids that are probed and
    rejected leave nothing behind.
    """

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout
        self._locks: dict[str, _SessionLock] = {}
        self._guard = threading.Lock()

    def _checkout(self, session_id: str) -> _SessionLock:
        with self._guard:
            entry = self._locks.get(session_id)
            if entry is None:
                entry = _SessionLock()
                self._locks[session_id] = entry
            entry.users += 1
            return entry

    def _checkin(self, session_id: str, entry: _SessionLock) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(session_id) is entry:
                del self._locks[session_id]

    @contextmanager
    def hold(self, session_id: str) -> Iterator[None]:
        """Hold the session lock, raising ConflictError if it cannot be acquired in time."""
        entry = self._checkout(session_id)
        if not entry.lock.acquire(timeout=self.timeout):
            self._checkin(session_id, entry)
            logger.warning(f"Timed out waiting for lock of session {session_id}")
            raise ConflictError()
        try:
            yield
        finally:
            entry.lock.release()
            self._checkin(session_id, entry)

    def size(self) -> int:
        """Number of sessions whose lock is currently held or awaited."""
        with self._guard:
            return len(self._locks)


_registry: SessionLockRegistry | None = None


def get_lock_registry() -> SessionLockRegistry:
    """Return the process-wide lock registry."""
    global _registry
    if _registry is None:
        from branched.config import get_settings

        _registry = SessionLockRegistry(timeout=get_settings().session_lock_timeout_seconds)
    return _registry
