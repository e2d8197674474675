"""
Per-session mutual exclusion for capacity-affecting operations.

Every booking, cancellation, promotion, waitlist confirm/expire and
capacity change on one class session runs inside `session_locks.hold(id)`.
The in-process lock orders callers of this worker; the `SELECT ... FOR UPDATE`
issued on the session row inside the lock orders workers sharing a database.
"""
import asyncio
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator


class SessionLockRegistry:
    """asyncio.Lock per class session id, created lazily per event loop"""

    def __init__(self) -> None:
        self._locks_by_loop: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, weakref.WeakValueDictionary]" = (
            weakref.WeakKeyDictionary()
        )

    def get(self, session_id: int) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        locks = self._locks_by_loop.get(loop)
        if locks is None:
            locks = weakref.WeakValueDictionary()
            self._locks_by_loop[loop] = locks

        lock = locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            locks[session_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, session_id: int) -> AsyncIterator[None]:
        lock = self.get(session_id)
        async with lock:
            yield

    def reset(self) -> None:
        self._locks_by_loop = weakref.WeakKeyDictionary()


session_locks = SessionLockRegistry()
