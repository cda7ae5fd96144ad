import threading
from contextlib import contextmanager


class _Entry:
    __slots__ = ('lock', 'users')

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0


class RoomLockRegistry:
    """One re-entrant lock per room code.

    Every read-modify-write against a room or its game runs inside
    ``hold(code)``; holders must re-read state after acquiring. An entry lives
    only while some thread holds or waits on it, so unknown and dead codes
    leave nothing behind.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}

    @contextmanager
    def hold(self, code):
        code = (code or '').upper()
        with self._guard:
            entry = self._locks.get(code)
            if entry is None:
                entry = self._locks[code] = _Entry()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    self._locks.pop(code, None)

    def __len__(self):
        with self._guard:
            return len(self._locks)


room_locks = RoomLockRegistry()
