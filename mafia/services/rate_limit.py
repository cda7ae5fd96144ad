import threading
import time
from collections import deque

from mafia.errors import RateLimitError


class RateLimiter:
    """Sliding-window limiter keyed by (identity, action).

    ``max_events`` of 0 disables limiting. Stale keys are dropped by
    ``evict_expired``, which the room sweeper calls on its schedule.
    """

    def __init__(self, max_events, window_sec, clock=time.monotonic):
        self.max_events = int(max_events)
        self.window_sec = float(window_sec)
        self._clock = clock
        self._hits = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config):
        return cls(config.get('RATE_LIMIT_MAX_EVENTS', 0), config.get('RATE_LIMIT_WINDOW_SEC', 10))

    def init_app(self, flask_app):
        flask_app.extensions['rate_limiter'] = self

    def hit(self, identity_id, action):
        if self.max_events <= 0:
            return
        key = (identity_id, action)
        now = self._clock()
        with self._lock:
            window = self._hits.setdefault(key, deque())
            while window and now - window[0] >= self.window_sec:
                window.popleft()
            if len(window) >= self.max_events:
                raise RateLimitError(f'Too many {action} events, slow down')
            window.append(now)

    def evict_expired(self):
        now = self._clock()
        evicted = 0
        with self._lock:
            for key in list(self._hits):
                window = self._hits[key]
                while window and now - window[0] >= self.window_sec:
                    window.popleft()
                if not window:
                    del self._hits[key]
                    evicted += 1
        return evicted

    def __len__(self):
        with self._lock:
            return len(self._hits)
