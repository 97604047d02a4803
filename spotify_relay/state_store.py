"""
In-memory store for pending login states, between /auth/login and /auth/callback.
Each state is one-time use; TTL to avoid unbounded growth.
"""
import threading
import time
from dataclasses import dataclass

# TTL seconds for a pending login (user may take a while on the consent screen)
STATE_TTL = 600


@dataclass
class PendingState:
    created_at: float

    def expired(self, now: float, ttl: float) -> bool:
        return (now - self.created_at) > ttl


class StateStore:
    def __init__(self, ttl: float = STATE_TTL, clock=time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._pending: dict[str, PendingState] = {}
        self._lock = threading.Lock()

    def add(self, state: str) -> None:
        with self._lock:
            self._clean_expired()
            self._pending[state] = PendingState(created_at=self._clock())

    def consume(self, state: str) -> bool:
        """True if state was issued and not yet used or expired. Removes it either way."""
        with self._lock:
            pending = self._pending.pop(state, None)
            if pending is None:
                return False
            return not pending.expired(self._clock(), self.ttl)

    def __len__(self) -> int:
        return len(self._pending)

    def _clean_expired(self) -> None:
        now = self._clock()
        expired = [s for s, p in self._pending.items() if p.expired(now, self.ttl)]
        for s in expired:
            del self._pending[s]
