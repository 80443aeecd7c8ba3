"""
Stores for per-session circuit breaker state.
State is written with a time-to-live so it does not outlive its relevance.
"""
import threading
import time
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, Callable, Tuple

from .models import CircuitState


class CircuitStateStore(ABC):
    """Keyed storage for CircuitState with expiry"""

    @abstractmethod
    def get(self, key: str) -> Optional[CircuitState]:
        """Return the stored state, or None when missing or expired"""
        pass

    @abstractmethod
    def put(self, key: str, state: CircuitState, ttl_seconds: float) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass


class InMemoryCircuitStateStore(CircuitStateStore):
    """
    Process-local store guarded by a lock.
    The lock protects the map, not a session's read-modify-write cycle:
    one writer per session id is assumed.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[Dict[str, Any], float]] = {}

    def get(self, key: str) -> Optional[CircuitState]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            data, expires_at = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return CircuitState.from_dict(data)

    def put(self, key: str, state: CircuitState, ttl_seconds: float) -> None:
        with self._lock:
            self._entries[key] = (state.to_dict(), self._clock() + ttl_seconds)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
