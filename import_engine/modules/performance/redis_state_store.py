"""
Redis-backed circuit state store, for breaker state shared across processes.
"""
import json
import math
from typing import Optional

import redis

from import_engine.modules.logger import warning

from .models import CircuitState
from .state_store import CircuitStateStore


class RedisCircuitStateStore(CircuitStateStore):
    """Stores CircuitState as JSON with SETEX; Redis expires the key"""

    def __init__(self, client: Optional[redis.Redis] = None, url: Optional[str] = None):
        """
        Args:
            client: Existing Redis client
            url: Redis URL used when no client is given
        """
        if client is None:
            if not url:
                raise ValueError("RedisCircuitStateStore needs a client or a url")
            client = redis.Redis.from_url(url, decode_responses=True)
        self.client = client

    def get(self, key: str) -> Optional[CircuitState]:
        raw = self.client.get(key)
        if raw is None:
            return None
        try:
            return CircuitState.from_dict(json.loads(raw))
        except (TypeError, ValueError) as e:
            warning(f"[CircuitBreaker] Discarding unreadable state for {key}: {e}")
            return None

    def put(self, key: str, state: CircuitState, ttl_seconds: float) -> None:
        self.client.setex(key, max(1, int(math.ceil(ttl_seconds))), json.dumps(state.to_dict()))

    def delete(self, key: str) -> None:
        self.client.delete(key)
