"""
TTL cache for derived analytics.
The engine itself is stateless; hosts that redraw often memoize results here,
keyed by a hash of the input snapshot. The store is an in-memory dict, or
Streamlit's session_state when the engine runs inside a Streamlit app.
"""

import time
import hashlib
import json
import logging
from dataclasses import asdict, is_dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300
SESSION_KEY = "_prep_analytics_cache"
BACKENDS = ("memory", "streamlit")

_MISS = object()


def _encode(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    return str(value)


class AnalyticsCache:
    """
    TTL cache for computed analytics results.
    ``backend`` is "memory" (default) or "streamlit".
    """

    def __init__(self, ttl_seconds: int = DEFAULT_TTL, backend: str = "memory",
                 clock: Callable[[], float] = time.time):
        if backend not in BACKENDS:
            raise ValueError(f"Unknown cache backend {backend!r}; expected one of {BACKENDS}")
        self.ttl = ttl_seconds
        self.backend = backend
        self._clock = clock
        self._memory: Dict[str, Dict[str, Any]] = {}

    def _store(self) -> dict:
        if self.backend == "streamlit":
            import streamlit as st
            if SESSION_KEY not in st.session_state:
                st.session_state[SESSION_KEY] = {}
            return st.session_state[SESSION_KEY]
        return self._memory

    @staticmethod
    def make_key(prefix: str, **kwargs) -> str:
        payload = json.dumps(kwargs, sort_keys=True, default=_encode)
        h = hashlib.md5(payload.encode()).hexdigest()[:12]
        return f"{prefix}:{h}"

    def _lookup(self, key: str) -> Any:
        store = self._store()
        entry = store.get(key)
        if entry is None:
            return _MISS
        if self._clock() - entry["ts"] > self.ttl:
            del store[key]
            logger.debug(f"Cache expired: {key}")
            return _MISS
        logger.debug(f"Cache hit: {key}")
        return entry["value"]

    def get(self, key: str) -> Optional[Any]:
        value = self._lookup(key)
        return None if value is _MISS else value

    def set(self, key: str, value: Any) -> None:
        self._store()[key] = {"value": value, "ts": self._clock()}
        logger.debug(f"Cache set: {key}")

    def invalidate(self, key: str) -> None:
        store = self._store()
        if key in store:
            del store[key]

    def invalidate_prefix(self, prefix: str) -> int:
        store = self._store()
        stale = [k for k in store if k.startswith(f"{prefix}:")]
        for k in stale:
            del store[k]
        return len(stale)

    def clear_all(self) -> None:
        self._store().clear()
        logger.info("Cache cleared")

    def cached(self, key: str, fn: Callable, *args, **kwargs) -> Any:
        """Get from cache or compute and store. A cached None counts as a hit."""
        result = self._lookup(key)
        if result is not _MISS:
            return result
        result = fn(*args, **kwargs)
        self.set(key, result)
        return result

    def stats(self) -> dict:
        store = self._store()
        now = self._clock()
        alive = sum(1 for v in store.values() if now - v["ts"] <= self.ttl)
        return {"total_keys": len(store), "alive_keys": alive, "ttl_seconds": self.ttl, "backend": self.backend}


def cache_from_settings(settings) -> AnalyticsCache:
    """Build a cache from ``AnalyticsSettings.cache``."""
    return AnalyticsCache(ttl_seconds=settings.cache.ttl_seconds, backend=settings.cache.backend)
