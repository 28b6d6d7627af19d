"""Caches for per-cycle snapshots and per-token indicators."""

import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Dict, Optional, Any

from agent_engine.models import SignalSnapshot

logger = logging.getLogger(__name__)


class SnapshotCache:
    """Keeps the snapshots of the most recent cycles, keyed by cycle timestamp."""

    def __init__(self, max_entries: int = 4):
        """
        Initialize snapshot cache.

        Args:
            max_entries: Number of cycles retained
        """
        self.max_entries = max_entries
        self._entries: "OrderedDict[float, SignalSnapshot]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, cycle_time: float) -> Optional[SignalSnapshot]:
        with self._lock:
            return self._entries.get(cycle_time)

    def get_or_build(self, cycle_time: float, builder: Callable[[float], SignalSnapshot]) -> SignalSnapshot:
        """
        Return the cached snapshot for a cycle, building it at most once.

        Args:
            cycle_time: Cycle timestamp (cache key)
            builder: Called with cycle_time when no snapshot is cached

        Returns:
            The snapshot shared by every caller for this cycle
        """
        # Held across the build so concurrent callers never build the same cycle twice
        with self._lock:
            snapshot = self._entries.get(cycle_time)
            if snapshot is not None:
                logger.debug(f"Using cached snapshot for cycle {cycle_time}")
                return snapshot

            snapshot = builder(cycle_time)
            self._entries[cycle_time] = snapshot
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
            return snapshot

    def latest(self) -> Optional[SignalSnapshot]:
        with self._lock:
            if not self._entries:
                return None
            return next(reversed(self._entries.values()))


class IndicatorCache:
    """TTL cache of computed indicators per token."""

    def __init__(self, ttl_seconds: float = 45.0, clock: Callable[[], float] = time.time):
        """
        Initialize indicator cache.

        Args:
            ttl_seconds: Lifetime of a cached entry
            clock: Time source (seconds)
        """
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get_cached_indicators(self, token_key: str) -> Optional[Any]:
        """
        Get cached indicators for a token if still valid.

        Args:
            token_key: Token key ("<chain>:<address>")

        Returns:
            Cached indicators or None if expired/missing
        """
        with self._lock:
            entry = self._cache.get(token_key)
            if entry is None:
                return None

            if (self.clock() - entry["timestamp"]) < self.ttl_seconds:
                return entry["indicators"]

            # Cache expired, remove it
            del self._cache[token_key]
            return None

    def update_cache(self, token_key: str, indicators: Any) -> None:
        with self._lock:
            self._cache[token_key] = {"indicators": indicators, "timestamp": self.clock()}
