"""Bounded per-token price history built from cycle ticks."""

import threading
from collections import deque
from typing import Deque, Dict, List, Tuple


class PriceHistory:
    """Stores (timestamp, price, volume) ticks per token, newest last."""

    def __init__(self, max_bars: int = 200):
        self.max_bars = max_bars
        self._bars: Dict[str, Deque[Tuple[float, float, float]]] = {}
        self._lock = threading.Lock()

    def record(self, token_key: str, timestamp: float, price: float, volume: float = 0.0) -> None:
        """Append a tick unless one already exists for this timestamp."""
        if price <= 0:
            return
        with self._lock:
            bars = self._bars.setdefault(token_key, deque(maxlen=self.max_bars))
            if bars and bars[-1][0] >= timestamp:
                return
            bars.append((timestamp, price, volume))

    def series(self, token_key: str) -> Tuple[List[float], List[float], List[float]]:
        """
        Return (timestamps, prices, volumes) for a token, oldest first.
        """
        with self._lock:
            bars = list(self._bars.get(token_key, ()))
        return [b[0] for b in bars], [b[1] for b in bars], [b[2] for b in bars]

    def __len__(self) -> int:
        with self._lock:
            return len(self._bars)
