"""Price-history derived metrics used by the signal builder."""

import logging
import statistics
from typing import Sequence

logger = logging.getLogger(__name__)


def _pct_changes(prices: Sequence[float]) -> list:
    return [
        (prices[i] - prices[i - 1]) / prices[i - 1] * 100
        for i in range(1, len(prices))
        if prices[i - 1] > 0
    ]


def compute_volatility(prices: Sequence[float]) -> float:
    """
    Volatility score from the standard deviation of recent absolute returns.

    Args:
        prices: Price history, oldest first

    Returns:
        Score 0-100 (50 when there is too little history)
    """
    recent = list(prices[-10:])
    if len(recent) < 4:
        return 50.0

    returns = [abs(change) for change in _pct_changes(recent)]
    if not returns:
        return 50.0

    std_dev = statistics.pstdev(returns)
    if std_dev > 20:
        return 100.0
    if std_dev > 12:
        return 85.0
    if std_dev > 7:
        return 70.0
    if std_dev > 4:
        return 55.0
    if std_dev > 2:
        return 40.0
    if std_dev > 1:
        return 25.0
    return 10.0


def momentum_acceleration(prices: Sequence[float]) -> float:
    """Average of the last two tick returns minus the average of the earlier ones."""
    recent = list(prices[-5:])
    if len(recent) < 3:
        return 0.0

    changes = _pct_changes(recent)
    if len(changes) < 2:
        return 0.0

    latest = changes[-2:]
    older = changes[:-2]
    avg_latest = sum(latest) / len(latest)
    avg_older = sum(older) / max(1, len(older))
    return avg_latest - avg_older


def short_term_momentum(prices: Sequence[float], timestamps: Sequence[float], now: float,
                        window_seconds: float = 300.0) -> float:
    """
    Momentum score over the last few minutes of ticks.

    Args:
        prices: Price history, oldest first
        timestamps: Epoch seconds aligned with prices
        now: Reference time
        window_seconds: Lookback window

    Returns:
        Score 0-100 centred on 50
    """
    if len(prices) < 3:
        return 50.0

    cutoff = now - window_seconds
    window = [p for p, ts in zip(prices, timestamps) if ts >= cutoff]
    if len(window) < 2:
        window = list(prices[-3:])

    if window[0] <= 0:
        return 50.0
    change = (window[-1] - window[0]) / window[0] * 100
    return max(0.0, min(100.0, 50 + change * 3))


def detect_volume_breakout(volumes: Sequence[float], current_volume: float) -> bool:
    """True when the current volume is 2.5x the recent non-zero average."""
    if len(volumes) < 5:
        return False

    recent = [v for v in volumes[-10:] if v > 0]
    if len(recent) < 3:
        return False

    return current_volume > (sum(recent) / len(recent)) * 2.5
