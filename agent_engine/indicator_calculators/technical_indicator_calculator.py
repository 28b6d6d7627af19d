"""Technical indicator calculations from price history."""

import logging
from typing import Optional, Sequence

import pandas as pd

from agent_engine.models import TechnicalIndicators

logger = logging.getLogger(__name__)


def wilder_rsi(close: pd.Series, period: int = 14) -> pd.Series:
    """
    Wilder-smoothed RSI series.

    Args:
        close: Close prices
        period: Lookback period

    Returns:
        RSI series aligned to close (50 where there is not enough data)
    """
    delta = close.diff()
    gain = delta.clip(lower=0)
    loss = -delta.clip(upper=0)
    avg_gain = gain.iloc[1:].ewm(alpha=1 / period, adjust=False, min_periods=period).mean()
    avg_loss = loss.iloc[1:].ewm(alpha=1 / period, adjust=False, min_periods=period).mean()

    rsi = 100 - 100 / (1 + avg_gain / avg_loss)
    rsi = rsi.where(avg_loss != 0, 100.0)
    # Flat history has neither gains nor losses
    rsi = rsi.where((avg_loss != 0) | (avg_gain != 0), 50.0)
    rsi = rsi.where(avg_loss.notna(), 50.0)
    return rsi.reindex(close.index).fillna(50.0)


def wilder_atr(high: pd.Series, low: pd.Series, close: pd.Series, period: int = 14) -> pd.Series:
    """Wilder-smoothed Average True Range (0 where there is not enough data)."""
    prev_close = close.shift()
    true_range = pd.concat(
        [high - low, (high - prev_close).abs(), (low - prev_close).abs()], axis=1
    ).max(axis=1)
    atr = true_range.iloc[1:].ewm(alpha=1 / period, adjust=False, min_periods=period).mean()
    return atr.reindex(close.index).fillna(0.0)


def detect_volume_trend(volume: pd.Series) -> str:
    """Compare the last five volumes with the five before them (+/-30% bands)."""
    if len(volume) < 6:
        return "stable"
    recent = volume.iloc[-5:]
    older = volume.iloc[-10:-5]
    if len(older) < 3:
        return "stable"

    older_avg = older.mean()
    if older_avg == 0:
        return "stable"
    change = (recent.mean() - older_avg) / older_avg

    if change > 0.3:
        return "increasing"
    if change < -0.3:
        return "decreasing"
    return "stable"


def detect_rsi_divergence(close: pd.Series, rsi: pd.Series, window: int = 10) -> str:
    """
    Detect price/RSI divergence between the last two windows.

    Bullish: price makes a lower low while RSI makes a higher low.
    Bearish: price makes a higher high while RSI makes a lower high.
    """
    if len(close) < window * 2:
        return "none"

    recent = close.iloc[-window:]
    prior = close.iloc[-2 * window:-window]

    recent_low_idx = recent.idxmin()
    prior_low_idx = prior.idxmin()
    if recent[recent_low_idx] < prior[prior_low_idx] and rsi[recent_low_idx] > rsi[prior_low_idx]:
        return "bullish"

    recent_high_idx = recent.idxmax()
    prior_high_idx = prior.idxmax()
    if recent[recent_high_idx] > prior[prior_high_idx] and rsi[recent_high_idx] < rsi[prior_high_idx]:
        return "bearish"

    return "none"


class TechnicalIndicatorCalculator:
    """Calculates technical indicators from a token's price history."""

    def __init__(self, min_bars: int = 10):
        """
        Initialize technical indicator calculator.

        Args:
            min_bars: Minimum closes required before indicators are computed
        """
        self.min_bars = min_bars

    def compute_indicators(
        self,
        closes: Sequence[float],
        volumes: Optional[Sequence[float]] = None,
        highs: Optional[Sequence[float]] = None,
        lows: Optional[Sequence[float]] = None,
    ) -> TechnicalIndicators:
        """
        Compute technical indicators from price history.

        Args:
            closes: Close prices, oldest first
            volumes: Optional volumes aligned with closes
            highs: Optional highs (defaults to closes for tick bars)
            lows: Optional lows (defaults to closes for tick bars)

        Returns:
            TechnicalIndicators (neutral defaults when history is too short)
        """
        if len(closes) < self.min_bars:
            return TechnicalIndicators()

        df = pd.DataFrame({
            "close": [float(c) for c in closes],
            "high": [float(h) for h in (highs if highs is not None else closes)],
            "low": [float(l) for l in (lows if lows is not None else closes)],
            "volume": [float(v) for v in (volumes if volumes is not None else [0.0] * len(closes))],
        })
        close = df["close"]
        current_price = float(close.iloc[-1])

        # Moving averages (EMA seeded with the first price)
        ema_9 = close.ewm(span=9, adjust=False).mean()
        ema_21 = close.ewm(span=21, adjust=False).mean()
        ema_50 = close.ewm(span=min(50, len(close)), adjust=False).mean()
        e9, e21, e50 = float(ema_9.iloc[-1]), float(ema_21.iloc[-1]), float(ema_50.iloc[-1])

        rsi_series = wilder_rsi(close, 14)
        rsi_14 = float(rsi_series.iloc[-1])

        # MACD 12/26/9
        macd_line = close.ewm(span=12, adjust=False).mean() - close.ewm(span=26, adjust=False).mean()
        macd_signal = macd_line.ewm(span=9, adjust=False).mean()
        macd = float(macd_line.iloc[-1])
        signal = float(macd_signal.iloc[-1])
        histogram = macd - signal

        atr_14 = float(wilder_atr(df["high"], df["low"], close, 14).iloc[-1])
        atr_percent = atr_14 / current_price * 100 if current_price > 0 else 0.0

        # Bollinger bands 20/2
        bb_upper = bb_lower = bandwidth = 0.0
        if len(close) >= 20:
            middle = close.rolling(20).mean().iloc[-1]
            std = close.rolling(20).std(ddof=0).iloc[-1]
            bb_upper = float(middle + 2 * std)
            bb_lower = float(middle - 2 * std)
            bandwidth = float((bb_upper - bb_lower) / middle * 100) if middle > 0 else 0.0

        if current_price > e9 > e21 > e50:
            alignment = "bullish"
        elif current_price < e9 < e21 < e50:
            alignment = "bearish"
        else:
            alignment = "mixed"

        crossover = "none"
        if len(close) >= 3:
            prev_9, prev_21 = ema_9.iloc[-3], ema_21.iloc[-3]
            if prev_9 <= prev_21 and e9 > e21:
                crossover = "golden_cross"
            elif prev_9 >= prev_21 and e9 < e21:
                crossover = "death_cross"

        divergence = detect_rsi_divergence(close, rsi_series)

        price_vs_ema_9 = (current_price - e9) / e9 * 100 if e9 > 0 else 0.0
        price_vs_ema_21 = (current_price - e21) / e21 * 100 if e21 > 0 else 0.0
        price_vs_ema_50 = (current_price - e50) / e50 * 100 if e50 > 0 else 0.0

        is_overextended = price_vs_ema_21 > 15 or rsi_14 > 80 or (price_vs_ema_9 > 8 and rsi_14 > 70)
        is_pullback = (
            alignment == "bullish"
            and 25 < rsi_14 < 45
            and -5 < price_vs_ema_21 < 3
            and current_price > e50
        )

        # Histogram relative to price keeps the score scale-free across token prices
        histogram_pct = histogram / current_price * 100 if current_price > 0 else 0.0
        trend_strength = 50.0
        if alignment == "bullish":
            trend_strength += 15
        elif alignment == "bearish":
            trend_strength -= 15
        if histogram_pct > 0:
            trend_strength += min(10.0, histogram_pct * 10)
        else:
            trend_strength += max(-10.0, histogram_pct * 10)
        if rsi_14 > 55:
            trend_strength += min(10.0, (rsi_14 - 55) / 2)
        elif rsi_14 < 45:
            trend_strength -= min(10.0, (45 - rsi_14) / 2)
        if crossover == "golden_cross":
            trend_strength += 8
        elif crossover == "death_cross":
            trend_strength -= 8
        trend_strength = max(0.0, min(100.0, trend_strength))

        return TechnicalIndicators(
            rsi_14=round(rsi_14, 1),
            ema_9=e9,
            ema_21=e21,
            ema_50=e50,
            macd_line=macd,
            macd_signal=signal,
            macd_histogram=histogram,
            atr_14=atr_14,
            atr_percent=round(atr_percent, 2),
            bollinger_upper=bb_upper,
            bollinger_lower=bb_lower,
            bollinger_bandwidth=round(bandwidth, 2),
            ema_trend_alignment=alignment,
            ema_crossover=crossover,
            rsi_divergence=divergence,
            price_vs_ema_9=round(price_vs_ema_9, 2),
            price_vs_ema_21=round(price_vs_ema_21, 2),
            price_vs_ema_50=round(price_vs_ema_50, 2),
            is_overextended=is_overextended,
            is_pullback=is_pullback,
            trend_strength=round(trend_strength),
            volume_trend=detect_volume_trend(df["volume"]),
        )
