"""Scoring functions that turn raw feed values into 0-100 signal scores."""

import logging
from typing import Iterable, Optional, Tuple

from agent_engine.feed_data import NewsSentiment, SmartMoneyFlow, SocialSignal
from agent_engine.models import TokenSignals

logger = logging.getLogger(__name__)


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def momentum_score(change_1h: float, change_24h: float, acceleration: float, short_term: float) -> float:
    """
    Momentum score from hourly/daily change, acceleration and short-term momentum.

    Args:
        change_1h: 1h price change percent
        change_24h: 24h price change percent
        acceleration: Momentum acceleration (percent points)
        short_term: Short-term momentum score (0-100)

    Returns:
        Score 0-100
    """
    score = 50.0

    if change_1h > 30:
        score += 25
    elif change_1h > 15:
        score += 20
    elif change_1h > 8:
        score += 15
    elif change_1h > 3:
        score += 10
    elif change_1h > 0:
        score += 5
    elif change_1h > -3:
        score -= 3
    elif change_1h > -8:
        score -= 10
    elif change_1h > -15:
        score -= 20
    else:
        score -= 30

    if change_24h > 100:
        score += 12
    elif change_24h > 50:
        score += 10
    elif change_24h > 20:
        score += 7
    elif change_24h > 5:
        score += 4
    elif change_24h > 0:
        score += 2
    elif change_24h > -10:
        score -= 5
    elif change_24h > -25:
        score -= 12
    else:
        score -= 18

    if acceleration > 2:
        score += 8
    elif acceleration > 0.5:
        score += 4
    elif acceleration < -2:
        score -= 8
    elif acceleration < -0.5:
        score -= 4

    if short_term > 70:
        score += 8
    elif short_term > 60:
        score += 4
    elif short_term < 30:
        score -= 8
    elif short_term < 40:
        score -= 4

    if change_1h > 5 and change_24h > 10 and acceleration > 0 and short_term > 55:
        score += 5

    return _clamp(score)


def volume_score(volume_24h: float, market_cap: float) -> float:
    """Score the 24h volume relative to market cap."""
    if market_cap <= 0 or volume_24h <= 0:
        return 15.0
    ratio = volume_24h / market_cap
    for threshold, score in ((2, 98), (1, 92), (0.5, 85), (0.3, 78), (0.15, 70),
                             (0.08, 60), (0.04, 50), (0.02, 40), (0.01, 30)):
        if ratio > threshold:
            return float(score)
    return 15.0


def buy_pressure_score(buys: int, sells: int) -> float:
    """Share of buys among all transactions (50 with no activity)."""
    total = buys + sells
    if total == 0:
        return 50.0
    return float(round(buys / total * 100))


def liquidity_score(liquidity_usd: float) -> float:
    """Score pool liquidity in USD bands."""
    for threshold, score in ((10_000_000, 95), (5_000_000, 88), (2_000_000, 80), (1_000_000, 72),
                             (500_000, 62), (200_000, 52), (100_000, 42), (50_000, 32), (20_000, 22)):
        if liquidity_usd >= threshold:
            return float(score)
    return 10.0


def detect_whale_activity(buys: int, sells: int, volume: float, liquidity: float, change_1h: float) -> str:
    """Classify whale behaviour from the buy ratio and volume/liquidity turnover."""
    buy_ratio = buys / (buys + sells) if (buys + sells) > 0 else 0.5
    vol_to_liq = volume / liquidity if liquidity > 0 else 0.0

    if buy_ratio > 0.65 and vol_to_liq > 1.5 and change_1h > 3:
        return "accumulating"
    if buy_ratio < 0.38 and vol_to_liq > 1.0 and change_1h < -3:
        return "distributing"
    if buy_ratio > 0.60 and vol_to_liq > 2.0:
        return "accumulating"
    if buy_ratio < 0.40 and vol_to_liq > 1.5:
        return "distributing"
    return "neutral"


def rug_risk_score(
    liquidity: float,
    holders: int,
    market_cap: float,
    top_holder_percent: Optional[float],
    creator_percent: Optional[float],
    safety: float,
    age_hours: float,
) -> float:
    """
    Rug-pull risk from liquidity depth, holder concentration, safety and age.

    Returns:
        Risk score 0-100 (higher is riskier)
    """
    risk = 0.0

    if liquidity < 10_000:
        risk += 30
    elif liquidity < 50_000:
        risk += 20
    elif liquidity < 100_000:
        risk += 10

    if holders < 100:
        risk += 25
    elif holders < 500:
        risk += 15
    elif holders < 1000:
        risk += 8

    liq_to_mcap = liquidity / market_cap if market_cap > 0 else 0.0
    if liq_to_mcap < 0.01:
        risk += 20
    elif liq_to_mcap < 0.03:
        risk += 12
    elif liq_to_mcap < 0.05:
        risk += 6

    if top_holder_percent and top_holder_percent > 50:
        risk += 25
    elif top_holder_percent and top_holder_percent > 30:
        risk += 15
    elif top_holder_percent and top_holder_percent > 20:
        risk += 8

    if creator_percent and creator_percent > 15:
        risk += 20
    elif creator_percent and creator_percent > 8:
        risk += 12
    elif creator_percent and creator_percent > 5:
        risk += 6

    if safety < 20:
        risk += 15
    elif safety < 40:
        risk += 8

    if age_hours < 1:
        risk += 15
    elif age_hours < 6:
        risk += 8
    elif age_hours < 24:
        risk += 3

    return min(100.0, risk)


def smart_money_score(
    trending: bool,
    boosted: bool,
    volume_24h: float,
    buys_24h: int,
    sells_24h: int,
    liquidity: float,
    holders: int,
    whale_activity: str,
    flow: Optional[SmartMoneyFlow],
) -> float:
    """Smart-money interest from market activity and on-chain whale flow."""
    score = 30.0

    if trending:
        score += 12
    if boosted:
        score += 8

    buy_ratio = buys_24h / (buys_24h + sells_24h) if (buys_24h + sells_24h) > 0 else 0.5
    if buy_ratio > 0.65:
        score += 15
    elif buy_ratio > 0.55:
        score += 8

    if volume_24h > 5_000_000:
        score += 12
    elif volume_24h > 1_000_000:
        score += 8
    elif volume_24h > 500_000:
        score += 4

    if holders > 10000:
        score += 8
    elif holders > 5000:
        score += 4

    if liquidity > 1_000_000:
        score += 5

    if whale_activity == "accumulating":
        score += 15
    elif whale_activity == "distributing":
        score -= 12

    if flow is not None:
        if flow.whale_accumulation_score >= 75:
            score += 15
        elif flow.whale_accumulation_score >= 60:
            score += 8
        elif flow.whale_accumulation_score < 35:
            score -= 8

        if flow.net_flow > 100_000:
            score += 8
        elif flow.net_flow > 10_000:
            score += 4
        elif flow.net_flow < -50_000:
            score -= 8

    return _clamp(score)


def classify_smart_money_flow(flow: Optional[SmartMoneyFlow]) -> str:
    if flow is None:
        return "neutral"
    acc = flow.whale_accumulation_score
    if acc >= 80 and flow.net_flow > 50_000:
        return "strong_buy"
    if acc >= 65:
        return "buy"
    if acc <= 25 and flow.net_flow < -10_000:
        return "strong_sell"
    if acc <= 40:
        return "sell"
    return "neutral"


def social_score(signal: Optional[SocialSignal]) -> Tuple[float, bool]:
    """
    Social sentiment score and spike flag.

    Returns:
        Tuple of (score 0-100, is_spike)
    """
    if signal is None:
        return 50.0, False

    score = 50.0

    if signal.galaxy_score >= 80:
        score += 18
    elif signal.galaxy_score >= 60:
        score += 10
    elif signal.galaxy_score >= 40:
        score += 5
    elif signal.galaxy_score < 20:
        score -= 8

    if signal.sentiment_score >= 80:
        score += 10
    elif signal.sentiment_score >= 65:
        score += 5
    elif signal.sentiment_score < 30:
        score -= 8

    if signal.social_spike:
        score += 10

    if signal.influencer_mentions >= 50:
        score += 8
    elif signal.influencer_mentions >= 10:
        score += 4

    if 0 < signal.alt_rank <= 20:
        score += 8
    elif 0 < signal.alt_rank <= 50:
        score += 4

    return _clamp(score), signal.social_spike


def news_score(news: Optional[NewsSentiment]) -> float:
    if news is None:
        return 50.0
    if news.sentiment == "bullish":
        return 80.0 if news.impact == "high" else 65.0
    if news.sentiment == "bearish":
        return 20.0 if news.impact == "high" else 35.0
    return 50.0


def fear_greed_score(index_value: int) -> float:
    """Contrarian reading: fear scores high, greed scores low."""
    return _clamp(100.0 - index_value)


def compute_market_breadth(tokens: Iterable[TokenSignals]) -> Tuple[float, str]:
    """
    Market breadth score and regime over the most relevant tokens.

    Args:
        tokens: Token signals (at most the first 50 are sampled)

    Returns:
        Tuple of (breadth score 0-100, regime "bull" | "bear" | "neutral")
    """
    sample = list(tokens)[:50]
    if len(sample) < 5:
        return 50.0, "neutral"

    n = len(sample)
    avg_momentum = sum(t.momentum_score for t in sample) / n
    avg_buy_pressure = sum(t.buy_pressure_score for t in sample) / n
    positive_pct = sum(1 for t in sample if t.price_change_1h > 0) / n * 100
    avg_rsi = sum(t.technicals.rsi_14 for t in sample) / n
    avg_trend = sum(t.technicals.trend_strength for t in sample) / n
    bullish_pct = sum(1 for t in sample if t.technicals.ema_trend_alignment == "bullish") / n * 100
    bearish_pct = sum(1 for t in sample if t.technicals.ema_trend_alignment == "bearish") / n * 100
    volume_up_pct = sum(1 for t in sample if t.technicals.volume_trend == "increasing") / n * 100

    breadth = 50.0
    if avg_momentum > 60:
        breadth += 8
    elif avg_momentum < 40:
        breadth -= 8
    if avg_buy_pressure > 55:
        breadth += 6
    elif avg_buy_pressure < 45:
        breadth -= 6
    if positive_pct > 60:
        breadth += 8
    elif positive_pct < 40:
        breadth -= 8
    if avg_rsi > 55:
        breadth += 5
    elif avg_rsi < 40:
        breadth -= 5
    if avg_trend > 60:
        breadth += 7
    elif avg_trend < 40:
        breadth -= 7
    if bullish_pct > 50:
        breadth += 8
    elif bearish_pct > 50:
        breadth -= 8
    if volume_up_pct > 50:
        breadth += 4
    elif volume_up_pct < 30:
        breadth -= 4

    breadth = _clamp(breadth)
    if breadth >= 68:
        regime = "bull"
    elif breadth <= 32:
        regime = "bear"
    else:
        regime = "neutral"
    return breadth, regime


def momentum_reversal(token: TokenSignals) -> Tuple[bool, float]:
    """
    Detect a momentum reversal on a held token.

    Returns:
        Tuple of (reversing, severity 0-100)
    """
    tech = token.technicals
    score = 0.0

    if tech.rsi_divergence == "bearish":
        score += 30
    if tech.ema_crossover == "death_cross":
        score += 35
    if tech.macd_histogram < 0 and tech.macd_line < tech.macd_signal:
        score += 20
    if token.momentum_acceleration < -3:
        score += 15
    if token.short_term_momentum < 30:
        score += 15
    if tech.ema_trend_alignment == "bearish":
        score += 20
    if token.whale_activity == "distributing":
        score += 25
    if token.buy_pressure_score < 40:
        score += 10

    return score >= 40, min(100.0, score)


def generate_tags(token: TokenSignals) -> Tuple[str, ...]:
    """Descriptive tags for a token, used in reasoning strings and logs."""
    tech = token.technicals
    tags = []

    if tech.ema_trend_alignment == "bullish" and tech.trend_strength >= 65:
        tags.append("STRONG_UPTREND")
    if tech.is_pullback:
        tags.append("PULLBACK_ENTRY")
    if tech.is_overextended:
        tags.append("OVEREXTENDED")
    if tech.ema_crossover == "golden_cross":
        tags.append("GOLDEN_CROSS")
    elif tech.ema_crossover == "death_cross":
        tags.append("DEATH_CROSS")
    if tech.macd_histogram < 0 and tech.macd_line < 0:
        tags.append("MACD_BEARISH")
    if token.smart_money_flow == "strong_buy":
        tags.append("SMART_MONEY_STRONG_BUY")
    elif token.smart_money_flow == "buy":
        tags.append("SMART_MONEY_BUY")
    if token.whale_activity == "accumulating":
        tags.append("WHALE_ACCUMULATING")
    elif token.whale_activity == "distributing":
        tags.append("WHALE_DISTRIBUTING")
    if token.volume_breakout:
        tags.append("VOLUME_BREAKOUT")
    if token.social_spike:
        tags.append("SOCIAL_SPIKE")
    if token.fear_greed_score >= 75:
        tags.append("EXTREME_FEAR")
    elif token.fear_greed_score <= 25:
        tags.append("EXTREME_GREED")
    if token.liquidity_draining:
        tags.append("LIQUIDITY_DRAINING")
    if token.rug_risk_score >= 50:
        tags.append("HIGH_RUG_RISK")
    if token.safety_score < 40:
        tags.append("SAFETY_RISK")
    if token.liquidity_usd < 50_000:
        tags.append("LOW_LIQUIDITY_RISK")
    if token.buy_pressure_score <= 30:
        tags.append("HEAVY_SELL_PRESSURE")

    return tuple(tags)
