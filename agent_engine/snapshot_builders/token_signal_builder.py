"""Builder for per-token signal vectors."""

import dataclasses
import logging
from typing import Optional, Sequence

from agent_engine.feed_data import (
    LiquidityHealth,
    MarketPair,
    NewsSentiment,
    SafetyReport,
    SmartMoneyFlow,
    SocialSignal,
)
from agent_engine.indicators import signal_scores
from agent_engine.indicators.technical_indicators import (
    compute_volatility,
    detect_volume_breakout,
    momentum_acceleration,
    short_term_momentum,
)
from agent_engine.models import TechnicalIndicators, TokenSignals

logger = logging.getLogger(__name__)

# Token age assumed when the pair has no creation time
UNKNOWN_AGE_HOURS = 48.0


class TokenSignalBuilder:
    """Combines market data, indicators and feed values into TokenSignals."""

    def build(
        self,
        pair: MarketPair,
        technicals: TechnicalIndicators,
        timestamps: Sequence[float],
        prices: Sequence[float],
        volumes: Sequence[float],
        now: float,
        fear_greed_value: int = 50,
        smart_money: Optional[SmartMoneyFlow] = None,
        social: Optional[SocialSignal] = None,
        news: Optional[NewsSentiment] = None,
        liquidity: Optional[LiquidityHealth] = None,
        safety: Optional[SafetyReport] = None,
    ) -> TokenSignals:
        """
        Build the immutable signal vector for one token.

        Args:
            pair: Current market data for the token
            technicals: Indicators computed from the token's price history
            timestamps: Tick timestamps, oldest first
            prices: Tick prices aligned with timestamps
            volumes: Tick volumes aligned with timestamps
            now: Cycle time
            fear_greed_value: Market fear & greed index (0-100)
            smart_money: Whale flow, None when unavailable
            social: Social metrics, None when unavailable
            news: News sentiment, None when unavailable
            liquidity: Pool health, None when unavailable
            safety: Contract safety, None when unavailable

        Returns:
            TokenSignals with tags populated
        """
        age_hours = (now - pair.created_at) / 3600 if pair.created_at else UNKNOWN_AGE_HOURS
        acceleration = momentum_acceleration(prices)
        short_term = short_term_momentum(prices, timestamps, now)
        volatility = compute_volatility(prices)
        breakout = detect_volume_breakout(volumes[:-1], pair.volume_1h)

        safety_value = safety.score if safety else 50.0
        holders = safety.holder_count if safety and safety.holder_count else pair.makers_24h
        whale_activity = signal_scores.detect_whale_activity(
            pair.buys_24h, pair.sells_24h, pair.volume_24h, pair.liquidity_usd, pair.price_change_1h
        )

        health = liquidity.health_score if liquidity else 50.0
        liquidity_value = round((signal_scores.liquidity_score(pair.liquidity_usd) + health) / 2, 1)

        social_value, social_spike = signal_scores.social_score(social)

        token = TokenSignals(
            key=pair.key,
            symbol=pair.symbol,
            chain=pair.chain,
            address=pair.address,
            price=pair.price,
            liquidity_usd=pair.liquidity_usd,
            volume_24h=pair.volume_24h,
            market_cap=pair.market_cap,
            price_change_1h=pair.price_change_1h,
            price_change_24h=pair.price_change_24h,
            age_hours=round(age_hours, 2),
            momentum_score=signal_scores.momentum_score(
                pair.price_change_1h, pair.price_change_24h, acceleration, short_term
            ),
            short_term_momentum=round(short_term, 1),
            momentum_acceleration=round(acceleration, 3),
            volume_score=signal_scores.volume_score(pair.volume_24h, pair.market_cap),
            volume_breakout=breakout,
            buy_pressure_score=signal_scores.buy_pressure_score(pair.buys_24h, pair.sells_24h),
            liquidity_score=liquidity_value,
            liquidity_draining=bool(liquidity and liquidity.is_draining),
            safety_score=safety_value,
            rug_risk_score=signal_scores.rug_risk_score(
                pair.liquidity_usd,
                holders,
                pair.market_cap,
                safety.top_holder_percent if safety else None,
                safety.creator_percent if safety else None,
                safety_value,
                age_hours,
            ),
            smart_money_score=signal_scores.smart_money_score(
                pair.trending, pair.boosted, pair.volume_24h, pair.buys_24h, pair.sells_24h,
                pair.liquidity_usd, holders, whale_activity, smart_money,
            ),
            smart_money_flow=signal_scores.classify_smart_money_flow(smart_money),
            whale_activity=whale_activity,
            social_score=social_value,
            social_spike=social_spike,
            news_score=signal_scores.news_score(news),
            news_sentiment=news.sentiment if news else "neutral",
            fear_greed_score=signal_scores.fear_greed_score(fear_greed_value),
            volatility=volatility,
            technicals=technicals,
        )
        return dataclasses.replace(token, tags=signal_scores.generate_tags(token))
