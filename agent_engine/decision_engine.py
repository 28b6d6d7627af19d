"""Decision engine: scores the cycle snapshot for one agent and picks an action.

One algorithm serves every strategy variant; the variants only differ in the
StrategyConfig they select. Evaluation is a pure function of the agent, the
snapshot, the agent's open positions and the learning state, so identical
inputs always yield the identical decision.
"""

import logging
import math
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from agent_engine.indicators.signal_scores import momentum_reversal
from agent_engine.memory.agent_memory import AgentMemory
from agent_engine.memory.learning_store import LearningStore
from agent_engine.models import Agent, Decision, Position, SignalSnapshot, TokenSignals
from agent_engine.strategy import SIGNAL_NAMES, StrategyConfig, get_strategy_config, regime_factor
from agent_engine.strategy_utils.position_sizing import (
    conviction_size_fraction,
    dynamic_stop_loss_percent,
    dynamic_take_profit_percent,
    risk_level_factor,
)

logger = logging.getLogger(__name__)

# Hard entry filters shared by every strategy
MIN_LIQUIDITY_USD = 10_000
MAX_RUG_RISK = 70
MAX_RSI = 82

MAX_CONVICTION_THRESHOLD = 90.0
MAX_MOMENTUM_THRESHOLD = 85.0


def entry_filter_reason(token: TokenSignals, config: StrategyConfig) -> Optional[str]:
    """
    Check a token against the hard buy filters.

    Args:
        token: Token signals for this cycle
        config: Strategy parameters

    Returns:
        Reason string if the token is filtered out, None if it passes
    """
    tech = token.technicals
    if token.liquidity_usd < MIN_LIQUIDITY_USD:
        return f"liquidity ${token.liquidity_usd:,.0f} below ${MIN_LIQUIDITY_USD:,}"
    if token.rug_risk_score >= min(MAX_RUG_RISK, config.max_rug_risk):
        return f"rug risk {token.rug_risk_score:.0f}"
    if token.whale_activity == "distributing":
        return "whales distributing"
    if tech.is_overextended:
        return "overextended"
    if tech.rsi_14 >= min(MAX_RSI, config.max_rsi):
        return f"RSI {tech.rsi_14:.0f} too high"
    if tech.ema_trend_alignment == "bearish":
        return "bearish EMA alignment"
    if token.smart_money_flow == "strong_sell":
        return "smart money strong sell"
    if token.safety_score < config.min_safety_score:
        return f"safety {token.safety_score:.0f} below {config.min_safety_score:.0f}"
    if token.liquidity_score < config.min_liquidity_score:
        return f"liquidity score {token.liquidity_score:.0f} below {config.min_liquidity_score:.0f}"
    return None


def signal_fingerprint(token: TokenSignals, config: StrategyConfig) -> FrozenSet[str]:
    """Signals whose value is material enough to be credited with the outcome."""
    return frozenset(name for name, value in token.scores.items() if value >= config.materiality_score)


class DecisionEngine:
    """Evaluates one agent against the shared snapshot."""

    def __init__(self, learning_store: LearningStore, memory: AgentMemory):
        """
        Initialize the decision engine.

        Args:
            learning_store: Source of learned signal weights and blacklists
            memory: Per-agent performance memory (threshold offsets, blocked tokens)
        """
        self.learning_store = learning_store
        self.memory = memory

    def evaluate(self, agent: Agent, snapshot: SignalSnapshot, open_positions: Sequence[Position] = ()) -> Decision:
        """
        Decide what the agent should do this cycle.

        Exits on held tokens are reviewed before any new entry is considered.

        Args:
            agent: Agent being evaluated
            snapshot: Shared cycle snapshot
            open_positions: The agent's open positions

        Returns:
            Decision (buy | sell | hold | close)
        """
        config = get_strategy_config(agent.strategy)
        tokens_analyzed = len(snapshot.tokens)

        exit_decision = self._review_exits(open_positions, snapshot, tokens_analyzed)
        if exit_decision is not None:
            return exit_decision

        if len(open_positions) >= config.max_open_positions:
            return Decision(
                action="hold",
                confidence=0.0,
                reasoning=f"Holding: {len(open_positions)} open positions (max {config.max_open_positions})",
                tokens_analyzed=tokens_analyzed,
            )

        return self._select_entry(agent, config, snapshot, open_positions, tokens_analyzed)

    # ------------------------------------------------------------------
    # Exits
    # ------------------------------------------------------------------

    def _review_exits(
        self, positions: Sequence[Position], snapshot: SignalSnapshot, tokens_analyzed: int
    ) -> Optional[Decision]:
        for position in sorted(positions, key=lambda p: p.id):
            if not position.is_open:
                continue
            token = snapshot.get(position.token_key)
            if token is None:
                continue
            decision = self._exit_for(position, token, tokens_analyzed)
            if decision is not None:
                return decision
        return None

    def _exit_for(self, position: Position, token: TokenSignals, tokens_analyzed: int) -> Optional[Decision]:
        tech = token.technicals
        pnl = position.pnl_percent_at(token.price)

        def close(reason: str, confidence: float) -> Decision:
            return Decision(
                action="close",
                confidence=confidence,
                reasoning=f"Urgent exit {position.token_symbol}: {reason} (PnL {pnl:+.1f}%)",
                token_key=position.token_key,
                token_symbol=position.token_symbol,
                size=position.size,
                price=token.price,
                position_id=position.id,
                tokens_analyzed=tokens_analyzed,
            )

        def sell(reason: str, fraction: float, confidence: float) -> Decision:
            return Decision(
                action="sell",
                confidence=confidence,
                reasoning=f"Partial exit {position.token_symbol} ({fraction:.0%}): {reason} (PnL {pnl:+.1f}%)",
                token_key=position.token_key,
                token_symbol=position.token_symbol,
                size=round(position.size * fraction, 8),
                price=token.price,
                sell_fraction=fraction,
                position_id=position.id,
                tokens_analyzed=tokens_analyzed,
            )

        # Urgent exits
        if token.whale_activity == "distributing" and pnl > -3:
            return close("whales distributing", 90.0)
        if token.rug_risk_score >= 65 and pnl > -5:
            return close(f"rug risk {token.rug_risk_score:.0f}", 95.0)
        if token.buy_pressure_score <= 25:
            return close(f"buy pressure collapsed to {token.buy_pressure_score:.0f}", 85.0)
        if tech.ema_crossover == "death_cross" and pnl > -3:
            return close("EMA death cross", 80.0)

        # Soft exits
        reversing, severity = momentum_reversal(token)
        if reversing and pnl > 0:
            fraction = 0.75 if severity >= 70 else 0.5
            return sell(f"momentum reversal (severity {severity:.0f})", fraction, severity)
        if tech.rsi_14 > 85 and pnl > 10:
            return sell(f"RSI {tech.rsi_14:.0f} overbought", 0.5, 75.0)
        if tech.rsi_divergence == "bearish" and pnl > 5:
            return sell("bearish RSI divergence", 0.3, 65.0)
        if tech.is_overextended and pnl > 15:
            return sell("overextended above EMAs", 0.3, 60.0)

        return None

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def conviction(self, token: TokenSignals, strategy: str, regime: str) -> float:
        """
        Composite conviction score (0-100) before the combo multiplier.

        Each signal contributes score x learned weight; the sum is scaled by the
        total baseline weight so a token with neutral history scores on the
        same 0-100 range as its signals.
        """
        config = get_strategy_config(strategy)
        scores = token.scores
        total = 0.0
        baseline_total = 0.0
        for name in SIGNAL_NAMES:
            factor = regime_factor(name, regime)
            total += scores[name] * self.learning_store.weight(name, config.name) * factor
            baseline_total += config.baseline_weight(name) * factor
        if baseline_total <= 0:
            return 0.0
        return max(0.0, min(100.0, total / baseline_total))

    def _thresholds(self, agent: Agent, config: StrategyConfig) -> Tuple[float, float]:
        offset = self.memory.threshold_offset(agent.id)
        conviction = min(MAX_CONVICTION_THRESHOLD, config.conviction_floor + offset)
        momentum = min(MAX_MOMENTUM_THRESHOLD, config.momentum_floor + math.floor(offset * 0.5))
        return conviction, momentum

    def _select_entry(
        self,
        agent: Agent,
        config: StrategyConfig,
        snapshot: SignalSnapshot,
        open_positions: Sequence[Position],
        tokens_analyzed: int,
    ) -> Decision:
        now = snapshot.cycle_time
        held = {p.token_key for p in open_positions}
        conviction_threshold, momentum_threshold = self._thresholds(agent, config)

        candidates: List[Tuple[float, float, str, TokenSignals, FrozenSet[str]]] = []
        filtered: Dict[str, int] = {}
        best_rejected = 0.0

        for key in sorted(snapshot.tokens):
            token = snapshot.tokens[key]
            if key in held or token.chain != agent.chain:
                continue
            if self.memory.is_token_blocked(agent.id, key, now):
                filtered["recent loss"] = filtered.get("recent loss", 0) + 1
                continue
            reason = entry_filter_reason(token, config)
            if reason is not None:
                filtered["filters"] = filtered.get("filters", 0) + 1
                logger.debug(f"Agent {agent.id} skips {token.symbol}: {reason}")
                continue
            if token.momentum_score < momentum_threshold:
                filtered["momentum"] = filtered.get("momentum", 0) + 1
                continue

            fingerprint = signal_fingerprint(token, config)
            if self.learning_store.is_blacklisted(fingerprint, config.name, now):
                filtered["blacklisted"] = filtered.get("blacklisted", 0) + 1
                logger.debug(f"Agent {agent.id} skips {token.symbol}: blacklisted signal combo")
                continue

            score = self.conviction(token, config.name, snapshot.regime)
            score *= self.learning_store.combo_multiplier(fingerprint, config.name)
            score = round(max(0.0, min(100.0, score)), 2)

            if score < conviction_threshold:
                best_rejected = max(best_rejected, score)
                continue
            candidates.append((score, token.quality_score, key, token, fingerprint))

        if not candidates:
            skipped = ", ".join(f"{k}={v}" for k, v in sorted(filtered.items()))
            return Decision(
                action="hold",
                confidence=best_rejected,
                reasoning=(
                    f"No entry: best conviction {best_rejected:.1f} below threshold "
                    f"{conviction_threshold:.1f}" + (f" (skipped {skipped})" if skipped else "")
                ),
                tokens_analyzed=tokens_analyzed,
            )

        # Highest conviction, then liquidity/safety quality, then token key
        candidates.sort(key=lambda c: (-c[0], -c[1], c[2]))
        score, _, key, token, fingerprint = candidates[0]

        fraction = conviction_size_fraction(config, score, token.volatility)
        size = (
            agent.max_position_size
            * fraction
            * config.size_multiplier
            * self.memory.size_multiplier(agent.id, now)
            * risk_level_factor(agent.risk_level)
        )
        size = round(min(size, agent.max_position_size), 8)

        stop_loss = min(dynamic_stop_loss_percent(config, token.volatility), agent.stop_loss_percent)
        take_profit = min(dynamic_take_profit_percent(config, token.volatility, snapshot.regime),
                          agent.take_profit_percent)

        top = sorted(token.scores.items(), key=lambda item: (-item[1], item[0]))[:3]
        drivers = ", ".join(f"{name}={value:.0f}" for name, value in top)
        tags = f" [{', '.join(token.tags)}]" if token.tags else ""
        reasoning = (
            f"Buy {token.symbol}: conviction {score:.1f} >= {conviction_threshold:.1f} "
            f"({config.name}, {snapshot.regime} regime); drivers {drivers}{tags}; "
            f"SL {stop_loss:.1f}% TP {take_profit:.1f}%"
        )

        return Decision(
            action="buy",
            confidence=score,
            reasoning=reasoning,
            token_key=key,
            token_symbol=token.symbol,
            size=size,
            price=token.price,
            fingerprint=fingerprint,
            stop_loss_percent=stop_loss,
            take_profit_percent=take_profit,
            tokens_analyzed=tokens_analyzed,
        )
