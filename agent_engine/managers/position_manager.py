"""Position management: lifecycle state machine, protective prices and PnL.

Positions live in one arena keyed by position id; agents only hold the ids of
their open positions. Lifecycle: none -> opening -> open -> closing -> closed.
Every exit fills at the observed cycle price (market-stop semantics).
"""

import itertools
import logging
import threading
from typing import Dict, List, Optional

from agent_engine.errors import InvariantViolation
from agent_engine.managers.activity_journal import ActivityJournal
from agent_engine.models import (
    ACTIVE_POSITION_STATES,
    POSITION_CLOSED,
    POSITION_CLOSING,
    POSITION_OPEN,
    POSITION_OPENING,
    Agent,
    AgentLog,
    Decision,
    Position,
    SignalSnapshot,
    Trade,
)
from agent_engine.strategy import StrategyConfig, get_strategy_config
from agent_engine.trade_executor import TradeExecutor

logger = logging.getLogger(__name__)

# Partial sells that would leave less than this share of the position close it instead
FULL_CLOSE_SHARE = 0.95


def time_decay_min_pnl(hold_hours: float, max_hold_hours: float) -> Optional[float]:
    """
    Minimum PnL percent required to keep holding a position.

    Returns:
        None during the first half of the max hold time, then a threshold
        falling linearly from +3 % to -3 %
    """
    half = max_hold_hours * 0.5
    if hold_hours <= half:
        return None
    progress = min(1.0, (hold_hours - half) / half)
    return 3 - progress * 6


def should_breakeven_stop(entry: float, price: float, highest: float, threshold: float) -> bool:
    """True when a position that was well in profit has given its gains back."""
    if highest <= entry or entry <= 0:
        return False
    pnl = (price / entry - 1) * 100
    drawdown_from_high = (1 - price / highest) * 100
    profit_from_high = (highest / entry - 1) * 100
    return profit_from_high >= threshold and pnl <= 1 and drawdown_from_high >= threshold * 0.6


class PositionManager:
    """Owns every position and drives its state transitions."""

    def __init__(self, executor: TradeExecutor, journal: ActivityJournal, partial_profit_taking: bool = True):
        """
        Initialize position manager.

        Args:
            executor: Trade executor used for entries and exits
            journal: Receives trades, logs and position deltas
            partial_profit_taking: Enable tiered partial sells
        """
        self.executor = executor
        self.journal = journal
        self.partial_profit_taking = partial_profit_taking

        self._positions: Dict[int, Position] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, position_id: int) -> Optional[Position]:
        with self._lock:
            return self._positions.get(position_id)

    def open_positions(self, agent: Agent) -> List[Position]:
        with self._lock:
            positions = [self._positions.get(pid) for pid in agent.open_position_ids]
        return [p for p in positions if p is not None and p.status == POSITION_OPEN]

    def positions_for(self, agent_id: int, status: Optional[str] = None) -> List[Position]:
        """All positions of an agent, optionally filtered by status, newest first."""
        with self._lock:
            positions = [p for p in self._positions.values() if p.agent_id == agent_id]
        if status:
            positions = [p for p in positions if p.status == status]
        return sorted(positions, key=lambda p: p.id, reverse=True)

    def has_active_position(self, agent_id: int, token_key: str) -> bool:
        with self._lock:
            return any(
                p.agent_id == agent_id and p.token_key == token_key and p.status in ACTIVE_POSITION_STATES
                for p in self._positions.values()
            )

    def summary(self, agent_id: int) -> Dict[str, float]:
        positions = self.positions_for(agent_id)
        open_positions = [p for p in positions if p.status == POSITION_OPEN]
        return {
            "open_positions": len(open_positions),
            "closed_positions": sum(1 for p in positions if p.status == POSITION_CLOSED),
            "open_exposure": round(sum(p.size for p in open_positions), 8),
            "unrealized_pnl": round(sum(p.unrealized_pnl for p in open_positions), 8),
            "realized_pnl": round(sum(p.realized_pnl for p in positions), 8),
        }

    def restore(self, position: Position, agent: Agent) -> None:
        """Re-register a persisted open position at startup."""
        with self._lock:
            self._positions[position.id] = position
            self._ids = itertools.count(max(self._positions) + 1)
            if position.status == POSITION_OPEN and position.id not in agent.open_position_ids:
                agent.open_position_ids.append(position.id)

    def forget(self, agent_id: int) -> None:
        with self._lock:
            for pid in [pid for pid, p in self._positions.items() if p.agent_id == agent_id]:
                del self._positions[pid]

    # ------------------------------------------------------------------
    # Entry
    # ------------------------------------------------------------------

    def open_position(self, agent: Agent, decision: Decision, size: float, now: float) -> Optional[Position]:
        """
        Open a position for an authorized buy.

        Args:
            agent: Agent buying
            decision: Authorized buy decision
            size: Approved notional
            now: Cycle time

        Returns:
            The open Position, or None if execution failed

        Raises:
            InvariantViolation: If the agent already holds this token
        """
        if self.has_active_position(agent.id, decision.token_key):
            raise InvariantViolation(
                f"agent {agent.id} already has an active position for {decision.token_key}"
            )

        with self._lock:
            position = Position(
                id=next(self._ids),
                agent_id=agent.id,
                token_key=decision.token_key,
                token_symbol=decision.token_symbol or decision.token_key,
                chain=agent.chain,
                size=size,
                avg_entry_price=decision.price or 0.0,
                current_price=decision.price or 0.0,
                status=POSITION_OPENING,
                fingerprint=decision.fingerprint,
                opened_at=now,
            )
            self._positions[position.id] = position
            agent.open_position_ids.append(position.id)

        result = self.executor.execute(agent, decision.token_key, "buy", size, decision.price or 0.0)

        if not result.executed:
            with self._lock:
                del self._positions[position.id]
                agent.open_position_ids.remove(position.id)
            self.journal.record_trade(Trade(
                agent_id=agent.id,
                token_key=decision.token_key,
                token_symbol=position.token_symbol,
                type="failed",
                amount=size,
                price=decision.price or 0.0,
                total=0.0,
                reasoning=f"Buy failed: {result.error}",
                confidence=decision.confidence,
                timestamp=now,
            ))
            self.journal.record_log(AgentLog(
                agent_id=agent.id,
                action="failed_trade",
                reasoning=f"Buy {position.token_symbol} failed: {result.error}",
                decision="buy",
                confidence=decision.confidence,
                tokens_analyzed=decision.tokens_analyzed,
                created_at=now,
            ))
            return None

        entry = result.fill_price
        stop_loss_pct = decision.stop_loss_percent or agent.stop_loss_percent
        take_profit_pct = decision.take_profit_percent or agent.take_profit_percent
        with self._lock:
            position.size = result.filled_size or size
            position.avg_entry_price = entry
            position.current_price = entry
            position.highest_price = entry
            position.stop_loss_price = entry * (1 - stop_loss_pct / 100)
            position.take_profit_price = entry * (1 + take_profit_pct / 100)
            position.take_profit_percent = take_profit_pct
            position.status = POSITION_OPEN

        agent.last_trade_at = now
        self.journal.record_trade(Trade(
            agent_id=agent.id,
            token_key=position.token_key,
            token_symbol=position.token_symbol,
            type="buy",
            amount=position.size,
            price=entry,
            total=position.size,
            reasoning=decision.reasoning,
            confidence=decision.confidence,
            position_id=position.id,
            timestamp=now,
        ))
        self.journal.record_position(position)
        logger.info(
            f"Agent {agent.id} opened {position.token_symbol} #{position.id}: size={position.size:.4f} "
            f"entry={entry:.8g} SL={position.stop_loss_price:.8g} TP={position.take_profit_price:.8g}"
        )
        return position

    # ------------------------------------------------------------------
    # Mark to market and exit triggers
    # ------------------------------------------------------------------

    def mark_to_market(self, position: Position, price: float, config: StrategyConfig) -> None:
        """
        Update price, PnL, highest price and the trailing stop.

        The trailing stop arms once PnL reaches the strategy's arm percent and
        never moves down afterwards.
        """
        if not position.is_open:
            raise InvariantViolation(f"position #{position.id} is {position.status}, cannot update")
        if price <= 0:
            return
        with self._lock:
            position.current_price = price
            position.highest_price = max(position.highest_price or price, price)
            pnl_pct = position.pnl_percent_at(price)
            position.unrealized_pnl = position.size * (price / position.avg_entry_price - 1)
            position.unrealized_pnl_percent = pnl_pct

            if pnl_pct >= config.trailing_arm_pct or position.trailing_stop_price is not None:
                candidate = position.highest_price * (1 - config.trailing_stop_pct / 100)
                position.trailing_stop_price = max(position.trailing_stop_price or 0.0, candidate)

    def exit_trigger(self, position: Position, price: float, config: StrategyConfig, now: float) -> Optional[str]:
        """
        Full-exit trigger for the current price, if any.

        Checked in order: stop-loss, take-profit, trailing stop, breakeven stop,
        time decay.
        """
        if position.stop_loss_price is not None and price <= position.stop_loss_price:
            return "stop_loss"
        if position.take_profit_price is not None and price >= position.take_profit_price:
            return "take_profit"
        if position.trailing_stop_price is not None and price <= position.trailing_stop_price:
            return "trailing_stop"
        if should_breakeven_stop(position.avg_entry_price, price, position.highest_price or price,
                                 config.breakeven_threshold):
            return "breakeven_stop"
        hold_hours = max(0.0, now - position.opened_at) / 3600
        min_pnl = time_decay_min_pnl(hold_hours, config.max_hold_hours)
        if min_pnl is not None and position.pnl_percent_at(price) < min_pnl:
            return "time_decay"
        return None

    def update_positions(self, agent: Agent, snapshot: SignalSnapshot) -> List[Position]:
        """
        Mark the agent's open positions to the snapshot and run exit triggers.

        Args:
            agent: Agent whose positions are updated
            snapshot: Cycle snapshot (prices and cycle time)

        Returns:
            Positions fully closed during this update
        """
        config = get_strategy_config(agent.strategy)
        now = snapshot.cycle_time
        closed: List[Position] = []

        for position in self.open_positions(agent):
            token = snapshot.get(position.token_key)
            if token is None or token.price <= 0:
                continue
            price = token.price
            self.mark_to_market(position, price, config)

            trigger = self.exit_trigger(position, price, config, now)
            if trigger is not None:
                result = self.close_position(agent, position, price, trigger, now)
                if result is not None:
                    closed.append(result)
                continue

            if self.partial_profit_taking:
                self._take_tier_profit(agent, position, price, config, now)
            self.journal.record_position(position)

        return closed

    def _take_tier_profit(self, agent: Agent, position: Position, price: float,
                          config: StrategyConfig, now: float) -> None:
        tiers = config.profit_tiers
        if position.tiers_completed >= len(tiers) or position.take_profit_percent <= 0:
            return
        pnl_pct = position.pnl_percent_at(price)
        tier = tiers[position.tiers_completed]
        target = position.take_profit_percent * tier.threshold
        if pnl_pct <= 0 or pnl_pct < target:
            return
        fraction = tier.sell_percent / 100
        if fraction >= FULL_CLOSE_SHARE:
            return
        reason = (
            f"Tier {position.tiers_completed + 1}/{len(tiers)} profit-take: {tier.sell_percent:.0f}% "
            f"at {pnl_pct:.1f}% PnL (target {target:.1f}%)"
        )
        if self.reduce_position(agent, position, fraction, price, reason, now) is not None:
            position.tiers_completed += 1

    # ------------------------------------------------------------------
    # Exits
    # ------------------------------------------------------------------

    def _record_failed_exit(self, agent: Agent, position: Position, price: float, reason: str,
                            error: Optional[str], now: float) -> None:
        self.journal.record_trade(Trade(
            agent_id=agent.id,
            token_key=position.token_key,
            token_symbol=position.token_symbol,
            type="failed",
            amount=position.size,
            price=price,
            total=0.0,
            reasoning=f"Sell failed ({reason}): {error}",
            position_id=position.id,
            timestamp=now,
        ))
        self.journal.record_log(AgentLog(
            agent_id=agent.id,
            action="failed_trade",
            reasoning=f"Sell {position.token_symbol} ({reason}) failed: {error}",
            decision="sell",
            created_at=now,
        ))

    def close_position(self, agent: Agent, position: Position, price: float, reason: str,
                       now: float) -> Optional[Position]:
        """
        Close a position completely at the observed price.

        Args:
            agent: Owning agent
            position: Open position
            price: Observed price that triggered the close
            reason: Close reason (trigger name or decision reasoning)
            now: Cycle time

        Returns:
            The closed Position, or None if execution failed (position stays open)
        """
        if not position.is_open:
            raise InvariantViolation(f"position #{position.id} is {position.status}, cannot close")

        with self._lock:
            position.status = POSITION_CLOSING

        result = self.executor.execute(agent, position.token_key, "sell", position.size, price)
        if not result.executed:
            with self._lock:
                position.status = POSITION_OPEN
            self._record_failed_exit(agent, position, price, reason, result.error, now)
            return None

        fill = result.fill_price
        pnl = position.size * (fill / position.avg_entry_price - 1)
        with self._lock:
            position.current_price = fill
            position.realized_pnl += pnl
            position.unrealized_pnl = 0.0
            position.unrealized_pnl_percent = 0.0
            position.status = POSITION_CLOSED
            position.closed_at = now
            position.close_reason = reason
            if position.id in agent.open_position_ids:
                agent.open_position_ids.remove(position.id)

        agent.total_pnl += pnl
        agent.total_trades += 1
        if position.realized_pnl > 0:
            agent.winning_trades += 1
        agent.win_rate = round(agent.winning_trades / agent.total_trades * 100, 2)
        agent.last_trade_at = now

        self.journal.record_trade(Trade(
            agent_id=agent.id,
            token_key=position.token_key,
            token_symbol=position.token_symbol,
            type="close",
            amount=position.size,
            price=fill,
            total=position.size * fill / position.avg_entry_price,
            pnl=pnl,
            reasoning=reason,
            position_id=position.id,
            timestamp=now,
        ))
        self.journal.record_position(position)
        logger.info(
            f"Agent {agent.id} closed {position.token_symbol} #{position.id} ({reason}) at {fill:.8g}: "
            f"PnL {pnl:+.4f} ({position.pnl_percent_at(fill):+.1f}%)"
        )
        return position

    def reduce_position(self, agent: Agent, position: Position, fraction: float, price: float,
                        reason: str, now: float) -> Optional[Position]:
        """
        Sell part of a position; the remainder stays open.

        A fraction at or above 95 % closes the whole position instead.

        Returns:
            The position after the sell, or None if execution failed
        """
        if not position.is_open:
            raise InvariantViolation(f"position #{position.id} is {position.status}, cannot reduce")
        if fraction >= FULL_CLOSE_SHARE:
            return self.close_position(agent, position, price, reason, now)

        sell_size = round(position.size * fraction, 8)
        if sell_size <= 0:
            return position

        result = self.executor.execute(agent, position.token_key, "sell", sell_size, price)
        if not result.executed:
            self._record_failed_exit(agent, position, price, reason, result.error, now)
            return None

        fill = result.fill_price
        pnl = sell_size * (fill / position.avg_entry_price - 1)
        with self._lock:
            position.size = round(position.size - sell_size, 8)
            position.realized_pnl += pnl
            position.unrealized_pnl = position.size * (fill / position.avg_entry_price - 1)
        agent.total_pnl += pnl

        self.journal.record_trade(Trade(
            agent_id=agent.id,
            token_key=position.token_key,
            token_symbol=position.token_symbol,
            type="sell",
            amount=sell_size,
            price=fill,
            total=sell_size * fill / position.avg_entry_price,
            pnl=pnl,
            reasoning=reason,
            position_id=position.id,
            timestamp=now,
        ))
        self.journal.record_position(position)
        logger.info(f"Agent {agent.id} sold {fraction:.0%} of {position.token_symbol} #{position.id}: {reason}")
        return position
