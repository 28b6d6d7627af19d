"""Trading engine: wires every component and exposes the control surface."""

import logging
import os
import time
from dataclasses import fields
from typing import Any, Callable, Dict, List, Optional, Sequence

from agent_engine.config import Config
from agent_engine.controllers.agent_processor import AgentProcessor
from agent_engine.controllers.cycle_controller import CycleController
from agent_engine.data_acquisition import SignalAggregator
from agent_engine.data_fetchers.market_data_fetcher import MarketDataFeed
from agent_engine.data_fetchers.signal_feeds import SignalFeed
from agent_engine.decision_engine import DecisionEngine
from agent_engine.managers.activity_journal import ActivityJournal
from agent_engine.managers.agent_registry import AgentRegistry
from agent_engine.managers.position_manager import PositionManager
from agent_engine.memory.agent_memory import AgentMemory
from agent_engine.memory.learning_store import LearningStore
from agent_engine.models import POSITION_OPEN, Agent, AgentLog, Position, SignalPerformance, Trade
from agent_engine.persistence.batcher import PersistenceBatcher
from agent_engine.persistence.mutation_store import JsonlMutationStore, MutationStore
from agent_engine.risk_manager import RiskGovernor
from agent_engine.trade_executor import SwapClient, TradeExecutor

logger = logging.getLogger(__name__)

_AGENT_FIELDS = {f.name for f in fields(Agent)}
_POSITION_FIELDS = {f.name for f in fields(Position)}


class TradingEngine:
    """Owns the component graph and the control operations on it."""

    def __init__(
        self,
        config: Config,
        store: Optional[MutationStore] = None,
        market_feed: Optional[MarketDataFeed] = None,
        feeds: Optional[Sequence[SignalFeed]] = None,
        swap_client: Optional[SwapClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the engine with all components.

        Args:
            config: Configuration object
            store: Mutation store (defaults to JSON-lines files under persist_dir)
            market_feed: Token universe source (defaults to the HTTP fetcher)
            feeds: Signal feeds (defaults to the configured HTTP feeds)
            swap_client: Execution collaborator (defaults by run mode)
            clock: Wall clock
        """
        self.config = config
        self.clock = clock

        logger.info("Initializing engine components...")

        self.store = store if store is not None else JsonlMutationStore(config.persist_dir)
        self.batcher = PersistenceBatcher(
            self.store,
            batch_size=config.persist_batch_size,
            max_retries=config.persist_max_retries,
            backoff_seconds=config.persist_backoff_seconds,
        )
        self.journal = ActivityJournal(self.batcher)
        self.learning_store = LearningStore(
            blacklist_ttl_seconds=config.blacklist_ttl_seconds,
            on_update=self._persist_signal_performance,
        )
        memory_path = config.agent_memory_path
        if memory_path is None and config.persist_dir:
            memory_path = os.path.join(config.persist_dir, "agent_memory.json")
        self.memory = AgentMemory(memory_path)

        self.registry = AgentRegistry()
        self.aggregator = SignalAggregator(config, market_feed=market_feed, feeds=feeds)
        self.decision_engine = DecisionEngine(self.learning_store, self.memory)
        self.risk_governor = RiskGovernor(config, clock=clock)
        self.executor = TradeExecutor(config, client=swap_client)
        self.position_manager = PositionManager(
            self.executor, self.journal, partial_profit_taking=config.partial_profit_taking
        )
        self.processor = AgentProcessor(
            self.decision_engine,
            self.risk_governor,
            self.position_manager,
            self.learning_store,
            self.memory,
            self.journal,
        )
        self.scheduler = CycleController(
            config,
            self.registry,
            self.aggregator,
            self.processor,
            self.risk_governor,
            self.journal,
            self.batcher,
            clock=clock,
        )

        logger.info("Engine initialized successfully")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _persist_signal_performance(self, perf: SignalPerformance) -> None:
        self.batcher.enqueue("signal_performance", perf.to_dict())

    def restore(self) -> Dict[str, int]:
        """
        Reload agents, open positions and learning aggregates from the store.

        Only stores that can be read back (the JSON-lines store) are restored;
        the latest record per id wins.

        Returns:
            Counts of restored records by kind
        """
        counts = {"agents": 0, "positions": 0, "signal_performance": 0}
        reader = getattr(self.store, "read", None)
        if reader is None:
            return counts

        agents: Dict[int, Dict[str, Any]] = {}
        for record in reader("agent"):
            if "id" not in record:
                continue
            if record.get("deleted"):
                agents.pop(record["id"], None)
            else:
                agents[record["id"]] = record
        for record in agents.values():
            data = {k: v for k, v in record.items() if k in _AGENT_FIELDS}
            data["open_position_ids"] = []
            try:
                self.registry.add(Agent(**data))
            except TypeError as e:
                logger.warning(f"Skipping malformed agent record {record.get('id')}: {e}")
                continue
            counts["agents"] += 1

        positions: Dict[int, Dict[str, Any]] = {}
        for record in reader("position"):
            if "id" in record:
                positions[record["id"]] = record
        for record in positions.values():
            if record.get("status") != POSITION_OPEN or record.get("agent_id") not in agents:
                continue
            data = {k: v for k, v in record.items() if k in _POSITION_FIELDS}
            data["fingerprint"] = frozenset(data.get("fingerprint") or ())
            try:
                position = Position(**data)
            except TypeError as e:
                logger.warning(f"Skipping malformed position record {record.get('id')}: {e}")
                continue
            self.position_manager.restore(position, self.registry.get(position.agent_id))
            counts["positions"] += 1

        counts["signal_performance"] = self.learning_store.restore(reader("signal_performance"))
        logger.info(
            f"Restored {counts['agents']} agents, {counts['positions']} open positions, "
            f"{counts['signal_performance']} signal aggregates"
        )
        return counts

    def run(self) -> None:
        """Run the scheduler loop in the calling thread until stopped."""
        self.scheduler.run()

    def run_cycle(self, cycle_time: Optional[float] = None) -> Dict[str, Any]:
        """Run a single tick (default cycle time: now)."""
        return self.scheduler.run_cycle(self.clock() if cycle_time is None else cycle_time)

    def register_signal_handlers(self) -> None:
        self.scheduler.shutdown_service.register_signal_handlers()

    def shutdown(self) -> None:
        """Stop the scheduler, persist agent state and release resources."""
        self.scheduler.shutdown()
        for agent in self.registry.list():
            self._persist_agent(agent)
        self.learning_store.sync()
        self.batcher.flush()
        self.learning_store.stop()
        self.aggregator.close()
        logger.info("Engine shutdown complete")

    # ------------------------------------------------------------------
    # Agent control
    # ------------------------------------------------------------------

    def _persist_agent(self, agent: Agent) -> None:
        self.batcher.enqueue("agent", agent.to_dict())

    def create_agent(self, name: str, wallet_address: str, **params: Any) -> Agent:
        params.setdefault("chain", self.config.trading_chain)
        agent = self.registry.create(name, wallet_address, created_at=self.clock(), **params)
        self._persist_agent(agent)
        return agent

    def get_agent(self, agent_id: int) -> Agent:
        return self.registry.get(agent_id)

    def list_agents(self, status: Optional[str] = None) -> List[Agent]:
        return self.registry.list(status)

    def start(self, agent_id: int) -> Agent:
        """Mark an agent running; it is picked up at the next tick."""
        agent = self.registry.start(agent_id)
        self._persist_agent(agent)
        return agent

    def stop(self, agent_id: int) -> Agent:
        """Mark an agent stopped; an in-flight evaluation finishes."""
        agent = self.registry.stop(agent_id)
        self._persist_agent(agent)
        return agent

    def delete_agent(self, agent_id: int) -> Agent:
        """
        Delete a stopped agent and its in-memory history.

        Raises:
            AgentNotFound: If the agent does not exist
            InvalidAgentState: If the agent is running
        """
        agent = self.registry.delete(agent_id)
        self.position_manager.forget(agent_id)
        self.journal.forget(agent_id)
        self.risk_governor.forget(agent_id)
        self.memory.forget(agent_id)
        self.batcher.enqueue("agent", {"id": agent_id, "deleted": True})
        return agent

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_positions(self, agent_id: int, status: Optional[str] = None) -> List[Position]:
        self.registry.get(agent_id)
        return self.position_manager.positions_for(agent_id, status)

    def position_summary(self, agent_id: int) -> Dict[str, Any]:
        agent = self.registry.get(agent_id)
        summary = self.position_manager.summary(agent_id)
        summary.update({
            "total_pnl": round(agent.total_pnl, 8),
            "total_trades": agent.total_trades,
            "win_rate": round(agent.win_rate, 2),
            "daily_trades_used": agent.daily_trades_used,
            "cooldown": self.risk_governor.cooldown_status(agent_id, self.clock()),
            "memory": self.memory.summary(agent_id),
        })
        return summary

    def list_trades(self, agent_id: int, limit: Optional[int] = None) -> List[Trade]:
        self.registry.get(agent_id)
        return self.journal.trades(agent_id, limit)

    def list_logs(self, agent_id: int, limit: Optional[int] = None) -> List[AgentLog]:
        self.registry.get(agent_id)
        return self.journal.logs(agent_id, limit)

    def signal_report(self, strategy: Optional[str] = None, min_count: int = 3) -> Dict[str, Any]:
        return self.learning_store.report(strategy, min_count, now=self.clock())

    def status(self) -> Dict[str, Any]:
        snapshot = self.aggregator.latest_snapshot()
        return {
            "run_mode": self.config.run_mode,
            "scheduler_running": self.scheduler.running,
            "cycle_count": self.scheduler.cycle_count,
            "last_cycle": dict(self.scheduler.last_cycle),
            "agents": len(self.registry),
            "running_agents": len(self.registry.running_agents()),
            "in_flight": sorted(self.scheduler.in_flight()),
            "regime": snapshot.regime if snapshot else None,
            "degraded_streams": list(snapshot.degraded_streams) if snapshot else [],
            "persistence": self.batcher.stats(),
        }
