"""Cycle controller: the fixed-interval scheduler driving every running agent."""

import logging
import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Set

from agent_engine.config import Config
from agent_engine.controllers.agent_processor import AgentProcessor
from agent_engine.data_acquisition import SignalAggregator
from agent_engine.errors import DeadlineExceeded
from agent_engine.managers.activity_journal import ActivityJournal
from agent_engine.managers.agent_registry import AgentRegistry
from agent_engine.models import Agent, AgentLog, SignalSnapshot
from agent_engine.persistence.batcher import PersistenceBatcher
from agent_engine.risk_manager import RiskGovernor
from agent_engine.services.shutdown_service import ShutdownService

logger = logging.getLogger(__name__)


class CycleController:
    """Builds one snapshot per tick and fans agents out to a bounded worker pool."""

    def __init__(
        self,
        config: Config,
        registry: AgentRegistry,
        aggregator: SignalAggregator,
        processor: AgentProcessor,
        risk_governor: RiskGovernor,
        journal: ActivityJournal,
        batcher: PersistenceBatcher,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize cycle controller.

        Args:
            config: Configuration object
            registry: AgentRegistry instance
            aggregator: SignalAggregator instance
            processor: AgentProcessor instance
            risk_governor: RiskGovernor instance (daily roll at each tick)
            journal: ActivityJournal for skipped/error logs
            batcher: PersistenceBatcher flushed after every tick
            clock: Wall clock used for cycle timestamps
        """
        self.config = config
        self.registry = registry
        self.aggregator = aggregator
        self.processor = processor
        self.risk_governor = risk_governor
        self.journal = journal
        self.batcher = batcher
        self.clock = clock

        self.shutdown_service = ShutdownService(self)
        self._executor = ThreadPoolExecutor(
            max_workers=config.max_concurrent_agents,
            thread_name_prefix="agent-worker",
        )
        self._in_flight: Set[int] = set()
        self._in_flight_lock = threading.Lock()
        self._stop_event = threading.Event()

        self.running = False
        self.cycle_count = 0
        self.last_cycle: Dict[str, Any] = {}

        logger.info("Cycle controller initialized successfully")

    def run(self) -> None:
        """
        Execute cycles in a continuous loop until stopped.

        A failing cycle is logged and the loop continues.
        """
        self.running = True
        self._stop_event.clear()
        logger.info(
            f"Scheduler started: interval={self.config.loop_interval_seconds}s, "
            f"workers={self.config.max_concurrent_agents}, deadline={self.config.agent_deadline_seconds}s"
        )

        while self.running:
            cycle_start_time = self.clock()
            try:
                self.run_cycle(cycle_start_time)
            except Exception as e:
                logger.error(f"Cycle {self.cycle_count} failed: {e}")
                logger.info("Continuing to next cycle...")

            self._sleep_until_next_cycle(cycle_start_time)

        logger.info("Scheduler stopped")

    def run_cycle(self, cycle_time: float) -> Dict[str, Any]:
        """
        Run one tick: snapshot once, evaluate every running agent, flush.

        Args:
            cycle_time: Cycle timestamp (snapshot cache key)

        Returns:
            Summary of the cycle
        """
        self.cycle_count += 1
        agents = self.registry.running_agents()
        self.risk_governor.roll_all(agents, cycle_time)

        if self.cycle_count == 1 or self.cycle_count % 10 == 0:
            stamp = datetime.fromtimestamp(cycle_time, tz=timezone.utc).strftime("%H:%M:%S")
            logger.info(f"CYCLE {self.cycle_count} - {stamp} - {len(agents)} running agent(s)")

        summary = {"cycle": self.cycle_count, "cycle_time": cycle_time, "agents": len(agents),
                   "completed": 0, "skipped": 0, "errors": 0}
        if not agents:
            self.batcher.flush()
            self.last_cycle = summary
            return summary

        snapshot = self.aggregator.build_snapshot(cycle_time)

        futures = {}
        for agent in agents:
            with self._in_flight_lock:
                if agent.id in self._in_flight:
                    busy = True
                else:
                    busy = False
                    self._in_flight.add(agent.id)
            if busy:
                logger.warning(f"Agent {agent.id} still running from a previous cycle, skipping")
                self._record_skip(agent, snapshot, "skipped", "Previous evaluation still in flight")
                summary["skipped"] += 1
                continue
            futures[self._executor.submit(self._run_unit, agent, snapshot)] = agent

        # Queued units start late, so the join allows one deadline per wave of workers
        waves = math.ceil(len(futures) / self.config.max_concurrent_agents) if futures else 0
        done, not_done = wait(futures, timeout=self.config.agent_deadline_seconds * waves)

        for future in done:
            agent = futures[future]
            try:
                future.result()
                summary["completed"] += 1
            except DeadlineExceeded as e:
                logger.warning(f"Agent {agent.id} skipped: {e}")
                self._record_skip(agent, snapshot, "skipped", f"Deadline exceeded: {e}")
                summary["skipped"] += 1
            except Exception as e:
                logger.error(f"Error processing agent {agent.id}: {e}")
                self._record_skip(agent, snapshot, "error", f"{type(e).__name__}: {e}")
                summary["errors"] += 1

        for future in not_done:
            agent = futures[future]
            logger.warning(f"Agent {agent.id} timed out after {self.config.agent_deadline_seconds}s, skipping")
            self._record_skip(agent, snapshot, "skipped", "Evaluation timed out")
            summary["skipped"] += 1

        self._persist_agents(agents)
        self.batcher.flush()
        self.last_cycle = summary
        logger.debug(f"Cycle {self.cycle_count} complete: {summary}")
        return summary

    def _run_unit(self, agent: Agent, snapshot: SignalSnapshot) -> None:
        deadline = time.monotonic() + self.config.agent_deadline_seconds
        try:
            self.processor.process_agent(agent, snapshot, deadline)
        finally:
            with self._in_flight_lock:
                self._in_flight.discard(agent.id)

    def _record_skip(self, agent: Agent, snapshot: SignalSnapshot, action: str, reasoning: str) -> None:
        self.journal.record_log(AgentLog(
            agent_id=agent.id,
            action=action,
            reasoning=reasoning,
            tokens_analyzed=len(snapshot.tokens),
            market_context=snapshot.context_ref,
            created_at=snapshot.cycle_time,
        ))

    def _persist_agents(self, agents: List[Agent]) -> None:
        """Queue the current counters of every agent whose evaluation has finished."""
        in_flight = self.in_flight()
        for agent in agents:
            if agent.id in in_flight or agent.id not in self.registry:
                continue
            self.batcher.enqueue("agent", agent.to_dict())

    def in_flight(self) -> Set[int]:
        with self._in_flight_lock:
            return set(self._in_flight)

    def _sleep_until_next_cycle(self, cycle_start_time: float) -> None:
        """Sleep until the next cycle based on configured interval."""
        cycle_duration = self.clock() - cycle_start_time
        sleep_time = max(0, self.config.loop_interval_seconds - cycle_duration)

        if sleep_time > 0:
            logger.debug(f"Sleeping for {sleep_time:.1f} seconds until next cycle")
            self._stop_event.wait(sleep_time)
        else:
            logger.warning(f"Cycle took {cycle_duration:.1f}s, longer than interval {self.config.loop_interval_seconds}s")

    def stop(self) -> None:
        """Stop the loop at the next tick boundary."""
        self.running = False
        self._stop_event.set()

    def shutdown(self, wait_for_workers: bool = True) -> None:
        """Gracefully shutdown the scheduler."""
        self.shutdown_service.shutdown()
        self._executor.shutdown(wait=wait_for_workers)
        self.batcher.flush()
