"""Adaptive learning store for signal outcome statistics.

All mutation goes through a single writer thread fed by a queue. Each applied
update publishes a fresh read-only view, so readers never see a partially
updated aggregate and never take a lock.
"""

import dataclasses
import logging
import queue
import threading
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple

from agent_engine.models import SignalPerformance
from agent_engine.strategy import baseline_weights

logger = logging.getLogger(__name__)

COMBO_PREFIX = "COMBO:"
MIN_SAMPLES = 3
BLACKLIST_MIN_SAMPLES = 5
RECENT_WINDOW = 10
MIN_WEIGHT_FACTOR = 0.25
MAX_WEIGHT_FACTOR = 1.6

Key = Tuple[str, str]  # (signal or combo key, strategy)

_STOP = object()


def combo_key(fingerprint: Iterable[str]) -> str:
    """Learning key for a signal combination, independent of ordering."""
    return COMBO_PREFIX + "+".join(sorted(fingerprint))


def win_rate_multiplier(win_rate: float) -> float:
    if win_rate >= 0.75:
        return 1.4
    if win_rate >= 0.60:
        return 1.2
    if win_rate >= 0.50:
        return 1.05
    if win_rate >= 0.40:
        return 0.85
    if win_rate >= 0.30:
        return 0.6
    return 0.3


def _apply(perf: SignalPerformance, pnl_percent: float, now: float) -> SignalPerformance:
    won = pnl_percent > 0
    count = perf.count + 1
    total = perf.total_pnl + pnl_percent
    return dataclasses.replace(
        perf,
        wins=perf.wins + (1 if won else 0),
        losses=perf.losses + (0 if won else 1),
        total_pnl=total,
        count=count,
        avg_pnl=total / count,
        last_updated_at=now,
        recent=(perf.recent + (won,))[-RECENT_WINDOW:],
    )


class LearningStore:
    """Signal and combo performance aggregates with a single-writer update queue."""

    def __init__(
        self,
        blacklist_ttl_seconds: float = 86400.0,
        on_update: Optional[Callable[[SignalPerformance], None]] = None,
    ):
        """
        Initialize the learning store and start its writer thread.

        Args:
            blacklist_ttl_seconds: How long a losing combo stays blacklisted
            on_update: Called from the writer thread with each updated aggregate
        """
        self.blacklist_ttl_seconds = blacklist_ttl_seconds
        self.on_update = on_update

        self._view: Mapping[Key, SignalPerformance] = MappingProxyType({})
        self._blacklist: Mapping[Key, float] = MappingProxyType({})
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._writer = threading.Thread(target=self._run_writer, name="learning-writer", daemon=True)
        self._writer.start()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record_outcome(self, fingerprint: Iterable[str], strategy: str, pnl_percent: float, now: float) -> None:
        """
        Queue the outcome of one closed trade.

        Args:
            fingerprint: Signals that were material at entry
            strategy: Strategy variant of the agent that traded
            pnl_percent: Realized PnL percent of the trade
            now: Close time (epoch seconds)
        """
        signals = tuple(sorted(fingerprint))
        self._queue.put((signals, strategy, float(pnl_percent), float(now)))

    def restore(self, records: Iterable[Dict[str, Any]]) -> int:
        """Load persisted aggregates; later records for the same key win."""
        self._queue.put(("restore", list(records)))
        self.sync()
        return len(self._view)

    def sync(self) -> None:
        """Block until every queued update has been applied."""
        self._queue.join()

    def stop(self) -> None:
        if not self._writer.is_alive():
            return
        self._queue.put(_STOP)
        self._writer.join(timeout=5)

    def _run_writer(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                if item[0] == "restore":
                    self._restore(item[1])
                else:
                    self._update(*item)
            except Exception as e:
                logger.error(f"Learning store update failed: {e}")
            finally:
                self._queue.task_done()

    def _update(self, signals: Tuple[str, ...], strategy: str, pnl_percent: float, now: float) -> None:
        entries = dict(self._view)
        changed = []

        keys = [(signal, strategy) for signal in signals]
        if len(signals) >= 2:
            keys.append((combo_key(signals), strategy))

        for key in keys:
            current = entries.get(key) or SignalPerformance(signal=key[0], strategy=strategy)
            updated = _apply(current, pnl_percent, now)
            entries[key] = updated
            changed.append(updated)

        blacklist = dict(self._blacklist)
        if len(signals) >= 2:
            key = (combo_key(signals), strategy)
            combo = entries[key]
            if len(combo.recent) >= BLACKLIST_MIN_SAMPLES and combo.recent_win_rate < 0.20:
                if key not in blacklist or blacklist[key] <= now:
                    logger.warning(
                        f"Blacklisting combo {key[0]} for {strategy}: "
                        f"recent win rate {combo.recent_win_rate:.0%} over {len(combo.recent)} trades"
                    )
                blacklist[key] = now + self.blacklist_ttl_seconds
            elif key in blacklist and blacklist[key] <= now:
                del blacklist[key]

        # Single reference swaps publish the new state to readers
        self._view = MappingProxyType(entries)
        self._blacklist = MappingProxyType(blacklist)

        if self.on_update is not None:
            for perf in changed:
                self.on_update(perf)

    def _restore(self, records: Iterable[Dict[str, Any]]) -> None:
        entries = dict(self._view)
        for record in records:
            try:
                perf = SignalPerformance(
                    signal=record["signal"],
                    strategy=record["strategy"],
                    wins=int(record.get("wins", 0)),
                    losses=int(record.get("losses", 0)),
                    total_pnl=float(record.get("total_pnl", 0.0)),
                    count=int(record.get("count", 0)),
                    avg_pnl=float(record.get("avg_pnl", 0.0)),
                    last_updated_at=record.get("last_updated_at"),
                    recent=tuple(bool(r) for r in record.get("recent", ())),
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed signal performance record: {e}")
                continue
            entries[(perf.signal, perf.strategy)] = perf

        blacklist = dict(self._blacklist)
        for key, perf in entries.items():
            if not key[0].startswith(COMBO_PREFIX) or perf.last_updated_at is None:
                continue
            if len(perf.recent) >= BLACKLIST_MIN_SAMPLES and perf.recent_win_rate < 0.20:
                blacklist[key] = float(perf.last_updated_at) + self.blacklist_ttl_seconds

        self._view = MappingProxyType(entries)
        self._blacklist = MappingProxyType(blacklist)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, signal: str, strategy: str) -> Optional[SignalPerformance]:
        return self._view.get((signal, strategy))

    def learning_multiplier(self, signal: str, strategy: str) -> float:
        """
        Outcome-driven multiplier applied to a signal's baseline weight.

        Monotonic in win rate and average PnL, bounded to [0.25, 1.6].
        """
        perf = self._view.get((signal, strategy))
        if perf is None or perf.count < MIN_SAMPLES:
            return 1.0
        if self.is_signal_blacklisted(signal, strategy):
            return MIN_WEIGHT_FACTOR

        pnl_adjustment = 1 + max(-0.2, min(0.2, perf.avg_pnl / 50))
        multiplier = win_rate_multiplier(perf.win_rate) * pnl_adjustment
        return max(MIN_WEIGHT_FACTOR, min(MAX_WEIGHT_FACTOR, multiplier))

    def weight(self, signal: str, strategy: str) -> float:
        """Strategy baseline weight for a signal scaled by its outcome history."""
        baseline = baseline_weights(strategy).get(signal, 0.0)
        return baseline * self.learning_multiplier(signal, strategy)

    def is_signal_blacklisted(self, signal: str, strategy: str) -> bool:
        perf = self._view.get((signal, strategy))
        if perf is None or perf.count < BLACKLIST_MIN_SAMPLES:
            return False
        return perf.win_rate < 0.25 and perf.avg_pnl < -3

    def combo_multiplier(self, fingerprint: Iterable[str], strategy: str) -> float:
        signals = tuple(fingerprint)
        if len(signals) < 2:
            return 1.0
        perf = self._view.get((combo_key(signals), strategy))
        if perf is None or perf.count < MIN_SAMPLES:
            return 1.0
        if perf.win_rate >= 0.70:
            return 1.5
        if perf.win_rate >= 0.55:
            return 1.2
        if perf.win_rate < 0.35:
            return 0.5
        return 1.0

    def is_blacklisted(self, fingerprint: Iterable[str], strategy: str, now: float) -> bool:
        signals = tuple(fingerprint)
        if len(signals) < 2:
            return False
        until = self._blacklist.get((combo_key(signals), strategy))
        return until is not None and now < until

    def report(self, strategy: Optional[str] = None, min_count: int = MIN_SAMPLES,
               now: Optional[float] = None) -> Dict[str, Any]:
        """Aggregates with at least min_count samples, grouped by strategy.

        Blacklist entries that expired before ``now`` are left out.
        """
        report: Dict[str, Dict[str, Any]] = {}
        for (signal, strat), perf in sorted(self._view.items()):
            if strategy and strat != strategy:
                continue
            if perf.count < min_count:
                continue
            report.setdefault(strat, {})[signal] = {
                "win_rate": round(perf.win_rate * 100, 1),
                "avg_pnl": round(perf.avg_pnl, 2),
                "count": perf.count,
                "weight_multiplier": round(self.learning_multiplier(signal, strat), 3)
                if not signal.startswith(COMBO_PREFIX) else None,
            }
        blacklisted = sorted(
            f"{strat}:{key}" for (key, strat), until in self._blacklist.items()
            if (not strategy or strat == strategy) and (now is None or now < until)
        )
        return {"signals": report, "blacklisted_combos": blacklisted}
