"""Persistent per-agent performance memory.

Tracks win/loss streaks, the adaptive entry-threshold offset, recent closed
trade PnL and tokens the agent recently lost on, so agents tighten up after
losing runs and keep that memory across restarts.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

RECENT_WINDOW_SECONDS = 24 * 3600
MAX_RECENT_CLOSES = 50
MAX_THRESHOLD_OFFSET = 25.0
MIN_THRESHOLD_OFFSET = -10.0


def _new_tracker() -> Dict[str, Any]:
    return {
        "win_streak": 0,
        "loss_streak": 0,
        "threshold_offset": 0.0,
        "closes": [],
        "lost_tokens": {},
        "updated_at": None,
    }


class AgentMemory:
    """Thread-safe JSON-backed performance memory, one tracker per agent.

    Schema:
      {
        "agents": {
          "7": {
            "win_streak": 0,
            "loss_streak": 2,
            "threshold_offset": 6.0,
            "closes": [{"ts": 1730832000, "token": "solana:So1...", "pnl": -4.2}],
            "lost_tokens": {"solana:So1...": 1730832000},
            "updated_at": 1730832000
          }
        }
      }
    """

    def __init__(self, path: Optional[str] = None, block_seconds: float = RECENT_WINDOW_SECONDS) -> None:
        """
        Initialize agent memory.

        Args:
            path: JSON file path; None keeps the memory in-process only
            block_seconds: How long a token stays blocked after a losing close
        """
        self.path = path
        self.block_seconds = block_seconds
        self._lock = threading.RLock()
        self._agents: Dict[str, Dict[str, Any]] = {}
        self._load()

    def _load(self) -> None:
        if not self.path or not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Agent memory at {self.path} unreadable, starting fresh: {e}")
            return
        if isinstance(raw, dict) and isinstance(raw.get("agents"), dict):
            for agent_id, tracker in raw["agents"].items():
                merged = _new_tracker()
                merged.update(tracker)
                self._agents[str(agent_id)] = merged

    def _save(self) -> None:
        if not self.path:
            return
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            tmp_path = f"{self.path}.tmp"
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump({"agents": self._agents}, f, ensure_ascii=False, separators=(",", ":"))
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.warning(f"Failed to save agent memory to {self.path}: {e}")

    def _tracker(self, agent_id: int) -> Dict[str, Any]:
        return self._agents.setdefault(str(agent_id), _new_tracker())

    def record_close(
        self,
        *,
        agent_id: int,
        token_key: str,
        pnl_percent: float,
        ts: Optional[float] = None,
    ) -> None:
        """Record one closed trade and update streaks and the threshold offset."""
        now = float(ts if ts is not None else time.time())
        with self._lock:
            tracker = self._tracker(agent_id)
            cutoff = now - RECENT_WINDOW_SECONDS
            closes = [c for c in tracker["closes"] if c["ts"] > cutoff]
            closes.append({"ts": now, "token": token_key, "pnl": float(pnl_percent)})
            tracker["closes"] = closes[-MAX_RECENT_CLOSES:]

            if pnl_percent > 0:
                tracker["win_streak"] += 1
                tracker["loss_streak"] = 0
                if tracker["win_streak"] >= 3:
                    tracker["threshold_offset"] = max(MIN_THRESHOLD_OFFSET, tracker["threshold_offset"] - 2)
            else:
                tracker["loss_streak"] += 1
                tracker["win_streak"] = 0
                step = 5 if tracker["loss_streak"] >= 3 else 3
                tracker["threshold_offset"] = min(MAX_THRESHOLD_OFFSET, tracker["threshold_offset"] + step)
                tracker["lost_tokens"][token_key] = now

            block_cutoff = now - self.block_seconds
            tracker["lost_tokens"] = {
                token: lost_at for token, lost_at in tracker["lost_tokens"].items() if lost_at > block_cutoff
            }
            tracker["updated_at"] = now
            self._save()

    def threshold_offset(self, agent_id: int) -> float:
        with self._lock:
            tracker = self._agents.get(str(agent_id))
            return float(tracker["threshold_offset"]) if tracker else 0.0

    def size_multiplier(self, agent_id: int, now: float) -> float:
        """
        Position size multiplier from streaks and the last 24h of closed PnL.

        Args:
            agent_id: Agent id
            now: Current time (epoch seconds)

        Returns:
            Multiplier clamped to [0.2, 1.2]
        """
        with self._lock:
            tracker = self._agents.get(str(agent_id))
            if tracker is None:
                return 1.0
            loss_streak = tracker["loss_streak"]
            win_streak = tracker["win_streak"]
            cutoff = now - RECENT_WINDOW_SECONDS
            recent_pnl = sum(c["pnl"] for c in tracker["closes"] if c["ts"] > cutoff)

        if loss_streak >= 4:
            multiplier = 0.3
        elif loss_streak >= 3:
            multiplier = 0.5
        elif loss_streak >= 2:
            multiplier = 0.7
        elif win_streak >= 5:
            multiplier = 1.15
        elif win_streak >= 3:
            multiplier = 1.1
        else:
            multiplier = 1.0

        if recent_pnl < -15:
            multiplier *= 0.6
        elif recent_pnl < -8:
            multiplier *= 0.8

        return max(0.2, min(1.2, multiplier))

    def is_token_blocked(self, agent_id: int, token_key: str, now: float) -> bool:
        """True if the agent closed a loss on this token within the block window."""
        with self._lock:
            tracker = self._agents.get(str(agent_id))
            if tracker is None:
                return False
            lost_at = tracker["lost_tokens"].get(token_key)
        return lost_at is not None and now - lost_at < self.block_seconds

    def streaks(self, agent_id: int) -> Dict[str, int]:
        with self._lock:
            tracker = self._agents.get(str(agent_id)) or _new_tracker()
            return {"win_streak": tracker["win_streak"], "loss_streak": tracker["loss_streak"]}

    def summary(self, agent_id: int) -> Dict[str, Any]:
        with self._lock:
            tracker = self._agents.get(str(agent_id)) or _new_tracker()
            closes = list(tracker["closes"])
            wins = sum(1 for c in closes if c["pnl"] > 0)
            return {
                "win_streak": tracker["win_streak"],
                "loss_streak": tracker["loss_streak"],
                "threshold_offset": tracker["threshold_offset"],
                "recent_closes": len(closes),
                "recent_win_rate": wins / len(closes) if closes else 0.0,
                "recent_pnl_sum": sum(c["pnl"] for c in closes),
                "blocked_tokens": sorted(tracker["lost_tokens"]),
            }

    def forget(self, agent_id: int) -> None:
        with self._lock:
            if self._agents.pop(str(agent_id), None) is not None:
                self._save()
