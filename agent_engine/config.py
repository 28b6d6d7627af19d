"""Configuration module for the agent execution engine."""

import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv


def _get_int(name: str, default: str) -> int:
    try:
        return int(os.getenv(name, default))
    except ValueError:
        raise ValueError(f"{name} must be a valid integer")


def _get_float(name: str, default: str) -> float:
    try:
        return float(os.getenv(name, default))
    except ValueError:
        raise ValueError(f"{name} must be a valid float")


@dataclass
class Config:
    """Configuration for the execution engine loaded from environment variables."""

    # Mode
    run_mode: str = "paper"  # "paper" | "live"
    trading_chain: str = "solana"

    # Scheduler
    loop_interval_seconds: int = 10
    max_concurrent_agents: int = 8
    agent_deadline_seconds: float = 8.0

    # Signal aggregation
    stream_timeout_seconds: float = 5.0
    snapshot_cache_size: int = 4
    indicator_cache_ttl_seconds: float = 45.0
    price_history_max_bars: int = 200
    market_data_url: str = "https://api.dexscreener.com"
    fear_greed_url: str = "https://api.alternative.me/fng/"
    safety_url: str = "https://api.gopluslabs.io/api/v1"
    news_url: str = "https://cryptopanic.com/api/free/v1/posts/"
    social_url: str = "https://lunarcrush.com/api4/public"
    cryptopanic_api_key: Optional[str] = None
    lunarcrush_api_key: Optional[str] = None

    # Risk
    cooldown_conviction_boost: float = 15.0
    cooldown_size_factor: float = 0.5

    # Learning
    blacklist_ttl_seconds: int = 86400

    # Persistence
    persist_dir: str = "data"
    persist_batch_size: int = 200
    persist_max_retries: int = 3
    persist_backoff_seconds: float = 0.5
    agent_memory_path: Optional[str] = None

    # Execution
    execution_service_url: Optional[str] = None
    paper_slippage_bps: float = 30.0

    # Exit behaviour
    partial_profit_taking: bool = True

    # Control API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    @classmethod
    def from_env(cls) -> "Config":
        """
        Load configuration from environment variables with validation.

        Returns:
            Config: Validated configuration object

        Raises:
            ValueError: If fields are missing or invalid
        """
        # Load .env file if it exists
        load_dotenv()

        run_mode = os.getenv("RUN_MODE", "paper").lower()
        execution_service_url = os.getenv("EXECUTION_SERVICE_URL") or None

        loop_interval_seconds = _get_int("LOOP_INTERVAL_SECONDS", "10")
        max_concurrent_agents = _get_int("MAX_CONCURRENT_AGENTS", "8")
        agent_deadline_seconds = _get_float("AGENT_DEADLINE_SECONDS", "8")
        stream_timeout_seconds = _get_float("STREAM_TIMEOUT_SECONDS", "5")
        snapshot_cache_size = _get_int("SNAPSHOT_CACHE_SIZE", "4")
        indicator_cache_ttl_seconds = _get_float("INDICATOR_CACHE_TTL_SECONDS", "45")
        price_history_max_bars = _get_int("PRICE_HISTORY_MAX_BARS", "200")
        cooldown_conviction_boost = _get_float("COOLDOWN_CONVICTION_BOOST", "15")
        cooldown_size_factor = _get_float("COOLDOWN_SIZE_FACTOR", "0.5")
        blacklist_ttl_seconds = _get_int("BLACKLIST_TTL_SECONDS", "86400")
        persist_batch_size = _get_int("PERSIST_BATCH_SIZE", "200")
        persist_max_retries = _get_int("PERSIST_MAX_RETRIES", "3")
        persist_backoff_seconds = _get_float("PERSIST_BACKOFF_SECONDS", "0.5")
        paper_slippage_bps = _get_float("PAPER_SLIPPAGE_BPS", "30")
        api_port = _get_int("API_PORT", "8000")

        partial_profit_taking = os.getenv("PARTIAL_PROFIT_TAKING", "true").lower() in ("1", "true", "yes")

        # Validate ranges
        if run_mode not in ("paper", "live"):
            raise ValueError(f"RUN_MODE must be 'paper' or 'live', got '{run_mode}'")

        if run_mode == "live" and not execution_service_url:
            raise ValueError("EXECUTION_SERVICE_URL is required when RUN_MODE=live")

        if loop_interval_seconds <= 0:
            raise ValueError("LOOP_INTERVAL_SECONDS must be positive")

        if max_concurrent_agents <= 0:
            raise ValueError("MAX_CONCURRENT_AGENTS must be positive")

        if not 0 < agent_deadline_seconds <= loop_interval_seconds:
            raise ValueError("AGENT_DEADLINE_SECONDS must be positive and not exceed LOOP_INTERVAL_SECONDS")

        if stream_timeout_seconds <= 0:
            raise ValueError("STREAM_TIMEOUT_SECONDS must be positive")

        if snapshot_cache_size <= 0:
            raise ValueError("SNAPSHOT_CACHE_SIZE must be positive")

        if price_history_max_bars < 60:
            raise ValueError("PRICE_HISTORY_MAX_BARS must be at least 60")

        if not 0.0 < cooldown_size_factor <= 1.0:
            raise ValueError("COOLDOWN_SIZE_FACTOR must be between 0 and 1")

        if cooldown_conviction_boost < 0:
            raise ValueError("COOLDOWN_CONVICTION_BOOST must be non-negative")

        if persist_batch_size <= 0:
            raise ValueError("PERSIST_BATCH_SIZE must be positive")

        if persist_max_retries < 0:
            raise ValueError("PERSIST_MAX_RETRIES must be non-negative")

        if persist_backoff_seconds < 0:
            raise ValueError("PERSIST_BACKOFF_SECONDS must be non-negative")

        return cls(
            run_mode=run_mode,
            trading_chain=os.getenv("TRADING_CHAIN", "solana"),
            loop_interval_seconds=loop_interval_seconds,
            max_concurrent_agents=max_concurrent_agents,
            agent_deadline_seconds=agent_deadline_seconds,
            stream_timeout_seconds=stream_timeout_seconds,
            snapshot_cache_size=snapshot_cache_size,
            indicator_cache_ttl_seconds=indicator_cache_ttl_seconds,
            price_history_max_bars=price_history_max_bars,
            market_data_url=os.getenv("MARKET_DATA_URL", "https://api.dexscreener.com"),
            fear_greed_url=os.getenv("FEAR_GREED_URL", "https://api.alternative.me/fng/"),
            safety_url=os.getenv("SAFETY_URL", "https://api.gopluslabs.io/api/v1"),
            news_url=os.getenv("NEWS_URL", "https://cryptopanic.com/api/free/v1/posts/"),
            social_url=os.getenv("SOCIAL_URL", "https://lunarcrush.com/api4/public"),
            cryptopanic_api_key=os.getenv("CRYPTOPANIC_API_KEY") or None,
            lunarcrush_api_key=os.getenv("LUNARCRUSH_API_KEY") or None,
            cooldown_conviction_boost=cooldown_conviction_boost,
            cooldown_size_factor=cooldown_size_factor,
            blacklist_ttl_seconds=blacklist_ttl_seconds,
            persist_dir=os.getenv("PERSIST_DIR", "data"),
            persist_batch_size=persist_batch_size,
            persist_max_retries=persist_max_retries,
            persist_backoff_seconds=persist_backoff_seconds,
            agent_memory_path=os.getenv("AGENT_MEMORY_PATH") or None,
            execution_service_url=execution_service_url,
            paper_slippage_bps=paper_slippage_bps,
            partial_profit_taking=partial_profit_taking,
            api_host=os.getenv("API_HOST", "0.0.0.0"),
            api_port=api_port,
        )

    @property
    def is_live(self) -> bool:
        return self.run_mode == "live"
