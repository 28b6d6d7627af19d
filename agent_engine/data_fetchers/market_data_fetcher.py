"""Market data fetching for the token universe (DexScreener-compatible API)."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests

from agent_engine.errors import UpstreamUnavailable
from agent_engine.feed_data import MarketPair

logger = logging.getLogger(__name__)


def _to_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def parse_pair(raw: Dict[str, Any], boosted: bool = False) -> Optional[MarketPair]:
    """
    Parse one DexScreener pair payload into a MarketPair.

    Args:
        raw: Pair dictionary as returned by the API
        boosted: Whether the token came from the boosted list

    Returns:
        MarketPair, or None if the payload has no usable price
    """
    base = raw.get("baseToken") or {}
    address = base.get("address")
    price = _to_float(raw.get("priceUsd"))
    if not address or price <= 0:
        return None

    changes = raw.get("priceChange") or {}
    volume = raw.get("volume") or {}
    txns = raw.get("txns") or {}
    txns_1h = txns.get("h1") or {}
    txns_24h = txns.get("h24") or {}
    makers = raw.get("makers") or {}
    created_ms = raw.get("pairCreatedAt")

    return MarketPair(
        chain=raw.get("chainId", "unknown"),
        address=address,
        symbol=base.get("symbol", "UNKNOWN"),
        price=price,
        pair_address=raw.get("pairAddress", ""),
        price_change_5m=_to_float(changes.get("m5")),
        price_change_1h=_to_float(changes.get("h1")),
        price_change_6h=_to_float(changes.get("h6")),
        price_change_24h=_to_float(changes.get("h24")),
        volume_1h=_to_float(volume.get("h1")),
        volume_24h=_to_float(volume.get("h24")),
        buys_1h=int(txns_1h.get("buys") or 0),
        sells_1h=int(txns_1h.get("sells") or 0),
        buys_24h=int(txns_24h.get("buys") or 0),
        sells_24h=int(txns_24h.get("sells") or 0),
        makers_24h=int(makers.get("h24") or 0),
        liquidity_usd=_to_float((raw.get("liquidity") or {}).get("usd")),
        market_cap=_to_float(raw.get("marketCap") or raw.get("fdv")),
        created_at=_to_float(created_ms) / 1000 if created_ms else None,
        boosted=boosted,
        trending=True,
    )


class MarketDataFeed(ABC):
    """Source of the tradable token universe with current market data."""

    @abstractmethod
    def fetch_pairs(self) -> List[MarketPair]:
        """Return one MarketPair per token; raise UpstreamUnavailable on failure."""


class MarketDataFetcher(MarketDataFeed):
    """Fetches trending tokens and their most liquid pairs."""

    def __init__(self, config, session: Optional[requests.Session] = None, max_tokens: int = 30):
        """
        Initialize market data fetcher.

        Args:
            config: Configuration object
            session: Optional shared HTTP session
            max_tokens: Maximum number of tokens per cycle
        """
        self.base_url = config.market_data_url.rstrip("/")
        self.chain = config.trading_chain
        self.timeout = config.stream_timeout_seconds
        self.max_tokens = max_tokens
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})

    def _get(self, path: str) -> Any:
        try:
            response = self.session.get(f"{self.base_url}/{path}", timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise UpstreamUnavailable(f"market data request failed ({path}): {e}") from e

    def fetch_pairs(self) -> List[MarketPair]:
        """
        Fetch the boosted token list and resolve each token's best pair.

        Returns:
            List of MarketPair, highest liquidity pair per token
        """
        boosts = self._get("token-boosts/top/v1")
        if not isinstance(boosts, list):
            raise UpstreamUnavailable("market data returned an unexpected boost payload")

        addresses: List[str] = []
        for item in boosts:
            if item.get("chainId") == self.chain and item.get("tokenAddress"):
                if item["tokenAddress"] not in addresses:
                    addresses.append(item["tokenAddress"])
            if len(addresses) >= self.max_tokens:
                break

        if not addresses:
            logger.info(f"No boosted tokens found on {self.chain}")
            return []

        raw_pairs = self._get(f"tokens/v1/{self.chain}/{','.join(addresses)}")
        if not isinstance(raw_pairs, list):
            raise UpstreamUnavailable("market data returned an unexpected pairs payload")

        best: Dict[str, MarketPair] = {}
        for raw in raw_pairs:
            pair = parse_pair(raw, boosted=True)
            if pair is None:
                continue
            current = best.get(pair.key)
            if current is None or pair.liquidity_usd > current.liquidity_usd:
                best[pair.key] = pair

        logger.debug(f"Fetched {len(best)} pairs for {len(addresses)} tokens on {self.chain}")
        return list(best.values())
