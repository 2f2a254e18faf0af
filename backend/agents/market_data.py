import logging
import random
from datetime import datetime
from typing import Dict, List

from core.portfolio_state import MarketSnapshot
from core.risk_config import get_config

logger = logging.getLogger("MarketDataAgent")

# Module-level singleton cache: survives across requests within a process.
_SNAPSHOT_CACHE: dict = {}


class MarketDataAgent:
    """
    Upstream market-data provider for the ensemble scan.

    There is no live feed: every snapshot is generated from a random stream
    seeded by (scan_seed, ticker), so the same ticker always yields the same
    numbers within a configuration. Only the field shapes matter downstream.
    """

    CACHE_TTL_SECONDS = 60

    def __init__(self, seed: int = None):
        self.seed = get_config().scan_seed if seed is None else seed

    async def fetch_market_snapshot(self, ticker: str) -> MarketSnapshot:
        now = datetime.utcnow()
        key = (self.seed, ticker)
        cached = _SNAPSHOT_CACHE.get(key)
        if cached:
            cached_time, cached_data = cached
            if (now - cached_time).total_seconds() < self.CACHE_TTL_SECONDS:
                logger.debug(f"Cache hit for {ticker}")
                return cached_data

        rng = random.Random(f"{self.seed}:{ticker}")
        avg_volume = rng.randint(500_000, 50_000_000)
        snapshot = MarketSnapshot(
            price              = round(rng.uniform(5, 500), 2),
            change_percent     = round(rng.uniform(-5, 5), 2),
            implied_volatility = round(rng.uniform(0.12, 0.85), 3),
            volume             = int(avg_volume * rng.uniform(0.5, 2.5)),
            avg_volume         = avg_volume,
            holy_grail         = rng.randint(0, 100),
            squeeze            = rng.randint(0, 100),
        )

        _SNAPSHOT_CACHE[key] = (now, snapshot)
        logger.info(f"Generated snapshot for {ticker}: price={snapshot.price} "
                    f"iv={snapshot.implied_volatility} chg={snapshot.change_percent}%")
        return snapshot

    async def fetch_batch(self, tickers: List[str]) -> Dict[str, MarketSnapshot]:
        return {t: await self.fetch_market_snapshot(t) for t in tickers}


def clear_cache() -> None:
    _SNAPSHOT_CACHE.clear()
