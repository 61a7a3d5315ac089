"""
ORACLE - Price Aggregation Engine

"You didn't come here to make the choice. You've already made it.
You're here to try to understand why you made it."

Sees prices on every venue at once without overwhelming any of them.
Fetches, batches and caches token prices, and detects cross-venue
arbitrage between on-chain and centralized exchange markets.
"""

from .cache import CacheEntry, PriceCache
from .detector import ArbitrageEngine, assess_risk, deduplicate, sort_by_profit, summarize
from .fetcher import BatchedPriceFetcher, FetchReport
from .providers import CexTicker, CexTickerSource, DexPriceSource
from .rate_limiter import RateLimiter
from .registry import TokenRegistry
from .service import OracleService, validate_config

__all__ = [
    "RateLimiter",
    "PriceCache",
    "CacheEntry",
    "DexPriceSource",
    "CexTickerSource",
    "CexTicker",
    "BatchedPriceFetcher",
    "FetchReport",
    "TokenRegistry",
    "ArbitrageEngine",
    "assess_risk",
    "deduplicate",
    "sort_by_profit",
    "summarize",
    "OracleService",
    "validate_config",
]
