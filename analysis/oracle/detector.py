"""
ORACLE - Arbitrage Engine

Joins on-chain prices with centralized exchange tickers by symbol and
ranks the cross-venue spreads.
"""

import time
from typing import Iterable, Optional, Sequence

from shared import (
    AgentLogger,
    ArbitrageOpportunity,
    ArbitrageStats,
    PriceQuote,
    ProviderError,
    RiskLevel,
    TokenRef,
)

from .fetcher import BatchedPriceFetcher
from .providers import CexTicker, CexTickerSource
from .registry import TokenRegistry


# ============================================================================
# PURE HELPERS
# ============================================================================

def compute_spread(price_a: float, price_b: float) -> tuple[float, float]:
    """(|A - B|, |A - B| / min(A, B) * 100). Both prices must be > 0."""
    if price_a <= 0 or price_b <= 0:
        raise ValueError("prices must be positive")
    spread = abs(price_a - price_b)
    return spread, spread / min(price_a, price_b) * 100


def assess_risk(
    profit_percent: float,
    low_max_pct: float = 1.0,
    medium_max_pct: float = 2.0,
) -> RiskLevel:
    """Bucket a spread: low <= low_max, medium <= medium_max, else high."""
    magnitude = abs(profit_percent)
    if magnitude <= low_max_pct:
        return RiskLevel.LOW
    if magnitude <= medium_max_pct:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


def deduplicate(opportunities: Iterable[ArbitrageOpportunity]) -> list[ArbitrageOpportunity]:
    """One entry per symbol, keeping the larger |profit_percent|."""
    best: dict[str, ArbitrageOpportunity] = {}
    for opp in opportunities:
        current = best.get(opp.symbol)
        if current is None or abs(opp.profit_percent) > abs(current.profit_percent):
            best[opp.symbol] = opp
    return list(best.values())


def sort_by_profit(
    opportunities: Iterable[ArbitrageOpportunity],
    top_n: Optional[int] = None,
) -> list[ArbitrageOpportunity]:
    """Descending by |profit_percent|, optionally truncated."""
    ranked = sorted(opportunities, key=lambda o: abs(o.profit_percent), reverse=True)
    if top_n is not None:
        ranked = ranked[:max(0, top_n)]
    return ranked


def summarize(
    opportunities: Sequence[ArbitrageOpportunity],
    profitable_pct: float = 0.5,
    high_profit_pct: float = 1.0,
) -> ArbitrageStats:
    """Aggregate counts and spreads for display."""
    unique = deduplicate(opportunities)
    stats = ArbitrageStats(
        total=len(opportunities),
        unique=len(unique),
        profitable=sum(1 for o in unique if o.profit_percent > profitable_pct),
        high_profit=sum(1 for o in unique if abs(o.profit_percent) >= high_profit_pct),
        total_volume=sum(o.volume_24h for o in opportunities),
    )

    if opportunities:
        stats.avg_spread_pct = sum(abs(o.profit_percent) for o in opportunities) / len(opportunities)
        stats.best_spread_pct = max(o.profit_percent for o in opportunities)

    for opp in unique:
        stats.by_risk[opp.risk.value] = stats.by_risk.get(opp.risk.value, 0) + 1

    return stats


# ============================================================================
# ENGINE
# ============================================================================

class ArbitrageEngine:
    """
    Cross-venue spread detector.

    Both venues are queried in parallel through their own rate limiters.
    Symbols missing on either side are dropped silently; a failure of the
    exchange feed yields no opportunities rather than an exception.
    """

    def __init__(
        self,
        fetcher: BatchedPriceFetcher,
        cex_source: CexTickerSource,
        registry: Optional[TokenRegistry] = None,
        min_spread_pct: float = 0.1,
        low_risk_max_pct: float = 1.0,
        medium_risk_max_pct: float = 2.0,
        profitable_spread_pct: float = 0.5,
        high_profit_spread_pct: float = 1.0,
    ):
        if min_spread_pct < 0:
            raise ValueError("min_spread_pct must be >= 0")
        if low_risk_max_pct > medium_risk_max_pct:
            raise ValueError("low_risk_max_pct must not exceed medium_risk_max_pct")

        self.logger = AgentLogger("ORACLE-ENGINE")
        self.fetcher = fetcher
        self.cex_source = cex_source
        self.registry = registry or TokenRegistry.default()
        self.min_spread_pct = min_spread_pct
        self.low_risk_max_pct = low_risk_max_pct
        self.medium_risk_max_pct = medium_risk_max_pct
        self.profitable_spread_pct = profitable_spread_pct
        self.high_profit_spread_pct = high_profit_spread_pct

        # Statistics
        self.scans = 0
        self.opportunities_found = 0
        self.pairs_joined = 0
        self.cex_failures = 0

        self.logger.info(
            "Arbitrage engine initialized",
            min_spread_pct=min_spread_pct,
            symbols=len(self.registry),
        )

    async def find_opportunities(
        self,
        symbols: Optional[Iterable[str]] = None,
        top_n: Optional[int] = None,
        registry: Optional[TokenRegistry] = None,
    ) -> list[ArbitrageOpportunity]:
        """Ranked opportunities for ``symbols`` (default: every registered symbol)."""
        start_time = time.time()
        registry = registry or self.registry
        self.scans += 1

        wanted = list(dict.fromkeys(
            s.strip().upper() for s in (symbols if symbols is not None else registry.symbols())
            if s and s.strip()
        ))

        resolved: dict[str, TokenRef] = {}
        for symbol in wanted:
            ref = registry.resolve(symbol)
            if ref is None:
                self.logger.debug("Symbol not in registry", symbol=symbol)
                continue
            resolved[symbol] = ref

        if not resolved:
            return []

        # On-chain lookups only for exchange-listed symbols
        tickers = await self._fetch_tickers(list(resolved))
        listed = {symbol: ref for symbol, ref in resolved.items() if symbol in tickers}
        if not listed:
            self.logger.info("No exchange tickers for requested symbols", resolved=len(resolved))
            return []

        quotes = await self.fetcher.fetch_quotes(listed.values())

        opportunities = []
        for symbol, ref in listed.items():
            opp = self._evaluate(symbol, quotes.get(ref), tickers.get(symbol))
            if opp is not None:
                opportunities.append(opp)

        ranked = sort_by_profit(deduplicate(opportunities), top_n)
        self.opportunities_found += len(ranked)

        self.logger.info(
            "Scan completed",
            symbols=len(wanted),
            resolved=len(resolved),
            listed=len(listed),
            onchain_prices=len(quotes),
            cex_tickers=len(tickers),
            opportunities=len(ranked),
            scan_time_ms=round((time.time() - start_time) * 1000, 2),
        )
        return ranked

    async def _fetch_tickers(self, symbols: list[str]) -> dict[str, CexTicker]:
        try:
            return await self.cex_source.fetch_tickers_for(symbols)
        except ProviderError as e:
            self.cex_failures += 1
            self.logger.error("Exchange ticker fetch failed", error=str(e))
            return {}

    def _evaluate(
        self,
        symbol: str,
        quote: Optional[PriceQuote],
        ticker: Optional[CexTicker],
    ) -> Optional[ArbitrageOpportunity]:
        """Spread for one joined pair, or None if absent or below threshold."""
        if quote is None or ticker is None:
            return None
        if quote.price <= 0 or ticker.last <= 0:
            return None

        self.pairs_joined += 1
        spread, profit_percent = compute_spread(quote.price, ticker.last)
        if profit_percent < self.min_spread_pct:
            return None

        return ArbitrageOpportunity(
            symbol=symbol,
            price_a=quote.price,
            price_b=ticker.last,
            price_spread=spread,
            profit_percent=profit_percent,
            volume_24h=ticker.quote_volume_24h,
            risk=assess_risk(profit_percent, self.low_risk_max_pct, self.medium_risk_max_pct),
            observed_at_ms=int(time.time() * 1000),
            chain_index=quote.chain_index,
            token_address=quote.token_address,
            liquidity=quote.volume_24h or 0.0,
        )

    def summarize(self, opportunities: Sequence[ArbitrageOpportunity]) -> ArbitrageStats:
        """Aggregate stats using this engine's thresholds."""
        return summarize(opportunities, self.profitable_spread_pct, self.high_profit_spread_pct)

    def get_stats(self) -> dict:
        """Get engine statistics."""
        return {
            "scans": self.scans,
            "pairs_joined": self.pairs_joined,
            "opportunities_found": self.opportunities_found,
            "cex_failures": self.cex_failures,
        }
