"""
ORACLE - Service

Wires the price pipeline together and exposes it to callers:
token prices, arbitrage opportunities and chain selection.
"""

import asyncio
import time
from typing import Awaitable, Callable, Iterable, Optional, Sequence

import aiohttp

from shared import (
    AgentLogger,
    AiohttpClient,
    ArbitrageOpportunity,
    ArbitrageStats,
    ConfigurationError,
    HttpClient,
    MatrixConfig,
    OrchestratorState,
    RequestSigner,
    TokenRef,
    configure_from_config,
    get_config,
)
from trainman import ChainSnapshot, MultiChainOrchestrator

from .cache import PriceCache
from .detector import ArbitrageEngine
from .fetcher import MAX_BATCH_SIZE, BatchedPriceFetcher
from .providers import CEX_PROVIDER, DEX_PROVIDER, CexTickerSource, DexPriceSource
from .rate_limiter import RateLimiter
from .registry import TokenRegistry


def validate_config(config: MatrixConfig) -> None:
    """Raise ConfigurationError for settings the pipeline cannot run with."""
    arb = config.arbitrage
    if not 0 <= arb.min_spread_pct <= arb.profitable_spread_pct <= arb.high_profit_spread_pct:
        raise ConfigurationError(
            "Spread thresholds must satisfy 0 <= min <= profitable <= high_profit "
            f"(got {arb.min_spread_pct}, {arb.profitable_spread_pct}, {arb.high_profit_spread_pct})"
        )
    if arb.low_risk_max_pct > arb.medium_risk_max_pct:
        raise ConfigurationError("low_risk_max_pct must not exceed medium_risk_max_pct")
    if not 1 <= config.batch.max_batch_size <= MAX_BATCH_SIZE:
        raise ConfigurationError(f"max_batch_size must be in 1..{MAX_BATCH_SIZE}")


class OracleService:
    """
    Entry point for price and arbitrage queries.

    Components are injected so each provider gets its own RateLimiter and
    PriceCache. Use ``create()`` for real network clients or
    ``from_clients()`` to supply your own.
    """

    def __init__(
        self,
        fetcher: BatchedPriceFetcher,
        engine: ArbitrageEngine,
        orchestrator: MultiChainOrchestrator,
        config: Optional[MatrixConfig] = None,
        clients: Sequence[HttpClient] = (),
    ):
        self.logger = AgentLogger("ORACLE-SERVICE")
        self.config = config or MatrixConfig()
        validate_config(self.config)
        self.fetcher = fetcher
        self.engine = engine
        self.orchestrator = orchestrator
        self._clients = list(clients)

    @classmethod
    def create(
        cls,
        config: Optional[MatrixConfig] = None,
        signer: Optional[RequestSigner] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> "OracleService":
        """Build a service backed by aiohttp clients."""
        config = config or get_config()
        validate_config(config)
        configure_from_config(config)
        if config.dex.require_auth and signer is None:
            raise ConfigurationError("On-chain provider requires a request signer")

        dex_client = AiohttpClient(
            config.dex.base_url,
            DEX_PROVIDER,
            signer=signer,
            timeout_s=config.dex.timeout_s,
            session=session,
        )
        cex_client = AiohttpClient(
            config.cex.base_url,
            CEX_PROVIDER,
            timeout_s=config.cex.timeout_s,
            session=session,
        )
        return cls.from_clients(dex_client, cex_client, config)

    @classmethod
    def from_clients(
        cls,
        dex_client: HttpClient,
        cex_client: HttpClient,
        config: Optional[MatrixConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> "OracleService":
        """Build the full pipeline around already-constructed clients."""
        config = config or MatrixConfig()
        validate_config(config)

        def limiter(name: str, section) -> RateLimiter:
            return RateLimiter(
                name,
                base_interval_ms=section.base_interval_ms,
                failure_threshold=section.failure_threshold,
                rate_limit_penalty_ms=section.rate_limit_penalty_ms,
                task_timeout_s=section.task_timeout_s,
                clock=clock,
                sleep=sleep,
            )

        dex_cache = PriceCache(DEX_PROVIDER, config.cache.price_ttl_ms, clock=clock)
        cex_cache = PriceCache(CEX_PROVIDER, config.cache.ticker_ttl_ms, clock=clock)

        dex_source = DexPriceSource(
            dex_client,
            limiter(DEX_PROVIDER, config.dex_rate_limit),
            dex_cache,
            chain_list_ttl_ms=config.cache.chain_list_ttl_ms,
            token_list_ttl_ms=config.cache.token_list_ttl_ms,
        )
        cex_source = CexTickerSource(
            cex_client,
            limiter(CEX_PROVIDER, config.cex_rate_limit),
            cex_cache,
            ticker_ttl_ms=config.cache.ticker_ttl_ms,
        )

        fetcher = BatchedPriceFetcher(
            dex_source,
            dex_cache,
            max_batch_size=config.batch.max_batch_size,
            max_retries=config.batch.max_retries,
            base_retry_delay_ms=config.batch.base_retry_delay_ms,
            batch_ttl_ms=config.cache.batch_price_ttl_ms,
            single_ttl_ms=config.cache.price_ttl_ms,
            sleep=sleep,
        )
        arb = config.arbitrage
        engine = ArbitrageEngine(
            fetcher,
            cex_source,
            TokenRegistry.default(),
            min_spread_pct=arb.min_spread_pct,
            low_risk_max_pct=arb.low_risk_max_pct,
            medium_risk_max_pct=arb.medium_risk_max_pct,
            profitable_spread_pct=arb.profitable_spread_pct,
            high_profit_spread_pct=arb.high_profit_spread_pct,
        )
        orchestrator = MultiChainOrchestrator(
            dex_source,
            fetcher,
            supported_chain_indices=config.orchestrator.supported_chain_indices,
            default_chain_priority=config.orchestrator.default_chain_priority,
            price_prefix_limit=config.orchestrator.price_prefix_limit,
        )
        return cls(fetcher, engine, orchestrator, config, clients=(dex_client, cex_client))

    # ------------------------------------------------------------------
    # Prices
    # ------------------------------------------------------------------

    async def get_token_price(self, chain_index: str, address: str) -> Optional[float]:
        """USD price, or None when unavailable."""
        return await self.fetcher.fetch_price(chain_index, address)

    async def get_multiple_token_prices(
        self,
        requests: Iterable[Sequence[str]],
    ) -> dict[TokenRef, float]:
        """Prices keyed by (chain, address). Unavailable tokens are absent."""
        return await self.fetcher.fetch_prices(requests)

    # ------------------------------------------------------------------
    # Arbitrage
    # ------------------------------------------------------------------

    async def get_arbitrage_opportunities(
        self,
        symbols: Optional[Iterable[str]] = None,
        top_n: Optional[int] = None,
    ) -> list[ArbitrageOpportunity]:
        """Ranked cross-venue opportunities. Empty when nothing qualifies."""
        if top_n is None:
            top_n = self.config.arbitrage.default_top_n
        return await self.engine.find_opportunities(symbols, top_n, self._active_registry())

    def get_arbitrage_stats(self, opportunities: Sequence[ArbitrageOpportunity]) -> ArbitrageStats:
        return self.engine.summarize(opportunities)

    def _active_registry(self) -> TokenRegistry:
        """Curated tokens plus the selected chain's universe once it is ready."""
        snapshot = self.orchestrator.get_snapshot()
        if snapshot.state is not OrchestratorState.READY or not snapshot.tokens:
            return self.engine.registry
        curated = self.engine.registry.tokens(snapshot.chain_index)
        return TokenRegistry.from_tokens([*curated, *snapshot.tokens])

    # ------------------------------------------------------------------
    # Chains
    # ------------------------------------------------------------------

    async def initialize(self) -> ChainSnapshot:
        return await self.orchestrator.initialize()

    async def select_chain(self, chain_index: str) -> ChainSnapshot:
        return await self.orchestrator.select_chain(chain_index)

    async def refresh_prices(self) -> ChainSnapshot:
        return await self.orchestrator.refresh_prices()

    def get_snapshot(self) -> ChainSnapshot:
        return self.orchestrator.get_snapshot()

    def subscribe(self, listener: Callable[[ChainSnapshot], None]) -> Callable[[], None]:
        """Register a state-change listener. Returns an unsubscribe callable."""
        return self.orchestrator.subscribe(listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        for client in self._clients:
            await client.close()

    async def __aenter__(self) -> "OracleService":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def get_stats(self) -> dict:
        """Get statistics for every pipeline component."""
        dex_source = self.fetcher.source
        return {
            "fetcher": self.fetcher.get_stats(),
            "engine": self.engine.get_stats(),
            "orchestrator": self.orchestrator.get_stats(),
            "dex_limiter": dex_source.limiter.get_stats(),
            "cex_limiter": self.engine.cex_source.limiter.get_stats(),
            "dex_cache": self.fetcher.cache.get_stats(),
        }
