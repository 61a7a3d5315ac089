"""Tests for the Oracle service facade."""

import pytest

from oracle.providers import CexTickerSource, DexPriceSource
from oracle.service import OracleService
from shared import ConfigurationError, MatrixConfig, OrchestratorState
from shared.config import ArbitrageConfig, DexProviderConfig
from fakes import FakeClock, FakeHttpClient, ok, price_item, ticker

SOL = "So11111111111111111111111111111111111111112"
USDC_SOL = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


def solana_dex() -> FakeHttpClient:
    prices = {SOL: 150.0, USDC_SOL: 1.0, "MyTok1111111111111111111111111111111111111": 2.0}

    def price_handler(body):
        return ok([
            price_item(item["chainIndex"], item["tokenContractAddress"], prices[item["tokenContractAddress"]])
            for item in body if item["tokenContractAddress"] in prices
        ])

    return (
        FakeHttpClient("okx-dex")
        .route("POST", DexPriceSource.PRICE_PATH, price_handler)
        .route("GET", DexPriceSource.CHAINS_PATH, ok([
            {"chainIndex": "1", "chainName": "Ethereum"},
            {"chainIndex": "501", "chainName": "Solana"},
            {"chainIndex": "137", "chainName": "Polygon"},
        ]))
        .route("GET", DexPriceSource.TOKENS_PATH, ok([
            {"tokenContractAddress": SOL, "tokenSymbol": "SOL", "decimals": "9"},
            {"tokenContractAddress": "MyTok1111111111111111111111111111111111111", "tokenSymbol": "MYT", "decimals": "6"},
        ]))
    )


def cex() -> FakeHttpClient:
    return FakeHttpClient("okx-cex").route("GET", CexTickerSource.TICKERS_PATH, ok([
        ticker("SOL-USDT", 148.50),
        ticker("MYT-USDT", 2.5),
    ]))


def make_service(config: MatrixConfig = None) -> tuple[OracleService, FakeHttpClient, FakeHttpClient]:
    clock = FakeClock()
    dex_client, cex_client = solana_dex(), cex()
    service = OracleService.from_clients(dex_client, cex_client, config, clock=clock, sleep=clock.sleep)
    return service, dex_client, cex_client


class TestOracleServiceConfig:
    """Test suite for construction-time validation."""

    def test_threshold_order_rejected(self):
        """Test out-of-order thresholds fail at construction."""
        config = MatrixConfig(arbitrage=ArbitrageConfig(min_spread_pct=1.0, profitable_spread_pct=0.5))
        with pytest.raises(ConfigurationError):
            make_service(config)

    def test_risk_bounds_rejected(self):
        """Test inverted risk bounds fail at construction."""
        config = MatrixConfig(arbitrage=ArbitrageConfig(low_risk_max_pct=3.0, medium_risk_max_pct=2.0))
        with pytest.raises(ConfigurationError):
            make_service(config)

    def test_create_requires_signer(self):
        """Test an authenticated provider without a signer is refused."""
        config = MatrixConfig(dex=DexProviderConfig(require_auth=True))
        with pytest.raises(ConfigurationError):
            OracleService.create(config)

    @pytest.mark.asyncio
    async def test_create_with_signer(self):
        """Test create wires aiohttp clients when a signer is supplied."""
        config = MatrixConfig(dex=DexProviderConfig(require_auth=True))
        service = OracleService.create(config, signer=lambda method, path, body: {"OK-ACCESS-KEY": "k"})
        assert service.fetcher.source.provider == "okx-dex"
        await service.close()


class TestOracleService:
    """Test suite for OracleService."""

    @pytest.mark.asyncio
    async def test_get_token_price(self):
        """Test single price lookup and unavailable tokens."""
        service, _, _ = make_service()

        assert await service.get_token_price("501", SOL) == 150.0
        assert await service.get_token_price("501", "Unknown111111111111111111111111111111111111") is None

    @pytest.mark.asyncio
    async def test_get_multiple_token_prices(self):
        """Test batch lookup keyed by (chain, address)."""
        service, _, _ = make_service()

        prices = await service.get_multiple_token_prices([("501", SOL), ("501", USDC_SOL)])
        assert prices == {("501", SOL): 150.0, ("501", USDC_SOL): 1.0}

    @pytest.mark.asyncio
    async def test_arbitrage_with_default_registry(self):
        """Test opportunities before any chain is selected."""
        service, _, _ = make_service()

        opps = await service.get_arbitrage_opportunities(["SOL", "MYT"])

        assert [o.symbol for o in opps] == ["SOL"]
        stats = service.get_arbitrage_stats(opps)
        assert stats.unique == 1
        assert stats.high_profit == 1

    @pytest.mark.asyncio
    async def test_arbitrage_uses_selected_chain_tokens(self):
        """Test the ready chain's token universe extends symbol resolution."""
        service, _, _ = make_service()

        snapshot = await service.initialize()
        assert snapshot.state is OrchestratorState.READY
        assert snapshot.chain_index == "501"

        opps = await service.get_arbitrage_opportunities(["SOL", "MYT"])
        assert [o.symbol for o in opps] == ["MYT", "SOL"]

    @pytest.mark.asyncio
    async def test_default_top_n(self):
        """Test the configured top-N applies when none is given."""
        config = MatrixConfig(arbitrage=ArbitrageConfig(default_top_n=1))
        service, _, _ = make_service(config)
        await service.initialize()

        opps = await service.get_arbitrage_opportunities(["SOL", "MYT"])
        assert [o.symbol for o in opps] == ["MYT"]

    @pytest.mark.asyncio
    async def test_subscribe_and_select(self):
        """Test listeners see chain selection through the service."""
        service, _, _ = make_service()
        seen = []
        unsubscribe = service.subscribe(lambda snap: seen.append(snap.state))

        await service.initialize()
        unsubscribe()
        await service.refresh_prices()

        assert seen[0] is OrchestratorState.LOADING
        assert seen[-1] is OrchestratorState.READY
        count = len(seen)
        await service.select_chain("1")
        assert len(seen) == count

    @pytest.mark.asyncio
    async def test_close_releases_clients(self):
        """Test close() closes both clients."""
        service, dex_client, cex_client = make_service()
        async with service:
            pass
        assert dex_client.closed
        assert cex_client.closed

    @pytest.mark.asyncio
    async def test_stats(self):
        """Test stats cover every component."""
        service, _, _ = make_service()
        await service.get_token_price("501", SOL)

        stats = service.get_stats()
        assert stats["dex_limiter"]["total_requests"] == 1
        assert stats["orchestrator"]["state"] == "uninitialized"
        assert set(stats) >= {"fetcher", "engine", "dex_cache", "cex_limiter"}

    @pytest.mark.asyncio
    async def test_large_universe_prices_only_listed_symbols(self):
        """Test a wide chain universe costs one on-chain lookup per listed symbol."""
        universe = [
            {"tokenContractAddress": f"Tok{n:040d}", "tokenSymbol": f"T{n}", "decimals": "9"}
            for n in range(200)
        ]

        def price_handler(body):
            return ok([
                price_item(item["chainIndex"], item["tokenContractAddress"],
                           150.0 if item["tokenContractAddress"] == SOL else 1.0)
                for item in body
            ])

        clock = FakeClock()
        dex_client = (
            FakeHttpClient("okx-dex")
            .route("POST", DexPriceSource.PRICE_PATH, price_handler)
            .route("GET", DexPriceSource.CHAINS_PATH, ok([{"chainIndex": "501", "chainName": "Solana"}]))
            .route("GET", DexPriceSource.TOKENS_PATH, ok(universe))
        )
        cex_client = FakeHttpClient("okx-cex").route(
            "GET", CexTickerSource.TICKERS_PATH, ok([ticker("SOL-USDT", 148.50)])
        )
        service = OracleService.from_clients(dex_client, cex_client, clock=clock, sleep=clock.sleep)
        await service.initialize()
        dex_client.calls.clear()

        opps = await service.get_arbitrage_opportunities()

        assert [o.symbol for o in opps] == ["SOL"]
        assert dex_client.calls_to("POST") == [[{"chainIndex": "501", "tokenContractAddress": SOL}]]
