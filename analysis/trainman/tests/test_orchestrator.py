"""Tests for the Trainman multi-chain orchestrator."""

import asyncio

import pytest

from oracle.cache import PriceCache
from oracle.fetcher import BatchedPriceFetcher
from oracle.providers import DexPriceSource
from oracle.rate_limiter import RateLimiter
from shared import OrchestratorState, TransientProviderError
from fakes import FakeClock, FakeHttpClient, ok, price_item
from trainman import MultiChainOrchestrator

CHAINS = ok([
    {"chainIndex": "1", "chainName": "Ethereum"},
    {"chainIndex": "56", "chainName": "BNB Chain"},
    {"chainIndex": "501", "chainName": "Solana"},
    {"chainIndex": "137", "chainName": "Polygon"},
])


def evm_address(n: int) -> str:
    return "0x" + f"{n + 1:040x}"


def sol_address(n: int) -> str:
    return f"Sol{n:040d}"


TOKENS = {
    "1": [evm_address(n) for n in range(40)],
    "56": [evm_address(100 + n) for n in range(3)],
    "501": [sol_address(n) for n in range(5)],
}


def token_handler(params):
    chain = params["chainIndex"]
    return ok([
        {"tokenContractAddress": address, "tokenSymbol": f"T{i}", "decimals": "18"}
        for i, address in enumerate(TOKENS.get(chain, []))
    ])


def price_handler(body):
    return ok([
        price_item(item["chainIndex"], item["tokenContractAddress"], 1.0)
        for item in body
    ])


def make_client(prices=price_handler, chains=CHAINS) -> FakeHttpClient:
    return (
        FakeHttpClient("okx-dex")
        .route("GET", DexPriceSource.CHAINS_PATH, chains)
        .route("GET", DexPriceSource.TOKENS_PATH, token_handler)
        .route("POST", DexPriceSource.PRICE_PATH, prices)
    )


def make_orchestrator(client: FakeHttpClient, **kwargs) -> MultiChainOrchestrator:
    clock = FakeClock()
    cache = PriceCache("okx-dex", clock=clock)
    limiter = RateLimiter("okx-dex", base_interval_ms=0, clock=clock, sleep=clock.sleep)
    source = DexPriceSource(client, limiter, cache)
    fetcher = BatchedPriceFetcher(source, cache, max_retries=0, sleep=clock.sleep)
    return MultiChainOrchestrator(source, fetcher, **kwargs)


class TestMultiChainOrchestrator:
    """Test suite for MultiChainOrchestrator."""

    def test_initial_state(self):
        """Test a fresh orchestrator has no chain."""
        orchestrator = make_orchestrator(make_client())
        snapshot = orchestrator.get_snapshot()
        assert snapshot.state is OrchestratorState.UNINITIALIZED
        assert snapshot.chain is None
        assert not orchestrator.is_initialized()

    @pytest.mark.asyncio
    async def test_initialize_selects_solana(self):
        """Test initialization filters chains and prefers Solana."""
        orchestrator = make_orchestrator(make_client())

        snapshot = await orchestrator.initialize()

        assert [c.chain_index for c in orchestrator.get_supported_chains()] == ["1", "56", "501"]
        assert snapshot.state is OrchestratorState.READY
        assert snapshot.chain_index == "501"
        assert len(snapshot.tokens) == 5
        assert snapshot.price_of(sol_address(0)) == 1.0

    @pytest.mark.asyncio
    async def test_default_priority_fallback(self):
        """Test Ethereum is chosen when Solana is unavailable."""
        chains = ok([
            {"chainIndex": "56", "chainName": "BNB Chain"},
            {"chainIndex": "1", "chainName": "Ethereum"},
        ])
        orchestrator = make_orchestrator(make_client(chains=chains))

        snapshot = await orchestrator.initialize()
        assert snapshot.chain_index == "1"

    @pytest.mark.asyncio
    async def test_no_supported_chains(self):
        """Test initialization fails cleanly without supported chains."""
        orchestrator = make_orchestrator(make_client(chains=ok([{"chainIndex": "137", "chainName": "Polygon"}])))

        snapshot = await orchestrator.initialize()

        assert snapshot.state is OrchestratorState.ERROR
        assert snapshot.error == "No supported chains found"

    @pytest.mark.asyncio
    async def test_chain_list_failure(self):
        """Test a provider failure moves to the error state."""
        client = make_client(chains=TransientProviderError("HTTP 503", status=503))
        orchestrator = make_orchestrator(client)

        snapshot = await orchestrator.initialize()
        assert snapshot.state is OrchestratorState.ERROR
        assert "503" in snapshot.error

    @pytest.mark.asyncio
    async def test_price_prefix_bounded(self):
        """Test only the first N tokens are priced."""
        client = make_client()
        orchestrator = make_orchestrator(client, price_prefix_limit=30)
        await orchestrator.initialize()
        client.calls.clear()

        snapshot = await orchestrator.select_chain("1")

        assert len(snapshot.tokens) == 40
        assert len(snapshot.prices) == 30
        requested = sum(len(body) for body in client.calls_to("POST"))
        assert requested == 30

    @pytest.mark.asyncio
    async def test_unsupported_chain_rejected(self):
        """Test selecting an unknown chain leaves state untouched."""
        orchestrator = make_orchestrator(make_client())
        await orchestrator.initialize()

        with pytest.raises(ValueError):
            await orchestrator.select_chain("137")
        assert orchestrator.get_snapshot().chain_index == "501"
        assert orchestrator.state is OrchestratorState.READY

    @pytest.mark.asyncio
    async def test_listener_sequence(self):
        """Test listeners are notified on every change, snapshot cleared first."""
        orchestrator = make_orchestrator(make_client())
        await orchestrator.initialize()
        seen = []
        orchestrator.subscribe(seen.append)

        await orchestrator.select_chain("56")

        first = seen[0]
        assert first.state is OrchestratorState.LOADING
        assert first.chain_index == "56"
        assert first.tokens == ()
        assert len(first.prices) == 0
        assert seen[-1].state is OrchestratorState.READY
        assert all(s.chain_index == "56" for s in seen)

    @pytest.mark.asyncio
    async def test_listener_errors_isolated(self):
        """Test one failing listener does not block the others."""
        orchestrator = make_orchestrator(make_client())
        seen = []

        def broken(snapshot):
            raise RuntimeError("boom")

        orchestrator.subscribe(broken)
        orchestrator.subscribe(seen.append)
        await orchestrator.initialize()

        assert seen
        assert orchestrator.get_stats()["listener_errors"] == len(seen)

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        """Test unsubscribed listeners stop receiving updates."""
        orchestrator = make_orchestrator(make_client())
        seen = []
        unsubscribe = orchestrator.subscribe(seen.append)
        unsubscribe()
        unsubscribe()

        await orchestrator.initialize()
        assert seen == []

    @pytest.mark.asyncio
    async def test_empty_token_list(self):
        """Test a chain without tokens is ready with an empty snapshot."""
        client = make_client()
        client.route("GET", DexPriceSource.TOKENS_PATH, ok([]))
        orchestrator = make_orchestrator(client)

        snapshot = await orchestrator.initialize()

        assert snapshot.state is OrchestratorState.READY
        assert snapshot.tokens == ()
        assert client.calls_to("POST") == []

    @pytest.mark.asyncio
    async def test_refresh_prices(self):
        """Test refresh replaces prices for the current chain."""
        client = make_client()
        orchestrator = make_orchestrator(client)
        await orchestrator.initialize()
        orchestrator.fetcher.cache.clear()

        client.route("POST", DexPriceSource.PRICE_PATH, lambda body: ok([
            price_item(item["chainIndex"], item["tokenContractAddress"], 2.0) for item in body
        ]))
        snapshot = await orchestrator.refresh_prices()

        assert snapshot.chain_index == "501"
        assert snapshot.price_of(sol_address(0)) == 2.0

    @pytest.mark.asyncio
    async def test_refresh_before_initialize(self):
        """Test refresh without a chain is a no-op."""
        client = make_client()
        orchestrator = make_orchestrator(client)

        snapshot = await orchestrator.refresh_prices()
        assert snapshot.state is OrchestratorState.UNINITIALIZED
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_switch_during_inflight_fetch(self):
        """Test late prices from the previous chain never reach the new snapshot."""
        gate = asyncio.Event()

        async def gated_prices(body):
            if body[0]["chainIndex"] == "1":
                await gate.wait()
            return price_handler(body)

        client = make_client(prices=gated_prices)
        orchestrator = make_orchestrator(client, price_prefix_limit=5)
        await orchestrator.initialize()

        first = asyncio.create_task(orchestrator.select_chain("1"))
        for _ in range(200):
            await asyncio.sleep(0)
            if any(body[0]["chainIndex"] == "1" for body in client.calls_to("POST")):
                break
        assert orchestrator.get_snapshot().chain_index == "1"

        second = asyncio.create_task(orchestrator.select_chain("56"))
        await asyncio.sleep(0)

        mid = orchestrator.get_snapshot()
        assert mid.chain_index == "56"
        assert mid.state is OrchestratorState.LOADING
        assert mid.tokens == ()
        assert len(mid.prices) == 0

        gate.set()
        await asyncio.gather(first, second)

        final = orchestrator.get_snapshot()
        assert final.state is OrchestratorState.READY
        assert final.chain_index == "56"
        assert {t.address for t in final.tokens} == set(TOKENS["56"])
        assert set(final.prices) == set(TOKENS["56"])
        assert orchestrator.get_stats()["discarded_results"] == 1

    @pytest.mark.asyncio
    async def test_reinitialize_clears_previous_chain(self):
        """Test a second initialize never publishes the old chain's data."""
        client = make_client()
        orchestrator = make_orchestrator(client)
        ready = await orchestrator.initialize()
        assert ready.tokens

        orchestrator.source.cache.clear()
        client.route("GET", DexPriceSource.CHAINS_PATH, TransientProviderError("HTTP 503", status=503))
        seen = []
        orchestrator.subscribe(seen.append)

        snapshot = await orchestrator.initialize()

        assert seen[0].state is OrchestratorState.LOADING
        assert seen[0].chain is None
        assert seen[0].tokens == ()
        assert len(seen[0].prices) == 0
        assert snapshot.state is OrchestratorState.ERROR
        assert snapshot.tokens == ()
        assert len(snapshot.prices) == 0
        assert snapshot.generation > ready.generation
