"""
TRAINMAN - Multi-Chain Orchestrator

Owns the selected chain, its token universe and the current price snapshot.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Callable, Mapping, Optional, Sequence

from shared import (
    AgentLogger,
    ChainDescriptor,
    OrchestratorState,
    PriceQuote,
    ProviderError,
    TokenDescriptor,
    normalize_address,
)

if TYPE_CHECKING:
    from oracle.fetcher import BatchedPriceFetcher
    from oracle.providers import DexPriceSource


@dataclass(frozen=True)
class ChainSnapshot:
    """Point-in-time view published to listeners."""
    state: OrchestratorState
    chain: Optional[ChainDescriptor]
    tokens: tuple[TokenDescriptor, ...] = ()
    prices: Mapping[str, PriceQuote] = field(default_factory=dict)  # normalized address -> quote
    generation: int = 0
    error: Optional[str] = None

    @property
    def chain_index(self) -> Optional[str]:
        return self.chain.chain_index if self.chain is not None else None

    def price_of(self, address: str) -> Optional[float]:
        quote = self.prices.get(normalize_address(address))
        return quote.price if quote is not None else None


Listener = Callable[[ChainSnapshot], None]


class MultiChainOrchestrator:
    """
    Chain selection state machine.

    uninitialized -> loading -> ready | error; selecting another chain goes
    back to loading. The previous snapshot is cleared before any fetch is
    issued, and every selection bumps a generation counter so results that
    arrive for an abandoned selection are dropped instead of merged.

    Listeners are called synchronously after every change with the new
    snapshot. Repeated notifications with identical state are possible.
    """

    def __init__(
        self,
        source: "DexPriceSource",
        fetcher: "BatchedPriceFetcher",
        supported_chain_indices: Sequence[str] = ("1", "56", "501"),
        default_chain_priority: Sequence[str] = ("501", "1"),
        price_prefix_limit: int = 30,
    ):
        if price_prefix_limit < 1:
            raise ValueError("price_prefix_limit must be >= 1")

        self.logger = AgentLogger("TRAINMAN-ORCHESTRATOR")
        self.source = source
        self.fetcher = fetcher
        self.supported_chain_indices = [str(c) for c in supported_chain_indices]
        self.default_chain_priority = [str(c) for c in default_chain_priority]
        self.price_prefix_limit = price_prefix_limit

        self._state = OrchestratorState.UNINITIALIZED
        self._chains: list[ChainDescriptor] = []
        self._chain: Optional[ChainDescriptor] = None
        self._tokens: tuple[TokenDescriptor, ...] = ()
        self._prices: dict[str, PriceQuote] = {}
        self._error: Optional[str] = None
        self._generation = 0
        self._listeners: list[Listener] = []

        # Statistics
        self.transitions = 0
        self.discarded_results = 0
        self.listener_errors = 0

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def selected_chain(self) -> Optional[ChainDescriptor]:
        return self._chain

    def is_initialized(self) -> bool:
        return bool(self._chains) and self._chain is not None

    def get_supported_chains(self) -> list[ChainDescriptor]:
        return list(self._chains)

    def get_snapshot(self) -> ChainSnapshot:
        return ChainSnapshot(
            state=self._state,
            chain=self._chain,
            tokens=self._tokens,
            prices=MappingProxyType(dict(self._prices)),
            generation=self._generation,
            error=self._error,
        )

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``. Returns a callable that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.get_snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                self.listener_errors += 1
                self.logger.error("Listener error", error=str(e))

    def _transition(self, state: OrchestratorState, error: Optional[str] = None) -> None:
        if state is not self._state:
            self.transitions += 1
            self.logger.info(
                "State transition",
                from_state=self._state.value,
                to_state=state.value,
                chain=self._chain.chain_index if self._chain else None,
                error=error,
            )
        self._state = state
        self._error = error
        self._notify()

    def _is_stale(self, generation: int, step: str) -> bool:
        if generation == self._generation:
            return False
        self.discarded_results += 1
        self.logger.info(
            "Discarding result for abandoned selection",
            step=step,
            generation=generation,
            current_generation=self._generation,
        )
        return True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> ChainSnapshot:
        """Load supported chains and select the default one."""
        self._generation += 1
        generation = self._generation

        self._chain = None
        self._tokens = ()
        self._prices = {}
        self._transition(OrchestratorState.LOADING)

        try:
            chains = await self.source.fetch_supported_chains()
        except ProviderError as e:
            if self._is_stale(generation, "chains"):
                return self.get_snapshot()
            self.logger.error("Failed to load supported chains", error=str(e))
            self._transition(OrchestratorState.ERROR, str(e))
            return self.get_snapshot()

        if self._is_stale(generation, "chains"):
            return self.get_snapshot()

        self._chains = [c for c in chains if c.chain_index in self.supported_chain_indices]
        if not self._chains:
            self._transition(OrchestratorState.ERROR, "No supported chains found")
            return self.get_snapshot()

        default = self._default_chain()
        self.logger.info(
            "Chains loaded",
            available=len(chains),
            supported=[c.chain_index for c in self._chains],
            default=default.chain_index,
        )
        return await self.select_chain(default.chain_index)

    def _default_chain(self) -> ChainDescriptor:
        by_index = {c.chain_index: c for c in self._chains}
        for chain_index in self.default_chain_priority:
            if chain_index in by_index:
                return by_index[chain_index]
        return self._chains[0]

    async def select_chain(self, chain_index: str) -> ChainSnapshot:
        """
        Switch to ``chain_index``, then load its tokens and a bounded price
        prefix. Raises ValueError if the chain is not supported.
        """
        chain_index = str(chain_index)
        chain = next((c for c in self._chains if c.chain_index == chain_index), None)
        if chain is None:
            raise ValueError(f"Chain {chain_index} not found in supported chains")

        self._generation += 1
        generation = self._generation

        # Discard the previous chain's data before fetching
        self._chain = chain
        self._tokens = ()
        self._prices = {}
        self._transition(OrchestratorState.LOADING)

        try:
            tokens = await self.source.fetch_all_tokens(chain_index)
        except ProviderError as e:
            if self._is_stale(generation, "tokens"):
                return self.get_snapshot()
            self.logger.error("Failed to load tokens", chain=chain_index, error=str(e))
            self._transition(OrchestratorState.ERROR, str(e))
            return self.get_snapshot()

        if self._is_stale(generation, "tokens"):
            return self.get_snapshot()

        self._tokens = tuple(tokens)
        if not tokens:
            self.logger.warning("No tokens found", chain=chain_index)
            self._transition(OrchestratorState.READY)
            return self.get_snapshot()
        self._notify()

        prices = await self._fetch_prefix_prices()
        if self._is_stale(generation, "prices"):
            return self.get_snapshot()

        self._prices = prices
        self.logger.info(
            "Chain ready",
            chain=chain_index,
            tokens=len(self._tokens),
            prices=len(prices),
        )
        self._transition(OrchestratorState.READY)
        return self.get_snapshot()

    async def refresh_prices(self) -> ChainSnapshot:
        """Re-fetch the price prefix for the current chain."""
        if self._chain is None or not self._tokens:
            self.logger.warning("Nothing to refresh", chain=self._chain.chain_index if self._chain else None)
            return self.get_snapshot()

        generation = self._generation
        prices = await self._fetch_prefix_prices()
        if self._is_stale(generation, "refresh"):
            return self.get_snapshot()

        self._prices = prices
        self.logger.info("Prices refreshed", chain=self._chain.chain_index, prices=len(prices))
        self._transition(OrchestratorState.READY)
        return self.get_snapshot()

    async def _fetch_prefix_prices(self) -> dict[str, PriceQuote]:
        prefix = self._tokens[:self.price_prefix_limit]
        quotes = await self.fetcher.fetch_quotes([token.ref for token in prefix])
        return {normalize_address(ref.address): quote for ref, quote in quotes.items()}

    def get_stats(self) -> dict:
        """Get orchestrator statistics."""
        return {
            "state": self._state.value,
            "chain": self._chain.chain_index if self._chain else None,
            "supported_chains": len(self._chains),
            "tokens": len(self._tokens),
            "prices": len(self._prices),
            "generation": self._generation,
            "transitions": self.transitions,
            "discarded_results": self.discarded_results,
            "listener_errors": self.listener_errors,
            "listeners": len(self._listeners),
        }
