"""
ORACLE - Batched Price Fetcher

Splits cached from uncached lookups, splits oversized batches, retries
transient failures and falls back to per-token fetches when a batch fails.
"""

import asyncio
import math
from dataclasses import asdict, dataclass
from typing import Awaitable, Callable, Iterable, Optional, Sequence, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shared import (
    AgentLogger,
    AuthenticationError,
    PriceQuote,
    ProviderError,
    TokenRef,
    TransientProviderError,
)

from .cache import PriceCache
from .providers import DexPriceSource, is_valid_token_address

T = TypeVar("T")

MAX_BATCH_SIZE = 20  # Provider ceiling


@dataclass
class FetchReport:
    """Outcome of one fetch_quotes() call."""
    requested: int = 0
    unique: int = 0
    invalid: int = 0
    cached: int = 0
    fetched: int = 0
    unavailable: int = 0
    sub_batches: int = 0
    failed_batches: int = 0
    fallback_items: int = 0

    @property
    def partial(self) -> bool:
        return self.unavailable > 0 or self.failed_batches > 0


class BatchedPriceFetcher:
    """
    Price lookups for many (chain, address) pairs in as few calls as possible.

    Sub-batches are submitted concurrently; the source's RateLimiter still
    serializes the actual dispatch. Failures are contained at the smallest
    granularity: a failed sub-batch degrades to per-token fetches, and a
    token that still fails is simply absent from the result.
    """

    def __init__(
        self,
        source: DexPriceSource,
        cache: PriceCache,
        max_batch_size: int = MAX_BATCH_SIZE,
        max_retries: int = 3,
        base_retry_delay_ms: int = 2000,
        batch_ttl_ms: int = 120_000,
        single_ttl_ms: int = 60_000,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if not 1 <= max_batch_size <= MAX_BATCH_SIZE:
            raise ValueError(f"max_batch_size must be in 1..{MAX_BATCH_SIZE}")

        self.logger = AgentLogger("ORACLE-FETCHER")
        self.source = source
        self.cache = cache
        self.max_batch_size = max_batch_size
        self.max_retries = max_retries
        self.base_retry_delay_ms = base_retry_delay_ms
        self.batch_ttl_ms = batch_ttl_ms
        self.single_ttl_ms = single_ttl_ms
        self._sleep = sleep

        # Statistics
        self.calls = 0
        self.provider_batches = 0
        self.fallback_items = 0
        self.last_report: Optional[FetchReport] = None

    def _key(self, ref: TokenRef) -> tuple:
        return PriceCache.price_key(self.source.provider, ref.chain_index, ref.address)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_prices(self, requests: Iterable[Sequence[str]]) -> dict[TokenRef, float]:
        """Map each resolvable (chain, address) to its USD price."""
        quotes = await self.fetch_quotes(requests)
        return {ref: quote.price for ref, quote in quotes.items()}

    async def fetch_quotes(self, requests: Iterable[Sequence[str]]) -> dict[TokenRef, PriceQuote]:
        """Map each resolvable (chain, address) to its full quote."""
        refs = [TokenRef(str(chain), address) for chain, address in requests]
        if not refs:
            return {}

        self.calls += 1
        report = FetchReport(requested=len(refs))

        # Deduplicate, keeping the first spelling of each address for dispatch
        unique: dict[TokenRef, TokenRef] = {}
        for ref in refs:
            if not is_valid_token_address(ref.address):
                report.invalid += 1
                continue
            unique.setdefault(ref.normalized(), TokenRef(ref.chain_index, ref.address.strip()))
        report.unique = len(unique)

        if report.invalid:
            self.logger.warning("Dropped invalid token addresses", count=report.invalid)

        resolved: dict[TokenRef, PriceQuote] = {}
        uncached: list[TokenRef] = []
        for norm, ref in unique.items():
            quote = self.cache.get(self._key(norm))
            if quote is not None:
                resolved[norm] = quote
                report.cached += 1
            else:
                uncached.append(ref)

        if uncached:
            batches = [
                uncached[i:i + self.max_batch_size]
                for i in range(0, len(uncached), self.max_batch_size)
            ]
            report.sub_batches = len(batches)
            if len(batches) > 1:
                self.logger.info(
                    "Splitting price request",
                    tokens=len(uncached),
                    sub_batches=len(batches),
                    expected=math.ceil(len(uncached) / self.max_batch_size),
                )

            results = await asyncio.gather(*(
                self._fetch_sub_batch(batch, index, len(batches), report)
                for index, batch in enumerate(batches)
            ))
            for batch_result in results:
                resolved.update(batch_result)

        report.fetched = len(resolved) - report.cached
        report.unavailable = report.unique - len(resolved)
        self.last_report = report

        if report.partial:
            self.logger.warning("Partial price result", **asdict(report))
        else:
            self.logger.debug("Price request complete", **asdict(report))

        result = {}
        for ref in refs:
            quote = resolved.get(ref.normalized())
            if quote is not None:
                result[ref] = quote
        return result

    async def fetch_quote(self, chain_index: str, address: str) -> Optional[PriceQuote]:
        """Single-token lookup sharing cache keys with batch lookups."""
        if not is_valid_token_address(address):
            self.logger.warning("Invalid token address", chain=chain_index, address=address)
            return None

        ref = TokenRef(str(chain_index), address.strip())
        quote = self.cache.get(self._key(ref))
        if quote is not None:
            return quote
        return await self._fetch_one(ref)

    async def fetch_price(self, chain_index: str, address: str) -> Optional[float]:
        """USD price for one token, or None when unavailable."""
        quote = await self.fetch_quote(chain_index, address)
        return quote.price if quote is not None else None

    # ------------------------------------------------------------------
    # Batch steps
    # ------------------------------------------------------------------

    async def _fetch_sub_batch(
        self,
        batch: list[TokenRef],
        index: int,
        total: int,
        report: FetchReport,
    ) -> dict[TokenRef, PriceQuote]:
        try:
            self.provider_batches += 1
            quotes = await self._with_retry(lambda: self.source.fetch_batch(batch))
        except AuthenticationError as e:
            report.failed_batches += 1
            self.logger.error(
                "Sub-batch rejected by provider auth",
                batch=index + 1,
                total=total,
                error=str(e),
            )
            return {}
        except ProviderError as e:
            report.failed_batches += 1
            report.fallback_items += len(batch)
            self.logger.warning(
                "Sub-batch failed, falling back to per-token fetches",
                batch=index + 1,
                total=total,
                size=len(batch),
                error=str(e),
            )
            return await self._fetch_individually(batch)

        return self._store(batch, quotes, self.batch_ttl_ms)

    async def _fetch_individually(self, batch: list[TokenRef]) -> dict[TokenRef, PriceQuote]:
        self.fallback_items += len(batch)
        quotes = await asyncio.gather(*(self._fetch_one(ref) for ref in batch))

        resolved = {}
        for ref, quote in zip(batch, quotes):
            if quote is not None:
                resolved[ref.normalized()] = quote

        self.logger.info(
            "Per-token fallback complete",
            requested=len(batch),
            recovered=len(resolved),
        )
        return resolved

    async def _fetch_one(self, ref: TokenRef) -> Optional[PriceQuote]:
        try:
            quotes = await self._with_retry(lambda: self.source.fetch_batch([ref]))
        except ProviderError as e:
            self.logger.debug(
                "Token price unavailable",
                chain=ref.chain_index,
                address=ref.address,
                error=str(e),
            )
            return None
        return self._store([ref], quotes, self.single_ttl_ms).get(ref.normalized())

    def _store(
        self,
        batch: list[TokenRef],
        quotes: list[PriceQuote],
        ttl_ms: int,
    ) -> dict[TokenRef, PriceQuote]:
        """Write through to the cache and key quotes by requested token."""
        wanted = {ref.normalized() for ref in batch}
        resolved = {}
        for quote in quotes:
            norm = quote.ref.normalized()
            if norm not in wanted:
                continue
            self.cache.set(self._key(norm), quote, ttl_ms)
            resolved[norm] = quote
        return resolved

    async def _with_retry(self, call: Callable[[], Awaitable[T]]) -> T:
        """Retry transient failures with exponential backoff."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.base_retry_delay_ms / 1000, exp_base=2),
            retry=retry_if_exception_type(TransientProviderError),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        ):
            with attempt:
                result = await call()
        return result

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        self.logger.warning(
            "Retrying provider call",
            attempt=retry_state.attempt_number,
            max_attempts=self.max_retries + 1,
            delay_s=delay,
            error=str(error),
        )

    def get_stats(self) -> dict:
        """Get fetcher statistics."""
        return {
            "calls": self.calls,
            "provider_batches": self.provider_batches,
            "fallback_items": self.fallback_items,
            "last_report": asdict(self.last_report) if self.last_report else None,
        }
