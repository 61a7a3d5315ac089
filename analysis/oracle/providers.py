"""
ORACLE - Price Providers

Validated payload models and the two market-data sources:
- DexPriceSource: on-chain aggregator (batch prices, chains, token lists)
- CexTickerSource: centralized exchange spot tickers
"""

import re
import time
from typing import Any, Mapping, Optional, Sequence, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from shared import (
    AgentLogger,
    ChainDescriptor,
    ChainId,
    HttpClient,
    MalformedPayloadError,
    PriceQuote,
    ProviderCodeError,
    TokenDescriptor,
    TokenRef,
)

from .cache import PriceCache
from .rate_limiter import RateLimiter

DEX_PROVIDER = "okx-dex"
CEX_PROVIDER = "okx-cex"

QUOTE_SUFFIXES = ("-USDT", "-USDC")

_EVM_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")
_PLACEHOLDER_ADDRESSES = {
    "0x0000000000000000000000000000000000000000",
    "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee",
    "0xdeaddeaddeaddeaddeaddeaddeaddeaddeaddead",
}


def is_valid_token_address(address: str) -> bool:
    """Structural check. Rejects blanks, placeholders and bad EVM hex."""
    address = (address or "").strip()
    if not address:
        return False
    if address.startswith("0x"):
        if not _EVM_ADDRESS.match(address):
            return False
        return address.lower() not in _PLACEHOLDER_ADDRESSES
    return True


def _now_ms() -> int:
    return int(time.time() * 1000)


# ============================================================================
# PAYLOAD MODELS
# ============================================================================

class ProviderModel(BaseModel):
    """Base for provider payloads: unknown keys ignored, required keys enforced."""
    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        frozen=True,
        coerce_numbers_to_str=True,
    )


class ResponseEnvelope(ProviderModel):
    """{code, msg, data} wrapper shared by both providers."""
    code: str
    msg: str = ""
    data: Optional[list[Any]] = None


class DexPriceItem(ProviderModel):
    """One entry of a batch price response."""
    chain_index: str = Field(alias="chainIndex", min_length=1)
    token_contract_address: str = Field(alias="tokenContractAddress", min_length=1)
    price: float = Field(ge=0, allow_inf_nan=False)
    time: Optional[int] = None
    market_cap: Optional[float] = Field(default=None, alias="marketCap")
    price_change_5m: Optional[float] = Field(default=None, alias="priceChange5M")
    price_change_1h: Optional[float] = Field(default=None, alias="priceChange1H")
    price_change_4h: Optional[float] = Field(default=None, alias="priceChange4H")
    price_change_24h: Optional[float] = Field(default=None, alias="priceChange24H")
    volume_5m: Optional[float] = Field(default=None, alias="volume5M")
    volume_1h: Optional[float] = Field(default=None, alias="volume1H")
    volume_4h: Optional[float] = Field(default=None, alias="volume4H")
    volume_24h: Optional[float] = Field(default=None, alias="volume24H")

    @field_validator(
        "time", "market_cap",
        "price_change_5m", "price_change_1h", "price_change_4h", "price_change_24h",
        "volume_5m", "volume_1h", "volume_4h", "volume_24h",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        return None if value == "" else value

    def to_quote(self, provider: str) -> PriceQuote:
        return PriceQuote(
            provider=provider,
            chain_index=self.chain_index,
            token_address=self.token_contract_address,
            price=self.price,
            observed_at_ms=self.time or _now_ms(),
            price_change_5m=self.price_change_5m,
            price_change_1h=self.price_change_1h,
            price_change_4h=self.price_change_4h,
            price_change_24h=self.price_change_24h,
            volume_5m=self.volume_5m,
            volume_1h=self.volume_1h,
            volume_4h=self.volume_4h,
            volume_24h=self.volume_24h,
            market_cap=self.market_cap,
        )


class DexChainItem(ProviderModel):
    """Supported chain entry."""
    chain_index: str = Field(alias="chainIndex", min_length=1)
    chain_name: str = Field(default="", alias="chainName")
    chain_symbol: Optional[str] = Field(default=None, alias="chainSymbol")

    def to_descriptor(self) -> ChainDescriptor:
        name, native = self.chain_name, self.chain_symbol or ""
        try:
            known = ChainId(self.chain_index)
        except ValueError:
            known = None
        if known is not None:
            name = name or known.display_name
            native = native or known.native_symbol
        return ChainDescriptor(
            chain_index=self.chain_index,
            name=name or self.chain_index,
            native_symbol=native,
        )


class DexTokenItem(ProviderModel):
    """Token list entry."""
    token_contract_address: str = Field(alias="tokenContractAddress", min_length=1)
    token_symbol: str = Field(alias="tokenSymbol", min_length=1)
    decimals: int = Field(ge=0)
    token_name: str = Field(default="", alias="tokenName")

    def to_descriptor(self, chain_index: str) -> TokenDescriptor:
        return TokenDescriptor(
            chain_index=chain_index,
            address=self.token_contract_address,
            symbol=self.token_symbol,
            decimals=self.decimals,
            name=self.token_name,
        )


class CexTicker(ProviderModel):
    """Spot ticker from the centralized exchange."""
    inst_id: str = Field(alias="instId", min_length=1)
    last: float = Field(ge=0, allow_inf_nan=False)
    bid_px: Optional[float] = Field(default=None, alias="bidPx")
    ask_px: Optional[float] = Field(default=None, alias="askPx")
    vol_24h: Optional[float] = Field(default=None, alias="vol24h")
    vol_ccy_24h: Optional[float] = Field(default=None, alias="volCcy24h")
    ts: Optional[int] = None

    @field_validator("bid_px", "ask_px", "vol_24h", "vol_ccy_24h", "ts", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        return None if value == "" else value

    @property
    def base_symbol(self) -> str:
        return self.inst_id.split("-", 1)[0]

    @property
    def quote_volume_24h(self) -> float:
        """24h volume in quote currency, falling back to base volume."""
        if self.vol_ccy_24h is not None:
            return self.vol_ccy_24h
        return self.vol_24h or 0.0


M = TypeVar("M", bound=ProviderModel)


def parse_items(
    payload: Any,
    model: type[M],
    provider: str,
    logger: Optional[AgentLogger] = None,
) -> list[M]:
    """
    Validate a {code, msg, data} payload into typed items.

    A bad envelope raises MalformedPayloadError, a non-"0" code raises
    ProviderCodeError. Individual items that fail validation are rejected
    and logged; they never reach the pipeline half-parsed.
    """
    try:
        envelope = ResponseEnvelope.model_validate(payload)
    except ValidationError as e:
        raise MalformedPayloadError(
            f"Unexpected response envelope: {e.error_count()} error(s)",
            provider=provider,
        ) from e

    if envelope.code != "0":
        raise ProviderCodeError(envelope.code, envelope.msg, provider=provider)

    items: list[M] = []
    rejected = 0
    for raw in envelope.data or []:
        try:
            items.append(model.model_validate(raw))
        except ValidationError:
            rejected += 1

    if rejected and logger is not None:
        logger.warning(
            "Rejected malformed items",
            model=model.__name__,
            rejected=rejected,
            accepted=len(items),
        )
    return items


# ============================================================================
# SOURCES
# ============================================================================

class DexPriceSource:
    """
    On-chain aggregator source.

    Every call goes through the provider's RateLimiter. Chain and token
    lists are cached in the provider's PriceCache with metadata TTLs.
    """

    PRICE_PATH = "/api/v5/dex/market/price-info"
    CHAINS_PATH = "/api/v5/dex/market/supported/chain"
    TOKENS_PATH = "/api/v5/dex/aggregator/all-tokens"

    def __init__(
        self,
        client: HttpClient,
        limiter: RateLimiter,
        cache: PriceCache,
        chain_list_ttl_ms: int = 3_600_000,
        token_list_ttl_ms: int = 1_800_000,
    ):
        self.logger = AgentLogger("ORACLE-DEX-SOURCE")
        self.client = client
        self.limiter = limiter
        self.cache = cache
        self.provider = client.provider or DEX_PROVIDER
        self.chain_list_ttl_ms = chain_list_ttl_ms
        self.token_list_ttl_ms = token_list_ttl_ms

    async def fetch_batch(self, refs: Sequence[TokenRef]) -> list[PriceQuote]:
        """One provider call for up to the batch ceiling of tokens."""
        body = [
            {"chainIndex": ref.chain_index, "tokenContractAddress": ref.address}
            for ref in refs
        ]
        payload = await self.limiter.execute(
            lambda: self.client.post(self.PRICE_PATH, body)
        )
        items = parse_items(payload, DexPriceItem, self.provider, self.logger)
        return [item.to_quote(self.provider) for item in items]

    async def fetch_supported_chains(self) -> list[ChainDescriptor]:
        """All chains the aggregator supports."""
        key = PriceCache.endpoint_key(self.provider, self.CHAINS_PATH)
        cached = self.cache.get(key)
        if cached is not None:
            return list(cached)

        payload = await self.limiter.execute(lambda: self.client.get(self.CHAINS_PATH))
        chains = [
            item.to_descriptor()
            for item in parse_items(payload, DexChainItem, self.provider, self.logger)
        ]
        self.cache.set(key, tuple(chains), self.chain_list_ttl_ms)
        return chains

    async def fetch_all_tokens(self, chain_index: str) -> list[TokenDescriptor]:
        """Token universe for one chain."""
        params = {"chainIndex": str(chain_index)}
        key = PriceCache.endpoint_key(self.provider, self.TOKENS_PATH, params)
        cached = self.cache.get(key)
        if cached is not None:
            return list(cached)

        payload = await self.limiter.execute(
            lambda: self.client.get(self.TOKENS_PATH, params)
        )
        tokens = [
            item.to_descriptor(str(chain_index))
            for item in parse_items(payload, DexTokenItem, self.provider, self.logger)
        ]
        self.cache.set(key, tuple(tokens), self.token_list_ttl_ms)
        return tokens


class CexTickerSource:
    """
    Centralized exchange spot tickers.

    A single unauthenticated call returns every spot ticker; consumers
    filter client-side by instrument suffix.
    """

    TICKERS_PATH = "/api/v5/market/tickers"

    def __init__(
        self,
        client: HttpClient,
        limiter: RateLimiter,
        cache: Optional[PriceCache] = None,
        ticker_ttl_ms: int = 10_000,
    ):
        self.logger = AgentLogger("ORACLE-CEX-SOURCE")
        self.client = client
        self.limiter = limiter
        self.cache = cache
        self.provider = client.provider or CEX_PROVIDER
        self.ticker_ttl_ms = ticker_ttl_ms

    async def fetch_spot_tickers(self) -> dict[str, CexTicker]:
        """All spot tickers keyed by instrument id."""
        params = {"instType": "SPOT"}
        key = PriceCache.endpoint_key(self.provider, self.TICKERS_PATH, params)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return dict(cached)

        payload = await self.limiter.execute(
            lambda: self.client.get(self.TICKERS_PATH, params)
        )
        tickers = {
            t.inst_id: t
            for t in parse_items(payload, CexTicker, self.provider, self.logger)
        }
        if self.cache is not None:
            self.cache.set(key, tickers, self.ticker_ttl_ms)
        return dict(tickers)

    async def fetch_tickers_for(self, symbols: Sequence[str]) -> dict[str, CexTicker]:
        """Tickers for ``symbols`` keyed by symbol. Unlisted symbols are absent."""
        tickers = await self.fetch_spot_tickers()
        matched = {}
        for symbol in symbols:
            ticker = self.match_ticker(symbol, tickers)
            if ticker is not None:
                matched[symbol] = ticker
        return matched

    @staticmethod
    def match_ticker(symbol: str, tickers: Mapping[str, CexTicker]) -> Optional[CexTicker]:
        """SYMBOL-USDT first, then SYMBOL-USDC."""
        symbol = symbol.upper()
        for suffix in QUOTE_SUFFIXES:
            ticker = tickers.get(f"{symbol}{suffix}")
            if ticker is not None:
                return ticker
        return None
