"""
Shared types for Matrix Python agents.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import NamedTuple, Optional


class ChainId(str, Enum):
    """Known chain indices (as used by the on-chain aggregator)."""
    ETHEREUM = "1"
    OPTIMISM = "10"
    BSC = "56"
    POLYGON = "137"
    FANTOM = "250"
    SOLANA = "501"
    BASE = "8453"
    ARBITRUM = "42161"
    AVALANCHE = "43114"
    LINEA = "59144"

    @property
    def display_name(self) -> str:
        """Human readable chain name."""
        names = {
            ChainId.ETHEREUM: "Ethereum",
            ChainId.OPTIMISM: "Optimism",
            ChainId.BSC: "BSC",
            ChainId.POLYGON: "Polygon",
            ChainId.FANTOM: "Fantom",
            ChainId.SOLANA: "Solana",
            ChainId.BASE: "Base",
            ChainId.ARBITRUM: "Arbitrum",
            ChainId.AVALANCHE: "Avalanche",
            ChainId.LINEA: "Linea",
        }
        return names[self]

    @property
    def native_symbol(self) -> str:
        """Gas token symbol."""
        symbols = {
            ChainId.ETHEREUM: "ETH",
            ChainId.OPTIMISM: "ETH",
            ChainId.BSC: "BNB",
            ChainId.POLYGON: "POL",
            ChainId.FANTOM: "FTM",
            ChainId.SOLANA: "SOL",
            ChainId.BASE: "ETH",
            ChainId.ARBITRUM: "ETH",
            ChainId.AVALANCHE: "AVAX",
            ChainId.LINEA: "ETH",
        }
        return symbols[self]


class RiskLevel(str, Enum):
    """Coarse risk bucket derived from spread magnitude."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Venue(str, Enum):
    """Price venues compared by the arbitrage engine."""
    ONCHAIN = "onchain"
    CEX = "cex"


class OrchestratorState(str, Enum):
    """Multi-chain orchestrator lifecycle."""
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


def normalize_address(address: str) -> str:
    """Canonical form used for keys. EVM hex is case-insensitive."""
    address = address.strip()
    if address.startswith("0x") or address.startswith("0X"):
        return "0x" + address[2:].lower()
    return address


class TokenRef(NamedTuple):
    """(chain, address) pair identifying a token on one chain."""
    chain_index: str
    address: str

    def normalized(self) -> "TokenRef":
        return TokenRef(str(self.chain_index), normalize_address(self.address))


@dataclass(frozen=True)
class ChainDescriptor:
    """Static chain reference data."""
    chain_index: str
    name: str
    native_symbol: str = ""


@dataclass(frozen=True)
class TokenDescriptor:
    """Token belonging to exactly one chain."""
    chain_index: str
    address: str
    symbol: str
    decimals: int
    name: str = ""

    @property
    def ref(self) -> TokenRef:
        return TokenRef(self.chain_index, self.address)


@dataclass(frozen=True)
class PriceQuote:
    """Price observation from one provider. Superseded, never mutated."""
    provider: str
    chain_index: str
    token_address: str
    price: float  # USD
    observed_at_ms: int
    price_change_5m: Optional[float] = None  # Percentage
    price_change_1h: Optional[float] = None
    price_change_4h: Optional[float] = None
    price_change_24h: Optional[float] = None
    volume_5m: Optional[float] = None  # USD
    volume_1h: Optional[float] = None
    volume_4h: Optional[float] = None
    volume_24h: Optional[float] = None
    market_cap: Optional[float] = None

    def __post_init__(self) -> None:
        if self.price < 0:
            raise ValueError(f"price must be >= 0, got {self.price}")

    @property
    def ref(self) -> TokenRef:
        return TokenRef(self.chain_index, self.token_address)


@dataclass(frozen=True)
class ArbitrageOpportunity:
    """Cross-venue spread for one symbol. Recomputed every cycle."""
    symbol: str
    price_a: float  # On-chain
    price_b: float  # Centralized exchange
    price_spread: float  # |A - B|
    profit_percent: float  # price_spread / min(A, B) * 100
    volume_24h: float  # CEX quote volume
    risk: RiskLevel
    observed_at_ms: int
    chain_index: str = ""
    token_address: str = ""
    liquidity: float = 0.0  # On-chain 24h volume

    @property
    def buy_venue(self) -> Venue:
        """Venue with the lower price."""
        return Venue.ONCHAIN if self.price_a <= self.price_b else Venue.CEX

    @property
    def sell_venue(self) -> Venue:
        """Venue with the higher price."""
        return Venue.CEX if self.buy_venue is Venue.ONCHAIN else Venue.ONCHAIN


@dataclass
class ArbitrageStats:
    """Aggregate view over a list of opportunities."""
    total: int = 0
    unique: int = 0
    profitable: int = 0
    high_profit: int = 0
    avg_spread_pct: float = 0.0
    best_spread_pct: float = 0.0
    total_volume: float = 0.0
    by_risk: dict[str, int] = field(default_factory=dict)
