"""
ORACLE - Token Registry

Resolves trading symbols to (chain, address) pairs for on-chain lookups.
"""

from typing import Iterable, Optional

from shared import ChainId, TokenDescriptor, TokenRef

SOLANA = ChainId.SOLANA.value

DEFAULT_SOLANA_TOKENS = (
    TokenDescriptor(SOLANA, "So11111111111111111111111111111111111111112", "SOL", 9, "Solana"),
    TokenDescriptor(SOLANA, "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v", "USDC", 6, "USD Coin"),
    TokenDescriptor(SOLANA, "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB", "USDT", 6, "Tether USD"),
    TokenDescriptor(SOLANA, "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN", "JUP", 6, "Jupiter"),
    TokenDescriptor(SOLANA, "4k3Dyjzvzp8eMZWUXbBCjEvwSkkk59S5iCNLY3QrkX6R", "RAY", 6, "Raydium"),
    TokenDescriptor(SOLANA, "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263", "BONK", 5, "Bonk"),
    TokenDescriptor(SOLANA, "EKpQGSJtjMFqKZ9KQanSqYXRcF8fBopzLHYxdM65zcjm", "WIF", 6, "Dogwifhat"),
    TokenDescriptor(SOLANA, "orcaEKTdK7LKz57vaAYr9QeNsVEPfiu6QeMU1kektZE", "ORCA", 6, "Orca"),
    TokenDescriptor(SOLANA, "HZ1JovNiVvGrGNiiYvEozEVgZ58xaU3RKwX8eACQBCt3", "PYTH", 6, "Pyth Network"),
    TokenDescriptor(SOLANA, "jtojtomepa8beP8AuQc6eXt5FriJwfFMwQx2v2f9mCL", "JTO", 9, "Jito"),
)


class TokenRegistry:
    """
    Case-insensitive symbol lookup.

    When two tokens share a symbol the first one registered wins, so a
    curated list placed ahead of a provider list keeps precedence.
    """

    def __init__(self, tokens: Iterable[TokenDescriptor] = ()):
        self._by_symbol: dict[str, TokenDescriptor] = {}
        for token in tokens:
            self.register(token)

    @classmethod
    def default(cls) -> "TokenRegistry":
        """Registry of well-known Solana tokens."""
        return cls(DEFAULT_SOLANA_TOKENS)

    @classmethod
    def from_tokens(cls, tokens: Iterable[TokenDescriptor]) -> "TokenRegistry":
        """Registry built from a chain's token universe."""
        return cls(tokens)

    def register(self, token: TokenDescriptor) -> bool:
        """Add ``token`` unless its symbol is taken. Returns True if added."""
        key = token.symbol.strip().upper()
        if not key or key in self._by_symbol:
            return False
        self._by_symbol[key] = token
        return True

    def get(self, symbol: str) -> Optional[TokenDescriptor]:
        return self._by_symbol.get(symbol.strip().upper())

    def resolve(self, symbol: str) -> Optional[TokenRef]:
        """(chain, address) for ``symbol``, or None if unknown."""
        token = self.get(symbol)
        return token.ref if token is not None else None

    def symbols(self) -> list[str]:
        return [token.symbol for token in self._by_symbol.values()]

    def tokens(self, chain_index: Optional[str] = None) -> list[TokenDescriptor]:
        """Registered tokens, optionally limited to one chain."""
        return [
            token for token in self._by_symbol.values()
            if chain_index is None or token.chain_index == str(chain_index)
        ]

    def __contains__(self, symbol: object) -> bool:
        return isinstance(symbol, str) and self.get(symbol) is not None

    def __len__(self) -> int:
        return len(self._by_symbol)
