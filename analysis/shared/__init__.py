"""
Matrix Shared - Common types and utilities for Python analysis agents.
"""

from .config import MatrixConfig, get_config
from .errors import (
    AuthenticationError,
    ConfigurationError,
    MalformedPayloadError,
    MatrixError,
    PermanentProviderError,
    ProviderCodeError,
    ProviderError,
    ProviderTimeoutError,
    RateLimitedError,
    TransientProviderError,
)
from .http import AiohttpClient, HttpClient, RequestSigner
from .logger import AgentLogger, configure_from_config
from .types import (
    ArbitrageOpportunity,
    ArbitrageStats,
    ChainDescriptor,
    ChainId,
    OrchestratorState,
    PriceQuote,
    RiskLevel,
    TokenDescriptor,
    TokenRef,
    Venue,
    normalize_address,
)

__all__ = [
    # Types
    "ChainId",
    "TokenRef",
    "ChainDescriptor",
    "TokenDescriptor",
    "PriceQuote",
    "ArbitrageOpportunity",
    "ArbitrageStats",
    "RiskLevel",
    "Venue",
    "OrchestratorState",
    "normalize_address",
    # Errors
    "MatrixError",
    "ConfigurationError",
    "ProviderError",
    "TransientProviderError",
    "RateLimitedError",
    "ProviderTimeoutError",
    "PermanentProviderError",
    "ProviderCodeError",
    "MalformedPayloadError",
    "AuthenticationError",
    # HTTP
    "HttpClient",
    "AiohttpClient",
    "RequestSigner",
    # Config
    "get_config",
    "MatrixConfig",
    # Logger
    "AgentLogger",
    "configure_from_config",
]
