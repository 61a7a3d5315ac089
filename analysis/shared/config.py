"""
Configuration management for Matrix Python agents.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class DexProviderConfig(BaseSettings):
    """On-chain aggregator provider configuration."""
    base_url: str = "https://web3.okx.com"
    require_auth: bool = True
    timeout_s: float = 30.0


class CexProviderConfig(BaseSettings):
    """Centralized exchange ticker provider configuration."""
    base_url: str = "https://www.okx.com"
    timeout_s: float = 30.0


class RateLimitConfig(BaseSettings):
    """Per-provider call spacing."""
    base_interval_ms: int = Field(default=2500, ge=0)
    failure_threshold: int = Field(default=2, ge=0)
    rate_limit_penalty_ms: int = Field(default=5000, ge=0)
    task_timeout_s: float = Field(default=30.0, gt=0)


class CacheConfig(BaseSettings):
    """TTLs for the in-memory price cache."""
    price_ttl_ms: int = 60_000
    batch_price_ttl_ms: int = 120_000
    token_list_ttl_ms: int = 1_800_000
    chain_list_ttl_ms: int = 3_600_000
    ticker_ttl_ms: int = 10_000


class BatchConfig(BaseSettings):
    """Batch splitting and retry policy."""
    max_batch_size: int = Field(default=20, ge=1, le=20)
    max_retries: int = Field(default=3, ge=0)
    base_retry_delay_ms: int = Field(default=2000, ge=0)


class ArbitrageConfig(BaseSettings):
    """Canonical spread thresholds (percent)."""
    min_spread_pct: float = 0.1
    profitable_spread_pct: float = 0.5
    high_profit_spread_pct: float = 1.0
    low_risk_max_pct: float = 1.0
    medium_risk_max_pct: float = 2.0
    default_top_n: int | None = None


class OrchestratorConfig(BaseSettings):
    """Multi-chain orchestrator configuration."""
    supported_chain_indices: list[str] = Field(default_factory=lambda: ["1", "56", "501"])
    default_chain_priority: list[str] = Field(default_factory=lambda: ["501", "1"])
    price_prefix_limit: int = Field(default=30, ge=1)


class MonitoringConfig(BaseSettings):
    """Monitoring configuration."""
    log_level: str = "INFO"
    json_logs: bool = False


class MatrixConfig(BaseSettings):
    """Main Matrix configuration."""

    model_config = {"env_prefix": "MATRIX_", "env_nested_delimiter": "__"}

    # Environment
    environment: str = Field(default="development")

    # Providers
    dex: DexProviderConfig = Field(default_factory=DexProviderConfig)
    cex: CexProviderConfig = Field(default_factory=CexProviderConfig)
    dex_rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    cex_rate_limit: RateLimitConfig = Field(
        default_factory=lambda: RateLimitConfig(base_interval_ms=200)
    )

    # Pipeline
    cache: CacheConfig = Field(default_factory=CacheConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    arbitrage: ArbitrageConfig = Field(default_factory=ArbitrageConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)

    # Monitoring
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"


@lru_cache
def get_config() -> MatrixConfig:
    """Get cached configuration instance."""
    # Load .env file if present
    from dotenv import load_dotenv
    load_dotenv()

    return MatrixConfig()

