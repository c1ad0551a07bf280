"""Application configuration using pydantic-settings.

Covers chain RPC endpoints, the on-chain swap router, the LI.FI bridge
aggregator and the timing constants of the execution engine.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=True, description="Enable debug mode")

    # ======================
    # Database
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/swapbridge.db",
        description="History database connection URL",
    )

    # ======================
    # Chain RPC Endpoints
    # ======================
    eth_rpc_url: str = Field(
        default="https://eth.llamarpc.com", description="Ethereum RPC URL"
    )
    arbitrum_rpc_url: str = Field(
        default="https://arb1.arbitrum.io/rpc", description="Arbitrum One RPC URL"
    )
    optimism_rpc_url: str = Field(
        default="https://mainnet.optimism.io", description="Optimism RPC URL"
    )
    polygon_rpc_url: str = Field(
        default="https://polygon-rpc.com", description="Polygon RPC URL"
    )
    base_rpc_url: str = Field(
        default="https://mainnet.base.org", description="Base RPC URL"
    )

    # ======================
    # Swap Router
    # ======================
    swap_router_address: str = Field(
        default=ZERO_ADDRESS, description="MultiHopSwapper contract address"
    )
    swap_fee_bps: int = Field(
        default=4, description="Router protocol fee in basis points (display only)"
    )
    swap_deadline_seconds: int = Field(
        default=1200, description="Swap deadline offset from now"
    )
    quote_debounce_ms: int = Field(
        default=500, description="Delay after the last input change before quoting"
    )

    # ======================
    # Bridge Aggregator (LI.FI)
    # ======================
    lifi_api_url: str = Field(default="https://li.quest/v1", description="LI.FI API URL")
    lifi_api_key: Optional[str] = Field(default=None, description="LI.FI API key")
    lifi_timeout_seconds: float = Field(default=30.0, description="LI.FI request timeout")
    bridge_default_slippage: float = Field(
        default=0.5, description="Default bridge slippage in percent"
    )
    bridge_preferred_bridges: str = Field(
        default="stargate,across", description="Comma-separated preferred bridges"
    )
    bridge_default_priority: str = Field(
        default="balanced", description="Route ranking: fastest, balanced or cheapest"
    )
    bridge_max_price_impact: float = Field(
        default=0.05, description="Largest price impact (fraction) a searched route may have"
    )
    bridge_simulate_steps: bool = Field(
        default=True, description="Dry-run the first bridge step with eth_call before signing"
    )

    # ======================
    # Status Tracking
    # ======================
    status_cooldown_seconds: float = Field(
        default=30.0, description="Minimum interval between status checks per hash"
    )
    status_max_attempts: int = Field(
        default=60, description="Status checks before a bridge is reported as timed out"
    )

    # ======================
    # Gas
    # ======================
    gas_price_poll_seconds: float = Field(default=10.0, description="Gas price poll interval")
    fallback_gas_price_gwei: str = Field(
        default="50", description="Gas price used when the RPC is unreachable"
    )
    fallback_gas_limit: int = Field(
        default=200_000, description="Gas limit used when estimation fails"
    )
    receipt_timeout_seconds: float = Field(
        default=300.0, description="Maximum wait for a transaction receipt"
    )
    receipt_retry_attempts: int = Field(
        default=3, description="Retries of a receipt wait after a transient RPC failure"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def has_swap_router(self) -> bool:
        """Check if a swap router address is configured."""
        return bool(self.swap_router_address) and self.swap_router_address.lower() != ZERO_ADDRESS

    @property
    def preferred_bridges(self) -> list[str]:
        """Parse preferred bridges into a list."""
        return [b.strip() for b in self.bridge_preferred_bridges.split(",") if b.strip()]

    def get_rpc_url(self, chain_id: int) -> str:
        """Get RPC URL for an EVM chain id."""
        rpc_map = {
            1: self.eth_rpc_url,
            10: self.optimism_rpc_url,
            137: self.polygon_rpc_url,
            8453: self.base_rpc_url,
            42161: self.arbitrum_rpc_url,
        }
        return rpc_map.get(chain_id, "")

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "database_url": self._redact_url(self.database_url),
            "chains": {
                "ETH": self.eth_rpc_url,
                "ARB": self.arbitrum_rpc_url,
                "OP": self.optimism_rpc_url,
                "POL": self.polygon_rpc_url,
                "BASE": self.base_rpc_url,
            },
            "swap": {
                "router": self.swap_router_address,
                "configured": self.has_swap_router,
                "fee_bps": self.swap_fee_bps,
                "deadline_seconds": self.swap_deadline_seconds,
            },
            "bridge": {
                "lifi": self.lifi_api_url,
                "api_key": "***" if self.lifi_api_key else "(not set)",
                "slippage": self.bridge_default_slippage,
                "status_cooldown_seconds": self.status_cooldown_seconds,
                "status_max_attempts": self.status_max_attempts,
            },
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact sensitive parts of database URL."""
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
