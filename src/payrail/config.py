"""Application configuration using pydantic-settings.

Holds the custodial provider credentials (Circle Programmable Wallets), the
store connection and the thresholds used by the settlement jobs.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Native USDC on Base mainnet
DEFAULT_USDC_TOKEN_ADDRESS = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Database
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/payrail.db",
        description="Database connection URL",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug logging")

    # ======================
    # Custodial provider
    # ======================
    provider: str = Field(default="circle", description="Wallet provider (circle, dryrun)")
    circle_api_key: str = Field(default="", description="Circle API key")
    circle_entity_secret: str = Field(default="", description="Circle entity secret (hex)")
    circle_wallet_set_id: Optional[str] = Field(
        default=None, description="Wallet set used when provisioning user wallets"
    )
    circle_escrow_wallet_id: Optional[str] = Field(
        default=None, description="Shared platform escrow wallet"
    )
    circle_api_url: str = Field(
        default="https://api.circle.com", description="Circle API base URL"
    )
    circle_blockchain: str = Field(default="BASE", description="Chain for wallets and transfers")
    usdc_base_token_address: str = Field(
        default=DEFAULT_USDC_TOKEN_ADDRESS, description="USDC token contract address"
    )
    http_timeout: float = Field(default=15.0, description="Provider request timeout in seconds")

    # ======================
    # Jobs
    # ======================
    stale_threshold_minutes: int = Field(
        default=30, description="Minutes before a non-terminal transaction is reported stale"
    )
    reconcile_tolerance: Decimal = Field(
        default=Decimal("0.01"), description="Absolute USDC tolerance for balance checks"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "database_url": self._redact_url(self.database_url),
            "provider": self.provider,
            "circle": {
                "api_url": self.circle_api_url,
                "api_key": "***" if self.circle_api_key else "(not set)",
                "entity_secret": "***" if self.circle_entity_secret else "(not set)",
                "wallet_set_id": self.circle_wallet_set_id or "(not set)",
                "escrow_wallet_id": self.circle_escrow_wallet_id or "(not set)",
                "blockchain": self.circle_blockchain,
                "token_address": self.usdc_base_token_address,
            },
            "jobs": {
                "stale_threshold_minutes": self.stale_threshold_minutes,
                "reconcile_tolerance": str(self.reconcile_tolerance),
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
