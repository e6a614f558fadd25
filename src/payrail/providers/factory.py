"""Gateway factory: one provider client per process."""

from typing import Optional

from payrail.config import Settings, get_settings
from payrail.errors import ConfigurationError
from payrail.providers.base import WalletGateway
from payrail.providers.circle import CircleWalletGateway
from payrail.providers.dryrun import DryRunWalletGateway

# Singleton instance
_gateway_instance: WalletGateway | None = None


def build_gateway(settings: Settings) -> WalletGateway:
    """Construct the gateway selected by the PROVIDER setting.

    - circle (default): Circle Programmable Wallets
    - dryrun: in-memory simulation

    Raises:
        ConfigurationError: unknown provider or missing credentials
    """
    provider_name = settings.provider.lower()

    if provider_name == "circle":
        return CircleWalletGateway(
            api_key=settings.circle_api_key,
            entity_secret=settings.circle_entity_secret,
            wallet_set_id=settings.circle_wallet_set_id,
            blockchain=settings.circle_blockchain,
            token_address=settings.usdc_base_token_address,
            base_url=settings.circle_api_url,
            timeout=settings.http_timeout,
        )
    if provider_name == "dryrun":
        return DryRunWalletGateway(blockchain=settings.circle_blockchain)

    raise ConfigurationError(f"Unknown wallet provider: {settings.provider}")


def get_gateway(settings: Optional[Settings] = None) -> WalletGateway:
    """Get the configured wallet gateway, constructing it on first use."""
    global _gateway_instance

    if _gateway_instance is None:
        _gateway_instance = build_gateway(settings or get_settings())

    return _gateway_instance


def reset_gateway() -> None:
    """Reset gateway instance (useful for testing)."""
    global _gateway_instance
    _gateway_instance = None
