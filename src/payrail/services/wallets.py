"""Custodial wallet provisioning for users."""

import logging

from payrail.ledger.repository import LedgerRepository
from payrail.providers.base import Wallet, WalletGateway

logger = logging.getLogger(__name__)


async def provision_wallet(
    repo: LedgerRepository, gateway: WalletGateway, user_id: int
) -> Wallet:
    """Return the user's wallet, creating one with the provider if needed.

    Raises:
        ValueError: unknown user
        ConfigurationError: provider credentials or wallet set missing
        ProviderError: wallet creation failed
    """
    user = await repo.get_user(user_id)
    if user is None:
        raise ValueError(f"User {user_id} not found")

    if user.has_wallet:
        return Wallet(
            wallet_id=user.wallet_id,
            wallet_address=user.wallet_address,
            blockchain=user.blockchain or "",
        )

    wallet = await gateway.create_wallet()
    await repo.set_wallet(user_id, wallet.wallet_id, wallet.wallet_address, wallet.blockchain)
    logger.info(f"Provisioned {wallet.blockchain} wallet {wallet.wallet_id} for user {user_id}")
    return wallet
