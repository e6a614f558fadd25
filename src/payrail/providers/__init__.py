"""Custodial wallet gateways."""

from payrail.providers.base import (
    ProviderTransaction,
    TransactionState,
    TransferResult,
    Wallet,
    WalletGateway,
)
from payrail.providers.factory import get_gateway, reset_gateway

__all__ = [
    "ProviderTransaction",
    "TransactionState",
    "TransferResult",
    "Wallet",
    "WalletGateway",
    "get_gateway",
    "reset_gateway",
]
