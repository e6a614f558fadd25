"""Services that move money through the wallet gateway."""

from payrail.services.wallets import provision_wallet
from payrail.services.withdrawals import (
    WithdrawalResult,
    initiate_withdrawal,
    is_valid_address,
    make_idempotency_key,
)

__all__ = [
    "provision_wallet",
    "WithdrawalResult",
    "initiate_withdrawal",
    "is_valid_address",
    "make_idempotency_key",
]
