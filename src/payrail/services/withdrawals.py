"""USDC withdrawals from a user's custodial wallet to an external address.

The provider transfer is gas-sponsored, so the full amount reaches the
destination and nothing is deducted for network fees.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from payrail.errors import ProviderError
from payrail.ledger.models import LedgerEntryType
from payrail.ledger.repository import LedgerRepository
from payrail.providers.base import TransactionState, WalletGateway

logger = logging.getLogger(__name__)

ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")
USDC_QUANTUM = Decimal("0.000001")
EXPLORER_TX_URL = "https://basescan.org/tx/{tx_hash}"


def is_valid_address(address: Optional[str]) -> bool:
    """Check for a 0x-prefixed 20-byte hex address."""
    return bool(address and ADDRESS_PATTERN.fullmatch(address))


def make_idempotency_key(user_id: int) -> str:
    """Build a fresh idempotency key for one withdrawal attempt.

    Retries of the same attempt must reuse the returned key.
    """
    return f"withdrawal-{user_id}-{uuid.uuid4()}"


@dataclass(frozen=True)
class WithdrawalResult:
    """Outcome of an initiated withdrawal."""

    user_id: int
    amount: Decimal
    destination_address: str
    idempotency_key: str
    transaction_id: str
    state: TransactionState
    balance_after: Decimal
    tx_hash: Optional[str] = None

    @property
    def explorer_url(self) -> Optional[str]:
        if not self.tx_hash:
            return None
        return EXPLORER_TX_URL.format(tx_hash=self.tx_hash)


async def initiate_withdrawal(
    repo: LedgerRepository,
    gateway: WalletGateway,
    user_id: int,
    destination_address: str,
    amount: Optional[Decimal] = None,
    idempotency_key: Optional[str] = None,
) -> WithdrawalResult:
    """Debit the user's available balance and transfer USDC out.

    Must run inside ``session_scope``: the debit is written first so two
    concurrent withdrawals cannot both spend the same funds, and if the
    transfer raises, the caller's rollback restores the balance.

    Args:
        repo: Ledger repository bound to the caller's session
        gateway: Wallet provider gateway
        user_id: User withdrawing
        destination_address: External Base address
        amount: USDC to withdraw, defaults to the whole available balance
        idempotency_key: Key from a previous attempt when retrying

    Raises:
        ValueError: invalid address or amount, no wallet, insufficient balance
        ProviderError: the transfer failed; its ``idempotency_key`` attribute
            carries the key to retry with
    """
    if not is_valid_address(destination_address):
        raise ValueError("Invalid destination address")

    user = await repo.get_user(user_id)
    if user is None:
        raise ValueError(f"User {user_id} not found")
    if not user.has_wallet:
        raise ValueError(f"User {user_id} has no custodial wallet")

    available = user.available_balance or Decimal("0")
    if amount is None:
        amount = available
        if amount <= 0:
            raise ValueError("No available USDC balance to withdraw")
    if amount <= 0:
        raise ValueError("Withdrawal amount must be positive")
    if amount != amount.quantize(USDC_QUANTUM):
        raise ValueError("USDC amounts support at most 6 decimal places")
    if amount > available:
        raise ValueError(f"Insufficient USDC balance. Available: {available:.2f}")

    key = idempotency_key or make_idempotency_key(user_id)

    entry = await repo.apply_balance_change(
        user_id=user_id,
        entry_type=LedgerEntryType.WITHDRAWAL,
        available_delta=-amount,
        description=f"Withdrawal of {amount:.2f} USDC to {destination_address}",
    )

    try:
        result = await gateway.transfer(
            from_wallet_id=user.wallet_id,
            to_address=destination_address,
            amount=amount,
            idempotency_key=key,
        )
    except ProviderError as e:
        # The provider may have accepted the transfer; a retry must reuse this key
        e.idempotency_key = key
        logger.error(f"Withdrawal transfer for user {user_id} failed (key {key}): {e}")
        raise

    entry.external_tx_ref = result.transaction_id
    entry.tx_hash = result.tx_hash
    await repo.session.flush()

    logger.info(
        f"Withdrawal for user {user_id}: {amount} USDC to {destination_address} "
        f"(tx {result.transaction_id}, key {key})"
    )

    return WithdrawalResult(
        user_id=user_id,
        amount=amount,
        destination_address=destination_address,
        idempotency_key=key,
        transaction_id=result.transaction_id,
        state=result.state,
        balance_after=entry.balance_after,
        tx_hash=result.tx_hash,
    )
