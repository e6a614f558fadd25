"""Dry-run gateway for development and testing (no real wallets)."""

import hashlib
import logging
from decimal import Decimal
from typing import Optional

from payrail.errors import ProviderError
from payrail.providers.base import (
    ProviderTransaction,
    TransactionState,
    TransferResult,
    Wallet,
    WalletGateway,
    require_idempotency_key,
)

logger = logging.getLogger(__name__)


class DryRunWalletGateway(WalletGateway):
    """Simulated provider keeping wallets and transactions in memory.

    Wallet ids and addresses are deterministic. Transfers honour idempotency
    keys the way the real provider does: a repeated key returns the original
    transaction instead of moving funds again.
    """

    def __init__(self, blockchain: str = "BASE"):
        self.blockchain = blockchain
        self.balances: dict[str, Decimal] = {}
        self.transactions: dict[str, ProviderTransaction] = {}
        self.failing: dict[str, Exception] = {}
        self._addresses: dict[str, str] = {}
        self._by_key: dict[str, TransferResult] = {}
        self._wallet_seq = 0
        self._tx_seq = 0

    @property
    def name(self) -> str:
        return "dryrun"

    async def validate_config(self) -> bool:
        """Always valid for dry-run."""
        return True

    # Test/dev helpers
    def set_balance(self, wallet_id: str, amount: Decimal) -> None:
        self.balances[wallet_id] = Decimal(amount)

    def set_transaction(
        self,
        transaction_id: str,
        state: TransactionState,
        tx_hash: Optional[str] = None,
        wallet_id: Optional[str] = None,
        amount: Optional[Decimal] = None,
    ) -> ProviderTransaction:
        tx = ProviderTransaction(
            transaction_id=transaction_id,
            state=state,
            raw_state=state.value,
            tx_hash=tx_hash,
            wallet_id=wallet_id,
            amount=amount,
        )
        self.transactions[transaction_id] = tx
        return tx

    def fail_on(self, key: str, error: Optional[Exception] = None) -> None:
        """Make lookups of a wallet or transaction id raise."""
        self.failing[key] = error or ProviderError("dryrun", f"simulated failure for {key}")

    def _check_failure(self, key: str) -> None:
        if key in self.failing:
            raise self.failing[key]

    # Gateway operations
    async def create_wallet(self) -> Wallet:
        self._wallet_seq += 1
        wallet_id = f"sim-wallet-{self._wallet_seq:06d}"
        address = "0x" + hashlib.sha256(wallet_id.encode()).hexdigest()[:40]
        self._addresses[wallet_id] = address
        self.balances.setdefault(wallet_id, Decimal("0"))
        return Wallet(wallet_id=wallet_id, wallet_address=address, blockchain=self.blockchain)

    async def get_balance(self, wallet_id: str) -> Decimal:
        self._check_failure(wallet_id)
        return self.balances.get(wallet_id, Decimal("0"))

    async def transfer(
        self,
        from_wallet_id: str,
        to_address: str,
        amount: Decimal,
        idempotency_key: str,
    ) -> TransferResult:
        require_idempotency_key(idempotency_key)
        if amount <= 0:
            raise ValueError("Transfer amount must be positive")

        if idempotency_key in self._by_key:
            logger.info(f"Dry-run transfer replayed for key {idempotency_key}")
            return self._by_key[idempotency_key]

        self._check_failure(from_wallet_id)
        available = self.balances.get(from_wallet_id, Decimal("0"))
        if available < amount:
            raise ProviderError(
                "createTransaction",
                {"code": 155201, "message": "Insufficient token balance"},
                status_code=400,
            )

        self.balances[from_wallet_id] = available - amount
        for wallet_id, address in self._addresses.items():
            if address.lower() == to_address.lower():
                self.balances[wallet_id] = self.balances.get(wallet_id, Decimal("0")) + amount

        self._tx_seq += 1
        transaction_id = f"sim-tx-{self._tx_seq:06d}"
        self.set_transaction(
            transaction_id, TransactionState.INITIATED, wallet_id=from_wallet_id, amount=amount
        )

        result = TransferResult(transaction_id=transaction_id, state=TransactionState.INITIATED)
        self._by_key[idempotency_key] = result
        return result

    async def get_transaction(self, transaction_id: str) -> ProviderTransaction:
        self._check_failure(transaction_id)
        tx = self.transactions.get(transaction_id)
        if tx is None:
            raise ProviderError("getTransaction", f"transaction {transaction_id} not found", 404)
        return tx

    async def list_transactions(self, wallet_id: str) -> list[ProviderTransaction]:
        self._check_failure(wallet_id)
        return [tx for tx in self.transactions.values() if tx.wallet_id == wallet_id]
