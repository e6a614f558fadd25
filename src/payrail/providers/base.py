"""Wallet gateway base interface.

Every provider response is translated into the dataclasses below as soon as
it is received, so nothing outside ``payrail.providers`` sees provider JSON.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional


class TransactionState(str, Enum):
    """Provider transaction states."""

    INITIATED = "INITIATED"
    PENDING_RISK_SCREENING = "PENDING_RISK_SCREENING"
    QUEUED = "QUEUED"
    SENT = "SENT"
    CONFIRMED = "CONFIRMED"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    DENIED = "DENIED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "TransactionState":
        """Map a provider state string, falling back to UNKNOWN."""
        if not raw:
            return cls.UNKNOWN
        try:
            return cls(raw.upper())
        except ValueError:
            return cls.UNKNOWN


SETTLED_STATES = frozenset({TransactionState.COMPLETE, TransactionState.CONFIRMED})
# The provider never settles a cancelled or denied transaction
FAILED_STATES = frozenset(
    {TransactionState.FAILED, TransactionState.CANCELLED, TransactionState.DENIED}
)


@dataclass(frozen=True)
class Wallet:
    """Custodial wallet provisioned by the provider."""

    wallet_id: str
    wallet_address: str
    blockchain: str


@dataclass(frozen=True)
class TransferResult:
    """Outcome of a transfer request. tx_hash stays None until mined."""

    transaction_id: str
    state: TransactionState
    tx_hash: Optional[str] = None


@dataclass(frozen=True)
class ProviderTransaction:
    """Provider-side view of a transaction."""

    transaction_id: str
    state: TransactionState
    raw_state: Optional[str] = None
    tx_hash: Optional[str] = None
    wallet_id: Optional[str] = None
    amount: Optional[Decimal] = None
    created_at: Optional[datetime] = None

    @property
    def is_settled(self) -> bool:
        return self.state in SETTLED_STATES

    @property
    def is_failed(self) -> bool:
        return self.state in FAILED_STATES

    @property
    def is_terminal(self) -> bool:
        return self.is_settled or self.is_failed


class WalletGateway(ABC):
    """Sole interface to the custodial wallet provider.

    All money movement goes through ``transfer``; callers must supply an
    idempotency key and reuse it verbatim when retrying.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name."""
        raise NotImplementedError()

    @abstractmethod
    async def create_wallet(self) -> Wallet:
        """Provision one wallet on the configured chain.

        Raises:
            ConfigurationError: credentials or wallet set not configured
            ProviderError: API failure or empty wallet list
        """
        raise NotImplementedError()

    @abstractmethod
    async def get_balance(self, wallet_id: str) -> Decimal:
        """USDC balance of a wallet, 0 when the token is absent."""
        raise NotImplementedError()

    @abstractmethod
    async def transfer(
        self,
        from_wallet_id: str,
        to_address: str,
        amount: Decimal,
        idempotency_key: str,
    ) -> TransferResult:
        """Send USDC from a custodial wallet at the platform-paid fee level.

        Args:
            from_wallet_id: Source wallet
            to_address: Destination address
            amount: Amount in USDC
            idempotency_key: Caller-owned key, identical on every retry

        Returns:
            TransferResult with the provider transaction id
        """
        raise NotImplementedError()

    @abstractmethod
    async def get_transaction(self, transaction_id: str) -> ProviderTransaction:
        """Current provider state of a transaction."""
        raise NotImplementedError()

    @abstractmethod
    async def list_transactions(self, wallet_id: str) -> list[ProviderTransaction]:
        """Transactions involving a wallet."""
        raise NotImplementedError()

    @abstractmethod
    async def validate_config(self) -> bool:
        """Validate provider configuration.

        Returns:
            True if configuration is valid
        """
        raise NotImplementedError()

    async def aclose(self) -> None:
        """Release network resources."""
        return None


def require_idempotency_key(idempotency_key: Optional[str]) -> str:
    """Reject transfers without a caller-supplied idempotency key."""
    if not idempotency_key or not idempotency_key.strip():
        raise ValueError("transfer() requires a non-empty idempotency_key")
    return idempotency_key
