"""SQLAlchemy models for the USDC ledger."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# USDC has 6 decimals
USDC = Numeric(18, 6)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class DepositStatus(str, Enum):
    """Status of a deposit."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class LedgerEntryType(str, Enum):
    """Kind of balance-affecting event recorded in the ledger."""

    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    PAYMENT = "payment"      # Available moved into task escrow
    PAYOUT = "payout"        # Escrow released to a worker
    REFUND = "refund"        # Escrow returned to the payer


class TaskStatus(str, Enum):
    """Task lifecycle states (owned by the task service, read here)."""

    OPEN = "open"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    PENDING_REVIEW = "pending_review"
    COMPLETED = "completed"
    PAID = "paid"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


# Tasks whose escrow, payout or refund transfer may still be in flight
ACTIVE_TASK_STATUSES = (
    TaskStatus.ASSIGNED,
    TaskStatus.IN_PROGRESS,
    TaskStatus.PENDING_REVIEW,
    TaskStatus.COMPLETED,
)


class User(Base):
    """Platform user with a USDC balance and an optional custodial wallet."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)

    # Custodial wallet reference, absent for walletless users
    wallet_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    wallet_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    blockchain: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    available_balance: Mapped[Decimal] = mapped_column(USDC, default=Decimal("0"), nullable=False)
    escrow_balance: Mapped[Decimal] = mapped_column(USDC, default=Decimal("0"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    deposits: Mapped[list["Deposit"]] = relationship(back_populates="user")
    ledger_entries: Mapped[list["LedgerEntry"]] = relationship(back_populates="user")

    @property
    def total_balance(self) -> Decimal:
        """Available plus escrow, the amount expected in the user's wallet."""
        return (self.available_balance or Decimal("0")) + (self.escrow_balance or Decimal("0"))

    @property
    def has_wallet(self) -> bool:
        return bool(self.wallet_id and self.wallet_address)


class LedgerEntry(Base):
    """Append-only record of one balance-affecting event.

    ``amount`` is the signed change applied to the user's available balance
    and ``balance_after`` the available balance once it was applied.
    """

    __tablename__ = "ledger_entries"
    __table_args__ = (Index("ix_ledger_entries_user_created", "user_id", "created_at"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    entry_type: Mapped[LedgerEntryType] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(USDC, nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(USDC, nullable=False)
    external_tx_ref: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    tx_hash: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    # Relationships
    user: Mapped["User"] = relationship(back_populates="ledger_entries")


class Deposit(Base):
    """USDC deposit into a user's custodial wallet, tracked until settled."""

    __tablename__ = "deposits"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    external_tx_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(USDC, nullable=False)
    status: Mapped[DepositStatus] = mapped_column(
        String(20), default=DepositStatus.PENDING, nullable=False, index=True
    )
    tx_hash: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    user: Mapped["User"] = relationship(back_populates="deposits")


class Task(Base):
    """Read model of a marketplace task and the provider transfers it references."""

    __tablename__ = "tasks"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    status: Mapped[TaskStatus] = mapped_column(
        String(20), default=TaskStatus.OPEN, nullable=False, index=True
    )
    escrow_tx_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    payout_tx_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    refund_tx_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def transaction_refs(self) -> list[tuple[str, str]]:
        """Non-null provider transaction ids as (field, id) pairs."""
        refs = [
            ("escrow_tx_id", self.escrow_tx_id),
            ("payout_tx_id", self.payout_tx_id),
            ("refund_tx_id", self.refund_tx_id),
        ]
        return [(field, tx_id) for field, tx_id in refs if tx_id]
