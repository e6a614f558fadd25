"""Ledger module for user balances, deposits and the append-only journal."""

from payrail.ledger.database import init_db, session_scope
from payrail.ledger.models import (
    Deposit,
    DepositStatus,
    LedgerEntry,
    LedgerEntryType,
    Task,
    TaskStatus,
    User,
)
from payrail.ledger.repository import LedgerRepository

__all__ = [
    # Models
    "User",
    "Deposit",
    "LedgerEntry",
    "Task",
    # Enums
    "DepositStatus",
    "LedgerEntryType",
    "TaskStatus",
    # Database
    "init_db",
    "session_scope",
    "LedgerRepository",
]
