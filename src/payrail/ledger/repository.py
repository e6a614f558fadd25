"""Repository for ledger operations."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from payrail.ledger.models import (
    ACTIVE_TASK_STATUSES,
    Deposit,
    DepositStatus,
    LedgerEntry,
    LedgerEntryType,
    Task,
    TaskStatus,
    User,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LedgerRepository:
    """Repository for all ledger-related database operations.

    Balance mutations never read-modify-write in Python: they are single
    conditional UPDATE statements so concurrent job runs cannot double-apply.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # User operations
    async def create_user(
        self,
        email: Optional[str] = None,
        wallet_id: Optional[str] = None,
        wallet_address: Optional[str] = None,
        blockchain: Optional[str] = None,
        available_balance: Decimal = Decimal("0"),
        escrow_balance: Decimal = Decimal("0"),
    ) -> User:
        """Create a user record."""
        now = utcnow()
        user = User(
            email=email,
            wallet_id=wallet_id,
            wallet_address=wallet_address,
            blockchain=blockchain,
            available_balance=available_balance,
            escrow_balance=escrow_balance,
            created_at=now,
            updated_at=now,
        )
        self.session.add(user)
        await self.session.flush()
        return user

    async def get_user(self, user_id: int) -> Optional[User]:
        """Get user by ID, bypassing any stale copy in the identity map."""
        stmt = select(User).where(User.id == user_id).execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def set_wallet(
        self, user_id: int, wallet_id: str, wallet_address: str, blockchain: str
    ) -> User:
        """Attach a custodial wallet reference to a user."""
        user = await self.get_user(user_id)
        if user is None:
            raise ValueError(f"User {user_id} not found")

        user.wallet_id = wallet_id
        user.wallet_address = wallet_address
        user.blockchain = blockchain
        user.updated_at = utcnow()
        await self.session.flush()
        return user

    async def get_walleted_users(self) -> list[User]:
        """Users with both a wallet id and a wallet address."""
        stmt = (
            select(User)
            .where(User.wallet_id.is_not(None), User.wallet_address.is_not(None))
            .order_by(User.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_walletless_users(self) -> list[User]:
        """Users holding a positive available balance without a personal wallet.

        Their funds sit in the shared escrow wallet.
        """
        stmt = (
            select(User)
            .where(User.wallet_address.is_(None), User.available_balance > 0)
            .order_by(User.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_total_escrow_balance(self) -> Decimal:
        """Sum of escrow balances across all users."""
        stmt = select(func.sum(User.escrow_balance))
        result = await self.session.execute(stmt)
        return result.scalar() or Decimal("0")

    # Balance operations
    async def apply_balance_change(
        self,
        user_id: int,
        entry_type: LedgerEntryType,
        available_delta: Decimal,
        escrow_delta: Decimal = Decimal("0"),
        external_tx_ref: Optional[str] = None,
        tx_hash: Optional[str] = None,
        description: Optional[str] = None,
    ) -> LedgerEntry:
        """Atomically adjust a user's balances and append one ledger entry.

        The increment is a single UPDATE guarded so neither balance can go
        negative. Raises ValueError when the guard rejects the change.
        """
        stmt = (
            update(User)
            .where(
                User.id == user_id,
                User.available_balance + available_delta >= 0,
                User.escrow_balance + escrow_delta >= 0,
            )
            .values(
                available_balance=User.available_balance + available_delta,
                escrow_balance=User.escrow_balance + escrow_delta,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)

        if result.rowcount != 1:
            exists = await self.session.execute(select(User.id).where(User.id == user_id))
            if exists.scalar_one_or_none() is None:
                raise ValueError(f"User {user_id} not found")
            raise ValueError(f"Insufficient balance for user {user_id}")

        row = await self.session.execute(
            select(User.available_balance).where(User.id == user_id)
        )
        balance_after = row.scalar_one()

        entry = LedgerEntry(
            user_id=user_id,
            entry_type=entry_type,
            amount=available_delta,
            balance_after=balance_after,
            external_tx_ref=external_tx_ref,
            tx_hash=tx_hash,
            description=description,
            created_at=utcnow(),
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def get_ledger_entries(self, user_id: int) -> list[LedgerEntry]:
        """Ledger entries for a user, oldest first."""
        stmt = (
            select(LedgerEntry)
            .where(LedgerEntry.user_id == user_id)
            .order_by(LedgerEntry.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_ledger_sum(self, user_id: int) -> Decimal:
        """Sum of signed ledger amounts for a user."""
        stmt = select(func.sum(LedgerEntry.amount)).where(LedgerEntry.user_id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar() or Decimal("0")

    # Deposit operations
    async def create_deposit(
        self,
        user_id: int,
        external_tx_id: str,
        amount: Decimal,
        created_at: Optional[datetime] = None,
    ) -> Deposit:
        """Record a pending deposit at initiation time."""
        if amount <= 0:
            raise ValueError("Deposit amount must be positive")

        deposit = Deposit(
            user_id=user_id,
            external_tx_id=external_tx_id,
            amount=amount,
            status=DepositStatus.PENDING,
            created_at=created_at or utcnow(),
        )
        self.session.add(deposit)
        await self.session.flush()
        return deposit

    async def get_deposit(self, deposit_id: int) -> Optional[Deposit]:
        stmt = (
            select(Deposit)
            .where(Deposit.id == deposit_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_deposits_by_status(self, status: DepositStatus) -> list[Deposit]:
        """Get deposits in a given status, oldest first."""
        stmt = select(Deposit).where(Deposit.status == status).order_by(Deposit.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_pending_deposits(self) -> list[Deposit]:
        return await self.get_deposits_by_status(DepositStatus.PENDING)

    async def transition_deposit(
        self,
        deposit_id: int,
        new_status: DepositStatus,
        tx_hash: Optional[str] = None,
        confirmed_at: Optional[datetime] = None,
    ) -> bool:
        """Move a deposit out of pending with a compare-and-set UPDATE.

        Returns True only when this call performed the transition. False
        means the row was already terminal (or does not exist).
        """
        values: dict = {"status": new_status}
        if new_status == DepositStatus.CONFIRMED:
            values["confirmed_at"] = confirmed_at or utcnow()
            values["tx_hash"] = tx_hash

        stmt = (
            update(Deposit)
            .where(Deposit.id == deposit_id, Deposit.status == DepositStatus.PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def confirm_and_credit_deposit(
        self, deposit: Deposit, tx_hash: Optional[str] = None, source: str = "poll"
    ) -> Optional[LedgerEntry]:
        """Confirm a pending deposit and credit its amount exactly once.

        The status transition and the credit share the session's transaction:
        if crediting fails the caller's rollback also undoes the transition.
        Returns None when another writer already settled the deposit.
        """
        if not await self.transition_deposit(
            deposit.id, DepositStatus.CONFIRMED, tx_hash=tx_hash
        ):
            return None

        return await self.apply_balance_change(
            user_id=deposit.user_id,
            entry_type=LedgerEntryType.DEPOSIT,
            available_delta=deposit.amount,
            external_tx_ref=deposit.external_tx_id,
            tx_hash=tx_hash,
            description=f"Deposit confirmed (via {source}) - {deposit.amount:.2f} USDC",
        )

    async def fail_deposit(self, deposit_id: int) -> bool:
        """Mark a pending deposit failed. No balance change."""
        return await self.transition_deposit(deposit_id, DepositStatus.FAILED)

    # Task operations (read model)
    async def create_task(
        self,
        status: TaskStatus = TaskStatus.OPEN,
        escrow_tx_id: Optional[str] = None,
        payout_tx_id: Optional[str] = None,
        refund_tx_id: Optional[str] = None,
        updated_at: Optional[datetime] = None,
    ) -> Task:
        now = utcnow()
        task = Task(
            status=status,
            escrow_tx_id=escrow_tx_id,
            payout_tx_id=payout_tx_id,
            refund_tx_id=refund_tx_id,
            created_at=now,
            updated_at=updated_at or now,
        )
        self.session.add(task)
        await self.session.flush()
        return task

    async def get_tasks_with_open_transactions(
        self, statuses: Iterable[TaskStatus] = ACTIVE_TASK_STATUSES
    ) -> list[Task]:
        """Tasks in the given statuses that reference any provider transaction."""
        stmt = (
            select(Task)
            .where(
                Task.status.in_([TaskStatus(s).value for s in statuses]),
                or_(
                    Task.escrow_tx_id.is_not(None),
                    Task.payout_tx_id.is_not(None),
                    Task.refund_tx_id.is_not(None),
                ),
            )
            .order_by(Task.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
