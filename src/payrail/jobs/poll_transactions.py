"""Transaction status poller.

Reconciles pending deposits against the provider's view of their transfers,
covering for missed or delayed webhooks, and reports transactions stuck in a
non-terminal state. Intended to run every 5-15 minutes from cron.

Usage:
    python -m payrail.jobs.poll_transactions [--stale-minutes 30]

Requires CIRCLE_API_KEY and CIRCLE_ENTITY_SECRET (or PROVIDER=dryrun).
"""

import argparse
import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payrail.config import Settings
from payrail.errors import StoreError
from payrail.jobs.base import run_job
from payrail.ledger.database import session_scope
from payrail.ledger.models import Deposit, Task
from payrail.ledger.repository import LedgerRepository
from payrail.providers.base import WalletGateway

logger = logging.getLogger(__name__)

STALE_THRESHOLD_MINUTES = 30


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PollReport:
    """Counters for one poller run."""

    deposits_checked: int = 0
    deposits_confirmed: int = 0
    deposits_already_settled: int = 0
    deposits_failed: int = 0
    deposits_stale: int = 0
    tasks_checked: int = 0
    task_transactions_failed: int = 0
    task_transactions_stale: int = 0
    errors: int = 0

    def summary(self) -> str:
        return (
            f"deposits checked={self.deposits_checked} confirmed={self.deposits_confirmed} "
            f"already_settled={self.deposits_already_settled} failed={self.deposits_failed} "
            f"stale={self.deposits_stale}; tasks checked={self.tasks_checked} "
            f"failed_tx={self.task_transactions_failed} stale_tx={self.task_transactions_stale}; "
            f"errors={self.errors}"
        )


class TransactionPoller:
    """Polls the provider for deposits and task transfers still in flight."""

    def __init__(
        self,
        gateway: WalletGateway,
        session_factory: async_sessionmaker[AsyncSession],
        stale_threshold_minutes: int = STALE_THRESHOLD_MINUTES,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize the poller.

        Args:
            gateway: Wallet provider gateway
            session_factory: Ledger store session factory
            stale_threshold_minutes: Age after which a non-terminal transaction is reported
            clock: Returns the current UTC time
        """
        self.gateway = gateway
        self.session_factory = session_factory
        self.stale_threshold_minutes = stale_threshold_minutes
        self.clock = clock

    async def run(self) -> PollReport:
        """Run one polling pass over deposits, then tasks."""
        logger.info("Starting transaction status polling...")
        report = PollReport()

        await self.poll_deposits(report)
        await self.poll_tasks(report)

        logger.info(f"Transaction polling complete: {report.summary()}")
        return report

    async def poll_deposits(self, report: PollReport) -> None:
        try:
            async with session_scope(self.session_factory) as session:
                deposits = await LedgerRepository(session).get_pending_deposits()
        except StoreError as e:
            logger.error(f"Failed to fetch pending deposits: {e}")
            report.errors += 1
            return

        if not deposits:
            logger.info("No pending deposits")
            return

        logger.info(f"Checking {len(deposits)} pending deposits...")
        for deposit in deposits:
            report.deposits_checked += 1
            try:
                await self.process_deposit(deposit, report)
            except Exception as e:
                report.errors += 1
                logger.error(f"Error checking deposit {deposit.id}: {e}")

    async def process_deposit(self, deposit: Deposit, report: PollReport) -> None:
        """Apply the provider's current state to one pending deposit."""
        tx = await self.gateway.get_transaction(deposit.external_tx_id)

        if tx.is_settled:
            async with session_scope(self.session_factory) as session:
                entry = await LedgerRepository(session).confirm_and_credit_deposit(
                    deposit, tx_hash=tx.tx_hash
                )

            if entry is None:
                report.deposits_already_settled += 1
                logger.info(
                    f"Deposit {deposit.id} already settled (webhook or another run won). Skipping."
                )
                return

            report.deposits_confirmed += 1
            logger.info(
                f"Deposit {deposit.id} confirmed. Credited {deposit.amount} USDC to user "
                f"{deposit.user_id} (available now {entry.balance_after})"
            )

        elif tx.is_failed:
            async with session_scope(self.session_factory) as session:
                changed = await LedgerRepository(session).fail_deposit(deposit.id)

            if changed:
                report.deposits_failed += 1
                logger.warning(f"Deposit {deposit.id} FAILED (provider state {tx.raw_state}).")
            else:
                report.deposits_already_settled += 1

        else:
            minutes_old = self.minutes_since(deposit.created_at)
            if minutes_old > self.stale_threshold_minutes:
                report.deposits_stale += 1
                logger.warning(
                    f"Deposit {deposit.id} stuck in state \"{tx.raw_state}\" "
                    f"for {minutes_old:.0f} minutes."
                )

    async def poll_tasks(self, report: PollReport) -> None:
        """Warn about failed or stuck escrow, payout and refund transfers.

        Read-only: task state belongs to the task service.
        """
        try:
            async with session_scope(self.session_factory) as session:
                tasks = await LedgerRepository(session).get_tasks_with_open_transactions()
        except StoreError as e:
            logger.error(f"Failed to fetch tasks: {e}")
            report.errors += 1
            return

        if not tasks:
            return

        logger.info(f"Checking {len(tasks)} tasks with provider transactions...")
        for task in tasks:
            report.tasks_checked += 1
            for field, tx_id in task.transaction_refs():
                try:
                    await self.check_task_transaction(task, field, tx_id, report)
                except Exception as e:
                    report.errors += 1
                    logger.error(f"Error checking task {task.id} {field}: {e}")

    async def check_task_transaction(
        self, task: Task, field: str, tx_id: str, report: PollReport
    ) -> None:
        tx = await self.gateway.get_transaction(tx_id)

        if tx.is_failed:
            report.task_transactions_failed += 1
            logger.warning(f"Task {task.id} has FAILED {field}: {tx_id}")
            return

        if not tx.is_settled:
            minutes_old = self.minutes_since(task.updated_at)
            if minutes_old > self.stale_threshold_minutes:
                report.task_transactions_stale += 1
                logger.warning(
                    f"Task {task.id} {field} stuck in state \"{tx.raw_state}\" "
                    f"for {minutes_old:.0f} minutes."
                )

    def minutes_since(self, timestamp: Optional[datetime]) -> float:
        if timestamp is None:
            return 0.0
        # SQLite hands back naive datetimes; stored values are UTC
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return (self.clock() - timestamp).total_seconds() / 60


async def poll_transactions(
    gateway: WalletGateway,
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
) -> PollReport:
    poller = TransactionPoller(
        gateway,
        session_factory,
        stale_threshold_minutes=settings.stale_threshold_minutes,
    )
    return await poller.run()


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Poll provider status of pending USDC transactions")
    parser.add_argument(
        "--stale-minutes",
        type=int,
        default=None,
        help="Override STALE_THRESHOLD_MINUTES for this run",
    )
    args = parser.parse_args(argv)

    async def job(gateway, session_factory, settings):
        if args.stale_minutes is not None:
            settings = settings.model_copy(update={"stale_threshold_minutes": args.stale_minutes})
        return await poll_transactions(gateway, session_factory, settings)

    return run_job("PollTx", job)


if __name__ == "__main__":
    sys.exit(main())
