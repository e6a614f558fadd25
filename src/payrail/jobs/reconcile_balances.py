"""USDC balance reconciliation.

Compares ledger balances (available + escrow) against on-chain wallet
balances reported by the provider and logs every discrepancy for manual
review. Purely observational: balances are never corrected here, since any
fix moves real money and needs a human decision.

Intended to run hourly from cron.

Usage:
    python -m payrail.jobs.reconcile_balances

Requires CIRCLE_API_KEY and CIRCLE_ENTITY_SECRET. CIRCLE_ESCROW_WALLET_ID
enables the shared escrow wallet check.
"""

import argparse
import logging
import sys
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payrail.config import Settings
from payrail.jobs.base import run_job
from payrail.ledger.database import session_scope
from payrail.ledger.models import User
from payrail.ledger.repository import LedgerRepository
from payrail.providers.base import WalletGateway

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class Discrepancy:
    """On-chain balance differing from the ledger by more than the tolerance."""

    scope: str  # "user" or "escrow_wallet"
    subject: str
    on_chain: Decimal
    expected: Decimal

    @property
    def delta(self) -> Decimal:
        return abs(self.on_chain - self.expected)


@dataclass
class ReconciliationReport:
    """Outcome of one reconciliation run."""

    users_checked: int = 0
    walletless_users: int = 0
    walletless_funds_total: Decimal = Decimal("0")
    db_escrow_total: Decimal = Decimal("0")
    escrow_wallet_checked: bool = False
    discrepancies: list[Discrepancy] = field(default_factory=list)
    errors: int = 0

    @property
    def ok(self) -> bool:
        return not self.discrepancies


class BalanceReconciler:
    """Audits ledger balances against provider wallet balances."""

    def __init__(
        self,
        gateway: WalletGateway,
        session_factory: async_sessionmaker[AsyncSession],
        escrow_wallet_id: Optional[str] = None,
        tolerance: Decimal = DEFAULT_TOLERANCE,
    ):
        """Initialize the reconciler.

        Args:
            gateway: Wallet provider gateway
            session_factory: Ledger store session factory
            escrow_wallet_id: Shared platform escrow wallet, None to skip that check
            tolerance: Absolute USDC difference allowed before flagging
        """
        self.gateway = gateway
        self.session_factory = session_factory
        self.escrow_wallet_id = escrow_wallet_id
        self.tolerance = tolerance

    def exceeds_tolerance(self, on_chain: Decimal, expected: Decimal) -> bool:
        return abs(on_chain - expected) > self.tolerance

    async def run(self) -> ReconciliationReport:
        """Run one reconciliation pass.

        Raises:
            StoreError: if the users cannot be loaded
        """
        logger.info("Starting USDC balance reconciliation...")
        report = ReconciliationReport()

        async with session_scope(self.session_factory) as session:
            repo = LedgerRepository(session)
            users = await repo.get_walleted_users()
            walletless = await repo.get_walletless_users()
            report.db_escrow_total = await repo.get_total_escrow_balance()

        report.walletless_users = len(walletless)
        report.walletless_funds_total = sum(
            (u.available_balance for u in walletless), Decimal("0")
        )
        if walletless:
            logger.info(
                f"{len(walletless)} walletless users hold "
                f"{report.walletless_funds_total:.6f} USDC in the shared escrow wallet"
            )

        logger.info(f"Checking {len(users)} users with wallets")
        for user in users:
            try:
                await self.check_user(user, report)
            except Exception as e:
                report.errors += 1
                logger.error(f"Failed to check user {user.id}: {e}")

        await self.check_escrow_wallet(report)

        if report.ok:
            logger.info("All balances match. No discrepancies found.")
        else:
            logger.warning(
                f"Found {len(report.discrepancies)} discrepancies. Review above warnings."
            )
        logger.info("Reconciliation complete.")
        return report

    async def check_user(self, user: User, report: ReconciliationReport) -> None:
        on_chain = await self.gateway.get_balance(user.wallet_id)
        report.users_checked += 1

        available = user.available_balance or Decimal("0")
        escrow = user.escrow_balance or Decimal("0")
        db_total = user.total_balance

        if self.exceeds_tolerance(on_chain, db_total):
            discrepancy = Discrepancy("user", str(user.id), on_chain, db_total)
            report.discrepancies.append(discrepancy)
            logger.warning(
                f"DISCREPANCY for user {user.id} ({user.email}): "
                f"on-chain={on_chain:.6f}, db_total={db_total:.6f} "
                f"(available={available:.6f}, escrow={escrow:.6f}), "
                f"diff={discrepancy.delta:.6f}"
            )

    async def check_escrow_wallet(self, report: ReconciliationReport) -> None:
        """Compare the shared escrow wallet with all escrow plus walletless funds."""
        if not self.escrow_wallet_id:
            logger.info("No escrow wallet configured, skipping escrow wallet check")
            return

        try:
            on_chain = await self.gateway.get_balance(self.escrow_wallet_id)
        except Exception as e:
            report.errors += 1
            logger.error(f"Failed to check escrow wallet: {e}")
            return

        report.escrow_wallet_checked = True
        expected = report.db_escrow_total + report.walletless_funds_total

        if self.exceeds_tolerance(on_chain, expected):
            discrepancy = Discrepancy("escrow_wallet", self.escrow_wallet_id, on_chain, expected)
            report.discrepancies.append(discrepancy)
            logger.warning(
                f"ESCROW WALLET DISCREPANCY: on-chain={on_chain:.6f}, "
                f"expected={expected:.6f} (db_escrow={report.db_escrow_total:.6f} "
                f"+ walletless={report.walletless_funds_total:.6f}), "
                f"diff={discrepancy.delta:.6f}"
            )
        else:
            logger.info(
                f"Escrow wallet OK: on-chain={on_chain:.6f}, expected={expected:.6f} "
                f"(db_escrow={report.db_escrow_total:.6f} "
                f"+ walletless={report.walletless_funds_total:.6f})"
            )


async def reconcile_balances(
    gateway: WalletGateway,
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
) -> ReconciliationReport:
    reconciler = BalanceReconciler(
        gateway,
        session_factory,
        escrow_wallet_id=settings.circle_escrow_wallet_id,
        tolerance=settings.reconcile_tolerance,
    )
    return await reconciler.run()


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Reconcile ledger balances with on-chain wallets")
    parser.parse_args(argv)
    return run_job("Reconcile", reconcile_balances)


if __name__ == "__main__":
    sys.exit(main())
