"""Tests for balance reconciliation."""

import logging
from decimal import Decimal

import pytest

from conftest import create_funded_user
from payrail.errors import StoreError
from payrail.jobs.reconcile_balances import BalanceReconciler, Discrepancy

ESCROW_WALLET = "escrow-wallet"


def _address(n: int) -> str:
    return "0x" + f"{n:02x}" * 20


@pytest.fixture
def reconciler(gateway, session_factory):
    return BalanceReconciler(gateway, session_factory, escrow_wallet_id=ESCROW_WALLET)


class TestUserWallets:
    """Per-user comparison of ledger totals with wallet balances."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "on_chain, flagged",
        [("100.00", False), ("100.01", False), ("99.99", False), ("100.02", True), ("99.98", True)],
    )
    async def test_tolerance(self, reconciler, gateway, in_session, on_chain, flagged):
        await in_session(
            lambda repo: create_funded_user(
                repo, "u@example.com", Decimal("60"), escrow=Decimal("40"),
                wallet_id="w-1", wallet_address=_address(1),
            )
        )
        gateway.set_balance("w-1", Decimal(on_chain))
        gateway.set_balance(ESCROW_WALLET, Decimal("40"))

        report = await reconciler.run()

        user_flags = [d for d in report.discrepancies if d.scope == "user"]
        assert report.users_checked == 1
        assert bool(user_flags) is flagged

    @pytest.mark.asyncio
    async def test_discrepancy_logged(self, reconciler, gateway, in_session, caplog):
        user = await in_session(
            lambda repo: create_funded_user(
                repo, "drift@example.com", Decimal("10"),
                wallet_id="w-1", wallet_address=_address(1),
            )
        )
        gateway.set_balance("w-1", Decimal("7.5"))

        with caplog.at_level(logging.WARNING):
            report = await reconciler.run()

        assert report.discrepancies == [Discrepancy("user", str(user.id), Decimal("7.5"), Decimal("10"))]
        assert report.discrepancies[0].delta == Decimal("2.5")
        assert f"DISCREPANCY for user {user.id} (drift@example.com)" in caplog.text
        assert "diff=2.500000" in caplog.text

    @pytest.mark.asyncio
    async def test_balances_never_changed(self, reconciler, gateway, in_session):
        user = await in_session(
            lambda repo: create_funded_user(
                repo, "x@example.com", Decimal("10"),
                wallet_id="w-1", wallet_address=_address(1),
            )
        )
        gateway.set_balance("w-1", Decimal("500"))

        await reconciler.run()

        reloaded = await in_session(lambda repo: repo.get_user(user.id))
        entries = await in_session(lambda repo: repo.get_ledger_entries(user.id))
        assert reloaded.available_balance == Decimal("10")
        assert len(entries) == 1

    @pytest.mark.asyncio
    async def test_one_failing_wallet_does_not_stop_run(self, reconciler, gateway, in_session, caplog):
        async def _create(repo):
            return [
                await create_funded_user(
                    repo, f"user{i}@example.com", Decimal("5"),
                    wallet_id=f"w-{i}", wallet_address=_address(i),
                )
                for i in range(1, 6)
            ]

        users = await in_session(_create)
        for i in range(1, 6):
            gateway.set_balance(f"w-{i}", Decimal("5"))
        gateway.fail_on("w-3")

        with caplog.at_level(logging.ERROR):
            report = await reconciler.run()

        assert report.users_checked == 4
        assert report.errors == 1
        assert report.ok
        assert f"Failed to check user {users[2].id}" in caplog.text

    @pytest.mark.asyncio
    async def test_store_failure_is_fatal(self, gateway, session_factory, db_engine):
        async with db_engine.begin() as conn:
            await conn.exec_driver_sql("DROP TABLE ledger_entries")
            await conn.exec_driver_sql("DROP TABLE deposits")
            await conn.exec_driver_sql("DROP TABLE users")

        with pytest.raises(StoreError):
            await BalanceReconciler(gateway, session_factory).run()


class TestWalletlessAndEscrow:
    """Walletless users and the shared escrow wallet."""

    @pytest.mark.asyncio
    async def test_walletless_funds_counted_not_flagged(self, reconciler, gateway, in_session):
        await in_session(lambda repo: create_funded_user(repo, "nw@example.com", Decimal("50")))
        gateway.set_balance(ESCROW_WALLET, Decimal("50"))

        report = await reconciler.run()

        assert report.users_checked == 0
        assert report.walletless_users == 1
        assert report.walletless_funds_total == Decimal("50")
        assert report.ok

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "on_chain, delta",
        [("120.005", None), ("121", Decimal("1.00"))],
    )
    async def test_escrow_wallet_check(self, reconciler, gateway, in_session, on_chain, delta):
        """Escrow 100 plus walletless 20 is expected in the escrow wallet."""

        async def _create(repo):
            await create_funded_user(
                repo, "payer@example.com", escrow=Decimal("100"),
                wallet_id="w-1", wallet_address=_address(1),
            )
            await create_funded_user(repo, "walletless@example.com", Decimal("20"))

        await in_session(_create)
        gateway.set_balance("w-1", Decimal("100"))
        gateway.set_balance(ESCROW_WALLET, Decimal(on_chain))

        report = await reconciler.run()

        assert report.escrow_wallet_checked
        assert report.db_escrow_total == Decimal("100")
        assert report.walletless_funds_total == Decimal("20")
        escrow_flags = [d for d in report.discrepancies if d.scope == "escrow_wallet"]
        if delta is None:
            assert escrow_flags == []
        else:
            assert len(escrow_flags) == 1
            assert escrow_flags[0].expected == Decimal("120")
            assert escrow_flags[0].delta == delta

    @pytest.mark.asyncio
    async def test_escrow_check_skipped_without_wallet(self, gateway, session_factory, in_session, caplog):
        await in_session(lambda repo: create_funded_user(repo, "nw@example.com", Decimal("50")))

        with caplog.at_level(logging.INFO):
            report = await BalanceReconciler(gateway, session_factory).run()

        assert not report.escrow_wallet_checked
        assert "skipping escrow wallet check" in caplog.text
        assert report.ok

    @pytest.mark.asyncio
    async def test_escrow_lookup_failure_counted(self, reconciler, gateway):
        gateway.fail_on(ESCROW_WALLET)

        report = await reconciler.run()

        assert not report.escrow_wallet_checked
        assert report.errors == 1


def test_custom_tolerance():
    reconciler = BalanceReconciler(None, None, tolerance=Decimal("0.5"))

    assert not reconciler.exceeds_tolerance(Decimal("10.5"), Decimal("10"))
    assert reconciler.exceeds_tolerance(Decimal("10.51"), Decimal("10"))
