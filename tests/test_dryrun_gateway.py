"""Tests for the dry-run gateway and the gateway factory."""

from decimal import Decimal

import pytest

from payrail.config import Settings
from payrail.errors import ConfigurationError, ProviderError
from payrail.providers import get_gateway, reset_gateway
from payrail.providers.base import TransactionState
from payrail.providers.circle import CircleWalletGateway
from payrail.providers.dryrun import DryRunWalletGateway
from payrail.providers.factory import build_gateway


class TestDryRunGateway:
    """In-memory provider behaviour."""

    @pytest.mark.asyncio
    async def test_wallets_are_deterministic(self):
        first = await DryRunWalletGateway().create_wallet()
        again = await DryRunWalletGateway().create_wallet()

        assert first == again
        assert first.wallet_id == "sim-wallet-000001"
        assert first.wallet_address.startswith("0x")
        assert len(first.wallet_address) == 42

    @pytest.mark.asyncio
    async def test_transfer_moves_funds(self, gateway):
        source = await gateway.create_wallet()
        target = await gateway.create_wallet()
        gateway.set_balance(source.wallet_id, Decimal("10"))

        result = await gateway.transfer(source.wallet_id, target.wallet_address, Decimal("4"), "k-1")

        assert result.state == TransactionState.INITIATED
        assert await gateway.get_balance(source.wallet_id) == Decimal("6")
        assert await gateway.get_balance(target.wallet_id) == Decimal("4")
        tx = await gateway.get_transaction(result.transaction_id)
        assert tx.amount == Decimal("4")
        assert [t.transaction_id for t in await gateway.list_transactions(source.wallet_id)] == [
            result.transaction_id
        ]

    @pytest.mark.asyncio
    async def test_repeated_key_does_not_move_funds_twice(self, gateway):
        source = await gateway.create_wallet()
        gateway.set_balance(source.wallet_id, Decimal("10"))

        first = await gateway.transfer(source.wallet_id, "0x" + "ee" * 20, Decimal("4"), "k-1")
        retry = await gateway.transfer(source.wallet_id, "0x" + "ee" * 20, Decimal("4"), "k-1")

        assert retry == first
        assert await gateway.get_balance(source.wallet_id) == Decimal("6")

    @pytest.mark.asyncio
    async def test_insufficient_funds(self, gateway):
        source = await gateway.create_wallet()

        with pytest.raises(ProviderError) as exc_info:
            await gateway.transfer(source.wallet_id, "0x" + "ee" * 20, Decimal("1"), "k-1")
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, gateway):
        with pytest.raises(ProviderError, match="not found"):
            await gateway.get_transaction("tx-nope")

    @pytest.mark.asyncio
    async def test_fail_on(self, gateway):
        gateway.fail_on("w-1", RuntimeError("down"))

        with pytest.raises(RuntimeError, match="down"):
            await gateway.get_balance("w-1")


class TestFactory:
    """Provider selection."""

    def test_build_dryrun(self):
        gateway = build_gateway(Settings(provider="dryrun", _env_file=None))

        assert isinstance(gateway, DryRunWalletGateway)
        assert gateway.name == "dryrun"

    def test_build_circle(self):
        settings = Settings(
            provider="circle",
            circle_api_key="key",
            circle_entity_secret="ab" * 32,
            _env_file=None,
        )

        gateway = build_gateway(settings)

        assert isinstance(gateway, CircleWalletGateway)
        assert gateway.name == "circle"

    def test_circle_without_credentials(self):
        with pytest.raises(ConfigurationError):
            build_gateway(Settings(provider="circle", _env_file=None))

    def test_unknown_provider(self):
        with pytest.raises(ConfigurationError, match="Unknown wallet provider"):
            build_gateway(Settings(provider="paypal", _env_file=None))

    def test_gateway_built_once(self):
        settings = Settings(provider="dryrun", _env_file=None)

        assert get_gateway(settings) is get_gateway(settings)
        first = get_gateway()
        reset_gateway()
        assert get_gateway(settings) is not first
