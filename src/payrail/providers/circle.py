"""Circle Programmable Wallets gateway.

Developer-controlled SCA wallets on Base. Transfers use Circle's gas station,
so network fees are paid by the platform and never shown to users.

Docs: https://developers.circle.com/api-reference/w3s
"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import httpx

from payrail.config import DEFAULT_USDC_TOKEN_ADDRESS
from payrail.crypto import decode_entity_secret, encrypt_entity_secret, load_public_key
from payrail.errors import ConfigurationError, ProviderError
from payrail.providers.base import (
    ProviderTransaction,
    TransactionState,
    TransferResult,
    Wallet,
    WalletGateway,
    require_idempotency_key,
)

logger = logging.getLogger(__name__)

USDC_SYMBOL = "USDC"
FEE_LEVEL = "MEDIUM"


class CircleWalletGateway(WalletGateway):
    """Gateway to Circle's developer-controlled wallets API."""

    def __init__(
        self,
        api_key: str,
        entity_secret: str,
        wallet_set_id: Optional[str] = None,
        blockchain: str = "BASE",
        token_address: str = DEFAULT_USDC_TOKEN_ADDRESS,
        base_url: str = "https://api.circle.com",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the Circle gateway.

        Args:
            api_key: Circle API key
            entity_secret: 32-byte entity secret, hex encoded
            wallet_set_id: Wallet set used by create_wallet
            blockchain: Chain identifier (BASE, BASE-SEPOLIA)
            token_address: USDC token contract
            base_url: API base URL
            timeout: Request timeout in seconds
            transport: Optional httpx transport override

        Raises:
            ConfigurationError: if the API key or entity secret is missing
        """
        if not api_key or not entity_secret:
            raise ConfigurationError(
                "Circle API not configured. Set CIRCLE_API_KEY and CIRCLE_ENTITY_SECRET."
            )

        self._entity_secret = decode_entity_secret(entity_secret)
        self.wallet_set_id = wallet_set_id
        self.blockchain = blockchain
        self.token_address = token_address
        self._public_key = None
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @property
    def name(self) -> str:
        return "circle"

    async def aclose(self) -> None:
        await self._client.aclose()

    async def validate_config(self) -> bool:
        """Validate credentials by fetching the entity public key."""
        try:
            await self._get_public_key()
            return True
        except ProviderError as e:
            logger.warning(f"Circle config check failed: {e}")
            return False

    async def create_wallet(self) -> Wallet:
        if not self.wallet_set_id:
            raise ConfigurationError("CIRCLE_WALLET_SET_ID not configured.")

        payload = await self._request(
            "createWallets",
            "POST",
            "/v1/w3s/developer/wallets",
            json={
                "idempotencyKey": str(uuid.uuid4()),
                "entitySecretCiphertext": await self._entity_secret_ciphertext(),
                "walletSetId": self.wallet_set_id,
                "blockchains": [self.blockchain],
                "count": 1,
                "accountType": "SCA",
            },
        )

        wallets = (payload.get("data") or {}).get("wallets") or []
        if not wallets:
            logger.error(f"createWallets returned no wallets: {payload}")
            raise ProviderError("createWallets", "returned empty wallet list")

        wallet = wallets[0]
        if not wallet.get("id") or not wallet.get("address"):
            raise ProviderError("createWallets", wallet)

        return Wallet(
            wallet_id=wallet["id"],
            wallet_address=wallet["address"],
            blockchain=wallet.get("blockchain") or self.blockchain,
        )

    async def get_balance(self, wallet_id: str) -> Decimal:
        payload = await self._request(
            "getWalletTokenBalance", "GET", f"/v1/w3s/wallets/{wallet_id}/balances"
        )

        balances = (payload.get("data") or {}).get("tokenBalances") or []
        for entry in balances:
            token = entry.get("token") or {}
            if token.get("symbol") == USDC_SYMBOL:
                return _to_decimal("getWalletTokenBalance", entry.get("amount") or "0")

        return Decimal("0")

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

        payload = await self._request(
            "createTransaction",
            "POST",
            "/v1/w3s/developer/transactions/transfer",
            json={
                "idempotencyKey": idempotency_key,
                "entitySecretCiphertext": await self._entity_secret_ciphertext(),
                "walletId": from_wallet_id,
                "blockchain": self.blockchain,
                "tokenAddress": self.token_address,
                "destinationAddress": to_address,
                "amounts": [format(amount, "f")],
                "feeLevel": FEE_LEVEL,
            },
        )

        data = payload.get("data") or {}
        if not data.get("id"):
            raise ProviderError("createTransaction", payload)

        logger.info(
            f"Transfer {data['id']} submitted: {amount} USDC from wallet {from_wallet_id} "
            f"to {to_address} (key={idempotency_key}, state={data.get('state')})"
        )
        return TransferResult(
            transaction_id=data["id"],
            state=TransactionState.parse(data.get("state")),
            tx_hash=data.get("txHash") or None,
        )

    async def get_transaction(self, transaction_id: str) -> ProviderTransaction:
        payload = await self._request(
            "getTransaction", "GET", f"/v1/w3s/transactions/{transaction_id}"
        )

        tx = (payload.get("data") or {}).get("transaction")
        if not tx:
            raise ProviderError("getTransaction", f"transaction {transaction_id} missing from response")
        return _to_transaction(tx)

    async def list_transactions(self, wallet_id: str) -> list[ProviderTransaction]:
        payload = await self._request(
            "listTransactions",
            "GET",
            "/v1/w3s/transactions",
            params={"walletIds": wallet_id},
        )

        txs = (payload.get("data") or {}).get("transactions") or []
        return [_to_transaction(tx) for tx in txs]

    async def _get_public_key(self):
        if self._public_key is None:
            payload = await self._request(
                "getPublicKey", "GET", "/v1/w3s/config/entity/publicKey"
            )
            pem = (payload.get("data") or {}).get("publicKey")
            if not pem:
                raise ProviderError("getPublicKey", "response missing publicKey")
            try:
                self._public_key = load_public_key(pem)
            except ValueError as e:
                raise ProviderError("getPublicKey", str(e)) from e
        return self._public_key

    async def _entity_secret_ciphertext(self) -> str:
        return encrypt_entity_secret(self._entity_secret, await self._get_public_key())

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> dict:
        """Send a request and return the decoded body, raising ProviderError on failure."""
        try:
            response = await self._client.request(method, path, json=json, params=params)
        except httpx.HTTPError as e:
            logger.error(f"Circle {operation} request error: {e}")
            raise ProviderError(operation, str(e) or type(e).__name__) from e

        if response.status_code >= 400:
            detail: Any
            try:
                detail = response.json()
            except ValueError:
                detail = response.text or response.reason_phrase
            logger.error(f"Circle {operation} API error {response.status_code}: {detail}")
            raise ProviderError(operation, detail, status_code=response.status_code)

        try:
            body = response.json()
        except ValueError as e:
            raise ProviderError(
                operation, "invalid JSON response", status_code=response.status_code
            ) from e

        if not isinstance(body, dict):
            raise ProviderError(operation, body, status_code=response.status_code)
        return body


def _to_decimal(operation: str, value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ProviderError(operation, f"invalid amount {value!r}") from e


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _to_transaction(tx: dict) -> ProviderTransaction:
    """Translate a Circle transaction payload into the internal contract."""
    amounts = tx.get("amounts") or []
    return ProviderTransaction(
        transaction_id=tx.get("id", ""),
        state=TransactionState.parse(tx.get("state")),
        raw_state=tx.get("state"),
        tx_hash=tx.get("txHash") or None,
        wallet_id=tx.get("walletId"),
        amount=_to_decimal("getTransaction", amounts[0]) if amounts else None,
        created_at=_parse_timestamp(tx.get("createDate")),
    )
