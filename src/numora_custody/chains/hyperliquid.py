"""Gasless USDC withdrawals from the Hyperliquid exchange.

The exchange bridges USDC out to Arbitrum itself and absorbs the network
gas; the user only pays the flat withdrawal fee. Requests are EIP-712
signed ``withdraw3`` actions posted to the exchange API.

The reference returned for a withdrawal is ``"<source_address>:<nonce>"``,
since the exchange acknowledges the action without a transaction hash.
"""
from __future__ import annotations

import logging
import time
from decimal import Decimal
from typing import Any, Callable, Optional, Tuple

import httpx
from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import is_address, to_hex

from ..config import ChainSettings, ExchangeSettings
from ..exceptions import BroadcastRejectedError, CustodyValidationError, RPCError
from ..models import ChainFamily, TransactionResult, TransactionStatus, WithdrawalRequest
from ..sensitive import SecretBytes
from .base import ChainAdapter, NetworkFee

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
LEDGER_LOOKBACK_MS = 60_000

WITHDRAW_SIGN_TYPES = [
    {"name": "hyperliquidChain", "type": "string"},
    {"name": "destination", "type": "string"},
    {"name": "amount", "type": "string"},
    {"name": "time", "type": "uint64"},
]


def _now_ms() -> int:
    return int(time.time() * 1000)


def format_amount(amount: Decimal) -> str:
    return format(amount.normalize(), "f")


def withdraw_typed_data(action: dict[str, Any], signature_chain_id: str) -> dict[str, Any]:
    return {
        "domain": {
            "name": "HyperliquidSignTransaction",
            "version": "1",
            "chainId": int(signature_chain_id, 16),
            "verifyingContract": ZERO_ADDRESS,
        },
        "types": {
            "HyperliquidTransaction:Withdraw": WITHDRAW_SIGN_TYPES,
            "EIP712Domain": [
                {"name": "name", "type": "string"},
                {"name": "version", "type": "string"},
                {"name": "chainId", "type": "uint256"},
                {"name": "verifyingContract", "type": "address"},
            ],
        },
        "primaryType": "HyperliquidTransaction:Withdraw",
        "message": action,
    }


def parse_reference(reference: str) -> Optional[Tuple[str, int]]:
    address, sep, nonce = reference.rpartition(":")
    if not sep or not is_address(address) or not nonce.isdigit():
        return None
    return address, int(nonce)


class HyperliquidExchangeClient:
    """Thin client for the exchange's /exchange and /info endpoints."""

    def __init__(
        self,
        settings: ExchangeSettings,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def _post(self, path: str, payload: dict[str, Any]) -> Any:
        url = f"{self.settings.api_url.rstrip('/')}{path}"
        try:
            resp = await self._client.post(url, json=payload)
        except httpx.HTTPError as e:
            raise RPCError(f"{path} failed: {e}", chain=self.settings.chain, method=path) from e
        if resp.status_code != 200:
            raise RPCError(
                f"Exchange API error: {resp.status_code} - {resp.text}",
                chain=self.settings.chain,
                method=path,
                rpc_error=resp.text,
            )
        return resp.json()

    async def exchange(self, action: dict[str, Any], nonce: int, signature: dict[str, Any]) -> Any:
        return await self._post("/exchange", {
            "action": action,
            "nonce": nonce,
            "signature": signature,
        })

    async def info(self, payload: dict[str, Any]) -> Any:
        return await self._post("/info", payload)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class ExchangeWithdrawalAdapter(ChainAdapter):
    """USDC withdrawal route with no user-paid network gas."""

    family = ChainFamily.EVM

    def __init__(
        self,
        chain: str,
        settings: ChainSettings,
        exchange: ExchangeSettings,
        client: Optional[HyperliquidExchangeClient] = None,
        clock: Callable[[], int] = _now_ms,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__(chain, settings)
        self.exchange_settings = exchange
        self._client = client or HyperliquidExchangeClient(exchange, timeout=timeout, http_client=http_client)
        self._clock = clock

    @property
    def fee_currency(self) -> str:
        return self.exchange_settings.withdraw_token

    def supports_token(self, token: str) -> bool:
        return token.upper() == self.exchange_settings.withdraw_token.upper()

    def validate_address(self, address: str) -> bool:
        return is_address(address)

    def explorer_url(self, tx_hash: str) -> str:
        parsed = parse_reference(tx_hash)
        address = parsed[0] if parsed else tx_hash
        return self.exchange_settings.explorer_address_url.format(address=address)

    async def estimate_fee(self, request: WithdrawalRequest) -> NetworkFee:
        # No gas simulation: validators' gas is paid by the exchange
        return NetworkFee(amount=Decimal("0"), currency=self.fee_currency, is_gasless=True)

    def _build_action(self, request: WithdrawalRequest, nonce: int) -> dict[str, Any]:
        return {
            "type": "withdraw3",
            "hyperliquidChain": "Mainnet" if self.exchange_settings.is_mainnet else "Testnet",
            "signatureChainId": self.exchange_settings.signature_chain_id,
            "destination": request.recipient_address,
            "amount": format_amount(request.amount),
            "time": nonce,
        }

    async def build_and_send(
        self,
        request: WithdrawalRequest,
        signing_key: SecretBytes,
    ) -> TransactionResult:
        private_key = signing_key.reveal()
        try:
            signer = Account.from_key(private_key).address
            if signer.lower() != request.source_address.lower():
                raise CustodyValidationError(
                    "Signing key does not control the source address",
                    field="source_address",
                )
            nonce = self._clock()
            action = self._build_action(request, nonce)
            signable = encode_typed_data(
                full_message=withdraw_typed_data(action, self.exchange_settings.signature_chain_id)
            )
            signed = Account.sign_message(signable, private_key)
        finally:
            del private_key

        signature = {"r": to_hex(signed.r), "s": to_hex(signed.s), "v": signed.v}
        try:
            response = await self._client.exchange(action, nonce, signature)
        except RPCError as e:
            raise BroadcastRejectedError.from_rpc_error(e, self.chain) from e

        if not isinstance(response, dict) or response.get("status") != "ok":
            message = response.get("response") if isinstance(response, dict) else response
            logger.warning("Exchange rejected withdrawal: %s", message)
            raise BroadcastRejectedError(str(message), chain=self.chain, details={"rpc_error": message})

        reference = f"{signer}:{nonce}"
        logger.info("Exchange accepted withdrawal %s", reference)
        return self.pending_result(reference)

    async def poll_status(self, tx_hash: str) -> TransactionResult:
        result = self.pending_result(tx_hash)
        parsed = parse_reference(tx_hash)
        if parsed is None:
            return result
        address, nonce = parsed

        updates = await self._client.info({
            "type": "userNonFundingLedgerUpdates",
            "user": address,
            "startTime": max(nonce - LEDGER_LOOKBACK_MS, 0),
        })
        for update in updates or []:
            delta = update.get("delta") or {}
            if delta.get("type") != "withdraw":
                continue
            if str(delta.get("nonce")) == str(nonce):
                return result.model_copy(update={"status": TransactionStatus.CONFIRMED})
        return result

    async def close(self) -> None:
        await self._client.close()
