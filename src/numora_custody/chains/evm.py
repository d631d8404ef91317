"""
EVM native-asset transfers.

Features:
- EIP-1559 fee quotes from eth_estimateGas, the latest base fee and
  eth_maxPriorityFeePerGas, with a legacy gasPrice path for chains that
  report no base fee
- Local signing with eth_account and eth_sendRawTransaction broadcast
- Receipt-based confirmation polling
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx
from eth_account import Account
from eth_utils import encode_hex, is_address, to_checksum_address

from ..config import ChainSettings
from ..exceptions import (
    BroadcastRejectedError,
    CustodyValidationError,
    FeeEstimationFailedError,
    RPCError,
)
from ..models import ChainFamily, TransactionResult, TransactionStatus, WithdrawalRequest
from ..sensitive import SecretBytes
from .base import ChainAdapter, NetworkFee, from_base_units, to_base_units
from .rpc import EvmRPCClient

logger = logging.getLogger(__name__)


@dataclass
class EvmFeeQuote:
    gas_limit: int
    base_fee: Optional[int]
    priority_fee: int
    gas_price: Optional[int] = None

    @property
    def is_eip1559(self) -> bool:
        return self.base_fee is not None

    @property
    def fee_per_gas(self) -> int:
        """Expected per-gas cost used for the quote shown to the user."""
        if self.is_eip1559:
            return self.base_fee + self.priority_fee
        return self.gas_price or 0

    @property
    def max_fee_per_gas(self) -> int:
        # Two blocks of base-fee growth before the tx is priced out
        return 2 * self.base_fee + self.priority_fee


class EvmChainAdapter(ChainAdapter):
    """Native transfers on an EVM chain via raw JSON-RPC."""

    family = ChainFamily.EVM

    def __init__(
        self,
        chain: str,
        settings: ChainSettings,
        rpc: Optional[EvmRPCClient] = None,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__(chain, settings)
        self._rpc = rpc or EvmRPCClient(
            settings.rpc_url, chain=chain, timeout=timeout, http_client=http_client
        )

    def validate_address(self, address: str) -> bool:
        # Accepts lowercase or a correct EIP-55 checksum
        return is_address(address)

    def _value_wei(self, amount: Decimal) -> int:
        return to_base_units(amount, self.settings.native_decimals)

    async def _fee_quote(self, request: WithdrawalRequest) -> EvmFeeQuote:
        tx: Dict[str, Any] = {
            "from": to_checksum_address(request.source_address),
            "to": to_checksum_address(request.recipient_address),
            "value": hex(self._value_wei(request.amount)),
        }
        gas_limit = await self._rpc.estimate_gas(tx)
        base_fee = await self._rpc.get_base_fee()
        if base_fee is None:
            gas_price = await self._rpc.get_gas_price()
            return EvmFeeQuote(gas_limit=gas_limit, base_fee=None, priority_fee=0, gas_price=gas_price)
        priority_fee = await self._rpc.get_max_priority_fee()
        return EvmFeeQuote(gas_limit=gas_limit, base_fee=base_fee, priority_fee=priority_fee)

    async def estimate_fee(self, request: WithdrawalRequest) -> NetworkFee:
        try:
            quote = await self._fee_quote(request)
        except RPCError as e:
            raise FeeEstimationFailedError(e.message, chain=self.chain, details=dict(e.details)) from e

        fee_wei = quote.gas_limit * quote.fee_per_gas
        return NetworkFee(
            amount=from_base_units(fee_wei, self.settings.native_decimals),
            currency=self.fee_currency,
            gas_units=quote.gas_limit,
            fee_per_unit=quote.fee_per_gas,
        )

    def _build_transaction(self, request: WithdrawalRequest, quote: EvmFeeQuote, nonce: int) -> Dict[str, Any]:
        tx: Dict[str, Any] = {
            "chainId": self.settings.chain_id,
            "nonce": nonce,
            "to": to_checksum_address(request.recipient_address),
            "value": self._value_wei(request.amount),
            "gas": quote.gas_limit,
            "data": b"",
        }
        if quote.is_eip1559:
            tx["type"] = 2
            tx["maxFeePerGas"] = quote.max_fee_per_gas
            tx["maxPriorityFeePerGas"] = quote.priority_fee
        else:
            tx["gasPrice"] = quote.gas_price
        return tx

    async def build_and_send(
        self,
        request: WithdrawalRequest,
        signing_key: SecretBytes,
    ) -> TransactionResult:
        private_key = signing_key.reveal()
        signer = Account.from_key(private_key).address
        if signer.lower() != request.source_address.lower():
            raise CustodyValidationError(
                "Signing key does not control the source address",
                field="source_address",
            )

        try:
            # Fresh quote and nonce at send time; estimates may be stale
            quote = await self._fee_quote(request)
            nonce = await self._rpc.get_nonce(signer)
            tx = self._build_transaction(request, quote, nonce)
            signed = Account.sign_transaction(tx, private_key)
            tx_hash = await self._rpc.send_raw_transaction(encode_hex(signed.raw_transaction))
        except RPCError as e:
            logger.warning("Broadcast rejected on %s: %s", self.chain, e.message)
            raise BroadcastRejectedError.from_rpc_error(e, self.chain) from e
        finally:
            del private_key

        logger.info(
            "Broadcast %s %s on %s: %s",
            request.amount, request.token, self.chain, tx_hash,
        )
        return self.pending_result(tx_hash)

    async def poll_status(self, tx_hash: str) -> TransactionResult:
        receipt = await self._rpc.get_transaction_receipt(tx_hash)
        result = self.pending_result(tx_hash)
        if not receipt or receipt.get("status") is None:
            return result

        block_number = receipt.get("blockNumber")
        gas_used = receipt.get("gasUsed")
        update: Dict[str, Any] = {
            "block_number": int(block_number, 16) if block_number else None,
            "gas_used": int(gas_used, 16) if gas_used else None,
        }
        if int(receipt["status"], 16) == 1:
            update["status"] = TransactionStatus.CONFIRMED
        else:
            update["status"] = TransactionStatus.FAILED
            update["error_message"] = "Transaction reverted"
        return result.model_copy(update=update)

    async def close(self) -> None:
        await self._rpc.close()
