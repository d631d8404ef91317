"""
Withdrawal executor: validation, signing and broadcast, settlement polling.

Features:
- Pre-flight validation before any network call
- One in-flight send per (chain, source account)
- Synchronous typed errors for broadcast failures; post-broadcast failures
  only ever show up as a FAILED poll result
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional, Set, Tuple

from .chains.registry import ChainRegistry
from .exceptions import (
    BroadcastRejectedError,
    CustodyValidationError,
    InsufficientBalanceError,
    InvalidRecipientAddressError,
    RPCError,
    UnsupportedChainError,
    WithdrawalInProgressError,
)
from .fees import same_token_fees
from .models import GasEstimate, TransactionResult, WithdrawalRequest
from .sensitive import SecretBytes

logger = logging.getLogger(__name__)


class WithdrawalExecutor:
    """Builds, signs, submits and tracks native-asset transfers."""

    def __init__(self, registry: ChainRegistry) -> None:
        self._registry = registry
        self._in_flight: Set[Tuple[str, str]] = set()

    def validate(
        self,
        request: WithdrawalRequest,
        balance: Decimal,
        estimate: Optional[GasEstimate] = None,
    ) -> None:
        """Raise on any problem detectable without touching the network."""
        adapter = self._registry.for_request(request.chain, request.token)
        if not adapter.supports_token(request.token):
            raise UnsupportedChainError(request.chain, request.token)
        if not adapter.validate_address(request.recipient_address):
            raise InvalidRecipientAddressError(request.recipient_address, request.chain)
        if request.recipient_address.lower() == request.source_address.lower():
            raise InvalidRecipientAddressError(
                request.recipient_address,
                request.chain,
                reason="Recipient must differ from the source address",
            )
        if request.amount <= 0:
            raise CustodyValidationError("Amount must be positive", field="amount")

        fees = same_token_fees(request.token, estimate) if estimate else Decimal("0")
        required = request.amount + fees
        if required > balance:
            raise InsufficientBalanceError(
                f"Insufficient {request.token} balance: need {required}, have {balance}",
                available=str(balance),
                required=str(required),
                token=request.token,
                chain=request.chain,
            )

    async def send(self, request: WithdrawalRequest, signing_key: SecretBytes) -> TransactionResult:
        """Sign and broadcast; returns a pending result once a node accepted it.

        Raises:
            WithdrawalInProgressError: another send from this account is in flight
            BroadcastRejectedError: the node refused the transaction
        """
        adapter = self._registry.for_request(request.chain, request.token)
        if not adapter.validate_address(request.recipient_address):
            raise InvalidRecipientAddressError(request.recipient_address, request.chain)

        key = (request.chain, request.source_address.lower())
        if key in self._in_flight:
            raise WithdrawalInProgressError(request.chain, request.source_address)

        self._in_flight.add(key)
        try:
            result = await adapter.build_and_send(request, signing_key)
        except RPCError as e:
            raise BroadcastRejectedError.from_rpc_error(e, request.chain) from e
        finally:
            self._in_flight.discard(key)

        logger.info(
            "Withdrawal submitted",
            extra={"data": {
                "chain": request.chain,
                "token": request.token,
                "amount": str(request.amount),
                "tx_hash": result.tx_hash,
            }},
        )
        return result

    def is_in_flight(self, chain: str, source_address: str) -> bool:
        return (chain.lower(), source_address.lower()) in self._in_flight

    async def poll_status(self, chain: str, tx_hash: str) -> TransactionResult:
        """Observe settlement of a previously broadcast transaction."""
        adapter = self._registry.for_transaction(chain, tx_hash)
        return await adapter.poll_status(tx_hash)
