"""Withdrawal fee estimation.

A quote has two independent parts:
  network fee   paid to validators, in the chain's gas token
  platform fee  flat, optional, possibly in a different token (e.g. USDC)

They are never summed into one figure. Max-amount helpers only subtract the
parts denominated in the token being withdrawn.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, Optional

from .chains.registry import ChainRegistry
from .config import CustodySettings, PlatformFee
from .exceptions import InvalidRecipientAddressError, UnsupportedChainError
from .models import GasEstimate, WithdrawalRequest

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class FeeEstimator:
    """Chain-aware network fee quote plus the configured platform fee."""

    def __init__(self, registry: ChainRegistry, settings: CustodySettings) -> None:
        self._registry = registry
        self._settings = settings

    def platform_fee_for(self, chain: str, token: str, gasless: bool = False) -> Optional[PlatformFee]:
        fee = self._settings.platform_fee_for(chain, token)
        if fee is None and gasless:
            exchange = self._settings.exchange
            fee = PlatformFee(
                amount=exchange.withdraw_fee_usdc,
                currency=exchange.withdraw_token,
                description="Exchange withdrawal fee",
            )
        return fee

    async def estimate(self, request: WithdrawalRequest) -> GasEstimate:
        """Quote the cost of ``request``.

        Raises:
            InvalidRecipientAddressError: before any network call
            UnsupportedChainError: unknown chain or non-native token
            FeeEstimationFailedError: the chain's fee lookup failed
        """
        adapter = self._registry.for_request(request.chain, request.token)
        if not adapter.supports_token(request.token):
            raise UnsupportedChainError(request.chain, request.token)
        if not adapter.validate_address(request.recipient_address):
            raise InvalidRecipientAddressError(request.recipient_address, request.chain)

        network = await adapter.estimate_fee(request)
        fee = self.platform_fee_for(request.chain, request.token, gasless=network.is_gasless)

        estimate = GasEstimate(
            network_fee=ZERO if network.is_gasless else network.amount,
            network_fee_currency=network.currency,
            platform_fee=fee.amount if fee else None,
            platform_fee_currency=fee.currency if fee else None,
            platform_fee_description=fee.description if fee else None,
            is_gasless=network.is_gasless,
            gas_units=network.gas_units,
            fee_per_unit=network.fee_per_unit,
        )
        logger.debug(
            "Estimated %s %s on %s: network=%s %s platform=%s %s",
            request.amount, request.token, request.chain,
            estimate.network_fee, estimate.network_fee_currency,
            estimate.platform_fee, estimate.platform_fee_currency,
        )
        return estimate


def same_token_fees(token: str, estimate: GasEstimate) -> Decimal:
    """Sum of the fee parts charged against ``token``'s own balance."""
    token = token.upper()
    total = ZERO
    if estimate.network_fee_currency.upper() == token:
        total += estimate.network_fee
    if estimate.platform_fee and (estimate.platform_fee_currency or "").upper() == token:
        total += estimate.platform_fee
    return total


def max_sendable(balance: Decimal, token: str, estimate: GasEstimate) -> Decimal:
    """Largest amount of ``token`` that can be withdrawn; never negative."""
    return max(ZERO, balance - same_token_fees(token, estimate))


def total_cost_by_currency(amount: Decimal, token: str, estimate: GasEstimate) -> Dict[str, Decimal]:
    """Total outlay grouped by currency, for summary displays."""
    totals: Dict[str, Decimal] = {token.upper(): amount}
    parts = [(estimate.network_fee_currency, estimate.network_fee)]
    if estimate.platform_fee:
        parts.append((estimate.platform_fee_currency or token, estimate.platform_fee))
    for currency, value in parts:
        if not value:
            continue
        key = currency.upper()
        totals[key] = totals.get(key, ZERO) + value
    return totals
