"""Chain-family capability shared by every withdrawal route."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from ..config import ChainSettings
from ..exceptions import CustodyValidationError
from ..models import ChainFamily, TransactionResult, TransactionStatus, WithdrawalRequest
from ..sensitive import SecretBytes


@dataclass
class NetworkFee:
    """Network portion of a fee quote, in the chain's fee currency."""
    amount: Decimal
    currency: str
    gas_units: Optional[int] = None
    fee_per_unit: Optional[int] = None
    is_gasless: bool = False


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Convert a token amount to integer base units (wei, lamports).

    Raises:
        CustodyValidationError: more fractional digits than the token supports
    """
    scaled = amount.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise CustodyValidationError(
            f"Amount {amount} has more than {decimals} decimal places",
            field="amount",
        )
    return int(scaled)


def from_base_units(value: int, decimals: int) -> Decimal:
    return Decimal(value).scaleb(-decimals)


class ChainAdapter(ABC):
    """Estimate, sign, broadcast and observe transfers on one chain."""

    family: ChainFamily

    def __init__(self, chain: str, settings: ChainSettings) -> None:
        self.chain = chain
        self.settings = settings

    @property
    def fee_currency(self) -> str:
        return self.settings.native_token

    def supports_token(self, token: str) -> bool:
        return token.upper() == self.settings.native_token.upper()

    def explorer_url(self, tx_hash: str) -> str:
        return self.settings.explorer_tx_url.format(tx_hash=tx_hash)

    def pending_result(self, tx_hash: str) -> TransactionResult:
        return TransactionResult(
            tx_hash=tx_hash,
            explorer_url=self.explorer_url(tx_hash),
            status=TransactionStatus.PENDING,
            chain=self.chain,
        )

    @abstractmethod
    def validate_address(self, address: str) -> bool:
        """True if ``address`` parses under this chain's address grammar."""

    @abstractmethod
    async def estimate_fee(self, request: WithdrawalRequest) -> NetworkFee:
        """Quote the network fee for ``request``."""

    @abstractmethod
    async def build_and_send(
        self,
        request: WithdrawalRequest,
        signing_key: SecretBytes,
    ) -> TransactionResult:
        """Build, sign and broadcast; returns a pending result once accepted."""

    @abstractmethod
    async def poll_status(self, tx_hash: str) -> TransactionResult:
        """Read-only settlement check; never resubmits."""

    async def close(self) -> None:
        return None
