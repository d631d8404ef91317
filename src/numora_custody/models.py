"""Wallet, withdrawal and credential primitives."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

# chain -> token -> amount
Balances = Dict[str, Dict[str, Decimal]]


class ChainFamily(str, Enum):
    EVM = "evm"
    SOLANA = "solana"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING


class _CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True


class WalletAddresses(_CamelModel):
    """Public addresses derived from one seed; the EVM key serves every EVM chain."""
    solana_address: str
    evm_address: str
    polygon_address: str
    hyperliquid_address: str
    bnb_address: str

    def for_chain(self, chain: str) -> Optional[str]:
        return {
            "solana": self.solana_address,
            "ethereum": self.evm_address,
            "arbitrum": self.evm_address,
            "polygon": self.polygon_address,
            "hyperliquid": self.hyperliquid_address,
            "bnb": self.bnb_address,
        }.get(chain.lower())


class EmbeddedWallet(WalletAddresses):
    user_id: str
    seed_confirmed: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def addresses(self) -> WalletAddresses:
        return WalletAddresses(**self.model_dump(include=set(WalletAddresses.model_fields)))


class WithdrawalRequest(BaseModel):
    chain: str
    token: str
    amount: Decimal = Field(gt=0)
    recipient_address: str
    source_address: str

    @field_validator("chain")
    @classmethod
    def normalize_chain(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("token")
    @classmethod
    def normalize_token(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("recipient_address", "source_address")
    @classmethod
    def strip_address(cls, v: str) -> str:
        return v.strip()


class GasEstimate(BaseModel):
    """Network fee quote plus an optional flat platform fee.

    The two are never summed: they may be denominated in different tokens.
    """
    network_fee: Decimal
    network_fee_currency: str
    platform_fee: Optional[Decimal] = None
    platform_fee_currency: Optional[str] = None
    platform_fee_description: Optional[str] = None
    is_gasless: bool = False
    gas_units: Optional[int] = None
    fee_per_unit: Optional[int] = None


class TransactionResult(BaseModel):
    tx_hash: str
    explorer_url: str
    status: TransactionStatus = TransactionStatus.PENDING
    chain: Optional[str] = None
    block_number: Optional[int] = None
    error_message: Optional[str] = None
    gas_used: Optional[int] = None


class ApiCredentialStatus(_CamelModel):
    """Time-boxed exchange trading credential ("API wallet")."""
    has_credential: bool = False
    expires_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None

    def remaining(self, now: datetime) -> timedelta:
        """Time left before expiry; zero or negative once expired.

        A credential without a recorded expiry is treated as expired.
        """
        if self.expires_at is None:
            return timedelta(0)
        return self.expires_at - now

    def is_expired(self, now: datetime) -> bool:
        return self.remaining(now) <= timedelta(0)
