"""Canonical configuration surface for Numora custody."""
from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Dict, Literal, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


class ChainSettings(BaseModel):
    """Blockchain network configuration."""
    family: Literal["evm", "solana"] = "evm"
    chain_id: Optional[int] = None
    rpc_url: str
    explorer_tx_url: str
    native_token: str
    native_decimals: int = 18


class ExchangeSettings(BaseModel):
    """Hyperliquid exchange API used for gasless USDC withdrawals."""
    chain: str = "hyperliquid"
    withdraw_token: str = "USDC"
    api_url: str = "https://api.hyperliquid.xyz"
    is_mainnet: bool = True
    # Arbitrum One, the chain the withdraw3 signature domain is bound to
    signature_chain_id: str = "0xa4b1"
    withdraw_fee_usdc: Decimal = Decimal("1")
    explorer_address_url: str = "https://app.hyperliquid.xyz/explorer/address/{address}"


class PlatformFee(BaseModel):
    """Flat fee charged on top of the network fee."""
    amount: Decimal
    currency: str
    description: str = ""


class RenewalSettings(BaseModel):
    """Exchange API credential renewal thresholds."""
    poll_interval_seconds: int = 60
    healthy_threshold_hours: int = 48
    renew_threshold_hours: int = 24
    attempt_window_seconds: int = 600
    failure_cooldown_seconds: int = 300
    credential_validity_days: int = 180
    expiring_warning_days: int = 7


def _default_chains() -> Dict[str, ChainSettings]:
    return {
        "ethereum": ChainSettings(
            chain_id=1,
            rpc_url="https://eth.llamarpc.com",
            explorer_tx_url="https://etherscan.io/tx/{tx_hash}",
            native_token="ETH",
        ),
        "arbitrum": ChainSettings(
            chain_id=42161,
            rpc_url="https://arb1.arbitrum.io/rpc",
            explorer_tx_url="https://arbiscan.io/tx/{tx_hash}",
            native_token="ETH",
        ),
        "polygon": ChainSettings(
            chain_id=137,
            rpc_url="https://polygon-rpc.com",
            explorer_tx_url="https://polygonscan.com/tx/{tx_hash}",
            native_token="POL",
        ),
        "bnb": ChainSettings(
            chain_id=56,
            rpc_url="https://bsc-dataseed1.binance.org",
            explorer_tx_url="https://bscscan.com/tx/{tx_hash}",
            native_token="BNB",
        ),
        "hyperliquid": ChainSettings(
            chain_id=999,
            rpc_url="https://rpc.hyperliquid.xyz/evm",
            explorer_tx_url="https://explorer.hyperliquid.xyz/tx/{tx_hash}",
            native_token="HYPE",
        ),
        "solana": ChainSettings(
            family="solana",
            rpc_url="https://api.mainnet-beta.solana.com",
            explorer_tx_url="https://solscan.io/tx/{tx_hash}",
            native_token="SOL",
            native_decimals=9,
        ),
    }


def _default_platform_fees() -> Dict[str, PlatformFee]:
    return {
        "hyperliquid:USDC": PlatformFee(
            amount=Decimal("1"),
            currency="USDC",
            description="Hyperliquid withdrawal fee (network gas covered by the exchange)",
        ),
    }


class CustodySettings(BaseSettings):
    """Main Numora custody configuration."""

    # Environment
    environment: Literal["dev", "sandbox", "prod"] = "dev"

    # Chains, keyed by the chain name used in withdrawal requests
    chains: Dict[str, ChainSettings] = Field(default_factory=_default_chains)
    exchange: ExchangeSettings = Field(default_factory=ExchangeSettings)

    # Keyed "<chain>:<TOKEN>"
    platform_fees: Dict[str, PlatformFee] = Field(default_factory=_default_platform_fees)

    # Persistence layer
    backend_url: str = "http://localhost:3000"
    backend_timeout: float = 30.0

    # Hex-encoded 32-byte key for envelope encryption of server-held keys
    encryption_master_key: str = ""

    renewal: RenewalSettings = Field(default_factory=RenewalSettings)

    rpc_timeout: float = 30.0

    class Config:
        env_prefix = "NUMORA_"
        env_nested_delimiter = "__"
        env_file = ".env"
        extra = "ignore"

    @field_validator("encryption_master_key")
    @classmethod
    def validate_master_key(cls, v: str, info) -> str:
        env = info.data.get("environment", "dev")
        if not v:
            if env != "dev":
                raise ValueError(
                    "ENCRYPTION_MASTER_KEY is required outside dev. "
                    "Generate with: python -c \"import secrets; print(secrets.token_hex(32))\""
                )
            return v
        try:
            raw = bytes.fromhex(v.removeprefix("0x"))
        except ValueError as exc:
            raise ValueError("ENCRYPTION_MASTER_KEY must be hex encoded") from exc
        if len(raw) != 32:
            raise ValueError("ENCRYPTION_MASTER_KEY must decode to 32 bytes")
        return v

    @field_validator("platform_fees", mode="before")
    @classmethod
    def normalize_fee_keys(cls, v):
        """Accept "Chain:token" keys in any case."""
        if isinstance(v, dict):
            normalized = {}
            for key, fee in v.items():
                chain, _, token = str(key).partition(":")
                normalized[f"{chain.lower()}:{token.upper()}"] = fee
            return normalized
        return v

    def chain(self, name: str) -> Optional[ChainSettings]:
        return self.chains.get(name.lower())

    def platform_fee_for(self, chain: str, token: str) -> Optional[PlatformFee]:
        return self.platform_fees.get(f"{chain.lower()}:{token.upper()}")


@lru_cache
def load_settings(env_file: str | None = None) -> CustodySettings:
    """Load CustodySettings once per process to keep services consistent."""
    env_path = Path(env_file) if env_file else None
    return CustodySettings(_env_file=env_path)
