"""Chain-family adapters for fee estimation, signing and settlement polling."""
from .base import ChainAdapter, NetworkFee, from_base_units, to_base_units
from .evm import EvmChainAdapter, EvmFeeQuote
from .hyperliquid import ExchangeWithdrawalAdapter, HyperliquidExchangeClient
from .registry import ChainRegistry
from .rpc import EvmRPCClient
from .solana import SolanaChainAdapter, compile_transfer_message, encode_compact_u16
from .solana_client import SolanaConfig, SolanaRPCClient

__all__ = [
    "ChainAdapter",
    "NetworkFee",
    "from_base_units",
    "to_base_units",
    "EvmChainAdapter",
    "EvmFeeQuote",
    "ExchangeWithdrawalAdapter",
    "HyperliquidExchangeClient",
    "ChainRegistry",
    "EvmRPCClient",
    "SolanaChainAdapter",
    "compile_transfer_message",
    "encode_compact_u16",
    "SolanaConfig",
    "SolanaRPCClient",
]
