"""Key derivation for the embedded wallet."""
from .derivation import KeyDerivationEngine, derive_ed25519, derive_secp256k1, wallet_addresses
from .paths import EVM_CHAINS, EVM_PATH, SOLANA_PATH, HDPath, HDPathComponent

__all__ = [
    "KeyDerivationEngine",
    "derive_ed25519",
    "derive_secp256k1",
    "wallet_addresses",
    "EVM_CHAINS",
    "EVM_PATH",
    "SOLANA_PATH",
    "HDPath",
    "HDPathComponent",
]
