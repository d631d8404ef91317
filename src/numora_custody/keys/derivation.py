"""
Deterministic key derivation from a BIP-39 mnemonic.

Features:
- 12-word mnemonic generation from 128 bits of entropy
- BIP-32 secp256k1 derivation for the shared EVM key
- SLIP-0010 ed25519 derivation for the Solana key
- Strict mnemonic validation: a bad checksum never yields partial keys
"""
from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Tuple

from base58 import b58encode
from eth_keys import constants as eth_constants
from eth_keys import keys as eth_keys
from mnemonic import Mnemonic
from nacl.signing import SigningKey

from ..exceptions import InvalidMnemonicError
from ..models import ChainFamily, WalletAddresses
from ..sensitive import ChainKeyPair, DerivedKeySet, MnemonicSecret, SecretBytes
from .paths import EVM_PATH, SOLANA_PATH, HDPath

logger = logging.getLogger(__name__)

SECP256K1_N = eth_constants.SECPK1_N

ENTROPY_BITS = 128


def _derive_child(private_key: bytes, chain_code: bytes, index: int, hardened: bool) -> Tuple[bytes, bytes]:
    """Single BIP-32 child derivation step on secp256k1."""
    if hardened:
        data = b"\x00" + private_key + index.to_bytes(4, "big")
    else:
        pub_compressed = eth_keys.PrivateKey(private_key).public_key.to_compressed_bytes()
        data = pub_compressed + index.to_bytes(4, "big")
    digest = hmac.new(chain_code, data, hashlib.sha512).digest()
    il, ir = digest[:32], digest[32:]
    il_int = int.from_bytes(il, "big")
    child_int = (il_int + int.from_bytes(private_key, "big")) % SECP256K1_N
    if il_int >= SECP256K1_N or child_int == 0:
        # Probability below 2^-127; BIP-32 says skip to the next index
        raise ValueError(f"Invalid child key at index {index}")
    return child_int.to_bytes(32, "big"), ir


def derive_secp256k1(seed: bytes, path: HDPath) -> bytes:
    digest = hmac.new(b"Bitcoin seed", seed, hashlib.sha512).digest()
    priv, chain_code = digest[:32], digest[32:]
    for component in path.components:
        priv, chain_code = _derive_child(priv, chain_code, component.value, component.hardened)
    return priv


def derive_ed25519(seed: bytes, path: HDPath) -> bytes:
    """SLIP-0010 ed25519 derivation; every component must be hardened."""
    errors = path.validate(ChainFamily.SOLANA)
    if errors:
        raise ValueError(f"Invalid ed25519 path {path}: {'; '.join(errors)}")
    digest = hmac.new(b"ed25519 seed", seed, hashlib.sha512).digest()
    key, chain_code = digest[:32], digest[32:]
    for component in path.components:
        data = b"\x00" + key + component.value.to_bytes(4, "big")
        digest = hmac.new(chain_code, data, hashlib.sha512).digest()
        key, chain_code = digest[:32], digest[32:]
    return key


class KeyDerivationEngine:
    """Generates mnemonics and derives the per-family signing keys."""

    def __init__(self, language: str = "english", strength: int = ENTROPY_BITS) -> None:
        self._mnemo = Mnemonic(language)
        self._strength = strength

    def generate(self) -> Tuple[MnemonicSecret, DerivedKeySet]:
        """Create a fresh 12-word mnemonic and its key set."""
        phrase = self._mnemo.generate(strength=self._strength)
        keys = self._derive(phrase)
        logger.info(
            "Generated embedded wallet keys",
            extra={"data": {
                "evm_address": keys.evm.public_address,
                "solana_address": keys.solana.public_address,
            }},
        )
        return MnemonicSecret(phrase), keys

    def recover(self, mnemonic: str) -> DerivedKeySet:
        """Re-derive the key set from an existing phrase.

        Raises:
            InvalidMnemonicError: unknown words, wrong length or bad checksum
        """
        phrase = " ".join(mnemonic.strip().lower().split())
        if not self._mnemo.check(phrase):
            raise InvalidMnemonicError()
        return self._derive(phrase)

    def _derive(self, phrase: str) -> DerivedKeySet:
        seed = bytearray(Mnemonic.to_seed(phrase, passphrase=""))
        try:
            solana = self._solana_pair(bytes(seed))
            evm = self._evm_pair(bytes(seed))
        finally:
            seed[:] = bytes(len(seed))
        return DerivedKeySet(pairs=[solana, evm])

    @staticmethod
    def _solana_pair(seed: bytes) -> ChainKeyPair:
        private_seed = derive_ed25519(seed, SOLANA_PATH)
        verify_key = SigningKey(private_seed).verify_key
        public_key = bytes(verify_key)
        return ChainKeyPair(
            family=ChainFamily.SOLANA,
            public_address=b58encode(public_key).decode("ascii"),
            # seed || public key, the 64-byte layout Solana tooling expects
            signing_key=SecretBytes(bytearray(private_seed + public_key)),
            derivation_path=str(SOLANA_PATH),
        )

    @staticmethod
    def _evm_pair(seed: bytes) -> ChainKeyPair:
        priv = derive_secp256k1(seed, EVM_PATH)
        address = eth_keys.PrivateKey(priv).public_key.to_checksum_address()
        return ChainKeyPair(
            family=ChainFamily.EVM,
            public_address=address,
            signing_key=SecretBytes(bytearray(priv)),
            derivation_path=str(EVM_PATH),
        )


def wallet_addresses(keys: DerivedKeySet) -> WalletAddresses:
    """Map a key set onto the persisted address fields."""
    evm_address = keys.evm.public_address
    return WalletAddresses(
        solana_address=keys.solana.public_address,
        evm_address=evm_address,
        polygon_address=evm_address,
        hyperliquid_address=evm_address,
        bnb_address=evm_address,
    )
