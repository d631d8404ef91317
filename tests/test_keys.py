"""
Tests for numora_custody.keys.

Tests cover:
- BIP-32 and SLIP-0010 reference vectors
- Deterministic recovery from a mnemonic
- Mnemonic validation
- Derivation path parsing and validation
"""
from __future__ import annotations

import pytest
from base58 import b58decode
from nacl.signing import SigningKey

from numora_custody.exceptions import InvalidMnemonicError
from numora_custody.keys import (
    EVM_CHAINS,
    EVM_PATH,
    SOLANA_PATH,
    HDPath,
    HDPathComponent,
    derive_ed25519,
    derive_secp256k1,
    wallet_addresses,
)
from numora_custody.models import ChainFamily

from conftest import TEST_EVM_ADDRESS

VECTOR_SEED = bytes.fromhex("000102030405060708090a0b0c0d0e0f")


class TestReferenceVectors:
    """Tests against published derivation vectors."""

    def test_bip32_vector_1_hardened_child(self):
        """Should match BIP-32 test vector 1 at m/0'."""
        key = derive_secp256k1(VECTOR_SEED, HDPath.parse("m/0'"))
        assert key.hex() == "edb2e14f9ee77d26dd93b4ecede8d16ed408ce149b6cd80b0715a2d911a0afea"

    def test_slip10_ed25519_vector_1_master(self):
        """Should match SLIP-0010 ed25519 vector 1 master key."""
        key = derive_ed25519(VECTOR_SEED, HDPath.parse("m"))
        assert key.hex() == "2b4be7f19ee27bbf30c667b642d5f4aa69fd169872f8fc3059c08ebae2eb19e7"

    def test_slip10_ed25519_vector_1_hardened_child(self):
        """Should match SLIP-0010 ed25519 vector 1 at m/0'."""
        key = derive_ed25519(VECTOR_SEED, HDPath.parse("m/0'"))
        assert key.hex() == "68e0fe46dfb67e368c75379acec591dad19df3cde26e63b93a8e704f1dade7a3"

    def test_ed25519_rejects_non_hardened_path(self):
        """Should refuse normal children on ed25519."""
        with pytest.raises(ValueError):
            derive_ed25519(VECTOR_SEED, HDPath.parse("m/44'/501'/0'/0"))

    def test_ed25519_rejects_out_of_range_index(self):
        with pytest.raises(ValueError):
            derive_ed25519(VECTOR_SEED, HDPath.parse("m/2147483648'"))


class TestKeyDerivationEngine:
    """Tests for KeyDerivationEngine."""

    def test_recover_known_evm_address(self, engine, test_mnemonic):
        """Should derive the well-known EVM address for the reference mnemonic."""
        keys = engine.recover(test_mnemonic)
        assert keys.evm.public_address == TEST_EVM_ADDRESS
        assert keys.evm.derivation_path == "m/44'/60'/0'/0/0"

    def test_recover_is_deterministic(self, engine, test_mnemonic):
        """Should produce identical keys on every recovery."""
        first = engine.recover(test_mnemonic)
        second = engine.recover(test_mnemonic)
        assert first.evm.public_address == second.evm.public_address
        assert first.solana.public_address == second.solana.public_address
        assert first.evm.signing_key.reveal() == second.evm.signing_key.reveal()
        assert first.solana.signing_key.reveal() == second.solana.signing_key.reveal()

    def test_recover_normalizes_whitespace_and_case(self, engine, test_mnemonic):
        """Should ignore surrounding whitespace and case."""
        messy = "  " + test_mnemonic.upper().replace(" ", "   ") + "\n"
        assert engine.recover(messy).evm.public_address == TEST_EVM_ADDRESS

    def test_solana_key_layout(self, engine, test_mnemonic):
        """Should hold seed || public key and a base58 32-byte address."""
        pair = engine.recover(test_mnemonic).solana
        secret = pair.signing_key.reveal()
        public = b58decode(pair.public_address)

        assert len(secret) == 64
        assert len(public) == 32
        assert secret[32:] == public
        assert bytes(SigningKey(secret[:32]).verify_key) == public
        assert pair.derivation_path == "m/44'/501'/0'/0'"

    def test_evm_key_is_32_bytes(self, engine, test_mnemonic):
        """Should derive a 32-byte secp256k1 private key."""
        assert len(engine.recover(test_mnemonic).evm.signing_key) == 32

    def test_generate_produces_recoverable_twelve_words(self, engine):
        """Should generate a 12-word phrase whose recovery matches."""
        mnemonic, keys = engine.generate()
        phrase = mnemonic.consume()

        assert len(phrase.split()) == 12
        recovered = engine.recover(phrase)
        assert recovered.evm.public_address == keys.evm.public_address
        assert recovered.solana.public_address == keys.solana.public_address

    def test_generate_is_random(self, engine):
        """Should not return the same wallet twice."""
        _, first = engine.generate()
        _, second = engine.generate()
        assert first.evm.public_address != second.evm.public_address

    def test_invalid_checksum_raises(self, engine):
        """Should reject a phrase whose checksum does not verify."""
        with pytest.raises(InvalidMnemonicError):
            engine.recover(" ".join(["abandon"] * 12))

    def test_unknown_word_raises(self, engine, test_mnemonic):
        """Should reject words outside the BIP-39 list."""
        phrase = test_mnemonic.replace("about", "zzzzzz")
        with pytest.raises(InvalidMnemonicError):
            engine.recover(phrase)

    def test_wrong_length_raises(self, engine):
        """Should reject an 11-word phrase."""
        with pytest.raises(InvalidMnemonicError):
            engine.recover(" ".join(["abandon"] * 11))

    def test_invalid_mnemonic_error_does_not_echo_phrase(self, engine):
        """Should never include the phrase in the error."""
        phrase = " ".join(["zoo"] * 12)
        with pytest.raises(InvalidMnemonicError) as exc_info:
            engine.recover(phrase)
        assert "zoo" not in str(exc_info.value)
        assert "zoo" not in str(exc_info.value.to_dict())

    def test_wallet_addresses_reuse_evm_key(self, engine, test_mnemonic):
        """Should map one EVM address onto every EVM chain field."""
        keys = engine.recover(test_mnemonic)
        addresses = wallet_addresses(keys)

        assert addresses.evm_address == TEST_EVM_ADDRESS
        assert addresses.polygon_address == TEST_EVM_ADDRESS
        assert addresses.hyperliquid_address == TEST_EVM_ADDRESS
        assert addresses.bnb_address == TEST_EVM_ADDRESS
        assert addresses.solana_address == keys.solana.public_address
        for chain in EVM_CHAINS:
            assert addresses.for_chain(chain) == TEST_EVM_ADDRESS


class TestHDPath:
    """Tests for HDPath parsing."""

    def test_parse_round_trip(self):
        """Should format back to the parsed string."""
        assert str(HDPath.parse("m/44'/60'/0'/0/0")) == "m/44'/60'/0'/0/0"

    def test_component_hardened_value(self):
        """Should apply the hardened offset."""
        assert HDPathComponent.from_string("44'").value == 44 + 0x80000000
        assert HDPathComponent.from_string("0").value == 0
        assert HDPathComponent.from_string("501h").hardened is True

    def test_parse_rejects_garbage(self):
        """Should reject paths without the m/ prefix or with bad components."""
        with pytest.raises(ValueError):
            HDPath.parse("44'/60'")
        with pytest.raises(ValueError):
            HDPath.parse("m/44'/abc")

    def test_standard_paths_validate(self):
        """Should report no errors for the wallet's own paths."""
        assert SOLANA_PATH.validate(ChainFamily.SOLANA) == []
        assert EVM_PATH.validate(ChainFamily.EVM) == []

    def test_solana_requires_hardened(self):
        """Should flag non-hardened components on ed25519."""
        errors = HDPath.parse("m/44'/501'/0'/0").validate(ChainFamily.SOLANA)
        assert any("hardened" in e for e in errors)
