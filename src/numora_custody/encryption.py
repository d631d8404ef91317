"""
Envelope encryption for signing keys held at rest.

Each record gets its own random AES-256-GCM data key; the data key is then
encrypted under the master key. Rotating the master key only requires
re-wrapping data keys.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .config import CustodySettings
from .exceptions import ConfigurationError, CustodyException
from .sensitive import SecretBytes

logger = logging.getLogger(__name__)

NONCE_SIZE = 12
KEY_SIZE = 32


@dataclass(frozen=True)
class SealedSecret:
    ciphertext: bytes
    nonce: bytes
    encrypted_data_key: bytes
    data_key_nonce: bytes


class EnvelopeCipher:
    """AES-256-GCM envelope encryption."""

    def __init__(self, master_key: bytes) -> None:
        if len(master_key) != KEY_SIZE:
            raise ConfigurationError("Master key must be 32 bytes")
        self._master = AESGCM(master_key)

    @classmethod
    def from_settings(cls, settings: CustodySettings) -> "EnvelopeCipher":
        if settings.encryption_master_key:
            return cls(bytes.fromhex(settings.encryption_master_key.removeprefix("0x")))
        if settings.environment != "dev":
            raise ConfigurationError("encryption_master_key is required outside dev")
        logger.warning("No encryption master key configured, using an ephemeral dev key")
        return cls(AESGCM.generate_key(bit_length=256))

    def seal(self, plaintext: SecretBytes, associated_data: Optional[bytes] = None) -> SealedSecret:
        data_key = bytearray(AESGCM.generate_key(bit_length=256))
        try:
            nonce = os.urandom(NONCE_SIZE)
            ciphertext = AESGCM(bytes(data_key)).encrypt(nonce, plaintext.reveal(), associated_data)
            data_key_nonce = os.urandom(NONCE_SIZE)
            encrypted_data_key = self._master.encrypt(data_key_nonce, bytes(data_key), None)
        finally:
            data_key[:] = bytes(len(data_key))
        return SealedSecret(
            ciphertext=ciphertext,
            nonce=nonce,
            encrypted_data_key=encrypted_data_key,
            data_key_nonce=data_key_nonce,
        )

    def open(self, sealed: SealedSecret, associated_data: Optional[bytes] = None) -> SecretBytes:
        try:
            data_key = bytearray(self._master.decrypt(sealed.data_key_nonce, sealed.encrypted_data_key, None))
            try:
                plaintext = AESGCM(bytes(data_key)).decrypt(sealed.nonce, sealed.ciphertext, associated_data)
            finally:
                data_key[:] = bytes(len(data_key))
        except InvalidTag as e:
            raise CustodyException("Sealed secret failed authentication", error_code="DECRYPTION_FAILED") from e
        return SecretBytes(bytearray(plaintext))
