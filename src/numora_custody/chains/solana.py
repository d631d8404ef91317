"""
Native SOL transfers.

Builds a legacy transaction carrying one System Program transfer instruction,
signs it with ed25519 and submits it over raw JSON-RPC.
"""
from __future__ import annotations

import base64
import logging
import struct
from typing import Optional

import httpx
from base58 import b58decode
from nacl.signing import SigningKey

from ..config import ChainSettings
from ..exceptions import (
    BroadcastRejectedError,
    CustodyValidationError,
    FeeEstimationFailedError,
    RPCError,
)
from ..models import ChainFamily, TransactionResult, TransactionStatus, WithdrawalRequest
from ..sensitive import SecretBytes
from .base import ChainAdapter, NetworkFee, from_base_units, to_base_units
from .solana_client import SolanaConfig, SolanaRPCClient

logger = logging.getLogger(__name__)

SYSTEM_PROGRAM_ID = bytes(32)
SYSTEM_TRANSFER_INSTRUCTION = 2
DEFAULT_LAMPORTS_PER_SIGNATURE = 5000


def encode_compact_u16(value: int) -> bytes:
    """Solana "shortvec" length prefix."""
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_pubkey(address: str) -> bytes:
    try:
        raw = b58decode(address)
    except ValueError as e:
        raise ValueError(f"Invalid base58 address: {address}") from e
    if len(raw) != 32:
        raise ValueError(f"Address must decode to 32 bytes: {address}")
    return raw


def compile_transfer_message(source: bytes, recipient: bytes, lamports: int, blockhash: bytes) -> bytes:
    """Compile a legacy message with a single system transfer.

    Account order: fee payer (signer, writable), recipient (writable),
    system program (read-only).
    """
    header = bytes([1, 0, 1])
    accounts = encode_compact_u16(3) + source + recipient + SYSTEM_PROGRAM_ID
    data = struct.pack("<IQ", SYSTEM_TRANSFER_INSTRUCTION, lamports)
    instruction = (
        bytes([2])  # program id index
        + encode_compact_u16(2) + bytes([0, 1])
        + encode_compact_u16(len(data)) + data
    )
    return header + accounts + blockhash + encode_compact_u16(1) + instruction


def serialize_transaction(signature: bytes, message: bytes) -> bytes:
    return encode_compact_u16(1) + signature + message


class SolanaChainAdapter(ChainAdapter):
    """Native SOL transfers via the System Program."""

    family = ChainFamily.SOLANA

    def __init__(
        self,
        chain: str,
        settings: ChainSettings,
        rpc: Optional[SolanaRPCClient] = None,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__(chain, settings)
        self._rpc = rpc or SolanaRPCClient(
            SolanaConfig(rpc_url=settings.rpc_url, timeout=timeout),
            http_client=http_client,
        )

    def validate_address(self, address: str) -> bool:
        try:
            decode_pubkey(address)
        except ValueError:
            return False
        return True

    async def _compile(self, request: WithdrawalRequest) -> bytes:
        lamports = to_base_units(request.amount, self.settings.native_decimals)
        blockhash = await self._rpc.get_latest_blockhash()
        return compile_transfer_message(
            decode_pubkey(request.source_address),
            decode_pubkey(request.recipient_address),
            lamports,
            b58decode(blockhash),
        )

    async def estimate_fee(self, request: WithdrawalRequest) -> NetworkFee:
        try:
            message = await self._compile(request)
            lamports = await self._rpc.get_fee_for_message(base64.b64encode(message).decode("ascii"))
        except RPCError as e:
            raise FeeEstimationFailedError(e.message, chain=self.chain, details=dict(e.details)) from e

        if lamports is None:
            logger.debug("getFeeForMessage returned null, using per-signature default")
            lamports = DEFAULT_LAMPORTS_PER_SIGNATURE

        return NetworkFee(
            amount=from_base_units(lamports, self.settings.native_decimals),
            currency=self.fee_currency,
            gas_units=1,
            fee_per_unit=lamports,
        )

    async def build_and_send(
        self,
        request: WithdrawalRequest,
        signing_key: SecretBytes,
    ) -> TransactionResult:
        secret = signing_key.reveal()
        try:
            signer = SigningKey(secret[:32])
            if bytes(signer.verify_key) != decode_pubkey(request.source_address):
                raise CustodyValidationError(
                    "Signing key does not control the source address",
                    field="source_address",
                )
            try:
                # Fresh blockhash at send time
                message = await self._compile(request)
                signature = signer.sign(message).signature
                wire = serialize_transaction(signature, message)
                tx_signature = await self._rpc.send_raw_transaction(
                    base64.b64encode(wire).decode("ascii")
                )
            except RPCError as e:
                logger.warning("Broadcast rejected on %s: %s", self.chain, e.message)
                raise BroadcastRejectedError.from_rpc_error(e, self.chain) from e
        finally:
            del secret

        return self.pending_result(tx_signature)

    async def poll_status(self, tx_hash: str) -> TransactionResult:
        status = await self._rpc.get_signature_status(tx_hash)
        result = self.pending_result(tx_hash)
        if status is None:
            return result
        if status.get("err"):
            return result.model_copy(update={
                "status": TransactionStatus.FAILED,
                "error_message": str(status["err"]),
                "block_number": status.get("slot"),
            })
        if status.get("confirmationStatus") in ("confirmed", "finalized"):
            return result.model_copy(update={
                "status": TransactionStatus.CONFIRMED,
                "block_number": status.get("slot"),
            })
        return result

    async def close(self) -> None:
        await self._rpc.close()
