"""Solana RPC client wrapper."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from ..exceptions import RPCError

logger = logging.getLogger(__name__)


@dataclass
class SolanaConfig:
    """Solana connection configuration."""
    rpc_url: str
    commitment: str = "confirmed"
    timeout: float = 30.0


class SolanaRPCClient:
    """Async Solana JSON-RPC client.

    Uses raw httpx instead of solana-py to minimize dependencies.
    All Solana RPC methods are called via JSON-RPC 2.0.
    """

    def __init__(
        self,
        config: SolanaConfig,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=self.config.timeout)
        self._request_id = 0

    async def _rpc(self, method: str, params: list[Any] | None = None) -> Any:
        """Make a JSON-RPC call to Solana."""
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }
        try:
            resp = await self._client.post(self.config.rpc_url, json=payload)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            raise RPCError(f"{method} failed: {e}", chain="solana", method=method) from e
        except ValueError as e:
            raise RPCError(f"{method} returned invalid JSON", chain="solana", method=method) from e
        if "error" in data:
            error = data["error"]
            raise RPCError(
                error.get("message", "Unknown RPC error"),
                chain="solana",
                method=method,
                rpc_error=error,
            )
        return data.get("result")

    async def get_latest_blockhash(self) -> str:
        """Get latest blockhash for transaction building."""
        result = await self._rpc(
            "getLatestBlockhash", [{"commitment": self.config.commitment}]
        )
        return result["value"]["blockhash"]

    async def get_fee_for_message(self, message_base64: str) -> Optional[int]:
        """Fee in lamports for a compiled message; None if the blockhash expired."""
        result = await self._rpc(
            "getFeeForMessage",
            [message_base64, {"commitment": self.config.commitment}],
        )
        return result.get("value") if result else None

    async def send_raw_transaction(self, signed_tx_base64: str) -> str:
        """Send a signed transaction. Returns transaction signature."""
        result = await self._rpc(
            "sendTransaction",
            [
                signed_tx_base64,
                {"encoding": "base64", "skipPreflight": False},
            ],
        )
        logger.info("Solana tx sent: %s", result)
        return result

    async def get_signature_status(self, signature: str) -> Optional[dict[str, Any]]:
        """Status of one signature, None if the cluster has never seen it."""
        result = await self._rpc(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": True}],
        )
        statuses = (result or {}).get("value", [])
        if not statuses:
            return None
        return statuses[0]

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._owns_client:
            await self._client.aclose()
