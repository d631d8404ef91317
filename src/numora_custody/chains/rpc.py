"""JSON-RPC client for EVM chains."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..exceptions import RPCError

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY_FEE_WEI = 1_000_000_000  # 1 gwei


class EvmRPCClient:
    """JSON-RPC client for blockchain interaction."""

    def __init__(
        self,
        rpc_url: str,
        chain: str = "",
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._rpc_url = rpc_url
        self._chain = chain
        self._timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None
        self._request_id = 0

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def _call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """Make JSON-RPC call."""
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        client = await self._get_client()
        try:
            response = await client.post(
                self._rpc_url,
                json=payload,
                headers={"Content-Type": "application/json"},
            )
            response.raise_for_status()
            result = response.json()
        except httpx.HTTPError as e:
            raise RPCError(f"{method} failed: {e}", chain=self._chain, method=method) from e
        except ValueError as e:
            raise RPCError(f"{method} returned invalid JSON", chain=self._chain, method=method) from e

        if "error" in result:
            error = result["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise RPCError(message, chain=self._chain, method=method, rpc_error=error)

        return result.get("result")

    async def get_gas_price(self) -> int:
        """Get current gas price in wei."""
        result = await self._call("eth_gasPrice")
        return int(result, 16)

    async def get_max_priority_fee(self) -> int:
        """Get max priority fee for EIP-1559."""
        try:
            result = await self._call("eth_maxPriorityFeePerGas")
            return int(result, 16)
        except RPCError as e:
            # Fallback for chains that don't support this
            logger.debug("eth_maxPriorityFeePerGas unavailable on %s: %s", self._chain, e.message)
            return DEFAULT_PRIORITY_FEE_WEI

    async def get_base_fee(self) -> Optional[int]:
        """Base fee of the latest block, None on pre-London chains."""
        block = await self._call("eth_getBlockByNumber", ["latest", False])
        if not block or block.get("baseFeePerGas") is None:
            return None
        return int(block["baseFeePerGas"], 16)

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        """Estimate gas for a transaction."""
        result = await self._call("eth_estimateGas", [tx])
        return int(result, 16)

    async def get_nonce(self, address: str) -> int:
        """Get transaction count (nonce) for address."""
        result = await self._call("eth_getTransactionCount", [address, "pending"])
        return int(result, 16)

    async def send_raw_transaction(self, signed_tx: str) -> str:
        """Broadcast signed transaction."""
        return await self._call("eth_sendRawTransaction", [signed_tx])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Get transaction receipt."""
        return await self._call("eth_getTransactionReceipt", [tx_hash])

    async def close(self):
        """Close HTTP client."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
        self._http_client = None
