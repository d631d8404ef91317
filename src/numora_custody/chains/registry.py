"""Resolve the adapter for a chain and token."""
from __future__ import annotations

import logging
from typing import Dict, Optional

import httpx

from ..config import CustodySettings
from ..exceptions import UnsupportedChainError
from .base import ChainAdapter
from .evm import EvmChainAdapter
from .hyperliquid import ExchangeWithdrawalAdapter
from .solana import SolanaChainAdapter

logger = logging.getLogger(__name__)

EXCHANGE_ROUTE = "exchange"


class ChainRegistry:
    """One cached adapter per chain, plus the exchange withdrawal route.

    Adapters can be registered directly, which tests use to inject fakes.
    """

    def __init__(
        self,
        settings: CustodySettings,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._settings = settings
        self._http_client = http_client
        self._adapters: Dict[str, ChainAdapter] = {}

    def register(self, key: str, adapter: ChainAdapter) -> None:
        self._adapters[key] = adapter

    def is_exchange_route(self, chain: str, token: Optional[str]) -> bool:
        exchange = self._settings.exchange
        return (
            token is not None
            and chain.lower() == exchange.chain.lower()
            and token.upper() == exchange.withdraw_token.upper()
        )

    def for_request(self, chain: str, token: Optional[str] = None) -> ChainAdapter:
        chain = chain.lower()
        if self.is_exchange_route(chain, token):
            return self._get(EXCHANGE_ROUTE, chain)
        return self._get(chain, chain)

    def for_transaction(self, chain: str, tx_hash: str) -> ChainAdapter:
        """Adapter that can poll ``tx_hash``; exchange references carry a ':'."""
        chain = chain.lower()
        if chain == self._settings.exchange.chain.lower() and ":" in tx_hash:
            return self._get(EXCHANGE_ROUTE, chain)
        return self._get(chain, chain)

    def _get(self, key: str, chain: str) -> ChainAdapter:
        adapter = self._adapters.get(key)
        if adapter is None:
            adapter = self._create(key, chain)
            self._adapters[key] = adapter
        return adapter

    def _create(self, key: str, chain: str) -> ChainAdapter:
        chain_settings = self._settings.chain(chain)
        if chain_settings is None:
            raise UnsupportedChainError(chain)

        timeout = self._settings.rpc_timeout
        if key == EXCHANGE_ROUTE:
            return ExchangeWithdrawalAdapter(
                chain,
                chain_settings,
                self._settings.exchange,
                timeout=timeout,
                http_client=self._http_client,
            )
        if chain_settings.family == "solana":
            return SolanaChainAdapter(chain, chain_settings, timeout=timeout, http_client=self._http_client)
        return EvmChainAdapter(chain, chain_settings, timeout=timeout, http_client=self._http_client)

    async def close(self) -> None:
        for key, adapter in list(self._adapters.items()):
            try:
                await adapter.close()
            except Exception as e:
                logger.warning("Failed to close adapter %s: %s", key, e)
        self._adapters.clear()
