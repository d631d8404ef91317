"""Public facade wiring the custody components together."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional

import httpx

from .backends.base import CustodyBackend
from .backends.http import HttpCustodyBackend
from .chains.registry import ChainRegistry
from .config import CustodySettings, load_settings
from .executor import WithdrawalExecutor
from .fees import FeeEstimator
from .models import GasEstimate, TransactionResult, WithdrawalRequest
from .provisioning import ProvisioningResult, WalletProvisioningController
from .renewal import CredentialRenewalController, ExpirationSummary, utc_now
from .sensitive import SecretBytes
from .session import SessionContext

logger = logging.getLogger(__name__)


class CustodyService:
    """Entry point for UI collaborators.

    Usage:
        service = CustodyService(backend=InMemoryCustodyBackend())
        result = await service.provision_wallet_if_absent(session)
        estimate = await service.estimate_withdrawal(request)
        tx = await service.submit_withdrawal(session, request)
        tx = await service.poll_withdrawal(request.chain, tx.tx_hash)
        service.start_credential_renewal(session)
        await service.end_session(session)
    """

    def __init__(
        self,
        settings: Optional[CustodySettings] = None,
        backend: Optional[CustodyBackend] = None,
        registry: Optional[ChainRegistry] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings or load_settings()
        self.backend = backend or HttpCustodyBackend(
            self.settings.backend_url, timeout=self.settings.backend_timeout
        )
        self.registry = registry or ChainRegistry(self.settings, http_client=http_client)
        self.fees = FeeEstimator(self.registry, self.settings)
        self.executor = WithdrawalExecutor(self.registry)
        self.provisioning = WalletProvisioningController(self.backend)
        self.renewal = CredentialRenewalController(self.backend, self.settings.renewal, clock=clock)

    async def provision_wallet_if_absent(self, session: SessionContext) -> ProvisioningResult:
        return await self.provisioning.provision_if_absent(session)

    async def estimate_withdrawal(self, request: WithdrawalRequest) -> GasEstimate:
        return await self.fees.estimate(request)

    async def submit_withdrawal(
        self,
        session: SessionContext,
        request: WithdrawalRequest,
        signing_key: Optional[SecretBytes] = None,
    ) -> TransactionResult:
        """Validate against the current balance, then sign and broadcast.

        The backend only holds the EVM key (it doubles as the exchange
        credential). Solana sends need ``signing_key``, re-derived by the
        caller with ``KeyDerivationEngine.recover``. Either way the key is
        zeroized once the send returns.
        """
        estimate = await self.fees.estimate(request)
        balances = await self.backend.get_balances(session.user_id)
        balance = balances.get(request.chain, {}).get(request.token, Decimal("0"))
        self.executor.validate(request, balance, estimate)

        if signing_key is None:
            adapter = self.registry.for_request(request.chain, request.token)
            signing_key = await self.backend.get_signing_key(session.user_id, adapter.family)
        try:
            return await self.executor.send(request, signing_key)
        finally:
            signing_key.zeroize()

    async def poll_withdrawal(self, chain: str, tx_hash: str) -> TransactionResult:
        return await self.executor.poll_status(chain, tx_hash)

    def start_credential_renewal(self, session: SessionContext) -> asyncio.Task:
        """Begin polling this session's exchange credential in the background."""
        return self.renewal.start(session)

    async def credential_expiration(self, session: SessionContext) -> Optional[ExpirationSummary]:
        status = await self.backend.get_credential_status(session.user_id)
        return self.renewal.summarize(status)

    async def end_session(self, session: SessionContext) -> None:
        """Logout: stop the session's renewal loop and destroy pending secrets."""
        await self.renewal.stop(session)
        session.logout()

    async def aclose(self) -> None:
        await self.renewal.stop()
        await self.registry.close()
        await self.backend.close()


__all__ = ["CustodyService"]
