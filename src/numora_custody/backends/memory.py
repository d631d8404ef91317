"""
In-memory custody backend.

Reference implementation of the server side, used by tests and local
development. Thread-safe via asyncio.Lock; not persistent.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Dict, Optional, Tuple

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..config import RenewalSettings
from ..encryption import EnvelopeCipher, SealedSecret
from ..exceptions import (
    BackendError,
    CredentialRenewalFailedError,
    SigningKeyUnavailableError,
    WalletAlreadyExistsError,
)
from ..models import ApiCredentialStatus, Balances, ChainFamily, EmbeddedWallet, WalletAddresses
from ..sensitive import SecretBytes

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryCustodyBackend:
    """
    In-memory implementation of CustodyBackend.

    Signing keys are stored sealed with envelope encryption; the user id and
    chain family are bound in as associated data.
    """

    def __init__(
        self,
        cipher: Optional[EnvelopeCipher] = None,
        renewal: Optional[RenewalSettings] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._cipher = cipher or EnvelopeCipher(AESGCM.generate_key(bit_length=256))
        self._validity = timedelta(days=(renewal or RenewalSettings()).credential_validity_days)
        self._clock = clock
        self._lock = asyncio.Lock()
        self._wallets: Dict[str, EmbeddedWallet] = {}
        self._sealed_keys: Dict[Tuple[str, ChainFamily], SealedSecret] = {}
        self._credentials: Dict[str, ApiCredentialStatus] = {}
        self._balances: Dict[str, Balances] = {}
        self.renewal_calls = 0
        self.fail_renewals = False

    @staticmethod
    def _aad(user_id: str, family: ChainFamily) -> bytes:
        return f"{user_id}:{family.value}".encode("utf-8")

    async def create_wallet(
        self,
        user_id: str,
        addresses: WalletAddresses,
        exchange_signing_key: SecretBytes,
    ) -> EmbeddedWallet:
        async with self._lock:
            if user_id in self._wallets:
                raise WalletAlreadyExistsError(user_id)

            wallet = EmbeddedWallet(user_id=user_id, **addresses.model_dump())
            self._sealed_keys[(user_id, ChainFamily.EVM)] = self._cipher.seal(
                exchange_signing_key, self._aad(user_id, ChainFamily.EVM)
            )
            now = self._clock()
            self._credentials[user_id] = ApiCredentialStatus(
                has_credential=True,
                approved_at=now,
                expires_at=now + self._validity,
            )
            self._wallets[user_id] = wallet
            logger.info("Created embedded wallet for user %s", user_id)
            return wallet.model_copy()

    async def get_wallet(self, user_id: str) -> Optional[EmbeddedWallet]:
        wallet = self._wallets.get(user_id)
        return wallet.model_copy() if wallet else None

    async def confirm_seed_shown(self, user_id: str) -> None:
        async with self._lock:
            wallet = self._wallets.get(user_id)
            if wallet is None:
                raise BackendError(f"No wallet for user {user_id}", operation="confirm_seed_shown", status_code=404)
            self._wallets[user_id] = wallet.model_copy(update={"seed_confirmed": True})

    async def get_credential_status(self, user_id: str) -> ApiCredentialStatus:
        status = self._credentials.get(user_id)
        return status.model_copy() if status else ApiCredentialStatus()

    async def renew_credential(self, user_id: str) -> ApiCredentialStatus:
        async with self._lock:
            self.renewal_calls += 1
            if self.fail_renewals:
                raise CredentialRenewalFailedError("Exchange rejected agent approval")
            if user_id not in self._credentials:
                raise CredentialRenewalFailedError(f"No exchange credential for user {user_id}")
            # Last write wins: a duplicate renewal just extends from now
            now = self._clock()
            status = ApiCredentialStatus(
                has_credential=True,
                approved_at=now,
                expires_at=now + self._validity,
            )
            self._credentials[user_id] = status
            return status.model_copy()

    async def get_balances(self, user_id: str) -> Balances:
        return {chain: dict(tokens) for chain, tokens in self._balances.get(user_id, {}).items()}

    async def get_signing_key(self, user_id: str, family: ChainFamily) -> SecretBytes:
        sealed = self._sealed_keys.get((user_id, family))
        if sealed is None:
            raise SigningKeyUnavailableError(user_id, family.value)
        return self._cipher.open(sealed, self._aad(user_id, family))

    # Seeding helpers

    def set_balance(self, user_id: str, chain: str, token: str, amount: Decimal) -> None:
        self._balances.setdefault(user_id, {}).setdefault(chain.lower(), {})[token.upper()] = amount

    def set_credential(self, user_id: str, status: ApiCredentialStatus) -> None:
        self._credentials[user_id] = status

    def store_signing_key(self, user_id: str, family: ChainFamily, key: SecretBytes) -> None:
        self._sealed_keys[(user_id, family)] = self._cipher.seal(key, self._aad(user_id, family))

    def wallet_count(self) -> int:
        return len(self._wallets)

    async def close(self) -> None:
        return None
