"""Persistence port for wallets, credentials, balances and held keys."""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from ..models import ApiCredentialStatus, Balances, ChainFamily, EmbeddedWallet, WalletAddresses
from ..sensitive import SecretBytes


@runtime_checkable
class CustodyBackend(Protocol):
    """Server-side store behind the custody controllers.

    The server is the source of truth for "wallet exists": create_wallet
    raises WalletAlreadyExistsError when a row is already present.
    """

    async def create_wallet(
        self,
        user_id: str,
        addresses: WalletAddresses,
        exchange_signing_key: SecretBytes,
    ) -> EmbeddedWallet:
        """Persist addresses and register the exchange trading key."""
        ...

    async def get_wallet(self, user_id: str) -> Optional[EmbeddedWallet]:
        ...

    async def confirm_seed_shown(self, user_id: str) -> None:
        ...

    async def get_credential_status(self, user_id: str) -> ApiCredentialStatus:
        ...

    async def renew_credential(self, user_id: str) -> ApiCredentialStatus:
        """Raises CredentialRenewalFailedError when the exchange refuses."""
        ...

    async def get_balances(self, user_id: str) -> Balances:
        ...

    async def get_signing_key(self, user_id: str, family: ChainFamily) -> SecretBytes:
        """Raises SigningKeyUnavailableError when no key is held."""
        ...

    async def close(self) -> None:
        ...
