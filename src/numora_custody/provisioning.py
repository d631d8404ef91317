"""
Embedded wallet provisioning.

Lifecycle per user:
  NO_WALLET -> DERIVING -> PERSISTING_ADDRESSES -> AWAITING_CONFIRMATION -> CONFIRMED

Any failure other than "already exists" leaves the session FAILED with its
in-progress flag still set, so page reloads do not derive fresh seeds.

The mnemonic is never persisted. Plaintext signing keys are destroyed as
soon as the backend has stored what it needs; the mnemonic itself lives only
until the user confirms it was saved, or the session is torn down.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .backends.base import CustodyBackend
from .exceptions import BackendError, CustodyValidationError, WalletAlreadyExistsError
from .keys import KeyDerivationEngine, wallet_addresses
from .models import EmbeddedWallet
from .sensitive import DerivedKeySet, MnemonicSecret, destroy_all
from .session import PendingDisclosure, ProvisioningState, SessionContext

logger = logging.getLogger(__name__)


@dataclass
class ProvisioningResult:
    wallet: Optional[EmbeddedWallet]
    state: ProvisioningState
    disclosure_pending: bool = False

    @property
    def needs_seed_backup(self) -> bool:
        return needs_seed_backup(self.wallet)


def needs_seed_backup(wallet: Optional[EmbeddedWallet]) -> bool:
    """True for a wallet whose phrase was never acknowledged.

    Such a phrase cannot be shown again: it was never stored anywhere.
    """
    return wallet is not None and not wallet.seed_confirmed


class WalletProvisioningController:
    """Creates each user's embedded wallet at most once."""

    def __init__(
        self,
        backend: CustodyBackend,
        engine: Optional[KeyDerivationEngine] = None,
    ) -> None:
        self._backend = backend
        self._engine = engine or KeyDerivationEngine()

    async def provision_if_absent(self, session: SessionContext) -> ProvisioningResult:
        """Return the user's wallet, creating it if none exists.

        Safe to call on every authenticated page load; concurrent calls on
        one session do not re-enter. After a failed attempt the session
        stays FAILED until retry(), abandon() or logout().
        """
        pending = session.pending_disclosure
        if pending is not None:
            return ProvisioningResult(pending.wallet, ProvisioningState.AWAITING_CONFIRMATION, True)

        if session.provisioning_started:
            logger.debug("Provisioning already started for session %s", session.session_id)
            return ProvisioningResult(None, session.provisioning_state)

        session.provisioning_started = True
        try:
            existing = await self._backend.get_wallet(session.user_id)
        except Exception:
            logger.exception("Wallet lookup failed for user %s", session.user_id)
            session.provisioning_state = ProvisioningState.FAILED
            raise

        if existing is not None:
            return self._use_existing(session, existing)

        return await self._create(session)

    def retry(self, session: SessionContext) -> None:
        """Allow a new attempt after a failed one."""
        if session.provisioning_state != ProvisioningState.FAILED:
            raise CustodyValidationError(
                "Only a failed provisioning attempt can be retried",
                details={"state": session.provisioning_state.value},
            )
        session.provisioning_started = False
        session.provisioning_state = ProvisioningState.NO_WALLET

    async def _create(self, session: SessionContext) -> ProvisioningResult:
        mnemonic: Optional[MnemonicSecret] = None
        keys: Optional[DerivedKeySet] = None
        handed_off = False
        try:
            session.provisioning_state = ProvisioningState.DERIVING
            mnemonic, keys = self._engine.generate()

            session.provisioning_state = ProvisioningState.PERSISTING_ADDRESSES
            wallet = await self._backend.create_wallet(
                session.user_id,
                wallet_addresses(keys),
                keys.evm.signing_key,
            )
            # The backend holds its own encrypted copy from here on
            keys.destroy()

            session.pending_disclosure = PendingDisclosure(wallet=wallet, mnemonic=mnemonic, keys=keys)
            session.provisioning_state = ProvisioningState.AWAITING_CONFIRMATION
            handed_off = True
            logger.info("Provisioned embedded wallet for user %s", session.user_id)
            return ProvisioningResult(wallet, ProvisioningState.AWAITING_CONFIRMATION, True)

        except WalletAlreadyExistsError:
            logger.info("Wallet already exists for user %s, using existing", session.user_id)
            destroy_all(mnemonic, keys)
            return await self._refetch_existing(session)

        except Exception:
            logger.exception("Provisioning failed for user %s", session.user_id)
            session.provisioning_state = ProvisioningState.FAILED
            raise

        finally:
            # Also covers cancellation while persisting
            if not handed_off:
                destroy_all(mnemonic, keys)

    async def _refetch_existing(self, session: SessionContext) -> ProvisioningResult:
        try:
            existing = await self._backend.get_wallet(session.user_id)
            if existing is None:
                raise BackendError(
                    f"Wallet for user {session.user_id} reported as existing but not found",
                    operation="get_wallet",
                )
        except Exception:
            logger.exception("Re-fetching existing wallet failed for user %s", session.user_id)
            session.provisioning_state = ProvisioningState.FAILED
            raise
        return self._use_existing(session, existing)

    @staticmethod
    def _use_existing(session: SessionContext, wallet: EmbeddedWallet) -> ProvisioningResult:
        session.provisioning_started = False
        if wallet.seed_confirmed:
            session.provisioning_state = ProvisioningState.CONFIRMED
        else:
            session.provisioning_state = ProvisioningState.EXISTING
        return ProvisioningResult(wallet, session.provisioning_state)

    def reveal_mnemonic(self, session: SessionContext) -> str:
        """Hand the phrase to the disclosure surface; works once.

        Raises:
            CustodyValidationError: nothing is awaiting disclosure
            SecretConsumedError: the phrase was already revealed
        """
        pending = session.pending_disclosure
        if pending is None:
            raise CustodyValidationError("No seed phrase is awaiting disclosure")
        return pending.mnemonic.consume()

    async def confirm_seed_saved(self, session: SessionContext) -> EmbeddedWallet:
        """Record the user's acknowledgement and destroy the mnemonic.

        If the backend call fails the disclosure stays pending so the user
        can retry the acknowledgement.
        """
        pending = session.pending_disclosure
        if pending is None:
            raise CustodyValidationError("No seed phrase is awaiting confirmation")

        await self._backend.confirm_seed_shown(session.user_id)

        session.discard_pending_disclosure()
        session.provisioning_state = ProvisioningState.CONFIRMED
        session.provisioning_started = False
        logger.info("Seed phrase confirmed for user %s", session.user_id)
        return pending.wallet.model_copy(update={"seed_confirmed": True})

    def abandon(self, session: SessionContext) -> None:
        """Teardown: destroy pending secrets and reset provisioning flags.

        The persisted wallet keeps seed_confirmed = False.
        """
        if session.pending_disclosure is not None:
            logger.warning("Abandoning unconfirmed seed disclosure for user %s", session.user_id)
        session.discard_pending_disclosure()
        session.provisioning_started = False
        if session.provisioning_state == ProvisioningState.AWAITING_CONFIRMATION:
            session.provisioning_state = ProvisioningState.EXISTING
        elif session.provisioning_state == ProvisioningState.FAILED:
            session.provisioning_state = ProvisioningState.NO_WALLET
