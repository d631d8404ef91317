"""Per-session controller state.

Flags that guard provisioning and renewal belong to one authenticated
session, never to the process: two sessions for the same user are
independent objects.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from .models import ApiCredentialStatus, EmbeddedWallet
from .sensitive import DerivedKeySet, MnemonicSecret


class ProvisioningState(str, Enum):
    NO_WALLET = "no_wallet"
    DERIVING = "deriving"
    PERSISTING_ADDRESSES = "persisting_addresses"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    CONFIRMED = "confirmed"
    # Wallet was provisioned in an earlier session
    EXISTING = "existing"
    FAILED = "failed"


@dataclass
class PendingDisclosure:
    """Secret material waiting for the user to save the seed phrase."""
    wallet: EmbeddedWallet
    mnemonic: MnemonicSecret
    keys: DerivedKeySet

    def destroy(self) -> None:
        self.mnemonic.destroy()
        self.keys.destroy()

    def is_zeroed(self) -> bool:
        return self.mnemonic.is_zeroed() and self.keys.is_zeroed()


@dataclass
class SessionContext:
    user_id: str
    session_id: str = field(default_factory=lambda: f"sess_{uuid.uuid4().hex[:16]}")

    # Provisioning
    provisioning_started: bool = False
    provisioning_state: ProvisioningState = ProvisioningState.NO_WALLET
    pending_disclosure: Optional[PendingDisclosure] = None

    # Credential renewal
    renewal_attempted: bool = False
    last_renew_attempt: Optional[datetime] = None
    renewal_in_flight: bool = False
    renewal_failed_at: Optional[datetime] = None
    cached_credential_status: Optional[ApiCredentialStatus] = None
    cached_status_at: Optional[datetime] = None

    def clear_renewal_flags(self) -> None:
        self.renewal_attempted = False
        self.last_renew_attempt = None
        self.renewal_failed_at = None

    def invalidate_credential_status(self) -> None:
        self.cached_credential_status = None
        self.cached_status_at = None

    def discard_pending_disclosure(self) -> None:
        if self.pending_disclosure is not None:
            self.pending_disclosure.destroy()
            self.pending_disclosure = None

    def logout(self) -> None:
        """Destroy pending secrets and reset every flag."""
        self.discard_pending_disclosure()
        self.provisioning_started = False
        self.provisioning_state = ProvisioningState.NO_WALLET
        self.renewal_in_flight = False
        self.clear_renewal_flags()
        self.invalidate_credential_status()
