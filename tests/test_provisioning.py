"""
Tests for wallet provisioning.

Tests cover:
- First-time provisioning and one-time disclosure
- Idempotency across calls and sessions
- The "already exists" race
- Secret destruction on confirm, failure, cancellation and logout
"""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from numora_custody.exceptions import BackendError, CustodyValidationError, SecretConsumedError
from numora_custody.keys import KeyDerivationEngine
from numora_custody.models import ChainFamily
from numora_custody.provisioning import WalletProvisioningController, needs_seed_backup
from numora_custody.session import ProvisioningState, SessionContext


class SpyEngine(KeyDerivationEngine):
    """Records every generated mnemonic and key set."""

    def __init__(self) -> None:
        super().__init__()
        self.generated = []

    def generate(self):
        mnemonic, keys = super().generate()
        self.generated.append((mnemonic, keys))
        return mnemonic, keys


@pytest.fixture
def spy_engine() -> SpyEngine:
    return SpyEngine()


@pytest.fixture
def controller(backend, spy_engine) -> WalletProvisioningController:
    return WalletProvisioningController(backend, engine=spy_engine)


class TestFirstProvisioning:
    """Tests for a user with no wallet."""

    @pytest.mark.asyncio
    async def test_creates_wallet_and_awaits_confirmation(self, controller, backend):
        """Should persist one wallet and hold a pending disclosure."""
        session = SessionContext(user_id="user_1")
        result = await controller.provision_if_absent(session)

        assert result.state == ProvisioningState.AWAITING_CONFIRMATION
        assert result.disclosure_pending is True
        assert result.wallet.seed_confirmed is False
        assert session.pending_disclosure is not None
        assert backend.wallet_count() == 1

    @pytest.mark.asyncio
    async def test_keys_destroyed_once_persisted(self, controller):
        """Should zero plaintext keys right after persistence."""
        session = SessionContext(user_id="user_1")
        await controller.provision_if_absent(session)

        pending = session.pending_disclosure
        assert pending.keys.is_zeroed()
        assert not pending.mnemonic.is_zeroed()

    @pytest.mark.asyncio
    async def test_backend_holds_exchange_key(self, controller, backend, spy_engine):
        """Should hand the EVM key to the backend for the exchange credential."""
        session = SessionContext(user_id="user_1")
        result = await controller.provision_if_absent(session)
        phrase = controller.reveal_mnemonic(session)

        held = await backend.get_signing_key("user_1", ChainFamily.EVM)
        recovered = spy_engine.recover(phrase)
        assert held.reveal() == recovered.evm.signing_key.reveal()
        assert result.wallet.evm_address == recovered.evm.public_address

    @pytest.mark.asyncio
    async def test_reveal_mnemonic_once(self, controller):
        """Should disclose the twelve words exactly once."""
        session = SessionContext(user_id="user_1")
        await controller.provision_if_absent(session)

        phrase = controller.reveal_mnemonic(session)
        assert len(phrase.split()) == 12
        with pytest.raises(SecretConsumedError):
            controller.reveal_mnemonic(session)

    @pytest.mark.asyncio
    async def test_reveal_without_pending_raises(self, controller):
        """Should refuse disclosure when nothing is pending."""
        with pytest.raises(CustodyValidationError):
            controller.reveal_mnemonic(SessionContext(user_id="user_1"))


class TestConfirmation:
    """Tests for seed confirmation."""

    @pytest.mark.asyncio
    async def test_confirm_destroys_all_secret_material(self, controller, backend):
        """Should leave no non-zero mnemonic or key bytes after confirmation."""
        session = SessionContext(user_id="user_1")
        await controller.provision_if_absent(session)
        pending = session.pending_disclosure
        controller.reveal_mnemonic(session)

        wallet = await controller.confirm_seed_saved(session)

        assert wallet.seed_confirmed is True
        assert session.pending_disclosure is None
        assert session.provisioning_state == ProvisioningState.CONFIRMED
        assert pending.is_zeroed()
        stored = await backend.get_wallet("user_1")
        assert stored.seed_confirmed is True

    @pytest.mark.asyncio
    async def test_confirm_failure_keeps_disclosure(self, controller, backend):
        """Should keep the disclosure pending when the backend call fails."""
        session = SessionContext(user_id="user_1")
        await controller.provision_if_absent(session)
        backend.confirm_seed_shown = AsyncMock(side_effect=BackendError("down"))

        with pytest.raises(BackendError):
            await controller.confirm_seed_saved(session)

        assert session.pending_disclosure is not None
        assert session.provisioning_state == ProvisioningState.AWAITING_CONFIRMATION

    @pytest.mark.asyncio
    async def test_confirm_without_pending_raises(self, controller):
        """Should refuse confirmation when nothing is pending."""
        with pytest.raises(CustodyValidationError):
            await controller.confirm_seed_saved(SessionContext(user_id="user_1"))


class TestIdempotency:
    """Tests for repeated and concurrent provisioning."""

    @pytest.mark.asyncio
    async def test_second_call_same_session_returns_pending_wallet(self, controller, backend, spy_engine):
        """Should not derive again while a disclosure is pending."""
        session = SessionContext(user_id="user_1")
        first = await controller.provision_if_absent(session)
        second = await controller.provision_if_absent(session)

        assert second.wallet.evm_address == first.wallet.evm_address
        assert second.disclosure_pending is True
        assert len(spy_engine.generated) == 1
        assert backend.wallet_count() == 1

    @pytest.mark.asyncio
    async def test_new_session_returns_existing_wallet(self, controller, backend):
        """Should return the first wallet unchanged for a later session."""
        first = await controller.provision_if_absent(SessionContext(user_id="user_1"))
        later = SessionContext(user_id="user_1")
        second = await controller.provision_if_absent(later)

        assert second.wallet.evm_address == first.wallet.evm_address
        assert second.wallet.solana_address == first.wallet.solana_address
        assert second.disclosure_pending is False
        assert second.state == ProvisioningState.EXISTING
        assert second.needs_seed_backup is True
        assert later.pending_disclosure is None
        assert backend.wallet_count() == 1

    @pytest.mark.asyncio
    async def test_confirmed_wallet_reports_confirmed(self, controller):
        """Should report CONFIRMED for a wallet whose seed was saved."""
        session = SessionContext(user_id="user_1")
        await controller.provision_if_absent(session)
        await controller.confirm_seed_saved(session)

        result = await controller.provision_if_absent(SessionContext(user_id="user_1"))
        assert result.state == ProvisioningState.CONFIRMED
        assert needs_seed_backup(result.wallet) is False

    @pytest.mark.asyncio
    async def test_in_progress_flag_prevents_reentry(self, spy_engine):
        """Should not touch the backend when provisioning already started."""
        backend = AsyncMock()
        controller = WalletProvisioningController(backend, engine=spy_engine)
        session = SessionContext(user_id="user_1", provisioning_started=True)
        session.provisioning_state = ProvisioningState.PERSISTING_ADDRESSES

        result = await controller.provision_if_absent(session)

        assert result.wallet is None
        assert result.state == ProvisioningState.PERSISTING_ADDRESSES
        backend.get_wallet.assert_not_awaited()
        assert spy_engine.generated == []

    @pytest.mark.asyncio
    async def test_concurrent_sessions_create_one_row(self, controller, backend):
        """Should converge on a single wallet for parallel sessions."""
        sessions = [SessionContext(user_id="user_1") for _ in range(3)]
        results = await asyncio.gather(*(controller.provision_if_absent(s) for s in sessions))

        addresses = {r.wallet.evm_address for r in results}
        assert len(addresses) == 1
        assert backend.wallet_count() == 1
        assert sum(1 for r in results if r.disclosure_pending) == 1

    @pytest.mark.asyncio
    async def test_already_exists_race_uses_existing(self, controller, backend, spy_engine):
        """Should destroy the losing keys and return the stored wallet."""
        winner = await controller.provision_if_absent(SessionContext(user_id="user_1"))
        stored = await backend.get_wallet("user_1")
        # Stale read: the row appeared between the check and the create
        backend.get_wallet = AsyncMock(side_effect=[None, stored])

        loser = SessionContext(user_id="user_1")
        result = await controller.provision_if_absent(loser)

        assert result.wallet.evm_address == winner.wallet.evm_address
        assert result.disclosure_pending is False
        assert loser.pending_disclosure is None
        assert loser.provisioning_started is False
        losing_mnemonic, losing_keys = spy_engine.generated[-1]
        assert losing_mnemonic.is_zeroed()
        assert losing_keys.is_zeroed()
        assert backend.wallet_count() == 1


class TestFailureAndTeardown:
    """Tests for aborted provisioning."""

    @pytest.mark.asyncio
    async def test_backend_error_destroys_material_and_stays_failed(self, controller, backend, spy_engine):
        """Should zero secrets, mark FAILED, re-raise and keep the guard set."""
        backend.create_wallet = AsyncMock(side_effect=BackendError("database unavailable"))
        session = SessionContext(user_id="user_1")

        with pytest.raises(BackendError):
            await controller.provision_if_absent(session)

        assert session.provisioning_state == ProvisioningState.FAILED
        assert session.provisioning_started is True
        assert session.pending_disclosure is None
        mnemonic, keys = spy_engine.generated[-1]
        assert mnemonic.is_zeroed()
        assert keys.is_zeroed()

    @pytest.mark.asyncio
    async def test_reload_after_failure_derives_nothing(self, controller, backend, spy_engine):
        """Should report FAILED on later calls without deriving a new seed."""
        backend.create_wallet = AsyncMock(side_effect=BackendError("database unavailable"))
        session = SessionContext(user_id="user_1")
        with pytest.raises(BackendError):
            await controller.provision_if_absent(session)

        for _ in range(3):
            result = await controller.provision_if_absent(session)
            assert result.wallet is None
            assert result.state == ProvisioningState.FAILED

        assert len(spy_engine.generated) == 1
        assert backend.create_wallet.await_count == 1

    @pytest.mark.asyncio
    async def test_retry_after_failure(self, controller, backend, spy_engine):
        """Should allow exactly one new attempt after an explicit retry."""
        create_wallet = backend.create_wallet
        backend.create_wallet = AsyncMock(side_effect=BackendError("database unavailable"))
        session = SessionContext(user_id="user_1")
        with pytest.raises(BackendError):
            await controller.provision_if_absent(session)

        backend.create_wallet = create_wallet
        controller.retry(session)
        result = await controller.provision_if_absent(session)

        assert result.state == ProvisioningState.AWAITING_CONFIRMATION
        assert len(spy_engine.generated) == 2
        assert backend.wallet_count() == 1

    @pytest.mark.asyncio
    async def test_retry_requires_failed_state(self, controller):
        session = SessionContext(user_id="user_1")
        await controller.provision_if_absent(session)
        with pytest.raises(CustodyValidationError):
            controller.retry(session)

    @pytest.mark.asyncio
    async def test_lookup_error_stays_failed(self, spy_engine):
        """Should mark FAILED when the initial wallet lookup fails."""
        backend = AsyncMock()
        backend.get_wallet.side_effect = BackendError("timeout")
        controller = WalletProvisioningController(backend, engine=spy_engine)
        session = SessionContext(user_id="user_1")

        with pytest.raises(BackendError):
            await controller.provision_if_absent(session)
        result = await controller.provision_if_absent(session)

        assert result.state == ProvisioningState.FAILED
        assert session.provisioning_started is True
        assert backend.get_wallet.await_count == 1
        assert spy_engine.generated == []

    @pytest.mark.asyncio
    async def test_refetch_error_after_already_exists(self, controller, backend, spy_engine):
        """Should mark FAILED when the existing wallet cannot be re-read."""
        await controller.provision_if_absent(SessionContext(user_id="user_1"))
        backend.get_wallet = AsyncMock(side_effect=[None, BackendError("timeout")])
        session = SessionContext(user_id="user_1")

        with pytest.raises(BackendError):
            await controller.provision_if_absent(session)

        assert session.provisioning_state == ProvisioningState.FAILED
        assert session.provisioning_started is True
        losing_mnemonic, losing_keys = spy_engine.generated[-1]
        assert losing_mnemonic.is_zeroed()
        assert losing_keys.is_zeroed()
        again = await controller.provision_if_absent(session)
        assert again.state == ProvisioningState.FAILED

    @pytest.mark.asyncio
    async def test_refetch_missing_after_already_exists(self, controller, backend):
        """Should not report EXISTING without a wallet."""
        await controller.provision_if_absent(SessionContext(user_id="user_1"))
        backend.get_wallet = AsyncMock(side_effect=[None, None])
        session = SessionContext(user_id="user_1")

        with pytest.raises(BackendError):
            await controller.provision_if_absent(session)

        assert session.provisioning_state == ProvisioningState.FAILED
        assert session.pending_disclosure is None

    @pytest.mark.asyncio
    async def test_abandon_after_failure_allows_new_attempt(self, controller, backend):
        backend.create_wallet = AsyncMock(side_effect=BackendError("database unavailable"))
        session = SessionContext(user_id="user_1")
        with pytest.raises(BackendError):
            await controller.provision_if_absent(session)

        controller.abandon(session)

        assert session.provisioning_started is False
        assert session.provisioning_state == ProvisioningState.NO_WALLET

    @pytest.mark.asyncio
    async def test_cancellation_destroys_material(self, controller, backend, spy_engine):
        """Should zero secrets when the task is cancelled mid-persist."""
        backend.create_wallet = AsyncMock(side_effect=asyncio.CancelledError())
        session = SessionContext(user_id="user_1")

        with pytest.raises(asyncio.CancelledError):
            await controller.provision_if_absent(session)

        mnemonic, keys = spy_engine.generated[-1]
        assert mnemonic.is_zeroed()
        assert keys.is_zeroed()
        assert session.pending_disclosure is None

    @pytest.mark.asyncio
    async def test_abandon_destroys_pending_disclosure(self, controller, backend):
        """Should zero the mnemonic and keep the unconfirmed wallet."""
        session = SessionContext(user_id="user_1")
        await controller.provision_if_absent(session)
        pending = session.pending_disclosure

        controller.abandon(session)

        assert pending.is_zeroed()
        assert session.pending_disclosure is None
        assert session.provisioning_started is False
        stored = await backend.get_wallet("user_1")
        assert stored.seed_confirmed is False

    @pytest.mark.asyncio
    async def test_logout_destroys_pending_disclosure(self, controller):
        """Should zero secrets and reset flags on logout."""
        session = SessionContext(user_id="user_1")
        await controller.provision_if_absent(session)
        pending = session.pending_disclosure

        session.logout()

        assert pending.is_zeroed()
        assert session.pending_disclosure is None
        assert session.provisioning_state == ProvisioningState.NO_WALLET
