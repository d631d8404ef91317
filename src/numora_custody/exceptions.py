"""Unified exception hierarchy for Numora custody.

All custody exceptions inherit from CustodyException, enabling:
- Consistent error handling across the wallet, fee and withdrawal layers
- HTTP status code mapping for whatever API surface wraps this package
- Structured error responses with machine-readable error codes

Usage:
    from numora_custody.exceptions import (
        CustodyException,
        InsufficientBalanceError,
        BroadcastRejectedError,
    )

    try:
        result = await executor.send(request, signing_key)
    except BroadcastRejectedError as e:
        return e.to_dict()

Note that a transaction which was accepted by the network and later reverted
is never reported through an exception. It is reported as the terminal
``TransactionStatus.FAILED`` value of a status poll.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


class CustodyException(Exception):
    """Base exception for all custody errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code (e.g., "VALIDATION_ERROR")
        details: Optional additional context
    """

    error_code: str = "CUSTODY_ERROR"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response format."""
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Validation & Input Errors (4xx)
# =============================================================================

class CustodyValidationError(CustodyException):
    """Invalid input data or parameters."""

    error_code = "VALIDATION_ERROR"
    http_status = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details=details)


class InvalidMnemonicError(CustodyValidationError):
    """Seed phrase failed BIP-39 word list or checksum validation."""

    error_code = "INVALID_MNEMONIC"

    def __init__(self, message: str = "Seed phrase is not a valid BIP-39 mnemonic") -> None:
        # Never echo the phrase back, not even partially
        super().__init__(message, field="mnemonic")


class InvalidRecipientAddressError(CustodyValidationError):
    """Recipient does not parse under the chain's address grammar."""

    error_code = "INVALID_RECIPIENT_ADDRESS"

    def __init__(
        self,
        address: str,
        chain: str,
        reason: Optional[str] = None,
    ) -> None:
        message = reason or f"'{address}' is not a valid {chain} address"
        super().__init__(
            message,
            field="recipient_address",
            details={"address": address, "chain": chain},
        )


class InsufficientBalanceError(CustodyValidationError):
    """Amount plus same-token fees exceeds the available balance."""

    error_code = "INSUFFICIENT_BALANCE"

    def __init__(
        self,
        message: str,
        available: Optional[str] = None,
        required: Optional[str] = None,
        token: Optional[str] = None,
        chain: Optional[str] = None,
    ) -> None:
        details: dict[str, Any] = {}
        if available:
            details["available"] = available
        if required:
            details["required"] = required
        if token:
            details["token"] = token
        if chain:
            details["chain"] = chain
        super().__init__(message, field="amount", details=details)


class UnsupportedChainError(CustodyValidationError):
    """Chain or token is not configured for withdrawals."""

    error_code = "UNSUPPORTED_CHAIN"

    def __init__(self, chain: str, token: Optional[str] = None) -> None:
        if token:
            message = f"Token {token} is not supported on {chain}"
        else:
            message = f"Unknown chain: {chain}"
        details: dict[str, Any] = {"chain": chain}
        if token:
            details["token"] = token
        super().__init__(message, field="chain", details=details)


# =============================================================================
# Wallet & Secret Lifecycle Errors
# =============================================================================

class WalletAlreadyExistsError(CustodyException):
    """The persistence layer already holds an embedded wallet for this user.

    Recoverable and never user-facing: provisioning converts it into the
    "use existing wallet" path.
    """

    error_code = "WALLET_ALREADY_EXISTS"
    http_status = 409

    def __init__(self, user_id: str) -> None:
        super().__init__(
            f"Embedded wallets already exist for user {user_id}",
            details={"user_id": user_id},
        )


class SecretConsumedError(CustodyException):
    """Secret material was already disclosed or destroyed."""

    error_code = "SECRET_CONSUMED"
    http_status = 410


class SigningKeyUnavailableError(CustodyException):
    """No signing key is held for the requested user and chain family."""

    error_code = "SIGNING_KEY_UNAVAILABLE"
    http_status = 404

    def __init__(self, user_id: str, family: str) -> None:
        super().__init__(
            f"No signing key held for user {user_id} ({family})",
            details={"user_id": user_id, "family": family},
        )


# =============================================================================
# Chain & Transaction Errors
# =============================================================================

class CustodyChainError(CustodyException):
    """Base class for blockchain-related errors."""

    error_code = "CHAIN_ERROR"
    http_status = 502

    def __init__(
        self,
        message: str,
        chain: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if chain:
            details["chain"] = chain
        super().__init__(message, details=details)


class RPCError(CustodyChainError):
    """JSON-RPC call to a node or exchange endpoint failed."""

    error_code = "RPC_ERROR"

    def __init__(
        self,
        message: str,
        chain: Optional[str] = None,
        method: Optional[str] = None,
        rpc_error: Optional[Any] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if method:
            details["method"] = method
        if rpc_error is not None:
            details["rpc_error"] = rpc_error
        super().__init__(message, chain=chain, details=details)
        self.method = method
        self.rpc_error = rpc_error


class FeeEstimationFailedError(CustodyChainError):
    """Fee market or fee-for-message lookup failed."""

    error_code = "FEE_ESTIMATION_FAILED"
    http_status = 503


class BroadcastRejectedError(CustodyChainError):
    """The node refused the signed transaction.

    The node's message is preserved verbatim since it is usually actionable
    (e.g. "insufficient funds for gas * price + value").
    """

    error_code = "BROADCAST_REJECTED"

    @classmethod
    def from_rpc_error(cls, error: RPCError, chain: str) -> "BroadcastRejectedError":
        details = {k: v for k, v in error.details.items() if k != "chain"}
        return cls(error.message, chain=chain, details=details)


class WithdrawalInProgressError(CustodyException):
    """Another send from the same source account is still in flight."""

    error_code = "WITHDRAWAL_IN_PROGRESS"
    http_status = 409

    def __init__(self, chain: str, source_address: str) -> None:
        super().__init__(
            f"A withdrawal from {source_address} on {chain} is already in flight",
            details={"chain": chain, "source_address": source_address},
        )


# =============================================================================
# Credential & Infrastructure Errors
# =============================================================================

class CredentialRenewalFailedError(CustodyException):
    """Exchange refused or failed to renew the trading credential.

    Never surfaced to end users synchronously; the renewal controller logs it
    and arms its retry cooldown.
    """

    error_code = "CREDENTIAL_RENEWAL_FAILED"
    http_status = 502


class BackendError(CustodyException):
    """Persistence layer request failed."""

    error_code = "BACKEND_ERROR"
    http_status = 503

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if operation:
            details["operation"] = operation
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, details=details)


class ConfigurationError(CustodyException):
    """Service configuration error."""

    error_code = "CONFIGURATION_ERROR"
    http_status = 500


__all__ = [
    "CustodyException",
    "CustodyValidationError",
    "InvalidMnemonicError",
    "InvalidRecipientAddressError",
    "InsufficientBalanceError",
    "UnsupportedChainError",
    "WalletAlreadyExistsError",
    "SecretConsumedError",
    "SigningKeyUnavailableError",
    "CustodyChainError",
    "RPCError",
    "FeeEstimationFailedError",
    "BroadcastRejectedError",
    "WithdrawalInProgressError",
    "CredentialRenewalFailedError",
    "BackendError",
    "ConfigurationError",
]
