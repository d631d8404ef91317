"""Numora embedded wallet custody and multi-chain withdrawals."""
from .config import CustodySettings, load_settings
from .exceptions import CustodyException
from .executor import WithdrawalExecutor
from .fees import FeeEstimator, max_sendable, total_cost_by_currency
from .keys import KeyDerivationEngine
from .models import (
    ApiCredentialStatus,
    ChainFamily,
    EmbeddedWallet,
    GasEstimate,
    TransactionResult,
    TransactionStatus,
    WithdrawalRequest,
)
from .provisioning import WalletProvisioningController
from .renewal import CredentialRenewalController, expiration_summary
from .service import CustodyService
from .session import ProvisioningState, SessionContext

__version__ = "0.1.0"

__all__ = [
    "CustodySettings",
    "load_settings",
    "CustodyException",
    "WithdrawalExecutor",
    "FeeEstimator",
    "max_sendable",
    "total_cost_by_currency",
    "KeyDerivationEngine",
    "ApiCredentialStatus",
    "ChainFamily",
    "EmbeddedWallet",
    "GasEstimate",
    "TransactionResult",
    "TransactionStatus",
    "WithdrawalRequest",
    "WalletProvisioningController",
    "CredentialRenewalController",
    "expiration_summary",
    "CustodyService",
    "ProvisioningState",
    "SessionContext",
]
