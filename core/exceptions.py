"""
Custom exceptions for DiplomaIssuerWeb.

Exception Hierarchy:
    DiplomaIssuerError (base)
    ├── ConfigurationError        - Required setting missing (startup / first use)
    ├── ValidationError           - Bad user input (batch size, recipients, asset)
    ├── InvalidTransitionError    - Workflow operation not allowed in current state
    ├── PreconditionError         - Checked before any network side effect
    │   ├── WalletNotConnectedError
    │   └── InsufficientFundsError
    ├── ConcurrencyError          - Mint already in flight for this batch
    ├── ConfirmationTimeoutError  - Mint submitted but not seen on chain (non-fatal)
    ├── MalformedRecordError      - Storage returned a record we cannot use
    └── ExternalServiceError      - A collaborator failed
        ├── AuthServiceError
        │   ├── InvalidCredentialsError
        │   └── DuplicateEmailError
        ├── StorageServiceError
        ├── WalletServiceError
        ├── ContentStorageError
        └── ChainServiceError

Usage:
    ValidationError and PreconditionError are raised before any external
    call and become actionable user messages. ExternalServiceError aborts a
    batch from the failing recipient onward. ConfirmationTimeoutError is
    downgraded to a warning by the issuance workflow.
"""

from typing import Optional, Dict, Any


class DiplomaIssuerError(Exception):
    """
    Base exception for all DiplomaIssuerWeb errors.

    All custom exceptions inherit from this class, allowing callers to catch
    all application-specific errors with a single except clause if needed.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional context for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# STARTUP ERRORS
# =============================================================================

class ConfigurationError(DiplomaIssuerError):
    """
    A required setting is missing or malformed.

    Missing Supabase settings stop the application at startup. Missing
    Blockfrost settings are only fatal for the feature that needs them.
    """

    def __init__(self, setting: str, message: Optional[str] = None):
        message = message or f"{setting} is not configured"
        details = {
            "setting": setting,
            "resolution": f"Set {setting} in the environment or .env file"
        }
        super().__init__(message, details)
        self.setting = setting


# =============================================================================
# USER ERRORS - raised before any network call
# =============================================================================

class ValidationError(DiplomaIssuerError):
    """Invalid input: bad batch size, no recipients, no asset chosen, unreadable image."""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(message, details)
        self.field = field


class InvalidTransitionError(DiplomaIssuerError):
    """The requested workflow operation is not allowed in the current state."""

    def __init__(self, operation: str, state: str):
        message = f"Cannot {operation} while the issuance is in state {state}"
        super().__init__(message, {"operation": operation, "state": state})
        self.operation = operation
        self.state = state


class PreconditionError(DiplomaIssuerError):
    """
    A precondition for minting is not met.

    These are checks, not retryable steps: the user has to act (connect a
    wallet, fund it) before trying again.
    """


class WalletNotConnectedError(PreconditionError):
    """No wallet is connected for this session."""

    def __init__(self, message: str = "Please connect your wallet before minting."):
        super().__init__(message, {"resolution": "Connect the school wallet and retry"})


class InsufficientFundsError(PreconditionError):
    """The wallet balance is below the configured minimum for minting."""

    def __init__(self, balance_lovelace: int, minimum_lovelace: int):
        balance_ada = balance_lovelace / 1_000_000
        minimum_ada = minimum_lovelace / 1_000_000
        message = (
            f"Insufficient funds: wallet holds {balance_ada:.2f} ADA, "
            f"minimum {minimum_ada:.2f} ADA required for minting"
        )
        details = {
            "balance_lovelace": balance_lovelace,
            "minimum_lovelace": minimum_lovelace,
            "resolution": "Fund the wallet with ADA and retry"
        }
        super().__init__(message, details)
        self.balance_lovelace = balance_lovelace
        self.minimum_lovelace = minimum_lovelace


class ConcurrencyError(DiplomaIssuerError):
    """A mint operation is already in flight for this batch."""

    def __init__(self, batch_id: Optional[str] = None):
        message = "A mint is already in progress for this batch"
        details = {"batch_id": batch_id} if batch_id else {}
        super().__init__(message, details)
        self.batch_id = batch_id


# =============================================================================
# RUNTIME ERRORS - collaborators
# =============================================================================

class ConfirmationTimeoutError(DiplomaIssuerError):
    """
    A submitted transaction was not seen on chain within the polling budget.

    The mint may still confirm later out-of-band. Callers treat this as a
    warning, never as a batch failure.
    """

    def __init__(self, tx_hash: str, attempts: int, interval_seconds: float):
        message = (
            f"Transaction {tx_hash} not confirmed after {attempts} attempts "
            f"({interval_seconds:.1f}s apart)"
        )
        details = {
            "tx_hash": tx_hash,
            "attempts": attempts,
            "resolution": "The transaction may still confirm - check a Cardano explorer later."
        }
        super().__init__(message, details)
        self.tx_hash = tx_hash
        self.attempts = attempts


class MalformedRecordError(DiplomaIssuerError):
    """A record returned by the storage collaborator is missing required fields."""

    def __init__(self, collection: str, missing: list, record: Optional[Dict[str, Any]] = None):
        message = f"Malformed {collection} record: missing {', '.join(missing)}"
        details = {"collection": collection, "missing": missing}
        if record and "id" in record:
            details["record_id"] = record["id"]
        super().__init__(message, details)
        self.collection = collection
        self.missing = missing


class ExternalServiceError(DiplomaIssuerError):
    """Base class for failures of an external collaborator."""

    service = "external"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        error_details = details or {}
        error_details["service"] = self.service
        if status_code is not None:
            error_details["status_code"] = status_code
        super().__init__(message, error_details)
        self.status_code = status_code


class AuthServiceError(ExternalServiceError):
    """Authentication collaborator failed (network or unexpected response)."""

    service = "auth"


class InvalidCredentialsError(AuthServiceError):
    """Email/password pair rejected."""

    def __init__(self, message: str = "Invalid email or password", status_code: Optional[int] = 400):
        super().__init__(message, status_code)


class DuplicateEmailError(AuthServiceError):
    """Sign-up attempted with an email that is already registered."""

    def __init__(self, email: str, status_code: Optional[int] = 422):
        super().__init__(f"An account already exists for {email}", status_code, {"email": email})
        self.email = email


class StorageServiceError(ExternalServiceError):
    """Relational storage collaborator failed."""

    service = "storage"


class WalletServiceError(ExternalServiceError):
    """Wallet collaborator failed (balance, UTXOs, build, sign or submit)."""

    service = "wallet"


class ContentStorageError(ExternalServiceError):
    """IPFS upload failed."""

    service = "ipfs"


class ChainServiceError(ExternalServiceError):
    """Chain query (transaction lookup) failed."""

    service = "chain"
