"""
Core module for DiplomaIssuerWeb.

Contains fundamental infrastructure components:
- exceptions: Custom exception hierarchy
- supabase_client: Auth + relational storage over HTTP
- blockfrost_client: IPFS uploads and transaction confirmation
- wallet_client: Wallet bridge (balance, build, sign, submit)
"""

from .exceptions import (
    DiplomaIssuerError,
    ConfigurationError,
    ValidationError,
    InvalidTransitionError,
    PreconditionError,
    WalletNotConnectedError,
    InsufficientFundsError,
    ConcurrencyError,
    ConfirmationTimeoutError,
    MalformedRecordError,
    ExternalServiceError,
    AuthServiceError,
    InvalidCredentialsError,
    DuplicateEmailError,
    StorageServiceError,
    WalletServiceError,
    ContentStorageError,
    ChainServiceError,
)
from .supabase_client import SupabaseClient
from .blockfrost_client import BlockfrostClient
from .wallet_client import WalletClient

__all__ = [
    "DiplomaIssuerError",
    "ConfigurationError",
    "ValidationError",
    "InvalidTransitionError",
    "PreconditionError",
    "WalletNotConnectedError",
    "InsufficientFundsError",
    "ConcurrencyError",
    "ConfirmationTimeoutError",
    "MalformedRecordError",
    "ExternalServiceError",
    "AuthServiceError",
    "InvalidCredentialsError",
    "DuplicateEmailError",
    "StorageServiceError",
    "WalletServiceError",
    "ContentStorageError",
    "ChainServiceError",
    "SupabaseClient",
    "BlockfrostClient",
    "WalletClient",
]
