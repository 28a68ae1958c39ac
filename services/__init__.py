"""
Services layer for DiplomaIssuerWeb.

This module contains the business logic services:
- StorageService: Typed access to the relational storage collaborator
- AuthService / AuthGate: Sign-in flows and the per-session context
- IssuanceWorkflow: Diploma issuance state machine
- IssuanceService: Mint threads (one per batch)
- BillingService / BillingLedgerView: Fee quotes, stats, balance + history
- SessionRegistry: Per-browser server-side state

Thread Model:
    Main Thread (Flask request threads)
    ├── SessionResolve threads (one per cached-session check, bounded)
    └── Mint threads (one per started batch)
"""

from .storage_service import StorageService
from .auth_service import AuthService, AuthEvent, AuthChange, SignUpResult
from .auth_gate import AuthGate
from .minting import PolicyService, DiplomaMinter
from .issuance_workflow import IssuanceWorkflow
from .issuance_service import IssuanceService
from .billing_service import BillingService, BillingLedgerView
from .session_registry import SessionRegistry, SessionState

__all__ = [
    "StorageService",
    "AuthService",
    "AuthEvent",
    "AuthChange",
    "SignUpResult",
    "AuthGate",
    "PolicyService",
    "DiplomaMinter",
    "IssuanceWorkflow",
    "IssuanceService",
    "BillingService",
    "BillingLedgerView",
    "SessionRegistry",
    "SessionState",
]
