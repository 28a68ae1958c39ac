"""
Data models for DiplomaIssuerWeb.

This module contains dataclasses for:
- PriceConfig / FeeQuote: Price table snapshot and derived fees
- Storage records: School, student, diploma, template, policy, billing rows
- IssuanceBatch: In-memory state of one issuance run
- SessionContext: Frozen view of the signed-in session
- LedgerSnapshot: Frozen billing read-model

Thread safety:
- PriceConfig, FeeQuote, SessionContext and LedgerSnapshot are frozen
- IssuanceBatch is only touched under the owning workflow's lock
"""

from .pricing import PriceConfig, FeeQuote, format_money, to_decimal
from .records import (
    SchoolProfile,
    StudentProfile,
    DiplomaRecord,
    DiplomaTemplate,
    MintingPolicy,
    BillingTransaction,
    RevenueRecord,
)
from .issuance import (
    IssuanceState,
    IssuanceBatch,
    IssuedDiploma,
    FailureReason,
    TemplateAsset,
    ImageAsset,
    WorkflowSnapshot,
)
from .session import SessionStatus, SessionContext, SessionTokens, AuthUser
from .ledger import LedgerSnapshot

__all__ = [
    # Pricing
    "PriceConfig",
    "FeeQuote",
    "format_money",
    "to_decimal",
    # Storage records
    "SchoolProfile",
    "StudentProfile",
    "DiplomaRecord",
    "DiplomaTemplate",
    "MintingPolicy",
    "BillingTransaction",
    "RevenueRecord",
    # Issuance
    "IssuanceState",
    "IssuanceBatch",
    "IssuedDiploma",
    "FailureReason",
    "TemplateAsset",
    "ImageAsset",
    "WorkflowSnapshot",
    # Session
    "SessionStatus",
    "SessionContext",
    "SessionTokens",
    "AuthUser",
    # Billing
    "LedgerSnapshot",
]
