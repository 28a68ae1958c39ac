"""
Billing ledger read-model.

LedgerSnapshot mirrors the frozen-snapshot pattern used for background
refreshes: the view builds a new snapshot on every refresh and swaps it in,
so readers never see a half-updated ledger.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from .pricing import format_money
from .records import BillingTransaction


@dataclass(frozen=True)
class LedgerSnapshot:
    """
    Balance and transaction history of one school.

    Each dataset has its own error slot. A dataset survives a failed
    refresh: the previous value stays and the error is recorded next to it.
    """

    school_id: str
    balance: Optional[Decimal] = None
    balance_error: Optional[str] = None
    transactions: Tuple[BillingTransaction, ...] = field(default_factory=tuple)
    transactions_loaded: bool = False
    transactions_error: Optional[str] = None
    refreshed_at: Optional[datetime] = None

    @classmethod
    def empty(cls, school_id: str) -> "LedgerSnapshot":
        return cls(school_id=school_id)

    @property
    def balance_loaded(self) -> bool:
        return self.balance is not None

    @property
    def is_stale(self) -> bool:
        """True when either fetch failed on the last refresh."""
        return self.balance_error is not None or self.transactions_error is not None

    @property
    def age_seconds(self) -> Optional[float]:
        if self.refreshed_at is None:
            return None
        return (datetime.now(timezone.utc) - self.refreshed_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "school_id": self.school_id,
            "balance": format_money(self.balance) if self.balance is not None else None,
            "balance_error": self.balance_error,
            "transactions": [t.to_dict() for t in self.transactions],
            "transactions_loaded": self.transactions_loaded,
            "transactions_error": self.transactions_error,
            "refreshed_at": self.refreshed_at.isoformat() if self.refreshed_at else None,
        }
