"""
Billing read-models and fee quotes.

BillingLedgerView combines the school's stored balance with its transaction
history. The balance is the authoritative figure; transactions are only an
audit trail and are never summed into it.

Each refresh re-issues both fetches independently. If one of them fails the
previously loaded dataset is kept and the error is recorded next to it, so
one failing fetch never hides the other dataset.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from core.exceptions import ExternalServiceError, MalformedRecordError, StorageServiceError
from models.ledger import LedgerSnapshot
from models.pricing import FeeQuote, PriceConfig, format_money
from models.records import DiplomaRecord
from modules.fee_calculator import DEFAULT_NETWORK_FEE_PER_DIPLOMA, calculate_fees
from logging_config import get_logger

from .storage_service import StorageService


LEDGER_FETCH_ERRORS = (ExternalServiceError, MalformedRecordError)


class BillingLedgerView:
    """
    Refreshable balance + history for one school.

    Thread Safety:
        The current snapshot is frozen and swapped atomically under
        ``_lock``; readers always see a complete snapshot.
    """

    def __init__(self, storage: StorageService, school_id: str, logger: Optional[logging.Logger] = None):
        self._storage = storage
        self.school_id = school_id
        self._logger = logger or get_logger(__name__)
        self._lock = threading.Lock()
        self._snapshot = LedgerSnapshot.empty(school_id)

    @property
    def snapshot(self) -> LedgerSnapshot:
        with self._lock:
            return self._snapshot

    def rebind(self, storage: StorageService) -> None:
        """Use a new session-scoped storage service (tokens refreshed)."""
        self._storage = storage

    def refresh(self) -> LedgerSnapshot:
        """Re-issue both fetches and publish a new snapshot."""
        previous = self.snapshot

        balance = previous.balance
        balance_error = None
        try:
            balance = self._storage.get_balance(self.school_id)
        except LEDGER_FETCH_ERRORS as e:
            self._logger.warning(f"Balance fetch failed for school {self.school_id}: {e}")
            balance_error = "Failed to load balance. Please try again."

        transactions = previous.transactions
        transactions_loaded = previous.transactions_loaded
        transactions_error = None
        try:
            transactions = tuple(self._storage.list_transactions(self.school_id))
            transactions_loaded = True
        except LEDGER_FETCH_ERRORS as e:
            self._logger.warning(f"Transaction history fetch failed for school {self.school_id}: {e}")
            transactions_error = "Failed to load billing history. Please try again."

        snapshot = replace(
            previous,
            balance=balance,
            balance_error=balance_error,
            transactions=transactions,
            transactions_loaded=transactions_loaded,
            transactions_error=transactions_error,
            refreshed_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._snapshot = snapshot
        return snapshot


class BillingService:
    """Fee quotes and dashboard figures for a school."""

    def __init__(
        self,
        default_unit_network_fee: Decimal = DEFAULT_NETWORK_FEE_PER_DIPLOMA,
        logger: Optional[logging.Logger] = None,
    ):
        self._default_unit_network_fee = default_unit_network_fee
        self._logger = logger or get_logger(__name__)

    def quote(self, storage: StorageService, school_id: str, quantity: int) -> FeeQuote:
        """
        Fees for issuing ``quantity`` more diplomas.

        Raises:
            ValidationError: quantity < 1
            StorageServiceError: Issued count unavailable
        """
        prior = storage.count_diplomas(school_id)
        return calculate_fees(prior, quantity, self._price_config(storage), self._default_unit_network_fee)

    def _price_config(self, storage: StorageService) -> Optional[PriceConfig]:
        try:
            return storage.get_price_config()
        except (StorageServiceError, MalformedRecordError) as e:
            self._logger.warning(f"Price configuration unavailable, falling back to defaults: {e}")
            return None

    def school_stats(self, storage: StorageService, school_id: str) -> Dict[str, Any]:
        """Dashboard totals: diplomas issued, pinned on IPFS, revenue and students."""
        revenue = sum((r.amount for r in storage.list_revenue_records(school_id)), Decimal(0))
        return {
            "total_issued": storage.count_diplomas(school_id),
            "ipfs_stored": storage.count_diplomas(school_id, with_ipfs_only=True),
            "total_revenue": format_money(revenue),
            "total_students": storage.count_students(),
        }

    def recent_diplomas(self, storage: StorageService, school_id: str, limit: int = 5) -> List[DiplomaRecord]:
        return storage.list_diplomas(school_id, limit=limit)
