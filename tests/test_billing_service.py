"""
Unit tests for the billing ledger view and billing service.
"""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from core.exceptions import MalformedRecordError, StorageServiceError
from models.records import BillingTransaction, DiplomaRecord, RevenueRecord
from services.billing_service import BillingLedgerView, BillingService
from services.storage_service import StorageService


@pytest.fixture
def ledger_storage():
    storage = MagicMock(spec=StorageService)
    storage.get_balance.return_value = Decimal("120.5")
    storage.list_transactions.return_value = [
        BillingTransaction(
            id="t2", school_id="school-1", date="2026-02-01", amount=Decimal("-12.50"),
            description="10 diplomas", status="completed",
        ),
        BillingTransaction(
            id="t1", school_id="school-1", date="2026-01-01", amount=Decimal("100"),
            description="Top-up", status="completed",
        ),
    ]
    return storage


class TestBillingLedgerView:

    def test_empty_before_first_refresh(self, ledger_storage):
        snapshot = BillingLedgerView(ledger_storage, "school-1").snapshot

        assert snapshot.balance_loaded is False
        assert snapshot.transactions == ()
        assert snapshot.refreshed_at is None

    def test_refresh_loads_both_datasets(self, ledger_storage):
        snapshot = BillingLedgerView(ledger_storage, "school-1").refresh()

        assert snapshot.balance == Decimal("120.5")
        assert [t.id for t in snapshot.transactions] == ["t2", "t1"]
        assert snapshot.is_stale is False
        assert snapshot.to_dict()["balance"] == "120.50"

    def test_balance_is_stored_value_not_sum_of_history(self, ledger_storage):
        snapshot = BillingLedgerView(ledger_storage, "school-1").refresh()

        assert snapshot.balance != sum(t.amount for t in snapshot.transactions)

    def test_failed_history_keeps_previous_history(self, ledger_storage):
        view = BillingLedgerView(ledger_storage, "school-1")
        view.refresh()
        ledger_storage.list_transactions.side_effect = StorageServiceError("timeout")
        ledger_storage.get_balance.return_value = Decimal("99")

        snapshot = view.refresh()

        assert snapshot.balance == Decimal("99")
        assert [t.id for t in snapshot.transactions] == ["t2", "t1"]
        assert snapshot.transactions_error == "Failed to load billing history. Please try again."
        assert snapshot.balance_error is None
        assert snapshot.is_stale is True

    def test_failed_balance_keeps_previous_balance(self, ledger_storage):
        view = BillingLedgerView(ledger_storage, "school-1")
        view.refresh()
        ledger_storage.get_balance.side_effect = MalformedRecordError("school_profiles", ["balance"])

        snapshot = view.refresh()

        assert snapshot.balance == Decimal("120.5")
        assert snapshot.balance_error == "Failed to load balance. Please try again."
        assert snapshot.transactions_error is None

    def test_first_refresh_failure_leaves_dataset_unloaded(self, ledger_storage):
        ledger_storage.list_transactions.side_effect = StorageServiceError("timeout")

        snapshot = BillingLedgerView(ledger_storage, "school-1").refresh()

        assert snapshot.transactions_loaded is False
        assert snapshot.balance_loaded is True

    def test_rebind_uses_new_storage(self, ledger_storage):
        view = BillingLedgerView(MagicMock(spec=StorageService), "school-1")
        view.rebind(ledger_storage)

        assert view.refresh().balance == Decimal("120.5")


class TestBillingService:

    def test_quote_counts_prior_diplomas(self, storage, price_config):
        storage.count_diplomas.return_value = 95

        quote = BillingService().quote(storage, "school-1", 10)

        assert quote.billable_storage_units == 5
        storage.count_diplomas.assert_called_once_with("school-1")

    def test_quote_falls_back_when_config_missing(self, storage):
        storage.get_price_config.return_value = None

        quote = BillingService(default_unit_network_fee=Decimal("0.75")).quote(storage, "school-1", 2)

        assert quote.is_default_pricing is True
        assert quote.total == Decimal("1.50")

    def test_school_stats(self, storage):
        storage.count_diplomas.side_effect = lambda school_id, with_ipfs_only=False: 4 if with_ipfs_only else 5
        storage.count_students.return_value = 12
        storage.list_revenue_records.return_value = [
            RevenueRecord("school-1", "network_fee", Decimal("0.5")),
            RevenueRecord("school-1", "storage_fee", Decimal("0.01")),
        ]

        stats = BillingService().school_stats(storage, "school-1")

        assert stats == {
            "total_issued": 5,
            "ipfs_stored": 4,
            "total_revenue": "0.51",
            "total_students": 12,
        }

    def test_recent_diplomas(self, storage):
        storage.list_diplomas.return_value = [
            DiplomaRecord(school_id="school-1", student_id="s1", ipfs_hash="Qm", transaction_hash="tx")
        ]

        recent = BillingService().recent_diplomas(storage, "school-1", limit=3)

        assert len(recent) == 1
        storage.list_diplomas.assert_called_once_with("school-1", limit=3)
