"""
Typed storage boundary.

StorageService turns the loosely-typed rows returned by SupabaseClient into
the dataclasses in ``models``. Nothing above this layer sees a raw row.

Malformed rows:
    - single fetches raise MalformedRecordError
    - list fetches log the bad row and skip it

Diplomas are append-only: this service can create, list and count them,
never update or delete them.

Usage:
    storage = StorageService(supabase_client).for_session(access_token)
    students = storage.list_students()
    issued = storage.count_diplomas(school_id)
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, TypeVar

from core.exceptions import MalformedRecordError, StorageServiceError
from core.supabase_client import SupabaseClient
from models.pricing import PriceConfig, to_decimal
from models.records import (
    BillingTransaction,
    DiplomaRecord,
    DiplomaTemplate,
    MintingPolicy,
    RevenueRecord,
    SchoolProfile,
    StudentProfile,
)
from logging_config import get_logger


T = TypeVar("T")

# Columns a school may change from the settings page
SCHOOL_PROFILE_EDITABLE = ("name", "email", "public_wallet", "website", "logo_url", "address")
STUDENT_PROFILE_EDITABLE = ("full_name", "email", "public_wallet", "student_number", "level", "faculty")


class StorageService:
    """
    Collection-level access to the relational storage collaborator.

    Thread Safety:
        Stateless apart from the client, which is safe to share.
    """

    def __init__(
        self,
        client: SupabaseClient,
        default_base_price: Decimal = Decimal("25.00"),
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the service.

        Args:
            client: Supabase client (anon or session-scoped)
            default_base_price: Base price used when price_config has none
            logger: Logger instance (uses module logger if not provided)
        """
        self._client = client
        self._default_base_price = default_base_price
        self._logger = logger or get_logger(__name__)

    def for_session(self, access_token: Optional[str]) -> "StorageService":
        """Return a service whose calls run under the user's row-level security."""
        return StorageService(
            self._client.for_session(access_token),
            default_base_price=self._default_base_price,
            logger=self._logger,
        )

    # =========================================================================
    # SCHOOL PROFILES
    # =========================================================================

    def get_school_profile_by_user(self, user_id: str) -> Optional[SchoolProfile]:
        """School profile owned by an auth user, or None if there is none."""
        rows = self._client.select("school_profiles", {"user_id": user_id}, limit=1)
        if not rows:
            return None
        return SchoolProfile.from_record(rows[0])

    def create_school_profile(self, user_id: str, name: str, email: str) -> SchoolProfile:
        rows = self._client.insert(
            "school_profiles",
            [{"user_id": user_id, "name": name, "email": email, "kyc_status": "pending"}],
        )
        return SchoolProfile.from_record(self._single(rows, "school_profiles"))

    def update_school_profile(self, school_id: str, values: Dict[str, Any]) -> SchoolProfile:
        """
        Update editable profile columns.

        Unknown keys are dropped; the balance and KYC status are never
        writable from here.
        """
        updates = {k: v for k, v in values.items() if k in SCHOOL_PROFILE_EDITABLE}
        if not updates:
            raise StorageServiceError("No editable school profile fields supplied")
        rows = self._client.update("school_profiles", {"id": school_id}, updates)
        return SchoolProfile.from_record(self._single(rows, "school_profiles"))

    def get_balance(self, school_id: str) -> Decimal:
        """
        Authoritative stored balance of a school.

        A NULL balance column reads as zero.
        """
        rows = self._client.select("school_profiles", {"id": school_id}, columns="id,balance", limit=1)
        row = self._single(rows, "school_profiles")
        balance = row.get("balance")
        if balance is None:
            return Decimal(0)
        try:
            return to_decimal(balance, "balance")
        except ValueError:
            raise MalformedRecordError("school_profiles", ["balance"], row)

    # =========================================================================
    # STUDENTS
    # =========================================================================

    def list_students(self) -> List[StudentProfile]:
        rows = self._client.select("student_profiles", order="created_at.desc")
        return self._parse_rows(rows, StudentProfile.from_record, "student_profiles")

    def get_student(self, user_id: str) -> Optional[StudentProfile]:
        rows = self._client.select("student_profiles", {"user_id": user_id}, limit=1)
        if not rows:
            return None
        return StudentProfile.from_record(rows[0])

    def get_students(self, user_ids: List[str]) -> List[StudentProfile]:
        """Fetch several students, preserving the order of ``user_ids``."""
        if not user_ids:
            return []
        id_list = ",".join(user_ids)
        rows = self._client.select("student_profiles", {"user_id": ("in", f"({id_list})")})
        by_id = {s.user_id: s for s in self._parse_rows(rows, StudentProfile.from_record, "student_profiles")}
        return [by_id[uid] for uid in user_ids if uid in by_id]

    def create_student(self, student: StudentProfile) -> StudentProfile:
        rows = self._client.insert("student_profiles", [student.to_dict()])
        return StudentProfile.from_record(self._single(rows, "student_profiles"))

    def update_student(self, user_id: str, values: Dict[str, Any]) -> StudentProfile:
        updates = {k: v for k, v in values.items() if k in STUDENT_PROFILE_EDITABLE}
        if not updates:
            raise StorageServiceError("No editable student fields supplied")
        rows = self._client.update("student_profiles", {"user_id": user_id}, updates)
        return StudentProfile.from_record(self._single(rows, "student_profiles"))

    def delete_student(self, user_id: str) -> None:
        self._client.delete("student_profiles", {"user_id": user_id})

    def count_students(self) -> int:
        return self._client.count("student_profiles")

    # =========================================================================
    # DIPLOMAS (append-only)
    # =========================================================================

    def create_diploma(self, record: DiplomaRecord) -> DiplomaRecord:
        rows = self._client.insert("diplomas", [record.to_insert()])
        return DiplomaRecord.from_record(self._single(rows, "diplomas"))

    def list_diplomas(self, school_id: str, limit: Optional[int] = None) -> List[DiplomaRecord]:
        rows = self._client.select(
            "diplomas", {"school_id": school_id}, order="issued_at.desc", limit=limit
        )
        return self._parse_rows(rows, DiplomaRecord.from_record, "diplomas")

    def list_diplomas_for_student(self, student_id: str) -> List[DiplomaRecord]:
        rows = self._client.select("diplomas", {"student_id": student_id}, order="issued_at.desc")
        return self._parse_rows(rows, DiplomaRecord.from_record, "diplomas")

    def count_diplomas(self, school_id: str, with_ipfs_only: bool = False) -> int:
        """Diplomas issued by a school (optionally only those with an IPFS hash)."""
        filters: Dict[str, Any] = {"school_id": school_id}
        if with_ipfs_only:
            filters["ipfs_hash"] = ("not.is", "null")
        return self._client.count("diplomas", filters)

    # =========================================================================
    # TEMPLATES
    # =========================================================================

    def list_templates(self, school_id: str) -> List[DiplomaTemplate]:
        rows = self._client.select("diploma_templates", {"school_id": school_id}, order="created_at.desc")
        return self._parse_rows(rows, DiplomaTemplate.from_record, "diploma_templates")

    def get_template(self, template_id: str) -> Optional[DiplomaTemplate]:
        rows = self._client.select("diploma_templates", {"id": template_id}, limit=1)
        if not rows:
            return None
        return DiplomaTemplate.from_record(rows[0])

    # =========================================================================
    # MINTING POLICIES
    # =========================================================================

    def get_policy(self, school_id: str) -> Optional[MintingPolicy]:
        rows = self._client.select("minting_policies", {"school_id": school_id}, limit=1)
        if not rows:
            return None
        return MintingPolicy.from_record(rows[0])

    def save_policy(self, policy: MintingPolicy) -> MintingPolicy:
        rows = self._client.insert("minting_policies", [policy.to_insert()])
        return MintingPolicy.from_record(self._single(rows, "minting_policies"))

    # =========================================================================
    # BILLING
    # =========================================================================

    def list_transactions(self, school_id: str) -> List[BillingTransaction]:
        """Billing history, newest first."""
        rows = self._client.select("transactions", {"school_id": school_id}, order="date.desc")
        return self._parse_rows(rows, BillingTransaction.from_record, "transactions")

    def create_revenue_records(self, records: List[RevenueRecord]) -> List[RevenueRecord]:
        if not records:
            return []
        rows = self._client.insert("revenue_records", [r.to_insert() for r in records])
        return self._parse_rows(rows, RevenueRecord.from_record, "revenue_records")

    def list_revenue_records(self, school_id: str) -> List[RevenueRecord]:
        rows = self._client.select("revenue_records", {"school_id": school_id}, order="created_at.desc")
        return self._parse_rows(rows, RevenueRecord.from_record, "revenue_records")

    def get_price_config(self) -> Optional[PriceConfig]:
        """
        Latest price table, or None when none has been configured.

        Raises:
            MalformedRecordError: The latest row is unusable
        """
        rows = self._client.select("price_config", order="updated_at.desc", limit=1)
        if not rows:
            return None
        return PriceConfig.from_record(rows[0], self._default_base_price)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _parse_rows(
        self,
        rows: List[Dict[str, Any]],
        parse: Callable[[Dict[str, Any]], T],
        collection: str,
    ) -> List[T]:
        parsed: List[T] = []
        for row in rows:
            try:
                parsed.append(parse(row))
            except MalformedRecordError as e:
                self._logger.warning(f"Skipping malformed {collection} row: {e.message}")
        if len(parsed) != len(rows):
            self._logger.warning(f"Skipped {len(rows) - len(parsed)} of {len(rows)} {collection} rows")
        return parsed

    @staticmethod
    def _single(rows: List[Dict[str, Any]], collection: str) -> Dict[str, Any]:
        if not rows:
            raise StorageServiceError(f"No {collection} row returned", details={"table": collection})
        return rows[0]
