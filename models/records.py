"""
Typed records for the storage collaborator's collections.

Rows come back from PostgREST as loosely-typed dicts. Each record class
parses its row in ``from_record()`` and raises MalformedRecordError when a
required column is missing, so untyped data never travels past the
storage boundary.

Collections:
    school_profiles   -> SchoolProfile
    student_profiles  -> StudentProfile
    diplomas          -> DiplomaRecord     (append-only)
    diploma_templates -> DiplomaTemplate
    minting_policies  -> MintingPolicy
    transactions      -> BillingTransaction
    revenue_records   -> RevenueRecord
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from core.exceptions import MalformedRecordError
from .pricing import format_money, to_decimal


def _require(record: Dict[str, Any], collection: str, *keys: str) -> None:
    missing = [key for key in keys if record.get(key) in (None, "")]
    if missing:
        raise MalformedRecordError(collection, missing, record)


def _decimal_or_error(record: Dict[str, Any], collection: str, key: str) -> Decimal:
    try:
        return to_decimal(record.get(key), key)
    except ValueError:
        raise MalformedRecordError(collection, [key], record)


@dataclass
class SchoolProfile:
    """A school account, keyed by the auth user that owns it."""

    id: str
    user_id: str
    name: str
    email: str = ""
    public_wallet: str = ""
    kyc_status: str = "pending"
    website: str = ""
    logo_url: str = ""
    address: str = ""

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "SchoolProfile":
        _require(record, "school_profiles", "id", "user_id", "name")
        return cls(
            id=str(record["id"]),
            user_id=str(record["user_id"]),
            name=record["name"],
            email=record.get("email") or "",
            public_wallet=record.get("public_wallet") or "",
            kyc_status=record.get("kyc_status") or "pending",
            website=record.get("website") or "",
            logo_url=record.get("logo_url") or "",
            address=record.get("address") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "email": self.email,
            "public_wallet": self.public_wallet,
            "kyc_status": self.kyc_status,
            "website": self.website,
            "logo_url": self.logo_url,
            "address": self.address,
        }


@dataclass
class StudentProfile:
    """A diploma recipient."""

    user_id: str
    full_name: str
    email: str = ""
    public_wallet: str = ""
    student_number: str = ""
    """Matricule printed on the diploma."""

    level: str = ""
    faculty: str = ""

    @property
    def id(self) -> str:
        return self.user_id

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "StudentProfile":
        _require(record, "student_profiles", "user_id", "full_name")
        return cls(
            user_id=str(record["user_id"]),
            full_name=record["full_name"],
            email=record.get("email") or "",
            public_wallet=record.get("public_wallet") or "",
            student_number=record.get("student_number") or "",
            level=record.get("level") or "",
            faculty=record.get("faculty") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "full_name": self.full_name,
            "email": self.email,
            "public_wallet": self.public_wallet,
            "student_number": self.student_number,
            "level": self.level,
            "faculty": self.faculty,
        }


@dataclass
class DiplomaRecord:
    """
    One issued diploma.

    Written once per recipient per successful mint. There is no update or
    delete path for issued diplomas.
    """

    school_id: str
    student_id: str
    ipfs_hash: str
    transaction_hash: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    template_id: Optional[str] = None
    student_name: Optional[str] = None
    id: Optional[str] = None
    issued_at: Optional[str] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "DiplomaRecord":
        _require(record, "diplomas", "school_id", "student_id")
        return cls(
            school_id=str(record["school_id"]),
            student_id=str(record["student_id"]),
            ipfs_hash=record.get("ipfs_hash") or "",
            transaction_hash=record.get("transaction_hash") or "",
            metadata=dict(record.get("metadata") or {}),
            template_id=record.get("template_id"),
            student_name=record.get("student_name"),
            id=record.get("id"),
            issued_at=record.get("issued_at"),
        )

    def to_insert(self) -> Dict[str, Any]:
        """Row for insertion (id and issued_at are assigned by storage)."""
        row = {
            "school_id": self.school_id,
            "student_id": self.student_id,
            "ipfs_hash": self.ipfs_hash,
            "transaction_hash": self.transaction_hash,
            "metadata": self.metadata,
        }
        if self.template_id:
            row["template_id"] = self.template_id
        if self.student_name:
            row["student_name"] = self.student_name
        return row

    def to_dict(self) -> Dict[str, Any]:
        data = self.to_insert()
        data["id"] = self.id
        data["issued_at"] = self.issued_at
        return data


@dataclass
class DiplomaTemplate:
    """A school's diploma layout (elements positioned in percent)."""

    id: str
    school_id: str
    name: str
    layout: str = "landscape"
    width: int = 0
    height: int = 0
    elements: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "DiplomaTemplate":
        _require(record, "diploma_templates", "id", "school_id", "name")
        return cls(
            id=str(record["id"]),
            school_id=str(record["school_id"]),
            name=record["name"],
            layout=record.get("layout") or "landscape",
            width=int(record.get("width") or 0),
            height=int(record.get("height") or 0),
            elements=list(record.get("elements") or []),
        )

    def to_document(self) -> Dict[str, Any]:
        """Self-contained JSON document pinned as the diploma asset."""
        return {
            "templateId": self.id,
            "name": self.name,
            "layout": self.layout,
            "width": self.width,
            "height": self.height,
            "elements": self.elements,
        }


@dataclass
class MintingPolicy:
    """A school's persistent minting policy."""

    school_id: str
    policy_id: str
    script: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "MintingPolicy":
        _require(record, "minting_policies", "school_id", "policy_id")
        script = record.get("script") or {}
        if isinstance(script, str):
            try:
                script = json.loads(script)
            except ValueError:
                raise MalformedRecordError("minting_policies", ["script"], record)
        return cls(
            school_id=str(record["school_id"]),
            policy_id=record["policy_id"],
            script=script,
        )

    def to_insert(self) -> Dict[str, Any]:
        return {
            "school_id": self.school_id,
            "policy_id": self.policy_id,
            "script": json.dumps(self.script),
        }


@dataclass
class BillingTransaction:
    """A billing history line. Display-only audit trail."""

    id: str
    school_id: str
    date: str
    amount: Decimal
    description: str = ""
    status: str = "pending"
    invoice_url: str = ""

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "BillingTransaction":
        _require(record, "transactions", "id", "school_id", "date", "amount")
        return cls(
            id=str(record["id"]),
            school_id=str(record["school_id"]),
            date=record["date"],
            amount=_decimal_or_error(record, "transactions", "amount"),
            description=record.get("description") or "",
            status=record.get("status") or "pending",
            invoice_url=record.get("invoice_url") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date,
            "amount": format_money(self.amount),
            "description": self.description,
            "status": self.status,
            "invoice_url": self.invoice_url,
        }


@dataclass
class RevenueRecord:
    """Fee earned on one diploma ("network_fee" or "storage_fee")."""

    school_id: str
    kind: str
    amount: Decimal
    diploma_id: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "RevenueRecord":
        _require(record, "revenue_records", "school_id", "kind", "amount")
        return cls(
            school_id=str(record["school_id"]),
            kind=record["kind"],
            amount=_decimal_or_error(record, "revenue_records", "amount"),
            diploma_id=record.get("diploma_id"),
            id=record.get("id"),
            created_at=record.get("created_at"),
        )

    def to_insert(self) -> Dict[str, Any]:
        row = {
            "school_id": self.school_id,
            "kind": self.kind,
            "amount": str(self.amount),
        }
        if self.diploma_id:
            row["diploma_id"] = self.diploma_id
        return row
