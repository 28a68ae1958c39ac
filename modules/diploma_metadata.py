"""CIP-25 metadata and asset naming for diploma NFTs."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

from models.records import SchoolProfile, StudentProfile


CIP25_LABEL = "721"
CIP25_VERSION = "1.0"
MAX_ASSET_NAME_BYTES = 32
STUDENT_REF_LENGTH = 8


def _now_millis(now: Optional[datetime] = None) -> int:
    now = now or datetime.now(timezone.utc)
    return int(now.timestamp() * 1000)


def asset_name_for(student: StudentProfile, now: Optional[datetime] = None) -> str:
    """
    On-chain asset name: ``Diploma_<student ref>_<unix millis>``.

    The student ref is shortened so the name stays within the ledger's
    32-byte asset name limit.
    """
    ref = "".join(ch for ch in student.user_id if ch.isalnum())[:STUDENT_REF_LENGTH]
    name = f"Diploma_{ref}_{_now_millis(now)}"
    return name[:MAX_ASSET_NAME_BYTES]


def build_asset_metadata(
    student: StudentProfile,
    school: SchoolProfile,
    asset_uri: str,
    media_type: str,
    course_name: str = "",
    graduation_date: str = "",
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Asset-level metadata for one diploma.

    Args:
        student: Recipient
        school: Issuing school
        asset_uri: ``ipfs://`` address of the diploma image or template document
        media_type: MIME type of the asset
        course_name: Optional course or programme name
        graduation_date: ISO date; defaults to today
    """
    now = now or datetime.now(timezone.utc)
    level = student.level or "Academic"
    description = f"Official {level} Diploma"
    if course_name:
        description = f"{description} in {course_name}"

    return {
        "name": f"Diploma - {student.full_name}",
        "image": asset_uri,
        "mediaType": media_type,
        "description": description,
        "student": {
            "name": student.full_name,
            "id": student.student_number or student.user_id,
        },
        "academic": {
            "course": course_name or "Not specified",
            "level": student.level or "Not specified",
            "faculty": student.faculty or "Not specified",
            "graduationDate": graduation_date or now.date().isoformat(),
        },
        "issuer": {
            "name": school.name or "Educational Institution",
            "id": school.id,
        },
        "certificate": {
            "number": f"CERT-{_now_millis(now)}",
            "issuedAt": now.isoformat(),
            "standard": "CIP-25",
            "version": CIP25_VERSION,
            "blockchain": "Cardano",
        },
    }


def cip25_envelope(policy_id: str, asset_name: str, asset_metadata: Dict[str, Any]) -> Dict[str, Any]:
    """Wrap asset metadata under the CIP-25 transaction metadata label."""
    return {CIP25_LABEL: {policy_id: {asset_name: asset_metadata}, "version": CIP25_VERSION}}


def build_batch_document(
    batch_id: str,
    school: SchoolProfile,
    recipients: Sequence[StudentProfile],
    asset_uri: str,
    asset_kind: str,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Batch manifest pinned next to the asset."""
    now = now or datetime.now(timezone.utc)
    return {
        "batchId": batch_id,
        "issuer": {"name": school.name, "id": school.id},
        "asset": {"uri": asset_uri, "kind": asset_kind},
        "recipients": [
            {"id": r.user_id, "name": r.full_name} for r in recipients
        ],
        "createdAt": now.isoformat(),
    }
