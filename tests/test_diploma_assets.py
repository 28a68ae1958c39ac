"""
Tests for uploaded image checks and CIP-25 metadata building.
"""

import io
from datetime import datetime, timezone

import pytest
from PIL import Image

from core.exceptions import ValidationError
from models.records import StudentProfile
from modules.diploma_metadata import (
    MAX_ASSET_NAME_BYTES,
    asset_name_for,
    build_asset_metadata,
    build_batch_document,
    cip25_envelope,
)
from modules.image_assets import allowed_image, read_image_payload


FIXED_NOW = datetime(2026, 6, 30, 12, 0, tzinfo=timezone.utc)


class TestImageAssets:

    @pytest.mark.parametrize("filename,expected", [
        ("diploma.png", True),
        ("diploma.JPG", True),
        ("diploma.webp", True),
        ("diploma.pdf", False),
        ("diploma", False),
    ])
    def test_allowed_image(self, filename, expected):
        assert allowed_image(filename) is expected

    def test_png_is_described(self, png_bytes):
        asset = read_image_payload("My Diploma.png", png_bytes)

        assert asset.filename == "My_Diploma.png"
        assert asset.content_type == "image/png"
        assert (asset.width, asset.height) == (8, 4)
        assert asset.payload == png_bytes

    def test_jpeg_content_type(self):
        buffer = io.BytesIO()
        Image.new("RGB", (2, 2)).save(buffer, format="JPEG")

        assert read_image_payload("a.jpg", buffer.getvalue()).content_type == "image/jpeg"

    def test_extension_and_content_must_both_pass(self, png_bytes):
        with pytest.raises(ValidationError):
            read_image_payload("a.pdf", png_bytes)
        with pytest.raises(ValidationError):
            read_image_payload("a.png", b"%PDF-1.7 not an image")

    def test_empty_payload(self):
        with pytest.raises(ValidationError) as exc_info:
            read_image_payload("a.png", b"")
        assert exc_info.value.field == "image"


class TestDiplomaMetadata:

    def test_asset_name_fits_ledger_limit(self):
        student = StudentProfile(user_id="0f8fad5b-d9cb-469f-a165-70867728950e", full_name="A")

        name = asset_name_for(student, FIXED_NOW)

        assert name.startswith("Diploma_0f8fad5b_")
        assert len(name.encode("utf-8")) <= MAX_ASSET_NAME_BYTES

    def test_asset_metadata(self, school, students):
        metadata = build_asset_metadata(
            students[0], school, "ipfs://QmImage", "image/png", course_name="Informatique", now=FIXED_NOW
        )

        assert metadata["name"] == "Diploma - Alice Martin"
        assert metadata["image"] == "ipfs://QmImage"
        assert metadata["description"] == "Official Master Diploma in Informatique"
        assert metadata["student"]["id"] == "M001"
        assert metadata["academic"]["graduationDate"] == "2026-06-30"
        assert metadata["issuer"] == {"name": school.name, "id": school.id}

    def test_missing_optional_fields_are_filled(self, school, students):
        metadata = build_asset_metadata(students[2], school, "ipfs://Qm", "image/png", now=FIXED_NOW)

        assert metadata["description"] == "Official Academic Diploma"
        assert metadata["academic"]["level"] == "Not specified"

    def test_envelope(self):
        envelope = cip25_envelope("policy-abc", "Diploma_x_1", {"name": "n"})

        assert envelope == {"721": {"policy-abc": {"Diploma_x_1": {"name": "n"}}, "version": "1.0"}}

    def test_batch_document_lists_recipients(self, school, students):
        document = build_batch_document("batch-1", school, students[:2], "ipfs://Qm", "image", now=FIXED_NOW)

        assert [r["id"] for r in document["recipients"]] == ["stu-aaaa-1111", "stu-bbbb-2222"]
        assert document["asset"] == {"uri": "ipfs://Qm", "kind": "image"}
