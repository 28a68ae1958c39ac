"""Verification of uploaded diploma images."""

from __future__ import annotations

import io
from typing import Dict

from PIL import Image, UnidentifiedImageError
from werkzeug.utils import secure_filename

from core.exceptions import ValidationError
from models.issuance import ImageAsset


ALLOWED_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}
MAX_IMAGE_BYTES = 10 * 1024 * 1024

# Pillow format name -> MIME type sent to IPFS
FORMAT_CONTENT_TYPES: Dict[str, str] = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "GIF": "image/gif",
    "WEBP": "image/webp",
}


def allowed_image(filename: str) -> bool:
    """Check if file extension is allowed."""
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_EXTENSIONS


def read_image_payload(filename: str, payload: bytes) -> ImageAsset:
    """
    Decode an uploaded image and describe it.

    The bytes are kept untouched; Pillow is only used to prove they are a
    readable image of an accepted format.

    Raises:
        ValidationError: Empty, oversized, unsupported or unreadable payload
    """
    safe_name = secure_filename(filename or "")
    if not safe_name or not allowed_image(safe_name):
        raise ValidationError(
            "Unsupported image type. Please upload a PNG, JPEG, GIF or WEBP file.",
            field="image",
        )
    if not payload:
        raise ValidationError("The uploaded image is empty.", field="image")
    if len(payload) > MAX_IMAGE_BYTES:
        raise ValidationError(
            f"Image too large ({len(payload) / (1024 * 1024):.1f} MB). "
            f"Maximum size is {MAX_IMAGE_BYTES // (1024 * 1024)} MB.",
            field="image",
        )

    try:
        with Image.open(io.BytesIO(payload)) as img:
            img.verify()
        # verify() leaves the image unusable; reopen for the header fields
        with Image.open(io.BytesIO(payload)) as img:
            image_format = img.format
            width, height = img.size
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        raise ValidationError(f"The uploaded file is not a readable image: {e}", field="image")

    content_type = FORMAT_CONTENT_TYPES.get(image_format or "")
    if content_type is None:
        raise ValidationError(f"Unsupported image format: {image_format}", field="image")

    return ImageAsset(
        filename=safe_name,
        payload=payload,
        content_type=content_type,
        width=width,
        height=height,
    )
