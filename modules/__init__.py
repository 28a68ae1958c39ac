"""Helper modules for the Diploma Issuer Web application."""

__all__ = [
    "diploma_metadata",
    "fee_calculator",
    "image_assets",
]
