"""
Pricing data models.

PriceConfig is the admin-owned price table (latest ``price_config`` row).
FeeQuote is the derived result of the fee calculator; it is never persisted.

Money is always ``Decimal``. Rounding happens only in ``to_display()``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Optional

from core.exceptions import MalformedRecordError


CENTS = Decimal("0.01")


def to_decimal(value: Any, field_name: str = "value") -> Decimal:
    """
    Convert a stored number to Decimal without going through float.

    Raises:
        ValueError: If the value is not numeric
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise ValueError(f"{field_name} is not numeric: {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{field_name} is not numeric: {value!r}")


def format_money(amount: Decimal) -> str:
    """Two-decimal display string, rounded half-up."""
    return str(amount.quantize(CENTS, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class PriceConfig:
    """
    Immutable snapshot of the price table.

    Fetched fresh for every calculation; never cached across requests.
    """

    network_fee_percent: Decimal
    """Percentage of base_price charged per diploma as network fee."""

    storage_free_limit: int
    """Diploma indices up to and including this number carry no storage fee."""

    storage_price_per_1000: Decimal
    """Storage price for 1000 diplomas above the free tier."""

    base_price: Decimal
    """Reference diploma price the network fee percentage applies to."""

    @classmethod
    def from_record(cls, record: Dict[str, Any], default_base_price: Decimal) -> "PriceConfig":
        """
        Build from a ``price_config`` row.

        Args:
            record: Row dict from storage
            default_base_price: Used when the row has no base_price column

        Raises:
            MalformedRecordError: Required columns missing or not numeric
        """
        required = ("network_fee_percent", "storage_free_limit", "storage_price_per_1000")
        missing = [key for key in required if record.get(key) is None]
        if missing:
            raise MalformedRecordError("price_config", missing, record)

        base_price = record.get("base_price")
        try:
            return cls(
                network_fee_percent=to_decimal(record["network_fee_percent"], "network_fee_percent"),
                storage_free_limit=int(record["storage_free_limit"]),
                storage_price_per_1000=to_decimal(record["storage_price_per_1000"], "storage_price_per_1000"),
                base_price=to_decimal(base_price, "base_price") if base_price is not None else default_base_price,
            )
        except (TypeError, ValueError) as e:
            raise MalformedRecordError("price_config", [str(e)], record)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "network_fee_percent": str(self.network_fee_percent),
            "storage_free_limit": self.storage_free_limit,
            "storage_price_per_1000": str(self.storage_price_per_1000),
            "base_price": str(self.base_price),
        }


@dataclass(frozen=True)
class FeeQuote:
    """
    Fees for one batch of diplomas.

    Invariant: total == network_fee + storage_fee (exact Decimal sum).
    """

    network_fee: Decimal
    storage_fee: Decimal
    total: Decimal
    unit_network_fee: Decimal
    batch_size: int
    billable_storage_units: int = 0
    """How many diplomas of the batch fall above the free tier."""

    is_default_pricing: bool = False
    """True when no price config was available and the fallback was used."""

    price_config: Optional[PriceConfig] = None

    def to_display(self) -> Dict[str, Any]:
        """Rounded, JSON-friendly view for the UI."""
        return {
            "network_fee": format_money(self.network_fee),
            "storage_fee": format_money(self.storage_fee),
            "total": format_money(self.total),
            "unit_network_fee": format_money(self.unit_network_fee),
            "batch_size": self.batch_size,
            "billable_storage_units": self.billable_storage_units,
            "is_default_pricing": self.is_default_pricing,
        }
