"""Fee calculator for diploma batches.

Network fee is a flat percentage of the base diploma price, charged for
every diploma. Storage fee is charged per diploma only once the school's
running diploma count passes the free tier.

Everything is Decimal and nothing is rounded here; ``FeeQuote.to_display()``
rounds for presentation.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional, Tuple

from core.exceptions import ValidationError
from models.pricing import FeeQuote, PriceConfig
from logging_config import get_logger


DEFAULT_NETWORK_FEE_PER_DIPLOMA = Decimal("0.50")
"""Per-diploma network fee used when no price config is available."""

HUNDRED = Decimal(100)
THOUSAND = Decimal(1000)

# Module logger
logger = get_logger(__name__)


def _require_count(value, name: str, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer, got {value!r}", field=name)
    if value < minimum:
        raise ValidationError(f"{name} must be at least {minimum}, got {value}", field=name)
    return value


def unit_network_fee(config: PriceConfig) -> Decimal:
    """Network fee charged on every diploma."""
    return config.base_price * config.network_fee_percent / HUNDRED


def unit_storage_fee(config: PriceConfig) -> Decimal:
    """Storage fee charged on a diploma above the free tier."""
    return config.storage_price_per_1000 / THOUSAND


def unit_fees(global_index: int, config: Optional[PriceConfig]) -> Tuple[Decimal, Decimal]:
    """
    Split the fees of a single diploma.

    Args:
        global_index: 1-based position of the diploma in the school's history
        config: Price table, or None for the default fallback

    Returns:
        (network_fee, storage_fee) for that diploma
    """
    _require_count(global_index, "global_index", 1)
    if config is None:
        return DEFAULT_NETWORK_FEE_PER_DIPLOMA, Decimal(0)

    storage = unit_storage_fee(config) if global_index > config.storage_free_limit else Decimal(0)
    return unit_network_fee(config), storage


def calculate_fees(
    prior_issued_count: int,
    batch_size: int,
    config: Optional[PriceConfig],
    default_unit_network_fee: Decimal = DEFAULT_NETWORK_FEE_PER_DIPLOMA,
) -> FeeQuote:
    """
    Compute the fees for a batch of diplomas.

    Diploma ``i`` of the batch (1-based) has global index
    ``prior_issued_count + i``. Only global indices above
    ``config.storage_free_limit`` carry a storage fee.

    Args:
        prior_issued_count: Diplomas the school issued before this batch
        batch_size: Diplomas in this batch
        config: Price table. None selects the documented fallback: network
            fee only, ``default_unit_network_fee`` per diploma, no storage fee
        default_unit_network_fee: Fallback per-diploma network fee

    Returns:
        FeeQuote with total == network_fee + storage_fee

    Raises:
        ValidationError: batch_size < 1 or prior_issued_count < 0
    """
    _require_count(prior_issued_count, "prior_issued_count", 0)
    _require_count(batch_size, "batch_size", 1)

    if config is None:
        logger.warning(
            f"No price configuration available - using default network fee "
            f"{default_unit_network_fee}/diploma and no storage fee for {batch_size} diploma(s)"
        )
        network_fee = default_unit_network_fee * batch_size
        return FeeQuote(
            network_fee=network_fee,
            storage_fee=Decimal(0),
            total=network_fee,
            unit_network_fee=default_unit_network_fee,
            batch_size=batch_size,
            is_default_pricing=True,
        )

    per_unit_network = unit_network_fee(config)
    network_fee = per_unit_network * batch_size

    # Indices prior+1 .. prior+batch_size; count those above the free tier
    first_index = prior_issued_count + 1
    last_index = prior_issued_count + batch_size
    first_billable = max(first_index, config.storage_free_limit + 1)
    billable_units = max(0, last_index - first_billable + 1)

    storage_fee = unit_storage_fee(config) * billable_units

    logger.debug(
        f"Fees for indices {first_index}-{last_index}: network={network_fee}, "
        f"storage={storage_fee} ({billable_units} billable)"
    )

    return FeeQuote(
        network_fee=network_fee,
        storage_fee=storage_fee,
        total=network_fee + storage_fee,
        unit_network_fee=per_unit_network,
        batch_size=batch_size,
        billable_storage_units=billable_units,
        price_config=config,
    )
