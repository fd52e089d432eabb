"""
Courier commission calculation.

Pure functions only. The amount is computed once, at assignment, and frozen
onto the shipment; nothing here reads or writes the database.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

from lastmile.models.courier import CommissionType, CourierStats

CENT = Decimal("0.01")


@dataclass(frozen=True)
class FlatCommission:
    """Fixed amount per delivery."""
    amount: Decimal


@dataclass(frozen=True)
class PercentageCommission:
    """Share of the shipment price, in percent."""
    rate: Decimal


CommissionConfig = Union[FlatCommission, PercentageCommission]


def money(value) -> Decimal:
    """Round to cents."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def config_from_stats(stats: CourierStats) -> CommissionConfig:
    """Build the commission config stored on a courier performance record."""
    value = Decimal(str(stats.commission_value or 0))
    if stats.commission_type == CommissionType.PERCENTAGE.value:
        return PercentageCommission(rate=value)
    if stats.commission_type == CommissionType.FLAT.value:
        return FlatCommission(amount=value)
    raise ValueError(f"Unknown commission type: {stats.commission_type}")


def calculate_commission(price: Optional[Decimal], config: CommissionConfig) -> Decimal:
    """
    Commission a courier earns for one shipment.

    Args:
        price: Shipment price; only used by percentage commissions
        config: Flat or percentage commission

    Returns:
        Amount rounded to cents
    """
    if isinstance(config, FlatCommission):
        return money(config.amount)
    if isinstance(config, PercentageCommission):
        base = Decimal(str(price or 0))
        return money(base * config.rate / Decimal("100"))
    raise TypeError(f"Unsupported commission config: {config!r}")
