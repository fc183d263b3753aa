"""Escrow split and minor-unit conversion.

All amounts are Decimal. The platform share is rounded half-up to the cent and
the provider receives the remainder, so the two always add up to the amount.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
PLATFORM_PERCENTAGE = 15
PROVIDER_PERCENTAGE = 100 - PLATFORM_PERCENTAGE


@dataclass(frozen=True)
class Split:
    amount: Decimal
    provider_percentage: int
    platform_percentage: int
    provider_amount: Decimal
    platform_amount: Decimal


def split_amount(amount: Decimal, platform_percentage: int = PLATFORM_PERCENTAGE) -> Split:
    """Split a settled amount between provider and platform.

    >>> split_amount(Decimal("100.00")).provider_amount
    Decimal('85.00')
    """
    if amount <= 0:
        raise ValueError(f"amount must be positive, got {amount}")
    if not 0 <= platform_percentage <= 100:
        raise ValueError(f"platform_percentage out of range: {platform_percentage}")

    amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    platform_amount = (amount * platform_percentage / 100).quantize(CENT, rounding=ROUND_HALF_UP)
    return Split(
        amount=amount,
        provider_percentage=100 - platform_percentage,
        platform_percentage=platform_percentage,
        provider_amount=amount - platform_amount,
        platform_amount=platform_amount,
    )


def to_minor_units(amount: Decimal) -> int:
    """Major to minor currency units (cedis to pesewas), rounded half-up."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(minor: int | str) -> Decimal:
    return (Decimal(minor) / 100).quantize(CENT)
