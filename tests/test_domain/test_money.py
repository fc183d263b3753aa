"""Tests for the escrow split and minor-unit conversion."""

from __future__ import annotations

from decimal import Decimal

import pytest

from roadside_escrow.domain.money import from_minor_units, split_amount, to_minor_units


class TestSplitAmount:
    def test_round_amount(self) -> None:
        split = split_amount(Decimal("100.00"))
        assert split.provider_amount == Decimal("85.00")
        assert split.platform_amount == Decimal("15.00")
        assert split.provider_percentage == 85
        assert split.platform_percentage == 15

    def test_odd_amount_reconciles(self) -> None:
        split = split_amount(Decimal("100.01"))
        # 15.0015 rounds half-up to 15.00; the provider keeps the remainder.
        assert split.platform_amount == Decimal("15.00")
        assert split.provider_amount == Decimal("85.01")
        assert split.provider_amount + split.platform_amount == split.amount

    @pytest.mark.parametrize("raw", ["0.01", "0.07", "33.33", "149.99", "1234.56"])
    def test_always_reconciles(self, raw: str) -> None:
        split = split_amount(Decimal(raw))
        assert split.provider_amount + split.platform_amount == Decimal(raw)

    def test_custom_percentage(self) -> None:
        split = split_amount(Decimal("200.00"), platform_percentage=10)
        assert split.platform_amount == Decimal("20.00")
        assert split.provider_percentage == 90

    def test_non_positive_amount_rejected(self) -> None:
        with pytest.raises(ValueError):
            split_amount(Decimal("0"))

    def test_percentage_out_of_range(self) -> None:
        with pytest.raises(ValueError):
            split_amount(Decimal("10.00"), platform_percentage=101)


class TestMinorUnits:
    def test_to_minor(self) -> None:
        assert to_minor_units(Decimal("85.00")) == 8500
        assert to_minor_units(Decimal("0.005")) == 1

    def test_from_minor(self) -> None:
        assert from_minor_units(10001) == Decimal("100.01")
        assert from_minor_units("500") == Decimal("5.00")
