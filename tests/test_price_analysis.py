"""Tests for the displayed price change."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from pricewatch.models.schemas import PriceSample, TrackedProduct
from pricewatch.services.price_analysis import drop_percentage, price_change


def _product(current, *history):
    now = datetime(2026, 3, 1)
    samples = [PriceSample(price=Decimal(p), observed_at=now - timedelta(hours=i)) for i, p in enumerate(history)]
    return TrackedProduct(id=1, url="https://x.test/p", title="P", current_price=Decimal(current), history=samples)


class TestPriceChange:

    def test_drop_against_previous_stored_price(self) -> None:
        change = price_change(_product("90", "90", "100", "120"))

        assert change.diff == Decimal("-10")
        assert change.percent == pytest.approx(-10.0)

    def test_increase(self) -> None:
        change = price_change(_product("110", "110", "100"))

        assert change.diff == Decimal("10")
        assert change.percent == pytest.approx(10.0)

    def test_single_sample_has_no_change(self) -> None:
        assert price_change(_product("100", "100")) is None
        assert price_change(_product("0")) is None


class TestDropPercentage:

    def test_drop(self) -> None:
        assert drop_percentage(Decimal("200"), Decimal("150")) == pytest.approx(25.0)

    def test_no_drop(self) -> None:
        assert drop_percentage(Decimal("100"), Decimal("120")) == 0.0
        assert drop_percentage(Decimal("0"), Decimal("10")) == 0.0
