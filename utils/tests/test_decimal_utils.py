"""Tests for money helpers and JSON sanitizing."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from database.schemas import LimitWindow
from utils.decimal_utils import format_money, from_decimal, round_money, to_decimal
from utils.serialization import sanitize_for_json


def test_round_money_half_up():
    assert round_money(Decimal("2.345")) == Decimal("2.35")
    assert round_money("2.344") == Decimal("2.34")
    assert round_money(Decimal("0.005")) == Decimal("0.01")


def test_to_decimal_avoids_float_artifacts():
    assert to_decimal(0.1) == Decimal("0.1")
    assert to_decimal("100.50") == Decimal("100.50")
    with pytest.raises(TypeError):
        to_decimal(True)


def test_from_decimal_treats_missing_as_zero():
    assert from_decimal(None) == Decimal("0")
    assert from_decimal("12.30") == Decimal("12.30")


def test_format_money():
    assert format_money(Decimal("1234.5")) == "R1,234.50"
    assert format_money("10", "EUR") == "10.00 EUR"


def test_sanitize_for_json():
    moment = datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc)
    data = {
        "amount": Decimal("10.50"),
        "window": LimitWindow.DAILY,
        "at": moment,
        "rows": [Decimal("1"), (Decimal("2"),)],
    }
    assert sanitize_for_json(data) == {
        "amount": "10.50",
        "window": "daily",
        "at": moment.isoformat(),
        "rows": ["1", ("2",)],
    }
