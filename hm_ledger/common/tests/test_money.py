from decimal import Decimal

import pytest
from rest_framework.exceptions import ValidationError

from hm_ledger.common.money import ZERO, money_sum, to_money


@pytest.mark.parametrize(
    "raw, expected",
    [
        (Decimal("10"), Decimal("10.000")),
        ("0.0005", Decimal("0.001")),
        ("2.3344", Decimal("2.334")),
        (7, Decimal("7.000")),
        (0.1, Decimal("0.100")),
        ("-1.2345", Decimal("-1.235")),
    ],
)
def test_to_money_quantizes_half_up_to_three_places(raw, expected):
    assert to_money(raw) == expected
    assert to_money(raw).as_tuple().exponent == -3


@pytest.mark.parametrize("raw", [None, True, "abc", "NaN", "Infinity", object()])
def test_to_money_rejects_non_numeric_keyed_by_field(raw):
    with pytest.raises(ValidationError) as exc:
        to_money(raw, "unit_price")
    assert "unit_price" in exc.value.detail


def test_money_sum_of_nothing_is_zero():
    assert money_sum([]) == ZERO


def test_money_sum_has_no_float_drift():
    assert money_sum([Decimal("0.1")] * 10) == Decimal("1.000")
    assert money_sum(["33.333", "33.333", "33.334"]) == Decimal("100.000")
