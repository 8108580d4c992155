from decimal import Decimal

import pytest

from gruberoo.domain import FoodItem, OrderedFoodItem
from gruberoo.pricing import compute_total, discount_amount

FEE = Decimal("5.00")


def _lines():
    return [
        OrderedFoodItem(FoodItem("A", "", Decimal("4.00")), 2),
        OrderedFoodItem(FoodItem("B", "", Decimal("3.00")), 1),
    ]


def test_total_without_offer():
    assert compute_total(_lines(), None, FEE) == Decimal("16.00")


def test_total_with_ten_percent_offer():
    assert discount_amount(_lines(), Decimal("10")) == Decimal("1.10")
    assert compute_total(_lines(), Decimal("10"), FEE) == Decimal("14.90")


def test_delivery_fee_is_never_discounted():
    assert compute_total(_lines(), Decimal("100"), FEE) == FEE
    assert compute_total([], Decimal("0"), FEE) == FEE


def test_total_is_deterministic_and_rounded():
    lines = [OrderedFoodItem(FoodItem("C", "", Decimal("3.33")), 3)]
    first = compute_total(lines, Decimal("15"), FEE)
    assert first == compute_total(lines, Decimal("15"), FEE)
    # 9.99 * 0.85 = 8.4915 -> 8.49
    assert first == Decimal("13.49")
    assert first.as_tuple().exponent == -2


@pytest.mark.parametrize("discount", [Decimal("-1"), Decimal("100.01")])
def test_discount_out_of_range(discount):
    with pytest.raises(ValueError):
        compute_total(_lines(), discount, FEE)
