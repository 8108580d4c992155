"""
Pricing: 订单金额计算

total = round(items_subtotal * (1 - discount / 100) + delivery_fee, 2)

- 折扣只作用于菜品小计，配送费从不打折
- 每单最多一个优惠；未知优惠码不报错，按无折扣处理
- 同样输入得到同样输出，可以在每次修改菜品后重复计算
"""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from .domain import OrderedFoodItem

CENT = Decimal("0.01")
HUNDRED = Decimal(100)


def to_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def items_subtotal(items: Iterable[OrderedFoodItem]) -> Decimal:
    return sum((line.line_total() for line in items), Decimal("0"))


def compute_total(
    items: Iterable[OrderedFoodItem],
    discount_percent: Optional[Decimal],
    delivery_fee: Decimal,
) -> Decimal:
    """计算订单总额（两位小数，含配送费）。"""
    discount = Decimal(discount_percent or 0)
    if discount < 0 or discount > HUNDRED:
        raise ValueError(f"discount must be within [0, 100], got {discount}")
    if delivery_fee < 0:
        raise ValueError("delivery fee must be non-negative")
    subtotal = items_subtotal(items)
    return to_money(subtotal * (1 - discount / HUNDRED) + delivery_fee)


def discount_amount(items: Iterable[OrderedFoodItem], discount_percent: Optional[Decimal]) -> Decimal:
    discount = Decimal(discount_percent or 0)
    return to_money(items_subtotal(items) * discount / HUNDRED)
