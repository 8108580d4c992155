"""
Reports: 财务汇总（只读，无副作用）

- 每个餐厅：Delivered 订单的 (total - 配送费) 之和；Rejected / Cancelled 订单的 total 之和（退款）
- 全系统：上述两项求和；平台收入 = 已送达订单数 × 配送费
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, List, Mapping

from .domain import Order, OrderStatus, Restaurant

ZERO = Decimal("0.00")


@dataclass
class RestaurantTotals:
    restaurant_id: str
    name: str
    delivered_count: int = 0
    delivered_less_fee: Decimal = ZERO
    refund_count: int = 0
    refunds: Decimal = ZERO


@dataclass
class FinancialReport:
    delivery_fee: Decimal
    restaurants: List[RestaurantTotals] = field(default_factory=list)

    @property
    def delivered_count(self) -> int:
        return sum(r.delivered_count for r in self.restaurants)

    @property
    def total_delivered_less_fee(self) -> Decimal:
        return sum((r.delivered_less_fee for r in self.restaurants), ZERO)

    @property
    def total_refunds(self) -> Decimal:
        return sum((r.refunds for r in self.restaurants), ZERO)

    @property
    def system_earnings(self) -> Decimal:
        return self.delivered_count * self.delivery_fee

    def as_dict(self) -> dict:
        return {
            "restaurants": [
                {
                    "id": r.restaurant_id,
                    "name": r.name,
                    "delivered": r.delivered_count,
                    "delivered_less_fee": f"{r.delivered_less_fee:.2f}",
                    "refunded": r.refund_count,
                    "refunds": f"{r.refunds:.2f}",
                }
                for r in self.restaurants
            ],
            "total_delivered_less_fee": f"{self.total_delivered_less_fee:.2f}",
            "total_refunds": f"{self.total_refunds:.2f}",
            "system_earnings": f"{self.system_earnings:.2f}",
        }


def build_report(
    restaurants: Iterable[Restaurant],
    orders: Mapping[int, Order] | Iterable[Order],
    delivery_fee: Decimal,
) -> FinancialReport:
    """按餐厅汇总订单金额；未知餐厅的订单不计入。"""
    report = FinancialReport(delivery_fee=delivery_fee)
    by_id = {}
    for restaurant in restaurants:
        totals = RestaurantTotals(restaurant.restaurant_id, restaurant.name)
        report.restaurants.append(totals)
        by_id[restaurant.restaurant_id.lower()] = totals

    values = orders.values() if isinstance(orders, Mapping) else orders
    for order in values:
        totals = by_id.get(order.restaurant_id.lower())
        if totals is None:
            continue
        if order.status is OrderStatus.DELIVERED:
            totals.delivered_count += 1
            totals.delivered_less_fee += order.total - delivery_fee
        elif order.status.is_refundable:
            totals.refund_count += 1
            totals.refunds += order.total
    return report
