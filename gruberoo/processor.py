"""
Processor: 批量自动处理（bulk pass）

- 在开始时只取一次 now，整轮使用同一个时间点
- 遍历所有餐厅队列，找出“今天配送且仍为 Pending”的订单：
  - 距离配送 < cutoff 分钟 -> bulk-expire（Rejected，进入退款栈）
  - 距离配送 >= cutoff 分钟 -> bulk-retain（Preparing，回到队尾）
- 借助 RestaurantQueue.scan，同一轮内每个订单最多访问一次
- 不是“今天的 Pending”订单保持原样；紧接着再跑一轮不会处理任何订单
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable, List, Mapping

from .domain import Order, OrderStatus, Restaurant
from .lifecycle import Action, Transition, bulk_action_for

logger = logging.getLogger("gruberoo.processor")

TransitionFn = Callable[[Order, Action, datetime], Transition]


@dataclass
class BulkReport:
    now: datetime
    total_queued: int = 0
    candidates: int = 0
    processed: int = 0
    preparing: int = 0
    rejected: int = 0
    transitions: List[Transition] = field(default_factory=list)

    @property
    def percent_processed(self) -> Decimal:
        """已处理订单占队列总数的百分比（两位小数）。"""
        if self.total_queued == 0:
            return Decimal("0.00")
        pct = Decimal(self.processed) * 100 / Decimal(self.total_queued)
        return pct.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    def as_dict(self) -> dict:
        return {
            "now": self.now.strftime("%d/%m/%Y %H:%M"),
            "total_queued": self.total_queued,
            "candidates": self.candidates,
            "processed": self.processed,
            "preparing": self.preparing,
            "rejected": self.rejected,
            "percent_processed": f"{self.percent_processed:.2f}",
            "processed_ids": [t.order_id for t in self.transitions],
        }


def run_bulk_pass(
    restaurants: Iterable[Restaurant],
    orders: Mapping[int, Order],
    transition: TransitionFn,
    now: datetime,
    cutoff_minutes: int,
) -> BulkReport:
    """对所有餐厅队列执行一轮批量处理。"""
    restaurants = list(restaurants)
    report = BulkReport(now=now)
    report.total_queued = sum(len(r.queue) for r in restaurants)
    report.candidates = sum(
        1
        for r in restaurants
        for oid in r.queue
        if bulk_action_for(orders[oid], now, cutoff_minutes) is not None
    )

    def visit(oid: int) -> bool:
        order = orders[oid]
        action = bulk_action_for(order, now, cutoff_minutes)
        if action is not None:
            result = transition(order, action, now)
            if result.ok:
                report.processed += 1
                report.transitions.append(result)
                if result.status is OrderStatus.PREPARING:
                    report.preparing += 1
                elif result.status is OrderStatus.REJECTED:
                    report.rejected += 1
        return order.status.is_active

    for restaurant in restaurants:
        restaurant.queue.scan(visit)

    logger.info(
        "bulk pass at %s: %d queued, %d candidates, %d processed (%d preparing, %d rejected)",
        now.isoformat(timespec="minutes"),
        report.total_queued,
        report.candidates,
        report.processed,
        report.preparing,
        report.rejected,
    )
    return report
