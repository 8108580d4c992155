"""
Lifecycle: 单个订单的状态机

状态：Pending -> Preparing -> Delivered，或 Pending -> Rejected / Cancelled。

| 起始      | 动作        | 目标      | 守卫                                       |
|-----------|-------------|-----------|--------------------------------------------|
| Pending   | confirm     | Preparing |                                            |
| Pending   | reject      | Rejected  |                                            |
| Preparing | deliver     | Delivered |                                            |
| Pending   | cancel      | Cancelled | 仅限顾客发起                                |
| Pending   | bulk-expire | Rejected  | 同一天 且 距离配送 < cutoff 分钟            |
| Pending   | bulk-retain | Preparing | 同一天 且 距离配送 >= cutoff 分钟           |

守卫失败不是异常：返回 ok=False 的 Transition，订单保持原样。
队列移除与退款栈压栈等副作用由 Manager 负责。
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Optional, Tuple

from .domain import Order, OrderStatus

logger = logging.getLogger("gruberoo.lifecycle")

DEFAULT_CUTOFF_MINUTES = 60


class Action(str, Enum):
    CONFIRM = "confirm"
    REJECT = "reject"
    DELIVER = "deliver"
    CANCEL = "cancel"
    BULK_EXPIRE = "bulk-expire"
    BULK_RETAIN = "bulk-retain"


TRANSITIONS: Dict[Action, Tuple[OrderStatus, OrderStatus]] = {
    Action.CONFIRM: (OrderStatus.PENDING, OrderStatus.PREPARING),
    Action.REJECT: (OrderStatus.PENDING, OrderStatus.REJECTED),
    Action.DELIVER: (OrderStatus.PREPARING, OrderStatus.DELIVERED),
    Action.CANCEL: (OrderStatus.PENDING, OrderStatus.CANCELLED),
    Action.BULK_EXPIRE: (OrderStatus.PENDING, OrderStatus.REJECTED),
    Action.BULK_RETAIN: (OrderStatus.PENDING, OrderStatus.PREPARING),
}

BULK_ACTIONS = (Action.BULK_EXPIRE, Action.BULK_RETAIN)


@dataclass(frozen=True)
class Transition:
    """一次状态流转请求的结果。"""

    order_id: int
    action: Action
    previous: OrderStatus
    status: OrderStatus
    ok: bool
    reason: Optional[str] = None

    @property
    def entered_refund(self) -> bool:
        return self.ok and self.status.is_refundable

    @property
    def entered_terminal(self) -> bool:
        return self.ok and self.status.is_terminal


def bulk_action_for(
    order: Order,
    now: datetime,
    cutoff_minutes: int = DEFAULT_CUTOFF_MINUTES,
) -> Optional[Action]:
    """批量处理时为订单选择动作；不是“今天的 Pending”订单返回 None。"""
    if order.status is not OrderStatus.PENDING:
        return None
    if order.delivery_at.date() != now.date():
        return None
    if order.delivery_at - now < timedelta(minutes=cutoff_minutes):
        return Action.BULK_EXPIRE
    return Action.BULK_RETAIN


def apply(
    order: Order,
    action: Action,
    now: Optional[datetime] = None,
    cutoff_minutes: int = DEFAULT_CUTOFF_MINUTES,
) -> Transition:
    """校验并执行一次状态流转。"""
    source, target = TRANSITIONS[action]
    previous = order.status

    if previous is not source:
        reason = (
            f"cannot {action.value} order {order.id}: status is {previous.value}, "
            f"only {source.value} orders allow it"
        )
        logger.info(reason)
        return Transition(order.id, action, previous, previous, ok=False, reason=reason)

    if action in BULK_ACTIONS:
        if now is None:
            raise ValueError("bulk transitions need the captured 'now'")
        chosen = bulk_action_for(order, now, cutoff_minutes)
        if chosen is not action:
            reason = f"cannot {action.value} order {order.id}: delivery time does not match the bulk guard"
            logger.info(reason)
            return Transition(order.id, action, previous, previous, ok=False, reason=reason)

    order.status = target
    logger.info("order %s: %s -> %s (%s)", order.id, previous.value, target.value, action.value)
    return Transition(order.id, action, previous, target, ok=True)
