"""
Domain models: 统一的订单与目录定义

只在此处定义 Order / Restaurant 等实体，其他模块一律从这里导入，避免重复定义。
目录记录（FoodItem、SpecialOffer）不可变；Order 由 Manager 的订单表独占，
队列与退款栈只保存订单 id。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from .queues import RestaurantQueue


class OrderStatus(str, Enum):
    """订单生命周期状态（封闭枚举）。"""

    PENDING = "Pending"
    PREPARING = "Preparing"
    DELIVERED = "Delivered"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.DELIVERED, OrderStatus.REJECTED, OrderStatus.CANCELLED)

    @property
    def is_active(self) -> bool:
        return not self.is_terminal

    @property
    def is_refundable(self) -> bool:
        return self in (OrderStatus.REJECTED, OrderStatus.CANCELLED)

    @classmethod
    def parse(cls, text: str) -> "OrderStatus":
        """大小写不敏感地解析文件里的状态文本。"""
        wanted = (text or "").strip().lower()
        for status in cls:
            if status.value.lower() == wanted:
                return status
        raise ValueError(f"unknown order status: {text!r}")


class PaymentMethod(str, Enum):
    CREDIT_CARD = "CC"
    PAYPAL = "PP"
    CASH_ON_DELIVERY = "CD"


@dataclass(frozen=True)
class FoodItem:
    name: str
    description: str
    price: Decimal


@dataclass(frozen=True)
class SpecialOffer:
    code: str
    description: str
    discount: Decimal


@dataclass
class Menu:
    menu_id: str
    name: str
    items: list[FoodItem] = field(default_factory=list)

    def add_item(self, item: FoodItem) -> bool:
        """加入菜品；同名（忽略大小写）已存在时返回 False 且不加入。"""
        if self.find(item.name) is not None:
            return False
        self.items.append(item)
        return True

    def find(self, name: str) -> Optional[FoodItem]:
        key = name.strip().lower()
        for item in self.items:
            if item.name.lower() == key:
                return item
        return None


@dataclass
class Restaurant:
    """餐厅

    - menus : 通常只有一个 "Main Menu"，food_items 汇总所有菜单
    - offers: 优惠码列表，code 忽略大小写唯一
    - queue : 活跃订单（Pending / Preparing）的 FIFO，保存订单 id
    """

    restaurant_id: str
    name: str
    email: str
    menus: list[Menu] = field(default_factory=list)
    offers: list[SpecialOffer] = field(default_factory=list)
    queue: RestaurantQueue = field(default_factory=RestaurantQueue)

    @property
    def food_items(self) -> list[FoodItem]:
        return [item for menu in self.menus for item in menu.items]

    def main_menu(self) -> Menu:
        if not self.menus:
            self.menus.append(Menu("M001", "Main Menu"))
        return self.menus[0]

    def find_item(self, name: str) -> Optional[FoodItem]:
        for menu in self.menus:
            item = menu.find(name)
            if item is not None:
                return item
        return None

    def find_offer(self, code: str) -> Optional[SpecialOffer]:
        key = (code or "").strip().lower()
        for offer in self.offers:
            if offer.code.lower() == key:
                return offer
        return None

    def add_offer(self, offer: SpecialOffer) -> bool:
        if self.find_offer(offer.code) is not None:
            return False
        self.offers.append(offer)
        return True


@dataclass
class Customer:
    """顾客；order_ids 是弱索引（按顾客查订单），不拥有订单。"""

    name: str
    email: str
    order_ids: list[int] = field(default_factory=list)

    def add_order(self, order_id: int) -> None:
        if order_id not in self.order_ids:
            self.order_ids.append(order_id)


@dataclass
class OrderedFoodItem:
    item: FoodItem
    quantity: int

    def line_total(self) -> Decimal:
        return self.item.price * self.quantity


@dataclass
class Order:
    """订单实体

    - id: 唯一递增整数，由 Manager 负责生成（首个为 1001）
    - status: 默认 PENDING
    - total: 派生金额，两位小数，始终包含配送费
    - offer_code / discount_percent: 同时存在或同时为空
    - special_request / payment_method: 只在本次会话中保留，不写入订单文件
    """

    id: int
    customer_email: str
    restaurant_id: str
    delivery_at: datetime
    address: str
    created_at: datetime
    status: OrderStatus = OrderStatus.PENDING
    items: list[OrderedFoodItem] = field(default_factory=list)
    total: Decimal = Decimal("0.00")
    special_request: Optional[str] = None
    offer_code: Optional[str] = None
    discount_percent: Optional[Decimal] = None
    payment_method: Optional[PaymentMethod] = None

    def add_item(self, item: FoodItem, quantity: int) -> None:
        """同一菜品重复加入时累加数量，不新增行。"""
        for line in self.items:
            if line.item.name.lower() == item.name.lower():
                line.quantity += quantity
                return
        self.items.append(OrderedFoodItem(item, quantity))

    def clear_items(self) -> None:
        self.items.clear()

    def apply_offer(self, offer: Optional[SpecialOffer]) -> None:
        if offer is None:
            self.offer_code = None
            self.discount_percent = None
        else:
            self.offer_code = offer.code
            self.discount_percent = offer.discount

    def summary(self) -> dict:
        return {
            "id": self.id,
            "customer": self.customer_email,
            "restaurant": self.restaurant_id,
            "delivery": self.delivery_at.strftime("%d/%m/%Y %H:%M"),
            "total": f"{self.total:.2f}",
            "status": self.status.value,
        }
