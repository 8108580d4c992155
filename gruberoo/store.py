"""
Store: 订单文件与两个快照文件的读写

orders.csv（每次修改后整体重写，按 OrderId 升序）：
    OrderId,CustomerEmail,RestaurantId,DeliveryDate,DeliveryTime,DeliveryAddress,
    CreatedDateTime,TotalAmount,Status,Items
    Items 为单个带引号的单元格："Name,Qty|Name,Qty"

queue.csv（退出时写入）：RestaurantId,OrderId,CustomerEmail,DeliveryDateTime,TotalAmount,Status
stack.csv（退出时写入，最新压栈的在前）：OrderId,CustomerEmail,RestaurantId,DeliveryDateTime,TotalAmount,Status

写入先落到同目录临时文件再替换，失败统一抛出 PersistenceFailure。
"""
from __future__ import annotations

import csv
import logging
import os
import stat
import tempfile
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Tuple

from .catalog import Catalog
from .domain import Order, OrderStatus, Restaurant
from .errors import PersistenceFailure, ValidationFailure
from .queues import RefundLedger

logger = logging.getLogger("gruberoo.store")

DATE_FMT = "%d/%m/%Y"
TIME_FMT = "%H:%M"
DATETIME_FMT = f"{DATE_FMT} {TIME_FMT}"

ORDER_HEADER = [
    "OrderId",
    "CustomerEmail",
    "RestaurantId",
    "DeliveryDate",
    "DeliveryTime",
    "DeliveryAddress",
    "CreatedDateTime",
    "TotalAmount",
    "Status",
    "Items",
]
QUEUE_HEADER = ["RestaurantId", "OrderId", "CustomerEmail", "DeliveryDateTime", "TotalAmount", "Status"]
STACK_HEADER = ["OrderId", "CustomerEmail", "RestaurantId", "DeliveryDateTime", "TotalAmount", "Status"]


def encode_items(order: Order) -> str:
    return "|".join(f"{line.item.name},{line.quantity}" for line in order.items)


def decode_items(cell: str) -> List[Tuple[str, int]]:
    """解析 Items 单元格；名称按最后一个逗号切分，名称本身可以含逗号。"""
    pairs = []
    for part in cell.split("|"):
        part = part.strip()
        if not part:
            continue
        name, sep, qty = part.rpartition(",")
        if not sep or not name.strip():
            raise ValueError(f"bad item entry {part!r}")
        quantity = int(qty.strip())
        if quantity <= 0:
            raise ValueError(f"quantity must be > 0 in item entry {part!r}")
        pairs.append((name.strip(), quantity))
    return pairs


class Store:
    """订单文件仓库。"""

    def __init__(self, orders_path: Path, queue_path: Path, stack_path: Path) -> None:
        self.orders_path = Path(orders_path)
        self.queue_path = Path(queue_path)
        self.stack_path = Path(stack_path)

    @classmethod
    def from_settings(cls, settings) -> "Store":
        return cls(settings.orders_path, settings.queue_path, settings.stack_path)

    # -------------------- 读取 --------------------

    def load_orders(self, catalog: Catalog) -> List[Order]:
        """读取 orders.csv；文件不存在时返回空列表。

        - 未知餐厅的订单保留，但调用方不会把它放入任何队列
        - 菜单里找不到的菜品跳过并记录 warning；订单保留文件中的 TotalAmount
        """
        if not self.orders_path.exists():
            logger.info("no order file at %s, starting empty", self.orders_path)
            return []
        orders: List[Order] = []
        seen = set()
        with open(self.orders_path, newline="", encoding="utf-8") as fh:
            reader = csv.reader(fh)
            next(reader, None)
            for row in reader:
                if not row or all(not cell.strip() for cell in row):
                    continue
                order = self._parse_row(row, reader.line_num, catalog)
                if order.id in seen:
                    raise ValidationFailure(f"{self.orders_path.name} line {reader.line_num}: duplicate order id {order.id}")
                seen.add(order.id)
                orders.append(order)
        orders.sort(key=lambda o: o.id)
        logger.info("loaded %d orders from %s", len(orders), self.orders_path)
        return orders

    def _parse_row(self, row: List[str], line: int, catalog: Catalog) -> Order:
        where = f"{self.orders_path.name} line {line}"
        if len(row) < len(ORDER_HEADER):
            raise ValidationFailure(f"{where}: expected {len(ORDER_HEADER)} columns, got {len(row)}")
        cells = [cell.strip() for cell in row]
        try:
            order = Order(
                id=int(cells[0]),
                customer_email=cells[1],
                restaurant_id=cells[2],
                delivery_at=datetime.strptime(f"{cells[3]} {cells[4]}", DATETIME_FMT),
                address=cells[5],
                created_at=datetime.strptime(cells[6], DATETIME_FMT),
                total=Decimal(cells[7]),
                status=OrderStatus.parse(cells[8]),
            )
            pairs = decode_items(cells[9])
        except (ValueError, InvalidOperation) as exc:
            raise ValidationFailure(f"{where}: {exc}") from None

        restaurant = catalog.restaurant(order.restaurant_id)
        if restaurant is None:
            logger.warning("%s: order %s references unknown restaurant %s", where, order.id, order.restaurant_id)
        else:
            order.restaurant_id = restaurant.restaurant_id
        for name, qty in pairs:
            item = restaurant.find_item(name) if restaurant is not None else None
            if item is None:
                logger.warning("%s: item %r not on the menu, skipped", where, name)
                continue
            order.add_item(item, qty)
        return order

    # -------------------- 写入 --------------------

    def save_orders(self, orders: Iterable[Order]) -> None:
        rows = [
            [
                str(o.id),
                o.customer_email,
                o.restaurant_id,
                o.delivery_at.strftime(DATE_FMT),
                o.delivery_at.strftime(TIME_FMT),
                o.address,
                o.created_at.strftime(DATETIME_FMT),
                f"{o.total:.2f}",
                o.status.value,
                encode_items(o),
            ]
            for o in sorted(orders, key=lambda o: o.id)
        ]
        self._write(self.orders_path, ORDER_HEADER, rows)
        logger.debug("wrote %d orders to %s", len(rows), self.orders_path)

    def save_queue(self, restaurants: Iterable[Restaurant], orders: Mapping[int, Order]) -> None:
        rows = []
        for restaurant in restaurants:
            for oid in restaurant.queue:
                o = orders[oid]
                rows.append([
                    restaurant.restaurant_id,
                    str(o.id),
                    o.customer_email,
                    o.delivery_at.strftime(DATETIME_FMT),
                    f"{o.total:.2f}",
                    o.status.value,
                ])
        self._write(self.queue_path, QUEUE_HEADER, rows)

    def save_refunds(self, ledger: RefundLedger, orders: Mapping[int, Order]) -> None:
        rows = []
        for oid in ledger.latest_first():
            o = orders[oid]
            rows.append([
                str(o.id),
                o.customer_email,
                o.restaurant_id,
                o.delivery_at.strftime(DATETIME_FMT),
                f"{o.total:.2f}",
                o.status.value,
            ])
        self._write(self.stack_path, STACK_HEADER, rows)

    def _write(self, path: Path, header: List[str], rows: List[List[str]]) -> None:
        """整体重写：写临时文件后 os.replace。"""
        tmp_name = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
            with os.fdopen(fd, "w", newline="", encoding="utf-8") as fh:
                writer = csv.writer(fh)
                writer.writerow(header)
                writer.writerows(rows)
            os.chmod(tmp_name, _file_mode(path))
            os.replace(tmp_name, path)
        except (OSError, csv.Error) as exc:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise PersistenceFailure(str(path), exc) from exc


def _file_mode(path: Path) -> int:
    """沿用已有文件的权限；新文件用 0644。"""
    try:
        return stat.S_IMODE(os.stat(path).st_mode)
    except FileNotFoundError:
        return 0o644


def replay(orders: Iterable[Order], catalog: Catalog, ledger: RefundLedger) -> Dict[int, Order]:
    """按 id 顺序把历史订单放回队列 / 退款栈，并挂到顾客名下。

    - Pending / Preparing -> 所属餐厅队列
    - Rejected / Cancelled -> 退款栈（id 越大越“新”）
    """
    arena: Dict[int, Order] = {}
    # 目录对象可能被前一个会话用过，先清空队列与顾客索引
    for restaurant in catalog.restaurants.values():
        restaurant.queue.clear()
    for customer in catalog.customers.values():
        customer.order_ids.clear()
    for order in sorted(orders, key=lambda o: o.id):
        arena[order.id] = order
        restaurant = catalog.restaurant(order.restaurant_id)
        if order.status.is_active and restaurant is not None:
            restaurant.queue.enqueue(order.id)
        elif order.status.is_refundable:
            ledger.push(order.id)
        customer = catalog.customer(order.customer_email)
        if customer is not None:
            customer.add_order(order.id)
    return arena
