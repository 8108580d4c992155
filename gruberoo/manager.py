"""
Manager: 系统管理类（会话对象）

职责：
- 持有目录（餐厅、顾客）、订单表（id -> Order）与全局退款栈
- 维护订单 ID 生成：max(现有) + 1，空表从 1001 开始
- 执行生命周期操作，并同步维护餐厅队列与退款栈
- 每次修改后整体重写 orders.csv；退出时另存 queue.csv 与 stack.csv
- 提供 CLI 需要的入口 handle_cmd：只做解析与调度，不直接读写终端
"""
from __future__ import annotations

import logging
import shlex
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from . import lifecycle
from .catalog import Catalog, load_catalog
from .config import Settings, get_settings
from .domain import Customer, Order, OrderStatus, PaymentMethod, Restaurant
from .errors import GruberooError, GuardViolation, LookupFailure, PersistenceFailure, ValidationFailure
from .lifecycle import Action, Transition
from .pricing import compute_total, discount_amount, items_subtotal
from .processor import BulkReport, run_bulk_pass
from .queues import RefundLedger
from .reports import FinancialReport, build_report
from .store import DATETIME_FMT, TIME_FMT, Store, replay

logger = logging.getLogger("gruberoo.manager")

FIRST_ORDER_ID = 1001

ItemRequest = Tuple[str, int]


class Manager:
    """会话管理者。

    内部字段：
    - catalog : Catalog（餐厅、顾客）
    - orders  : dict[int, Order]，订单的唯一持有者
    - ledger  : RefundLedger，保存进入 Rejected / Cancelled 的订单 id
    - store   : Store | None；为 None 时只在内存中运行
    """

    def __init__(
        self,
        catalog: Catalog,
        orders: Iterable[Order] = (),
        store: Optional[Store] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.catalog = catalog
        self.store = store
        self.ledger = RefundLedger()
        self.orders: Dict[int, Order] = replay(orders, catalog, self.ledger)
        self.last_persist_error: Optional[PersistenceFailure] = None

    @classmethod
    def load(cls, settings: Optional[Settings] = None) -> "Manager":
        """从 data_dir 读取目录与历史订单，构建会话。"""
        settings = settings or get_settings()
        catalog = load_catalog(settings)
        store = Store.from_settings(settings)
        orders = store.load_orders(catalog)
        return cls(catalog, orders, store=store, settings=settings)

    @property
    def delivery_fee(self) -> Decimal:
        return self.settings.delivery_fee

    @property
    def restaurants(self) -> List[Restaurant]:
        return list(self.catalog.restaurants.values())

    # -------------------- 查找 --------------------

    def restaurant(self, restaurant_id: str) -> Restaurant:
        restaurant = self.catalog.restaurant(restaurant_id)
        if restaurant is None:
            raise LookupFailure(f"restaurant not found: {restaurant_id}")
        return restaurant

    def customer(self, email: str) -> Customer:
        customer = self.catalog.customer(email)
        if customer is None:
            raise LookupFailure(f"customer not found: {email}")
        return customer

    def order(self, order_id: int) -> Order:
        try:
            return self.orders[order_id]
        except KeyError:
            raise LookupFailure(f"order not found: {order_id}") from None

    def next_order_id(self) -> int:
        return max(self.orders, default=FIRST_ORDER_ID - 1) + 1

    # -------------------- 新建订单 --------------------

    def create_order(
        self,
        email: str,
        restaurant_id: str,
        delivery_at: datetime,
        address: str,
        items: Sequence[ItemRequest],
        offer_code: Optional[str] = None,
        special_request: Optional[str] = None,
        payment: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Order:
        """创建订单（Pending），入所属餐厅队尾，并重写订单文件。"""
        customer = self.customer(email)
        restaurant = self.restaurant(restaurant_id)
        address = (address or "").strip()
        if not address:
            raise ValidationFailure("delivery address cannot be empty")
        lines = self._resolve_items(restaurant, items)
        method = self._parse_payment(payment)

        created_at = (now or datetime.now()).replace(second=0, microsecond=0)
        order = Order(
            id=self.next_order_id(),
            customer_email=customer.email,
            restaurant_id=restaurant.restaurant_id,
            delivery_at=delivery_at.replace(second=0, microsecond=0),
            address=address,
            created_at=created_at,
            special_request=(special_request or "").strip() or None,
            payment_method=method,
        )
        for item, qty in lines:
            order.add_item(item, qty)

        if offer_code:
            offer = restaurant.find_offer(offer_code)
            if offer is None:
                # 未知优惠码按无折扣处理，不拒绝订单
                logger.info("offer code %s unknown for %s, no discount applied", offer_code, restaurant.restaurant_id)
            order.apply_offer(offer)
        order.total = compute_total(order.items, order.discount_percent, self.delivery_fee)

        self.orders[order.id] = order
        customer.add_order(order.id)
        restaurant.queue.enqueue(order.id)
        logger.info("order %s created for %s at %s, total %s", order.id, customer.email, restaurant.restaurant_id, order.total)
        self._persist()
        return order

    def _resolve_items(self, restaurant: Restaurant, items: Sequence[ItemRequest]) -> list:
        if not items:
            raise ValidationFailure("an order needs at least one item")
        lines = []
        for name, qty in items:
            if qty <= 0:
                raise ValidationFailure(f"quantity for {name} must be > 0")
            item = restaurant.find_item(name)
            if item is None:
                raise LookupFailure(f"item not on the menu of {restaurant.restaurant_id}: {name}")
            lines.append((item, qty))
        return lines

    @staticmethod
    def _parse_payment(payment: Optional[str]) -> Optional[PaymentMethod]:
        if payment is None:
            return None
        try:
            return PaymentMethod(payment.strip().upper())
        except ValueError:
            raise ValidationFailure(f"unknown payment method: {payment} (use CC, PP or CD)") from None

    # -------------------- 生命周期 --------------------

    def transition(self, order: Order, action: Action, now: Optional[datetime] = None) -> Transition:
        """执行状态流转并同步队列 / 退款栈。守卫失败时原样返回结果，不做任何修改。"""
        result = lifecycle.apply(order, action, now=now, cutoff_minutes=self.settings.bulk_cutoff_minutes)
        if not result.ok:
            return result
        if result.entered_terminal:
            restaurant = self.catalog.restaurant(order.restaurant_id)
            if restaurant is not None:
                restaurant.queue.remove(order.id)
        if result.entered_refund and not self.ledger.push(order.id):
            logger.warning("order %s already in the refund ledger", order.id)
        return result

    def _act(self, order_id: int, action: Action) -> Transition:
        order = self.order(order_id)
        result = self.transition(order, action)
        if not result.ok:
            raise GuardViolation(result.reason)
        self._persist()
        return result

    def confirm(self, order_id: int) -> Transition:
        return self._act(order_id, Action.CONFIRM)

    def reject(self, order_id: int) -> Transition:
        return self._act(order_id, Action.REJECT)

    def deliver(self, order_id: int) -> Transition:
        return self._act(order_id, Action.DELIVER)

    def cancel(self, order_id: int, email: Optional[str] = None) -> Transition:
        """顾客取消订单；给出 email 时订单必须属于该顾客。"""
        if email is not None:
            customer = self.customer(email)
            if order_id not in customer.order_ids:
                raise LookupFailure(f"order {order_id} does not belong to {customer.email}")
        return self._act(order_id, Action.CANCEL)

    def next_orders(self, restaurant_id: str, n: int = 1) -> List[Order]:
        """窥视餐厅队头的 n 个订单，不出队。"""
        restaurant = self.restaurant(restaurant_id)
        return [self.orders[oid] for oid in restaurant.queue.front_window(n)]

    # -------------------- 修改订单（仅 Pending） --------------------

    def _pending(self, order_id: int) -> Order:
        order = self.order(order_id)
        if order.status is not OrderStatus.PENDING:
            raise GuardViolation(f"order {order_id} is {order.status.value}; only Pending orders can be modified")
        return order

    def modify_items(self, order_id: int, items: Sequence[ItemRequest]) -> Dict[str, Any]:
        """替换订单菜品并按原折扣重新计价；新总额更高时返回应补差额。"""
        order = self._pending(order_id)
        restaurant = self.restaurant(order.restaurant_id)
        lines = self._resolve_items(restaurant, items)

        old_total = order.total
        order.clear_items()
        for item, qty in lines:
            order.add_item(item, qty)
        order.total = compute_total(order.items, order.discount_percent, self.delivery_fee)
        self._persist()
        amount_due = max(order.total - old_total, Decimal("0.00"))
        return {
            "order": order.summary(),
            "old_total": f"{old_total:.2f}",
            "new_total": f"{order.total:.2f}",
            "amount_due": f"{amount_due:.2f}",
        }

    def modify_address(self, order_id: int, address: str) -> Order:
        order = self._pending(order_id)
        address = (address or "").strip()
        if not address:
            raise ValidationFailure("delivery address cannot be empty")
        order.address = address
        self._persist()
        return order

    def modify_delivery_time(self, order_id: int, hhmm: str) -> Order:
        """只改时间，保留原配送日期。"""
        order = self._pending(order_id)
        try:
            t = datetime.strptime((hhmm or "").strip(), TIME_FMT)
        except ValueError:
            raise ValidationFailure(f"invalid time {hhmm!r}, expected hh:mm") from None
        order.delivery_at = order.delivery_at.replace(hour=t.hour, minute=t.minute)
        self._persist()
        return order

    # -------------------- 批量处理 / 报表 --------------------

    def bulk_process(self, now: Optional[datetime] = None) -> BulkReport:
        now = now or datetime.now()
        report = run_bulk_pass(
            self.restaurants,
            self.orders,
            self.transition,
            now,
            self.settings.bulk_cutoff_minutes,
        )
        if report.processed:
            self._persist()
        return report

    def financial_report(self) -> FinancialReport:
        return build_report(self.restaurants, self.orders, self.delivery_fee)

    # -------------------- 只读视图 --------------------

    def list_restaurants(self) -> List[Restaurant]:
        return self.restaurants

    def list_orders(self) -> List[Order]:
        return [self.orders[oid] for oid in sorted(self.orders)]

    def customer_orders(self, email: str, status: Optional[OrderStatus] = None) -> List[Order]:
        customer = self.customer(email)
        res = [self.orders[oid] for oid in sorted(customer.order_ids) if oid in self.orders]
        if status is not None:
            res = [o for o in res if o.status is status]
        return res

    def queue_view(self, restaurant_id: Optional[str] = None) -> Dict[str, List[Order]]:
        restaurants = [self.restaurant(restaurant_id)] if restaurant_id else self.restaurants
        return {r.restaurant_id: [self.orders[oid] for oid in r.queue] for r in restaurants}

    def refunds(self) -> List[Order]:
        return [self.orders[oid] for oid in self.ledger.latest_first()]

    # -------------------- 持久化 --------------------

    def _persist(self) -> None:
        """重写订单文件；失败只记录，不影响内存状态。"""
        self.last_persist_error = None
        if self.store is None:
            return
        try:
            self.store.save_orders(self.orders.values())
        except PersistenceFailure as exc:
            logger.exception("could not save orders")
            self.last_persist_error = exc

    def shutdown(self) -> None:
        """退出保存：queue.csv、stack.csv 与 orders.csv。全部尝试后再抛出第一个失败。"""
        if self.store is None:
            return
        failures: List[PersistenceFailure] = []
        steps = (
            lambda: self.store.save_queue(self.restaurants, self.orders),
            lambda: self.store.save_refunds(self.ledger, self.orders),
            lambda: self.store.save_orders(self.orders.values()),
        )
        for step in steps:
            try:
                step()
            except PersistenceFailure as exc:
                logger.exception("shutdown save failed")
                failures.append(exc)
        if failures:
            raise failures[0]

    # -------------------- CLI / CMD I/O --------------------

    def handle_cmd(self, line: str) -> Dict[str, Any]:
        """解析并执行一条命令行，返回结构化结果（不直接打印）。

        返回值格式：
          {"ok": bool, "cmd": str, "data": Any | None, "error": str | None}
        data 为字符串（提示信息）或包含 "tables" / "message" 的字典。
        业务异常（GruberooError）转换为 ok=False；未知命令附带 usage。
        """
        try:
            args = shlex.split(line or "")
        except ValueError as exc:
            return {"ok": False, "cmd": line, "error": f"cannot parse command: {exc}"}
        if not args:
            return {"ok": False, "cmd": "", "error": "empty command", "usage": self.help_text()}
        cmd, rest = args[0].lower(), args[1:]

        handler = self._commands().get(cmd)
        if handler is None:
            return {"ok": False, "cmd": cmd, "error": f"unknown command: {cmd}", "usage": self.help_text()}
        self.last_persist_error = None
        try:
            data = handler(rest)
        except GruberooError as exc:
            return {"ok": False, "cmd": cmd, "error": str(exc)}
        res = {"ok": True, "cmd": cmd, "data": data}
        if self.last_persist_error is not None:
            res["persist_error"] = str(self.last_persist_error)
            self.last_persist_error = None
        return res

    def _commands(self) -> Dict[str, Any]:
        return {
            "help": lambda a: self.help_text(),
            "h": lambda a: self.help_text(),
            "?": lambda a: self.help_text(),
            "restaurants": self._cmd_restaurants,
            "orders": self._cmd_orders,
            "customer": self._cmd_customer,
            "queue": self._cmd_queue,
            "next": self._cmd_next,
            "create": self._cmd_create,
            "confirm": lambda a: self._cmd_transition(a, self.confirm),
            "reject": lambda a: self._cmd_transition(a, self.reject),
            "deliver": lambda a: self._cmd_transition(a, self.deliver),
            "cancel": self._cmd_cancel,
            "modify": self._cmd_modify,
            "bulk": self._cmd_bulk,
            "report": self._cmd_report,
            "refunds": self._cmd_refunds,
            "clear": lambda a: {"clear": True},
            "cls": lambda a: {"clear": True},
            "exit": lambda a: {"exit": True},
            "quit": lambda a: {"exit": True},
        }

    # 参数解析

    @staticmethod
    def _need(args: List[str], n: int, usage: str) -> None:
        if len(args) < n:
            raise ValidationFailure(f"usage: {usage}")

    @staticmethod
    def _int(text: str, what: str = "order id") -> int:
        try:
            return int(text)
        except ValueError:
            raise ValidationFailure(f"invalid {what}: {text}") from None

    @classmethod
    def _item_args(cls, args: Sequence[str]) -> List[ItemRequest]:
        items = []
        for arg in args:
            name, sep, qty = arg.rpartition("=")
            if not sep or not name.strip():
                raise ValidationFailure(f"expected ITEM=QTY, got {arg!r}")
            items.append((name.strip(), cls._int(qty, "quantity")))
        return items

    def _order_rows(self, orders: Iterable[Order]) -> List[List[str]]:
        rows = []
        for o in orders:
            customer = self.catalog.customer(o.customer_email)
            restaurant = self.catalog.restaurant(o.restaurant_id)
            rows.append([
                str(o.id),
                customer.name if customer else o.customer_email,
                restaurant.name if restaurant else o.restaurant_id,
                o.delivery_at.strftime(DATETIME_FMT),
                f"${o.total:.2f}",
                o.status.value,
            ])
        return rows

    _ORDER_HEADERS = ["Order ID", "Customer", "Restaurant", "Delivery Date/Time", "Amount", "Status"]

    def _order_table(self, title: str, orders: Iterable[Order]) -> Dict[str, Any]:
        return {"title": title, "headers": self._ORDER_HEADERS, "rows": self._order_rows(orders)}

    # 命令实现

    def _cmd_restaurants(self, args: List[str]) -> Dict[str, Any]:
        tables = []
        for r in self.restaurants:
            rows = [[i.name, i.description, f"${i.price:.2f}"] for i in r.food_items]
            rows += [[f"[offer] {o.code}", o.description, f"{o.discount}%"] for o in r.offers]
            tables.append({"title": f"{r.name} ({r.restaurant_id})", "headers": ["Item", "Description", "Price"], "rows": rows})
        return {"tables": tables}

    def _cmd_orders(self, args: List[str]) -> Dict[str, Any]:
        return {"tables": [self._order_table("All Orders", self.list_orders())]}

    def _cmd_customer(self, args: List[str]) -> Dict[str, Any]:
        self._need(args, 1, "customer EMAIL [STATUS]")
        status = None
        if len(args) > 1:
            try:
                status = OrderStatus.parse(args[1])
            except ValueError as exc:
                raise ValidationFailure(str(exc)) from None
        customer = self.customer(args[0])
        orders = self.customer_orders(args[0], status)
        return {"tables": [self._order_table(f"Orders of {customer.name} ({customer.email})", orders)]}

    def _cmd_queue(self, args: List[str]) -> Dict[str, Any]:
        view = self.queue_view(args[0] if args else None)
        return {"tables": [self._order_table(f"Queue {rid}", orders) for rid, orders in view.items()]}

    def _cmd_next(self, args: List[str]) -> Dict[str, Any]:
        self._need(args, 1, "next RID [N]")
        n = self._int(args[1], "count") if len(args) > 1 else 1
        orders = self.next_orders(args[0], n)
        tables = [self._order_table(f"Next in {args[0]}", orders)]
        for o in orders:
            rows = [[line.item.name, str(line.quantity), f"${line.line_total():.2f}"] for line in o.items]
            tables.append({"title": f"Order {o.id} items", "headers": ["Item", "Qty", "Line"], "rows": rows})
        return {"tables": tables}

    def _cmd_create(self, args: List[str]) -> Dict[str, Any]:
        usage = "create EMAIL RID DD/MM/YYYY HH:MM ADDRESS ITEM=QTY... [offer=CODE] [note=TEXT] [pay=CC|PP|CD]"
        self._need(args, 6, usage)
        email, rid, date_text, time_text, address = args[:5]
        try:
            delivery_at = datetime.strptime(f"{date_text} {time_text}", DATETIME_FMT)
        except ValueError:
            raise ValidationFailure("invalid delivery date/time, expected dd/mm/yyyy hh:mm") from None

        options: Dict[str, str] = {}
        item_args = []
        for arg in args[5:]:
            key, sep, value = arg.partition("=")
            if sep and key.lower() in ("offer", "note", "pay"):
                options[key.lower()] = value
            else:
                item_args.append(arg)
        order = self.create_order(
            email,
            rid,
            delivery_at,
            address,
            self._item_args(item_args),
            offer_code=options.get("offer"),
            special_request=options.get("note"),
            payment=options.get("pay"),
        )
        fee = self.delivery_fee
        message = f"Order {order.id} created. Subtotal: ${items_subtotal(order.items):.2f}"
        if order.discount_percent:
            discount = discount_amount(order.items, order.discount_percent)
            message += f" - ${discount:.2f} ({order.offer_code} {order.discount_percent}% off)"
        message += f" + ${fee:.2f} (delivery) = ${order.total:.2f}. Status: {order.status.value}"
        return {
            "message": message,
            "order": order.summary(),
        }

    def _cmd_transition(self, args: List[str], op) -> Dict[str, Any]:
        self._need(args, 1, "confirm|reject|deliver ID")
        result = op(self._int(args[0]))
        return self._transition_data(result)

    def _transition_data(self, result: Transition) -> Dict[str, Any]:
        order = self.orders[result.order_id]
        message = f"Order {order.id}: {result.previous.value} -> {result.status.value}"
        if result.entered_refund:
            message += f". Refund of ${order.total:.2f} processed."
        return {"message": message, "order": order.summary()}

    def _cmd_cancel(self, args: List[str]) -> Dict[str, Any]:
        self._need(args, 1, "cancel ID [EMAIL]")
        result = self.cancel(self._int(args[0]), args[1] if len(args) > 1 else None)
        return self._transition_data(result)

    def _cmd_modify(self, args: List[str]) -> Dict[str, Any]:
        usage = "modify ID items ITEM=QTY... | modify ID address TEXT | modify ID time HH:MM"
        self._need(args, 3, usage)
        oid, what, rest = self._int(args[0]), args[1].lower(), args[2:]
        if what == "items":
            return self._modify_items_message(oid, self._item_args(rest))
        if what == "address":
            order = self.modify_address(oid, " ".join(rest))
            return {"message": f"Order {order.id} updated. New address: {order.address}", "order": order.summary()}
        if what == "time":
            order = self.modify_delivery_time(oid, rest[0])
            return {
                "message": f"Order {order.id} updated. New delivery time: {order.delivery_at.strftime(TIME_FMT)}",
                "order": order.summary(),
            }
        raise ValidationFailure(f"usage: {usage}")

    def _modify_items_message(self, oid: int, items: List[ItemRequest]) -> Dict[str, Any]:
        res = self.modify_items(oid, items)
        message = f"Order {oid} updated. Total: ${res['old_total']} -> ${res['new_total']}"
        if Decimal(res["amount_due"]) > 0:
            message += f". Amount due: ${res['amount_due']}"
        res["message"] = message
        return res

    def _cmd_bulk(self, args: List[str]) -> Dict[str, Any]:
        return self._bulk_data(self.bulk_process())

    def _bulk_data(self, report: BulkReport) -> Dict[str, Any]:
        data = report.as_dict()
        rows = [
            ["Orders in all queues", str(data["total_queued"])],
            ["Pending orders for today", str(data["candidates"])],
            ["Orders processed", str(data["processed"])],
            ["Moved to Preparing", str(data["preparing"])],
            ["Moved to Rejected", str(data["rejected"])],
            ["Processed vs queued", f"{data['percent_processed']}%"],
        ]
        processed = [[str(t.order_id), t.previous.value, t.status.value] for t in report.transitions]
        return {
            "tables": [
                {"title": f"Bulk pass at {data['now']}", "headers": ["Metric", "Value"], "rows": rows},
                {"title": "Processed orders", "headers": ["Order ID", "From", "To"], "rows": processed},
            ],
            "report": data,
        }

    def _cmd_report(self, args: List[str]) -> Dict[str, Any]:
        report = self.financial_report()
        data = report.as_dict()
        rows = [
            [r["name"], str(r["delivered"]), f"${r['delivered_less_fee']}", str(r["refunded"]), f"${r['refunds']}"]
            for r in data["restaurants"]
        ]
        summary = [
            ["Total order amount (less delivery fee)", f"${data['total_delivered_less_fee']}"],
            ["Total refunds", f"${data['total_refunds']}"],
            ["Gruberoo earnings", f"${data['system_earnings']}"],
        ]
        return {
            "tables": [
                {"title": "Per restaurant", "headers": ["Restaurant", "Delivered", "Amount", "Refunded", "Refunds"], "rows": rows},
                {"title": "System", "headers": ["Metric", "Value"], "rows": summary},
            ],
            "report": data,
        }

    def _cmd_refunds(self, args: List[str]) -> Dict[str, Any]:
        return {"tables": [self._order_table("Refund ledger (latest first)", self.refunds())]}

    def help_text(self) -> str:
        """返回 CLI 帮助文本，供外层打印。"""
        return (
            "Commands:\n"
            "  restaurants                      - list restaurants, menu items and offers\n"
            "  orders                           - list all orders\n"
            "  customer EMAIL [STATUS]          - list a customer's orders\n"
            "  queue [RID]                      - show active queues\n"
            "  next RID [N]                     - peek the front of a restaurant queue\n"
            "  create EMAIL RID DATE TIME ADDRESS ITEM=QTY... [offer=CODE] [note=TEXT] [pay=CC|PP|CD]\n"
            "  confirm | reject | deliver ID    - process an order\n"
            "  cancel ID [EMAIL]                - cancel a Pending order\n"
            "  modify ID items ITEM=QTY...      - replace items of a Pending order\n"
            "  modify ID address TEXT           - change delivery address\n"
            "  modify ID time HH:MM             - change delivery time\n"
            "  bulk                             - auto-process today's Pending orders\n"
            "  report                           - financial summary\n"
            "  refunds                          - refund ledger\n"
            "  clear | cls                      - clear screen\n"
            "  help | h | ?                     - this help\n"
            "  exit | quit                      - save and exit\n"
        )
