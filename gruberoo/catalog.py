"""
Catalog: 从 CSV 读取只读目录（餐厅、菜品、优惠、顾客）

- 逗号分隔，首行为表头，字段去除首尾空白
- 身份字段（餐厅 id、菜品名、优惠码、邮箱）忽略大小写
- 菜品 / 优惠引用未知餐厅时跳过并记录 warning
- 同一餐厅的重复菜品名 / 优惠码保留第一条
- 缺列、数字格式错误、价格为负、折扣越界：抛出 ValidationFailure（含文件名与行号）
"""
from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from .config import Settings
from .domain import Customer, FoodItem, Restaurant, SpecialOffer
from .errors import ValidationFailure

logger = logging.getLogger("gruberoo.catalog")


@dataclass
class Catalog:
    """内存中的目录；键为小写 id / 邮箱。"""

    restaurants: Dict[str, Restaurant] = field(default_factory=dict)
    customers: Dict[str, Customer] = field(default_factory=dict)

    def add_restaurant(self, restaurant: Restaurant) -> None:
        self.restaurants[restaurant.restaurant_id.lower()] = restaurant

    def add_customer(self, customer: Customer) -> None:
        self.customers[customer.email.lower()] = customer

    def restaurant(self, restaurant_id: str) -> Optional[Restaurant]:
        return self.restaurants.get((restaurant_id or "").strip().lower())

    def customer(self, email: str) -> Optional[Customer]:
        return self.customers.get((email or "").strip().lower())

    @property
    def food_item_count(self) -> int:
        return sum(len(r.food_items) for r in self.restaurants.values())


def _rows(path: Path, width: int) -> Iterator[Tuple[int, List[str]]]:
    """逐行产出 (行号, 字段列表)，跳过表头与空行。"""
    with open(path, newline="", encoding="utf-8") as fh:
        reader = csv.reader(fh)
        next(reader, None)
        for row in reader:
            if not row or all(not cell.strip() for cell in row):
                continue
            if len(row) < width:
                raise ValidationFailure(
                    f"{path.name} line {reader.line_num}: expected {width} columns, got {len(row)}"
                )
            yield reader.line_num, [cell.strip() for cell in row]


def _decimal(text: str, path: Path, line: int, what: str) -> Decimal:
    try:
        return Decimal(text)
    except InvalidOperation:
        raise ValidationFailure(f"{path.name} line {line}: invalid {what} {text!r}") from None


def load_restaurants(path: Path, catalog: Catalog) -> None:
    for line, row in _rows(path, 3):
        rid, name, email = row[:3]
        if not rid:
            raise ValidationFailure(f"{path.name} line {line}: empty restaurant id")
        if catalog.restaurant(rid) is not None:
            logger.warning("%s line %s: duplicate restaurant %s skipped", path.name, line, rid)
            continue
        catalog.add_restaurant(Restaurant(rid, name, email))


def load_food_items(path: Path, catalog: Catalog) -> None:
    for line, row in _rows(path, 4):
        rid, name, desc, price_text = row[:4]
        restaurant = catalog.restaurant(rid)
        if restaurant is None:
            logger.warning("%s line %s: unknown restaurant %s, item %s skipped", path.name, line, rid, name)
            continue
        if not name:
            raise ValidationFailure(f"{path.name} line {line}: empty item name")
        price = _decimal(price_text, path, line, "price")
        if price < 0:
            raise ValidationFailure(f"{path.name} line {line}: negative price {price_text}")
        if not restaurant.main_menu().add_item(FoodItem(name, desc, price)):
            logger.warning("%s line %s: duplicate item %s for %s skipped", path.name, line, name, rid)


def load_special_offers(path: Path, catalog: Catalog) -> None:
    for line, row in _rows(path, 4):
        code, desc, discount_text, rid = row[:4]
        restaurant = catalog.restaurant(rid)
        if restaurant is None:
            logger.warning("%s line %s: unknown restaurant %s, offer %s skipped", path.name, line, rid, code)
            continue
        # 无折扣的优惠（如免运费）折扣列为空或 "-"
        discount = Decimal(0) if discount_text in ("", "-") else _decimal(discount_text, path, line, "discount")
        if discount < 0 or discount > 100:
            raise ValidationFailure(f"{path.name} line {line}: discount {discount_text} outside 0-100")
        if not restaurant.add_offer(SpecialOffer(code, desc, discount)):
            logger.warning("%s line %s: duplicate offer %s for %s skipped", path.name, line, code, rid)


def load_customers(path: Path, catalog: Catalog) -> None:
    for line, row in _rows(path, 2):
        name, email = row[:2]
        if not email:
            raise ValidationFailure(f"{path.name} line {line}: empty customer email")
        if catalog.customer(email) is not None:
            logger.warning("%s line %s: duplicate customer %s skipped", path.name, line, email)
            continue
        catalog.add_customer(Customer(name, email))


def load_catalog(settings: Settings) -> Catalog:
    """按 餐厅 -> 菜品 -> 优惠 -> 顾客 的顺序加载目录。"""
    catalog = Catalog()
    load_restaurants(settings.path_for(settings.restaurants_file), catalog)
    load_food_items(settings.path_for(settings.food_items_file), catalog)
    offers_path = settings.path_for(settings.offers_file)
    if offers_path.exists():
        load_special_offers(offers_path, catalog)
    else:
        logger.warning("offers file %s not found, no special offers loaded", offers_path)
    load_customers(settings.path_for(settings.customers_file), catalog)
    logger.info(
        "catalog loaded: %d restaurants, %d food items, %d customers",
        len(catalog.restaurants),
        catalog.food_item_count,
        len(catalog.customers),
    )
    return catalog
