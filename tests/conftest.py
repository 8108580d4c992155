from datetime import datetime
from decimal import Decimal

import pytest

from gruberoo.catalog import Catalog
from gruberoo.config import Settings
from gruberoo.domain import Customer, FoodItem, Restaurant, SpecialOffer
from gruberoo.manager import Manager
from gruberoo.store import Store

NOW = datetime(2026, 10, 19, 12, 0)


@pytest.fixture
def settings(tmp_path):
    return Settings(data_dir=tmp_path, delivery_fee=Decimal("5.00"), bulk_cutoff_minutes=60)


@pytest.fixture
def catalog():
    cat = Catalog()
    r1 = Restaurant("R001", "Kampung Kitchen", "kk@example.com")
    menu = r1.main_menu()
    menu.add_item(FoodItem("Item A", "first", Decimal("4.00")))
    menu.add_item(FoodItem("Item B", "second", Decimal("3.00")))
    r1.add_offer(SpecialOffer("TEN", "10% off", Decimal("10")))
    r2 = Restaurant("R002", "Noodle House", "nh@example.com")
    r2.main_menu().add_item(FoodItem("Laksa", "soup", Decimal("7.50")))
    cat.add_restaurant(r1)
    cat.add_restaurant(r2)
    cat.add_customer(Customer("Alice", "alice@example.com"))
    cat.add_customer(Customer("Bob", "bob@example.com"))
    return cat


@pytest.fixture
def store(settings):
    return Store.from_settings(settings)


@pytest.fixture
def manager(catalog, store, settings):
    return Manager(catalog, store=store, settings=settings)


@pytest.fixture
def make_order(manager):
    """在 R001 下单的快捷方式：默认 Item A x2 + Item B x1，配送时间 NOW + 3 小时。"""

    def _make(delivery_at=None, items=None, email="alice@example.com", rid="R001", **kw):
        return manager.create_order(
            email,
            rid,
            delivery_at or NOW.replace(hour=15),
            "1 Main Street",
            items or [("Item A", 2), ("Item B", 1)],
            now=NOW,
            **kw,
        )

    return _make
