import shutil
from decimal import Decimal
from pathlib import Path

import pytest

from gruberoo.config import get_settings
from gruberoo.domain import OrderStatus
from gruberoo.errors import PersistenceFailure
from gruberoo.main import main, print_result
from gruberoo.store import Store

SAMPLE_DATA = Path(__file__).resolve().parents[1] / "data"


def test_create_via_command(manager):
    res = manager.handle_cmd('create alice@example.com R001 19/10/2030 18:30 "1 Main Street" "Item A=2" "Item B=1" offer=TEN note="ring twice" pay=cc')
    assert res["ok"], res
    order = manager.orders[res["data"]["order"]["id"]]
    assert order.total == Decimal("14.90")
    assert order.special_request == "ring twice"
    assert "14.90" in res["data"]["message"]


def test_lifecycle_commands(manager):
    manager.handle_cmd('create alice@example.com R001 19/10/2030 18:30 addr "Item A=1"')
    assert manager.handle_cmd("confirm 1001")["ok"]
    res = manager.handle_cmd("confirm 1001")
    assert res["ok"] is False
    assert "Pending" in res["error"]
    assert manager.handle_cmd("deliver 1001")["ok"]
    assert manager.orders[1001].status is OrderStatus.DELIVERED


def test_cancel_and_refunds_commands(manager):
    manager.handle_cmd('create bob@example.com R002 19/10/2030 18:30 addr Laksa=1')
    res = manager.handle_cmd("cancel 1001 bob@example.com")
    assert res["ok"]
    assert "Refund of $12.50" in res["data"]["message"]
    refunds = manager.handle_cmd("refunds")["data"]["tables"][0]
    assert refunds["rows"][0][0] == "1001"


def test_modify_commands(manager):
    manager.handle_cmd('create alice@example.com R001 19/10/2030 18:30 addr "Item B=1"')
    res = manager.handle_cmd('modify 1001 items "Item A=3"')
    assert res["ok"]
    assert "Amount due: $9.00" in res["data"]["message"]
    assert manager.handle_cmd('modify 1001 address "9 New Road"')["ok"]
    assert manager.handle_cmd("modify 1001 time 20:15")["ok"]
    assert manager.orders[1001].address == "9 New Road"
    assert manager.handle_cmd("modify 1001 colour blue")["ok"] is False


@pytest.mark.parametrize(
    "line, fragment",
    [
        ("", "empty command"),
        ("dance", "unknown command"),
        ("confirm abc", "invalid order id"),
        ("confirm 9999", "order not found"),
        ("queue R404", "restaurant not found"),
        ('create alice@example.com R001 32/13/2030 18:30 addr "Item A=1"', "invalid delivery date"),
        ('create alice@example.com R001 19/10/2030 18:30 addr "Item A=0"', "must be > 0"),
        ("create alice@example.com R001", "usage"),
        ('orders "unterminated', "cannot parse"),
    ],
)
def test_command_errors(manager, line, fragment):
    res = manager.handle_cmd(line)
    assert res["ok"] is False
    assert fragment in res["error"]
    assert manager.orders == {}


def test_read_only_commands(manager):
    manager.handle_cmd('create alice@example.com R001 19/10/2030 18:30 addr "Item A=1"')
    for line in ("help", "restaurants", "orders", "queue", "next R001 2", "customer alice@example.com pending", "report", "bulk"):
        assert manager.handle_cmd(line)["ok"], line
    assert manager.handle_cmd("exit")["data"] == {"exit": True}


def test_print_result(manager, capsys):
    print_result(manager.handle_cmd("orders"))
    print_result(manager.handle_cmd("confirm 1"))
    out = capsys.readouterr().out
    assert "== All Orders ==" in out
    assert "<empty>" in out
    assert "ERR: order not found: 1" in out


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    target = tmp_path / "data"
    shutil.copytree(SAMPLE_DATA, target)
    monkeypatch.setenv("GRUBEROO_DATA_DIR", str(target))
    get_settings.cache_clear()
    yield target
    get_settings.cache_clear()


def test_main_one_shot(data_dir, capsys):
    assert main(["orders"]) == 0
    out = capsys.readouterr().out
    assert "1001" in out and "Kampung Kitchen" in out
    assert (data_dir / "queue.csv").exists()
    assert (data_dir / "stack.csv").exists()


def test_main_one_shot_failure(data_dir, capsys):
    assert main(["confirm", "1001"]) == 2
    assert "ERR:" in capsys.readouterr().out


def test_main_repl(data_dir, monkeypatch, capsys):
    lines = iter(["refunds", "exit"])
    monkeypatch.setattr("builtins.input", lambda prompt="": next(lines))
    assert main([]) == 0
    out = capsys.readouterr().out
    assert "Welcome to the Gruberoo Food Delivery System" in out
    assert "Refund ledger" in out


def test_main_missing_data(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("GRUBEROO_DATA_DIR", str(tmp_path / "nowhere"))
    get_settings.cache_clear()
    try:
        assert main(["orders"]) == 1
    finally:
        get_settings.cache_clear()
    assert "cannot load data" in capsys.readouterr().out


def test_create_message_shows_discount(manager):
    res = manager.handle_cmd('create alice@example.com R001 19/10/2030 18:30 addr "Item A=2" "Item B=1" offer=TEN')
    assert "Subtotal: $11.00 - $1.10 (TEN 10% off) + $5.00 (delivery) = $14.90" in res["data"]["message"]


def test_failed_save_is_reported(manager, capsys, monkeypatch):
    manager.handle_cmd('create alice@example.com R001 19/10/2030 18:30 addr "Item A=1"')

    def boom(orders):
        raise PersistenceFailure("orders.csv", OSError("disk full"))

    monkeypatch.setattr(manager.store, "save_orders", boom)
    res = manager.handle_cmd("confirm 1001")
    assert res["ok"]
    assert "disk full" in res["persist_error"]
    assert manager.orders[1001].status is OrderStatus.PREPARING
    print_result(res)
    assert "WARN: changes not saved" in capsys.readouterr().out
    assert "persist_error" not in manager.handle_cmd("orders")


def test_main_returns_1_when_snapshot_save_fails(data_dir, monkeypatch, capsys):
    def boom(self, restaurants, orders):
        raise PersistenceFailure("queue.csv", OSError("read-only"))

    monkeypatch.setattr(Store, "save_queue", boom)
    assert main(["orders"]) == 1
    out = capsys.readouterr().out
    assert "ERR: failed to write queue.csv" in out
    assert (data_dir / "stack.csv").exists()
