from datetime import timedelta
from decimal import Decimal

from gruberoo.domain import OrderStatus

from conftest import NOW


def test_order_due_in_30_minutes_is_rejected_and_refunded(manager, make_order):
    order = make_order(delivery_at=NOW + timedelta(minutes=30))
    report = manager.bulk_process(now=NOW)
    assert order.status is OrderStatus.REJECTED
    assert manager.ledger.latest_first() == [order.id]
    assert order.id not in manager.restaurant("R001").queue
    assert report.processed == 1
    assert report.rejected == 1


def test_bulk_pass_counts(manager, make_order):
    expire = make_order(delivery_at=NOW + timedelta(minutes=10))
    retain = make_order(delivery_at=NOW + timedelta(hours=2))
    tomorrow = make_order(delivery_at=NOW + timedelta(days=1))
    preparing = make_order(delivery_at=NOW + timedelta(minutes=20))
    manager.confirm(preparing.id)
    laksa = make_order(rid="R002", items=[("Laksa", 1)], delivery_at=NOW + timedelta(hours=4))

    report = manager.bulk_process(now=NOW)

    assert report.total_queued == 5
    assert report.candidates == 3
    assert report.processed == 3
    assert report.preparing == 2
    assert report.rejected == 1
    assert report.percent_processed == Decimal("60.00")
    assert expire.status is OrderStatus.REJECTED
    assert retain.status is OrderStatus.PREPARING
    assert laksa.status is OrderStatus.PREPARING
    assert tomorrow.status is OrderStatus.PENDING
    assert preparing.status is OrderStatus.PREPARING
    assert manager.restaurant("R001").queue.snapshot() == [retain.id, tomorrow.id, preparing.id]


def test_bulk_pass_is_idempotent(manager, make_order):
    make_order(delivery_at=NOW + timedelta(minutes=10))
    make_order(delivery_at=NOW + timedelta(hours=2))
    manager.bulk_process(now=NOW)
    again = manager.bulk_process(now=NOW)
    assert again.candidates == 0
    assert again.processed == 0
    assert len(manager.ledger) == 1


def test_bulk_pass_on_empty_queues(manager):
    report = manager.bulk_process(now=NOW)
    assert report.total_queued == 0
    assert report.percent_processed == Decimal("0.00")
    assert report.as_dict()["percent_processed"] == "0.00"


def test_bulk_table_lists_processed_orders(manager, make_order):
    expire = make_order(delivery_at=NOW + timedelta(minutes=10))
    retain = make_order(delivery_at=NOW + timedelta(hours=2))
    make_order(delivery_at=NOW + timedelta(days=1))

    data = manager._bulk_data(manager.bulk_process(now=NOW))

    assert data["report"]["processed_ids"] == [expire.id, retain.id]
    processed = data["tables"][1]
    assert processed["title"] == "Processed orders"
    assert processed["rows"] == [
        [str(expire.id), "Pending", "Rejected"],
        [str(retain.id), "Pending", "Preparing"],
    ]
