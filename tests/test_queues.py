import pytest

from gruberoo.queues import RefundLedger, RestaurantQueue


def test_fifo_front_window():
    q = RestaurantQueue()
    for oid in (1001, 1002, 1003):
        q.enqueue(oid)
    assert q.front_window(2) == [1001, 1002]
    assert q.front_window(10) == [1001, 1002, 1003]
    assert q.front_window(0) == []
    assert len(q) == 3


def test_enqueue_twice_is_rejected():
    q = RestaurantQueue()
    q.enqueue(1001)
    with pytest.raises(ValueError):
        q.enqueue(1001)


def test_remove_by_id():
    q = RestaurantQueue()
    q.enqueue(1001)
    q.enqueue(1002)
    assert q.remove(1001) is True
    assert q.remove(1001) is False
    assert q.snapshot() == [1002]


def test_scan_visits_each_element_once_and_keeps_order():
    q = RestaurantQueue()
    for oid in (1, 2, 3, 4):
        q.enqueue(oid)
    seen = []

    def visit(oid):
        seen.append(oid)
        return oid % 2 == 0

    assert q.scan(visit) == 4
    assert seen == [1, 2, 3, 4]
    assert q.snapshot() == [2, 4]


def test_ledger_is_lifo_and_deduplicated():
    ledger = RefundLedger()
    assert ledger.push(1001)
    assert ledger.push(1002)
    assert not ledger.push(1001)
    assert ledger.latest_first() == [1002, 1001]
    assert len(ledger) == 2
    assert 1001 in ledger
