"""
Queues: 餐厅活跃订单队列（FIFO）与全局退款栈（LIFO）

设计要点：
- 两种结构都只保存订单 id，订单本体由 Manager 的订单表持有；
  通过任一路径修改状态，其他路径都能看到。
- RestaurantQueue 按到达顺序（创建顺序）排队，不按配送时间排序。
- scan() 进入时记下队列长度，只访问这么多元素；仍为活跃状态的订单放回队尾，
  因此同一轮扫描不会再次访问刚处理过的订单。
- 单线程运行，不需要加锁。
"""
from __future__ import annotations

from collections import deque
from typing import Callable, Deque, Iterator, List


class RestaurantQueue:
    """单个餐厅的活跃订单 FIFO（队头在 left）。"""

    def __init__(self) -> None:
        self._ids: Deque[int] = deque()

    # -------------------- 入队 / 出队 API --------------------

    def enqueue(self, order_id: int) -> None:
        """放入队尾；同一订单不会重复入队。"""
        if order_id in self._ids:
            raise ValueError(f"order {order_id} already queued")
        self._ids.append(order_id)

    def remove(self, order_id: int) -> bool:
        """按 id 移除；订单不在队列中时返回 False。"""
        try:
            self._ids.remove(order_id)
        except ValueError:
            return False
        return True

    # -------------------- 查询 / 扫描 API --------------------

    def front_window(self, n: int = 1) -> List[int]:
        """窥视队头最多 n 个订单 id（非破坏性）。"""
        if n <= 0:
            return []
        res = []
        for oid in self._ids:
            if len(res) >= n:
                break
            res.append(oid)
        return res

    def scan(self, visit: Callable[[int], bool]) -> int:
        """轮转扫描整个队列。

        - 进入时固定访问次数 = 当前长度
        - 每次从队头弹出一个 id 交给 visit；visit 返回 True 表示订单仍活跃，放回队尾
        - 返回访问的元素个数
        """
        count = len(self._ids)
        for _ in range(count):
            oid = self._ids.popleft()
            if visit(oid):
                self._ids.append(oid)
        return count

    def clear(self) -> None:
        self._ids.clear()

    def snapshot(self) -> List[int]:
        return list(self._ids)

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, order_id: object) -> bool:
        return order_id in self._ids

    def __iter__(self) -> Iterator[int]:
        return iter(list(self._ids))


class RefundLedger:
    """退款栈：订单进入 Rejected / Cancelled 时压栈，正常运行中从不弹出。"""

    def __init__(self) -> None:
        self._stack: List[int] = []

    def push(self, order_id: int) -> bool:
        """压栈；同一订单只记录一次，重复压栈返回 False。"""
        if order_id in self._stack:
            return False
        self._stack.append(order_id)
        return True

    def latest_first(self) -> List[int]:
        return list(reversed(self._stack))

    def __len__(self) -> int:
        return len(self._stack)

    def __contains__(self, order_id: object) -> bool:
        return order_id in self._stack
