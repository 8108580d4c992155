"""
Errors: 系统统一异常

- LookupFailure     : 找不到餐厅 / 顾客 / 订单 / 优惠码 / 菜品
- GuardViolation    : 非法的状态流转（例如确认非 Pending 订单）
- ValidationFailure : 输入不合法（数量 <= 0、必填为空、日期格式错误、CSV 行损坏）
- PersistenceFailure: 写文件失败；只影响保存这一步，内存状态仍然有效

Manager.handle_cmd 捕获 GruberooError 并转换为 {"ok": False, ...}。
"""
from __future__ import annotations


class GruberooError(Exception):
    """所有业务异常的基类。"""


class LookupFailure(GruberooError):
    pass


class GuardViolation(GruberooError):
    pass


class ValidationFailure(GruberooError):
    pass


class PersistenceFailure(GruberooError):
    """写入订单文件或快照文件失败。"""

    def __init__(self, path: str, cause: Exception) -> None:
        super().__init__(f"failed to write {path}: {cause}")
        self.path = path
        self.cause = cause
