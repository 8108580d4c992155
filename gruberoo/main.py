from __future__ import annotations

import logging
import shlex
import sys
from typing import Any, Dict

from .config import get_settings
from .errors import GruberooError, PersistenceFailure
from .manager import Manager


def _clear_screen() -> None:
    # ANSI 清屏 + 光标归位
    print("\033[2J\033[H", end="")


def _format_table(headers: list[str], rows: list[list[str]]) -> str:
    # 简单文本表格渲染（无依赖）
    widths = [len(h) for h in headers]
    for r in rows:
        for i, cell in enumerate(r):
            widths[i] = max(widths[i], len(cell))
    def fmt_row(cols: list[str]) -> str:
        return " | ".join(col.ljust(widths[i]) for i, col in enumerate(cols))
    sep = "-+-".join("-" * w for w in widths)
    lines = [fmt_row(headers), sep]
    for r in rows:
        lines.append(fmt_row(r))
    return "\n".join(lines)


def _render_tables(data: Dict[str, Any]) -> str:
    parts = []
    for t in data.get("tables", []):
        body = _format_table(t["headers"], t["rows"]) if t["rows"] else "<empty>"
        parts.append(f"== {t['title']} ==\n{body}")
    return "\n\n".join(parts)


def print_result(res: Dict[str, Any]) -> None:
    if not isinstance(res, dict):
        print(res)
        return
    if res.get("ok") is False:
        print(f"ERR: {res.get('error')}")
        if "usage" in res:
            print(res["usage"])
        return
    data = res.get("data")
    if isinstance(data, str):
        print(data)
    elif isinstance(data, dict) and data.get("clear"):
        _clear_screen()
    elif isinstance(data, dict):
        if data.get("tables"):
            print(_render_tables(data))
        if data.get("message"):
            print(data["message"])
    else:
        print(res)
    if res.get("persist_error"):
        print(f"WARN: changes not saved: {res['persist_error']}")


def _shutdown(mgr: Manager) -> int:
    try:
        mgr.shutdown()
    except PersistenceFailure as exc:
        print(f"ERR: {exc}")
        return 1
    print("Saved queue and refund snapshots. Goodbye!")
    return 0


def repl(mgr: Manager) -> int:
    restaurants = mgr.list_restaurants()
    print("Welcome to the Gruberoo Food Delivery System")
    print(f"{len(restaurants)} restaurants loaded!")
    print(f"{mgr.catalog.food_item_count} food items loaded!")
    print(f"{len(mgr.catalog.customers)} customers loaded!")
    print(f"{len(mgr.orders)} orders loaded!")
    print("Type 'help' to see commands. Type 'exit' to quit.")
    while True:
        try:
            line = input("> ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            break
        res = mgr.handle_cmd(line)
        data = res.get("data")
        if isinstance(data, dict) and data.get("exit"):
            break
        print_result(res)
    return _shutdown(mgr)


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        mgr = Manager.load(settings)
    except (GruberooError, OSError) as exc:
        print(f"ERR: cannot load data from {settings.data_dir}: {exc}")
        return 1
    if not argv:
        return repl(mgr)
    # one-shot mode: 参数已由 shell 切分，重新拼接为一条命令
    res = mgr.handle_cmd(shlex.join(argv))
    print_result(res)
    code = _shutdown(mgr)
    return 2 if res.get("ok") is False else code


if __name__ == "__main__":
    raise SystemExit(main())
