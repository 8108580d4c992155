"""
Config: 运行配置

优先级：环境变量（GRUBEROO_ 前缀） > .env 文件 > 默认值。
get_settings() 缓存结果，避免重复读取。
"""
from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """应用配置。"""

    model_config = SettingsConfigDict(env_prefix="GRUBEROO_", env_file=".env", extra="ignore")

    data_dir: Path = Path("data")
    restaurants_file: str = "restaurants.csv"
    food_items_file: str = "fooditems.csv"
    offers_file: str = "specialoffers.csv"
    customers_file: str = "customers.csv"
    orders_file: str = "orders.csv"
    queue_file: str = "queue.csv"
    stack_file: str = "stack.csv"

    delivery_fee: Decimal = Field(default=Decimal("5.00"), ge=0)
    bulk_cutoff_minutes: int = Field(default=60, gt=0)
    log_level: str = "INFO"

    def path_for(self, name: str) -> Path:
        """把文件名解析到 data_dir 下。"""
        return self.data_dir / name

    @property
    def orders_path(self) -> Path:
        return self.path_for(self.orders_file)

    @property
    def queue_path(self) -> Path:
        return self.path_for(self.queue_file)

    @property
    def stack_path(self) -> Path:
        return self.path_for(self.stack_file)


@lru_cache
def get_settings() -> Settings:
    return Settings()
