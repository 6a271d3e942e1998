"""
软删除策略

仓储通过组合一个删除策略来决定"删除"的含义：
- SoftDelete: 标记 is_deleted=True 并记录 deleted_at，默认读取时排除已删除记录
- HardDelete: 空策略，真正执行 DELETE，读取时不加任何条件

读取模式（ReadMode）：
- EXCLUDE: 只读未删除记录（默认）
- INCLUDE: 已删除和未删除都读
- ONLY:    只读已删除记录
"""

from enum import Enum
from typing import Any

from sqlalchemy import false
from sqlalchemy.sql.elements import ColumnElement

from app.utils.durations import utcnow


class ReadMode(str, Enum):
    EXCLUDE = "exclude"
    INCLUDE = "include"
    ONLY = "only"


class SoftDelete:
    """基于 is_deleted / deleted_at 列的软删除"""

    enabled = True

    def __init__(self, model: type) -> None:
        if not hasattr(model, "is_deleted") or not hasattr(model, "deleted_at"):
            raise RuntimeError(f"{model.__name__} must define is_deleted and deleted_at to use soft delete")
        self.model = model

    def criteria(self, mode: ReadMode = ReadMode.EXCLUDE) -> list[ColumnElement]:
        if mode == ReadMode.EXCLUDE:
            return [self.model.is_deleted.is_(False)]
        if mode == ReadMode.ONLY:
            return [self.model.is_deleted.is_(True)]
        return []

    def delete_values(self) -> dict[str, Any]:
        return {"is_deleted": True, "deleted_at": utcnow()}

    def restore_values(self) -> dict[str, Any]:
        return {"is_deleted": False, "deleted_at": None}

    def columns(self) -> set[str]:
        return {"is_deleted", "deleted_at"}


class HardDelete:
    """不启用软删除的模型使用的空策略"""

    enabled = False

    def __init__(self, model: type) -> None:
        self.model = model

    def criteria(self, mode: ReadMode = ReadMode.EXCLUDE) -> list[ColumnElement]:
        # 物理删除的记录已不存在
        if mode == ReadMode.ONLY:
            return [false()]
        return []

    def delete_values(self) -> dict[str, Any]:
        return {}

    def restore_values(self) -> dict[str, Any]:
        return {}

    def columns(self) -> set[str]:
        return set()
