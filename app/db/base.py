"""
SQLAlchemy ORM 基类定义

所有数据库模型都必须继承自这个 Base 类。
SQLAlchemy 会通过 Base.metadata 收集所有模型的表结构信息，
用于自动创建表、生成迁移脚本等。
"""

from typing import Any, ClassVar

from sqlalchemy import inspect
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """
    声明式基类

    额外提供 to_dict()：把已加载的列转换为字典。
    子类通过 __serialize_exclude__ 声明永不对外输出的字段（如密码哈希）。
    """

    __serialize_exclude__: ClassVar[frozenset[str]] = frozenset()

    def to_dict(self, exclude: set[str] | None = None) -> dict[str, Any]:
        state = inspect(self)
        hidden = set(self.__serialize_exclude__) | set(exclude or ())
        data: dict[str, Any] = {}
        for attr in state.mapper.column_attrs:
            key = attr.key
            # 未加载的列（deferred / load_only 之外）直接跳过，避免触发懒加载
            if key in hidden or key in state.unloaded:
                continue
            data[key] = getattr(self, key)
        return data

    def __repr__(self) -> str:
        ident = inspect(self).identity
        return f"<{type(self).__name__} {ident[0] if ident else 'transient'}>"
