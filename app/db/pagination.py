"""
分页结果

paginate 和 lookup 返回同一种结构：
    {
        "items": [...], "total": 42, "page": 2, "limit": 10,
        "totalPages": 5, "hasNext": true, "hasPrev": true,
        "nextPage": 3, "prevPage": 1
    }

需要链接风格导航的接口（如 CRUD 列表）用 page_links() 额外生成 prev/next 查询串。
"""

import math
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from app.exceptions import ValidationError

T = TypeVar("T")


def positive_int(value: Any, name: str) -> int:
    """解析页码/条数，必须是正整数"""
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a positive integer", details={name: value})
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a positive integer", details={name: value}) from None
    if number < 1:
        raise ValidationError(f"{name} must be a positive integer", details={name: value})
    return number


@dataclass
class Page(Generic[T]):
    items: list[T]
    total: int
    page: int
    limit: int
    total_pages: int = field(init=False)

    def __post_init__(self) -> None:
        self.total_pages = math.ceil(self.total / self.limit)

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    @property
    def next_page(self) -> int | None:
        return self.page + 1 if self.has_next else None

    @property
    def prev_page(self) -> int | None:
        return self.page - 1 if self.has_prev else None

    def to_dict(self, serialize: Callable[[T], Any] | None = None) -> dict[str, Any]:
        items = [serialize(item) for item in self.items] if serialize else list(self.items)
        return {
            "items": items,
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
            "totalPages": self.total_pages,
            "hasNext": self.has_next,
            "hasPrev": self.has_prev,
            "nextPage": self.next_page,
            "prevPage": self.prev_page,
        }


def page_links(page: Page[Any]) -> dict[str, str | None]:
    """生成 prev/next 查询串片段，如 "?limit=10&page=3"；没有对应页时为 None"""

    def link(number: int | None) -> str | None:
        if number is None:
            return None
        return f"?limit={page.limit}&page={number}"

    return {"prev": link(page.prev_page), "next": link(page.next_page)}
