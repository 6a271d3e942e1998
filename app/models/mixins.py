"""
模型混入类 (Mixins)

提供可复用的模型字段和行为，通过多重继承添加到具体模型中。

使用示例：
    class Invoice(TenantMixin, SoftDeleteMixin, TimestampMixin, Base):
        __tablename__ = "invoices"
        id: Mapped[UUID_PK]
        # 自动获得 tenant_id / is_deleted / deleted_at / created_at / updated_at
"""

from datetime import datetime
from typing import Annotated
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Integer, String, false, func
from sqlalchemy.orm import Mapped, mapped_column

from app.utils.durations import utcnow

# ==================== 类型别名 ====================
# UUID 字符串主键：xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx
UUID_PK = Annotated[
    str,
    mapped_column(String(36), primary_key=True, default=lambda: str(uuid4())),
]


class TimestampMixin:
    """
    时间戳混入类

    - created_at: 记录创建时间
    - updated_at: 记录最后更新时间，每次 UPDATE 时刷新

    同时设置 Python 侧默认值和 server_default：
    ORM 写入后无需再查一次就能拿到时间戳，直接写 SQL 时数据库也会填充。
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


class TenantMixin:
    """租户归属：tenant_id 由仓储根据当前上下文写入，客户端不可指定"""

    tenant_id: Mapped[str | None] = mapped_column(String(36), index=True)


class SoftDeleteMixin:
    """软删除标记"""

    is_deleted: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        server_default=false(),
        nullable=False,
        index=True,
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class SequenceMixin:
    """自增序号（由 SequenceAllocator 分配，全表唯一）"""

    seq: Mapped[int | None] = mapped_column(Integer, unique=True, index=True)
