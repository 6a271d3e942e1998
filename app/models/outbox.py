"""
邮件发件箱模型 (EmailOutbox)

邮件投递失败时不会让业务请求失败，而是写入发件箱，
由后台任务定期重试，直到成功或达到最大尝试次数。

状态流转：
    pending ──发送成功──> sent
       │
       └──超过最大尝试次数──> failed
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.mixins import UUID_PK, TimestampMixin


class OutboxStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class EmailOutbox(TimestampMixin, Base):
    __tablename__ = "email_outbox"

    id: Mapped[UUID_PK]
    recipient: Mapped[str] = mapped_column(String(255), nullable=False)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    html: Mapped[str] = mapped_column(Text, nullable=False)
    # 模板名（otp / password_reset / welcome），便于排查
    template: Mapped[str | None] = mapped_column(String(50))
    status: Mapped[OutboxStatus] = mapped_column(
        SAEnum(OutboxStatus, name="outbox_status", native_enum=False, length=20),
        default=OutboxStatus.PENDING,
        nullable=False,
        index=True,
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
