"""
用户模型 (User)

账号生命周期：
    注册 → PENDING（未验证）──OTP 验证──> ACTIVE（已验证）
    管理操作可切换到 INACTIVE / SUSPENDED

安全设计：
- 密码只存 bcrypt 哈希，默认不加载（deferred），永不对外输出
- OTP 与其过期时间总是成对设置、成对清除
- 邮箱写入前统一转小写并去除首尾空格，全局唯一
- 删除为软删除，记录保留
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Integer, String
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, validates

from app.db.base import Base
from app.models.mixins import UUID_PK, SoftDeleteMixin, TenantMixin, TimestampMixin


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"
    DEVELOPER = "DEVELOPER"


class UserStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"


class User(TenantMixin, SoftDeleteMixin, TimestampMixin, Base):
    """
    用户表

    字段说明：
    - tenant_id: 用户所属租户，认证后作为请求的租户上下文（可为空）
    - otp / otp_expires: 一次性验证码及其过期时间
    - reset_password_expires: 通过 reset 事件验证 OTP 后获得的重置密码窗口
    - login_attempts: 连续登录失败次数，登录成功后清零
    """
    __tablename__ = "users"

    # 不对外输出的字段
    __serialize_exclude__ = frozenset({"password", "otp", "otp_expires", "reset_password_expires"})

    id: Mapped[UUID_PK]

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)

    # bcrypt 哈希，deferred：普通查询不加载，只有比对密码时显式 undefer
    password: Mapped[str] = mapped_column(String(255), nullable=False, deferred=True)

    role: Mapped[Role] = mapped_column(
        SAEnum(Role, name="user_role", native_enum=False, length=20),
        default=Role.USER,
        nullable=False,
        index=True,
    )
    is_verified: Mapped[bool] = mapped_column(default=False, nullable=False)

    # 个人资料
    first_name: Mapped[str | None] = mapped_column(String(100))
    last_name: Mapped[str | None] = mapped_column(String(100))
    avatar: Mapped[str | None] = mapped_column(String(500))

    status: Mapped[UserStatus] = mapped_column(
        SAEnum(UserStatus, name="user_status", native_enum=False, length=20),
        default=UserStatus.PENDING,
        nullable=False,
        index=True,
    )

    otp: Mapped[str | None] = mapped_column(String(6))
    otp_expires: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reset_password_expires: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    login_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_login: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    @validates("email")
    def _normalize_email(self, key: str, value: str) -> str:
        return value.strip().lower() if value else value

    @validates("first_name", "last_name")
    def _strip_name(self, key: str, value: str | None) -> str | None:
        return value.strip() if value else value

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part).strip()

    def to_public(self) -> dict:
        """对外输出的用户信息（驼峰字段，不含密码和 OTP）"""
        from app.schemas.user import UserPublic

        return UserPublic.from_user(self).to_output()
