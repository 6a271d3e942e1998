"""
用户仓储

在通用仓储之上提供：
- 密码哈希：密码字段发生变化的写入才会重新哈希，未修改的密码不会被二次哈希
- 按邮箱查找（可选加载密码哈希用于比对）
- OTP / 重置密码窗口：总是成对设置、成对清除
- 状态切换：激活 / 停用 / 冻结（不校验状态流转是否合理，由调用方负责）
"""

from datetime import datetime
from typing import Any

from sqlalchemy import inspect, select
from sqlalchemy.orm import undefer

from app.auth.passwords import hash_password, is_hashed, verify_password
from app.db.repository import BaseRepository
from app.exceptions import NotFoundError
from app.models.user import User, UserStatus
from app.utils.durations import utcnow


class UserRepository(BaseRepository[User]):
    model = User
    name = "User"
    tenant_specific = False
    soft_delete = True
    auto_increment = False
    search_fields = ("email", "first_name", "last_name")

    # ==================== 写入钩子 ====================

    def _prepare_values(self, values: dict[str, Any]) -> dict[str, Any]:
        if values.get("email"):
            values["email"] = values["email"].strip().lower()
        if values.get("password"):
            values["password"] = hash_password(values["password"])
        return values

    async def _before_save(self, instance: User) -> None:
        state = inspect(instance)
        added = state.attrs.password.history.added
        if not added or not added[0]:
            return
        # create() 传入的明文密码已在 _prepare_values 中哈希
        if state.key is None and is_hashed(added[0]):
            return
        instance.password = hash_password(added[0])

    # ==================== 查询 ====================

    async def find_by_email(
        self,
        email: str,
        *,
        select_password: bool = False,
        tenant_id: str | None = None,
    ) -> User | None:
        """
        按邮箱查找用户

        邮箱写入时已统一小写，这里同样规范化后比较。
        select_password=True 时同时加载密码哈希，仅用于密码比对。
        """
        normalized = email.strip().lower()
        if not select_password:
            return await self.find_one({"email": normalized}, tenant_id=tenant_id)

        stmt = (
            select(User)
            .where(*self._where({"email": normalized}, tenant_id))
            .options(undefer(User.password))
        )
        async with self._session() as session:
            return (await session.scalars(stmt)).first()

    @staticmethod
    def compare_password(user: User, candidate: str) -> bool:
        if "password" in inspect(user).unloaded:
            raise RuntimeError("Password hash not loaded; use find_by_email(select_password=True)")
        return verify_password(candidate, user.password)

    async def _require(self, user_id: str, patch: dict[str, Any], tenant_id: str | None) -> User:
        user = await self.update_by_id(user_id, patch, tenant_id=tenant_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    # ==================== 验证 / OTP ====================

    async def verify_user(self, user_id: str, *, tenant_id: str | None = None) -> User:
        """标记为已验证并激活（单条 UPDATE）"""
        return await self._require(
            user_id, {"is_verified": True, "status": UserStatus.ACTIVE}, tenant_id,
        )

    async def set_otp(self, user_id: str, otp: str, expires_at: datetime, *, tenant_id: str | None = None) -> User:
        return await self._require(user_id, {"otp": otp, "otp_expires": expires_at}, tenant_id)

    async def clear_otp(self, user_id: str, *, tenant_id: str | None = None) -> User:
        return await self._require(user_id, {"otp": None, "otp_expires": None}, tenant_id)

    async def grant_password_reset(self, user_id: str, expires_at: datetime, *, tenant_id: str | None = None) -> User:
        """通过 reset 事件的 OTP 验证后，开启重置密码窗口（同时消费 OTP）"""
        return await self._require(
            user_id,
            {"reset_password_expires": expires_at, "otp": None, "otp_expires": None},
            tenant_id,
        )

    async def clear_password_reset(self, user_id: str, *, tenant_id: str | None = None) -> User:
        return await self._require(user_id, {"reset_password_expires": None}, tenant_id)

    # ==================== 密码 ====================

    async def update_password(self, user_id: str, new_password: str, *, tenant_id: str | None = None) -> User:
        """加载完整记录，重新赋值密码并保存（保存时重新哈希）"""
        user = await self.find_by_id(user_id, tenant_id=tenant_id)
        if user is None:
            raise NotFoundError("User not found")
        user.password = new_password
        return await self.save(user, tenant_id=tenant_id)

    # ==================== 登录记录 ====================

    async def update_last_login(self, user_id: str, *, tenant_id: str | None = None) -> User:
        return await self._require(user_id, {"last_login": utcnow()}, tenant_id)

    async def increment_login_attempts(self, user_id: str, *, tenant_id: str | None = None) -> User:
        return await self._require(user_id, {"$inc": {"login_attempts": 1}}, tenant_id)

    async def reset_login_attempts(self, user_id: str, *, tenant_id: str | None = None) -> User:
        return await self._require(user_id, {"login_attempts": 0}, tenant_id)

    # ==================== 状态切换 ====================

    async def activate_user(self, user_id: str, *, tenant_id: str | None = None) -> User:
        return await self._require(user_id, {"status": UserStatus.ACTIVE}, tenant_id)

    async def deactivate_user(self, user_id: str, *, tenant_id: str | None = None) -> User:
        return await self._require(user_id, {"status": UserStatus.INACTIVE}, tenant_id)

    async def suspend_user(self, user_id: str, *, tenant_id: str | None = None) -> User:
        return await self._require(user_id, {"status": UserStatus.SUSPENDED}, tenant_id)
