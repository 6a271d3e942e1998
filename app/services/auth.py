"""
认证服务

账号生命周期：
    signup ──> PENDING（未验证，已发送 OTP）
       │
       └─ verify_otp ──> ACTIVE（已验证）
                            │
                            ├─ login / refresh ──> 签发令牌
                            └─ forget_password ──> verify_otp(event=reset) ──> reset_password

INACTIVE / SUSPENDED 只能由管理操作设置，不在这些流程中出现。

邮件在业务写入提交之后发送，发送失败不会让业务操作失败（见 app/services/notifier.py），
返回值中的 delivery 标记 "sent" 或 "queued"。
"""

import secrets
from dataclasses import dataclass
from datetime import datetime

from app.auth.tokens import (
    create_access_token,
    create_refresh_token,
    decode_access_token,
    decode_refresh_token,
    token_claims,
)
from app.config import Settings, get_settings
from app.exceptions import (
    ConflictError,
    ForbiddenError,
    GoneError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from app.infra.logging import get_logger
from app.models.user import User, UserStatus
from app.repositories.user import UserRepository
from app.schemas.auth import AdminSignupRequest, SignupRequest
from app.services.email import EmailService
from app.services.notifier import Delivery, Notifier
from app.utils.durations import add_to_now, is_expired

logger = get_logger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"


def generate_otp() -> str:
    """6 位数字验证码（100000 - 999999）"""
    return str(100000 + secrets.randbelow(900000))


@dataclass
class SessionTokens:
    user: User
    access_token: str
    refresh_token: str


@dataclass
class OtpIssued:
    user: User
    otp_expires: datetime
    delivery: Delivery


@dataclass
class OtpVerified:
    user: User
    delivery: Delivery | None = None


class AuthService:
    def __init__(
        self,
        users: UserRepository,
        notifier: Notifier,
        email_service: EmailService,
        settings: Settings | None = None,
    ) -> None:
        self.users = users
        self.notifier = notifier
        self.email_service = email_service
        self.settings = settings or get_settings()

    def _otp_window(self) -> datetime:
        return add_to_now(f"{self.settings.otp_expires_in_minutes}m")

    async def _find_or_404(self, email: str) -> User:
        user = await self.users.find_by_email(email)
        if user is None:
            raise NotFoundError("User not found")
        return user

    # ==================== 注册 ====================

    async def signup(self, payload: SignupRequest) -> OtpIssued:
        if await self.users.find_by_email(payload.email):
            raise ConflictError("Email already exists")

        otp = generate_otp()
        otp_expires = self._otp_window()
        # 并发注册同一邮箱时，唯一约束在仓储层转换为 ConflictError
        user = await self.users.create({
            "email": payload.email,
            "password": payload.password,
            "first_name": payload.first_name,
            "last_name": payload.last_name,
            "otp": otp,
            "otp_expires": otp_expires,
        })
        logger.info(f"用户注册: user={user.id}")

        delivery = await self.notifier.dispatch(
            self.email_service.otp_email(user.email, otp, user.first_name)
        )
        return OtpIssued(user=user, otp_expires=otp_expires, delivery=delivery)

    async def signup_admin(self, payload: AdminSignupRequest, secret: str | None) -> User:
        """使用共享口令创建管理员 / 开发者账号（直接为 ACTIVE + 已验证）"""
        if not secret or not secrets.compare_digest(secret.encode(), self.settings.admin_secret_key.encode()):
            raise UnauthorizedError("Invalid admin secret key")
        if await self.users.find_by_email(payload.email):
            raise ConflictError("Admin already exists with this email")

        user = await self.users.create({
            "email": payload.email,
            "password": payload.password,
            "first_name": payload.first_name,
            "last_name": payload.last_name,
            "role": payload.role,
            "is_verified": True,
            "status": UserStatus.ACTIVE,
        })
        logger.info(f"管理员账号已创建: user={user.id} role={payload.role.value}")
        return user

    # ==================== 登录 / 令牌 ====================

    async def login(self, email: str, password: str) -> SessionTokens:
        """
        账号不存在和密码错误返回同样的错误信息，避免暴露邮箱是否注册。
        登录不检查账号状态，状态限制由 authenticate 依赖负责。
        """
        user = await self.users.find_by_email(email, select_password=True)
        if user is None:
            raise UnauthorizedError(INVALID_CREDENTIALS)

        if not self.users.compare_password(user, password):
            await self.users.increment_login_attempts(user.id)
            raise UnauthorizedError(INVALID_CREDENTIALS)

        await self.users.reset_login_attempts(user.id)
        user = await self.users.update_last_login(user.id)

        claims = token_claims(user)
        return SessionTokens(
            user=user,
            access_token=create_access_token(claims),
            refresh_token=create_refresh_token(claims),
        )

    def refresh(self, refresh_token: str | None) -> str:
        """用 refresh token 换取新的 access token（载荷不变）"""
        if not refresh_token:
            raise UnauthorizedError("Refresh token missing")
        try:
            payload = decode_refresh_token(refresh_token)
        except UnauthorizedError:
            raise UnauthorizedError("Invalid refresh token") from None
        claims = {key: payload[key] for key in ("id", "sub", "email", "role") if key in payload}
        return create_access_token(claims)

    async def authenticate_token(self, token: str | None) -> User:
        """
        校验 access token 并加载用户

        - 令牌缺失 / 签名错误 / 过期 → 401
        - 用户不存在（含已删除）→ 401
        - 用户状态不是 ACTIVE → 403
        """
        if not token:
            raise UnauthorizedError("Not authorized to access this route")
        try:
            payload = decode_access_token(token)
        except UnauthorizedError:
            raise UnauthorizedError("Not authorized to access this route") from None

        user = await self.users.find_by_id(payload["id"])
        if user is None:
            raise UnauthorizedError("User belonging to this token no longer exists")
        if user.status != UserStatus.ACTIVE:
            raise ForbiddenError(f"User account is {user.status.value.lower()}")
        return user

    # ==================== OTP ====================

    async def forget_password(self, email: str) -> OtpIssued:
        user = await self._find_or_404(email)
        otp = generate_otp()
        otp_expires = self._otp_window()
        user = await self.users.set_otp(user.id, otp, otp_expires)

        delivery = await self.notifier.dispatch(
            self.email_service.password_reset_email(user.email, otp, user.first_name)
        )
        return OtpIssued(user=user, otp_expires=otp_expires, delivery=delivery)

    async def verify_otp(self, email: str, otp: str, event: str | None = None) -> OtpVerified:
        """
        校验 OTP：必须相等且未过期

        - 不匹配（或已被清除）→ 401
        - 匹配但已过期 → 410
        成功后标记为已验证并清除 OTP，所以同一个 OTP 不能重复使用。
        event=reset 时额外开启重置密码窗口；event=signup 时发送欢迎邮件。
        """
        user = await self._find_or_404(email)

        if not user.otp or not secrets.compare_digest(user.otp.encode(), otp.encode()):
            raise UnauthorizedError("Invalid OTP")
        if is_expired(user.otp_expires):
            raise GoneError("OTP has expired")

        await self.users.verify_user(user.id)
        if event == "reset" and self.settings.password_reset_requires_otp:
            user = await self.users.grant_password_reset(user.id, self._otp_window())
        else:
            user = await self.users.clear_otp(user.id)

        delivery = None
        if event == "signup":
            delivery = await self.notifier.dispatch(
                self.email_service.welcome_email(user.email, user.first_name)
            )
        return OtpVerified(user=user, delivery=delivery)

    async def resend_otp(self, email: str, event: str = "verify") -> OtpIssued:
        user = await self._find_or_404(email)
        if user.is_verified and event == "verify":
            raise ValidationError("User is already verified")

        otp = generate_otp()
        otp_expires = self._otp_window()
        user = await self.users.set_otp(user.id, otp, otp_expires)

        if event == "reset":
            message = self.email_service.password_reset_email(user.email, otp, user.first_name)
        else:
            message = self.email_service.otp_email(user.email, otp, user.first_name)
        delivery = await self.notifier.dispatch(message)
        return OtpIssued(user=user, otp_expires=otp_expires, delivery=delivery)

    # ==================== 重置密码 ====================

    async def reset_password(self, email: str, new_password: str, confirm_password: str) -> User:
        """
        重置密码

        PASSWORD_RESET_REQUIRES_OTP=true（默认）时，必须先通过 event=reset 的 OTP 校验，
        且在重置窗口内完成；重置后窗口立即失效。
        """
        if new_password != confirm_password:
            raise ValidationError("Passwords do not match")

        user = await self._find_or_404(email)
        if not user.is_verified:
            raise UnauthorizedError("User is not verified")
        if self.settings.password_reset_requires_otp and is_expired(user.reset_password_expires):
            raise UnauthorizedError("Password reset not authorized. Verify the reset OTP first")

        await self.users.update_password(user.id, new_password)
        await self.users.clear_otp(user.id)
        user = await self.users.clear_password_reset(user.id)
        logger.info(f"密码已重置: user={user.id}")
        return user

