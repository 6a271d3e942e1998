"""认证相关的请求模型（请求体字段为驼峰命名）"""

from typing import Literal

from pydantic import BaseModel, EmailStr, Field

from app.models.user import Role

# OTP 的来源事件：注册验证 / 重新验证 / 重置密码
OtpEvent = Literal["signup", "verify", "reset"]


class _Request(BaseModel):
    class Config:
        populate_by_name = True


class SignupRequest(_Request):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    first_name: str = Field(..., min_length=1, max_length=100, alias="firstName")
    last_name: str = Field(..., min_length=1, max_length=100, alias="lastName")


class AdminSignupRequest(SignupRequest):
    role: Role = Role.ADMIN


class LoginRequest(_Request):
    email: EmailStr
    password: str = Field(..., min_length=1)
    keep_me_logged_in: bool = Field(default=False, alias="keepMeLoggedIn")


class EmailRequest(_Request):
    email: EmailStr


class VerifyOtpRequest(_Request):
    email: EmailStr
    otp: str = Field(..., min_length=1, max_length=12)
    event: OtpEvent | None = None


class ResendOtpRequest(_Request):
    email: EmailStr
    event: OtpEvent = "verify"


class ResetPasswordRequest(_Request):
    email: EmailStr
    new_password: str = Field(..., min_length=8, max_length=128, alias="newPassword")
    confirm_password: str = Field(..., min_length=8, max_length=128, alias="confirmPassword")


class RefreshTokenRequest(_Request):
    refresh_token: str | None = Field(default=None, alias="refreshToken")
