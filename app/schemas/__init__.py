"""
数据模式层 (Schemas)

使用 Pydantic 定义 API 的请求和响应模型：
- 自动数据验证
- 自动生成 OpenAPI 文档
"""

from app.schemas.auth import (
    AdminSignupRequest,
    EmailRequest,
    LoginRequest,
    RefreshTokenRequest,
    ResendOtpRequest,
    ResetPasswordRequest,
    SignupRequest,
    VerifyOtpRequest,
)
from app.schemas.user import Profile, UserCreate, UserPublic, UserUpdate

__all__ = [
    # Auth schemas
    "AdminSignupRequest",
    "EmailRequest",
    "LoginRequest",
    "RefreshTokenRequest",
    "ResendOtpRequest",
    "ResetPasswordRequest",
    "SignupRequest",
    "VerifyOtpRequest",
    # User schemas
    "Profile",
    "UserCreate",
    "UserPublic",
    "UserUpdate",
]
