"""用户相关的请求/响应模型"""

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field

from app.models.user import Role, User, UserStatus


class Profile(BaseModel):
    first_name: str | None = Field(default=None, alias="firstName")
    last_name: str | None = Field(default=None, alias="lastName")
    avatar: str | None = None

    class Config:
        populate_by_name = True


class UserPublic(BaseModel):
    """
    对外输出的用户信息，不包含密码、OTP 等敏感字段

    只输出已加载的列：lookup 使用 fields= 投影时，未加载的字段不出现在结果中。
    """
    id: str | None = None
    email: str | None = None
    role: Role | None = None
    is_verified: bool | None = Field(default=None, alias="isVerified")
    status: UserStatus | None = None
    profile: Profile | None = None
    full_name: str | None = Field(default=None, alias="fullName")
    tenant_id: str | None = Field(default=None, alias="tenantId")
    last_login: datetime | None = Field(default=None, alias="lastLogin")
    login_attempts: int | None = Field(default=None, alias="loginAttempts")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")

    class Config:
        populate_by_name = True

    @classmethod
    def from_user(cls, user: User) -> "UserPublic":
        data = user.to_dict()
        fields = {key: data[key] for key in cls.model_fields if key in data}

        profile_keys = [key for key in ("first_name", "last_name", "avatar") if key in data]
        if profile_keys:
            fields["profile"] = Profile(**{key: data[key] for key in profile_keys})
        if "first_name" in data or "last_name" in data:
            parts = (data.get("first_name"), data.get("last_name"))
            fields["full_name"] = " ".join(part for part in parts if part).strip()
        return cls(**fields)

    def to_output(self) -> dict:
        return self.model_dump(by_alias=True, mode="json", exclude_unset=True)


class UserCreate(BaseModel):
    """管理端创建用户请求"""
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    first_name: str = Field(..., min_length=1, max_length=100, alias="firstName")
    last_name: str = Field(..., min_length=1, max_length=100, alias="lastName")
    avatar: str | None = Field(default=None, max_length=500)
    role: Role = Role.USER
    status: UserStatus = UserStatus.PENDING
    is_verified: bool = Field(default=False, alias="isVerified")

    class Config:
        populate_by_name = True


class UserUpdate(BaseModel):
    """管理端更新用户请求（只更新传入的字段）"""
    first_name: str | None = Field(default=None, min_length=1, max_length=100, alias="firstName")
    last_name: str | None = Field(default=None, min_length=1, max_length=100, alias="lastName")
    avatar: str | None = Field(default=None, max_length=500)
    role: Role | None = None
    status: UserStatus | None = None
    is_verified: bool | None = Field(default=None, alias="isVerified")

    class Config:
        populate_by_name = True
