"""
JWT 会话令牌

两种令牌，分别使用不同的密钥签名：
- access token: 短期（默认 15 分钟），用于访问受保护接口
- refresh token: 长期（默认 7 天），只用于换取新的 access token

载荷：{"id": 用户ID, "sub": 用户ID, "email": ..., "role": ..., "exp": ..., "iat": ...}

令牌无状态，服务端不保存撤销列表；登出只清除 Cookie。
"""

from typing import Any

from jose import JWTError, jwt

from app.config import get_settings
from app.exceptions import UnauthorizedError
from app.models.user import User
from app.utils.durations import add_to_now, to_unix, utcnow

ACCESS = "access"
REFRESH = "refresh"


def _secret(kind: str) -> str:
    settings = get_settings()
    return settings.jwt_refresh_secret if kind == REFRESH else settings.jwt_secret


def _lifetime(kind: str) -> str:
    settings = get_settings()
    return settings.refresh_token_expires_in if kind == REFRESH else settings.access_token_expires_in


def token_claims(user: User) -> dict[str, Any]:
    role = user.role.value if hasattr(user.role, "value") else user.role
    return {"id": user.id, "sub": user.id, "email": user.email, "role": role}


def _encode(claims: dict[str, Any], kind: str) -> str:
    payload = {
        **{k: v for k, v in claims.items() if k not in ("exp", "iat")},
        "iat": to_unix(utcnow()),
        "exp": to_unix(add_to_now(_lifetime(kind))),
    }
    return jwt.encode(payload, _secret(kind), algorithm=get_settings().jwt_algorithm)


def create_access_token(claims: dict[str, Any]) -> str:
    return _encode(claims, ACCESS)


def create_refresh_token(claims: dict[str, Any]) -> str:
    return _encode(claims, REFRESH)


def _decode(token: str | None, kind: str) -> dict[str, Any]:
    if not token:
        raise UnauthorizedError("No token provided")
    try:
        payload = jwt.decode(token, _secret(kind), algorithms=[get_settings().jwt_algorithm])
    except JWTError as exc:
        raise UnauthorizedError("Invalid or expired token") from exc
    if not payload.get("id"):
        raise UnauthorizedError("Invalid or expired token")
    return payload


def decode_access_token(token: str | None) -> dict[str, Any]:
    """校验 access token，签名错误、过期、缺失都抛出 UnauthorizedError"""
    return _decode(token, ACCESS)


def decode_refresh_token(token: str | None) -> dict[str, Any]:
    return _decode(token, REFRESH)
