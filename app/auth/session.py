"""
请求认证

authenticate: 从 Authorization: Bearer <token> 或 accessToken Cookie 中读取 access token，
校验后加载用户，并把用户 / 租户写入日志上下文和 request.state。

authorize_role: 在 authenticate 之后按角色限制访问。

使用示例：
    @router.get("/admin-only", dependencies=[Depends(authorize_role(Role.ADMIN))])
    async def admin_only(): ...
"""

from collections.abc import Awaitable, Callable

from fastapi import Depends, Header, Request

from app.api.deps import get_auth_service
from app.auth.cookies import ACCESS_COOKIE
from app.exceptions import ForbiddenError
from app.infra.logging import set_tenant_id, set_user_id
from app.models.user import Role, User
from app.services.auth import AuthService


def _bearer_token(authorization: str | None) -> str | None:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip() or None
    return None


async def authenticate(
    request: Request,
    authorization: str | None = Header(None),
    auth: AuthService = Depends(get_auth_service),
) -> User:
    token = _bearer_token(authorization) or request.cookies.get(ACCESS_COOKIE)
    user = await auth.authenticate_token(token)

    set_user_id(user.id)
    set_tenant_id(user.tenant_id)
    request.state.user = user
    request.state.tenant_id = user.tenant_id
    return user


def authorize_role(*roles: Role) -> Callable[..., Awaitable[User]]:
    allowed = ", ".join(role.value for role in roles)

    async def checker(user: User = Depends(authenticate)) -> User:
        if user.role not in roles:
            raise ForbiddenError(f"Access denied. Allowed roles: {allowed}")
        return user

    return checker
