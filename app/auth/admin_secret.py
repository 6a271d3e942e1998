"""
管理员注册口令

/api/auth/adminsignup 使用共享口令保护，口令可通过请求头 X-Admin-Secret
或查询参数 ?key= 传入（请求头优先）。口令本身的比对在 AuthService.signup_admin 中进行。
"""

from fastapi import Header, Query


async def admin_secret(
    x_admin_secret: str | None = Header(None, alias="X-Admin-Secret"),
    key: str | None = Query(None),
) -> str | None:
    return x_admin_secret or key
