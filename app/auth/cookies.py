"""
会话 Cookie

accessToken / refreshToken 均为 httpOnly + SameSite=Strict，生产环境加 Secure。
有效期与令牌有效期一致。
"""

from fastapi import Response

from app.config import get_settings
from app.utils.durations import to_seconds

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"


def _cookie_options() -> dict:
    return {
        "httponly": True,
        "secure": get_settings().is_production,
        "samesite": "strict",
        "path": "/",
    }


def set_auth_cookies(
    response: Response,
    access_token: str,
    refresh_token: str | None = None,
    keep_me_logged_in: bool = False,
) -> None:
    settings = get_settings()
    response.set_cookie(
        ACCESS_COOKIE,
        access_token,
        max_age=to_seconds(settings.access_token_expires_in),
        **_cookie_options(),
    )
    if keep_me_logged_in and refresh_token:
        response.set_cookie(
            REFRESH_COOKIE,
            refresh_token,
            max_age=to_seconds(settings.refresh_token_expires_in),
            **_cookie_options(),
        )


def clear_auth_cookies(response: Response) -> None:
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(name, **_cookie_options())
