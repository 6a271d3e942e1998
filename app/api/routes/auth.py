"""
认证接口（/api/auth）

- POST /signup          注册（发送 OTP）
- POST /login           登录（签发令牌并设置 Cookie）
- POST /logout          登出（清除 Cookie）
- POST /forgot-password 发送重置密码 OTP
- POST /verify-otp      校验 OTP
- POST /resend-otp      重新发送 OTP
- POST /reset-password  重置密码
- POST /refresh-token   刷新 access token
- POST /adminsignup     使用共享口令创建管理员账号
"""

from fastapi import APIRouter, Depends, Request, status

from app.api.deps import get_auth_service
from app.api.responses import send_response
from app.auth.admin_secret import admin_secret
from app.auth.cookies import REFRESH_COOKIE, clear_auth_cookies, set_auth_cookies
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
from app.services.auth import AuthService
from app.utils.durations import to_clean_iso

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/signup", status_code=status.HTTP_201_CREATED)
async def signup(payload: SignupRequest, auth: AuthService = Depends(get_auth_service)):
    result = await auth.signup(payload)
    return send_response(
        {
            "message": "User created successfully. Please check your email for verification code.",
            "user": result.user.to_public(),
            "notification": result.delivery,
        },
        status.HTTP_201_CREATED,
    )


@router.post("/login")
async def login(payload: LoginRequest, auth: AuthService = Depends(get_auth_service)):
    tokens = await auth.login(payload.email, payload.password)

    data = {
        "message": "Login successful",
        "user": tokens.user.to_public(),
        "accessToken": tokens.access_token,
    }
    if payload.keep_me_logged_in:
        data["refreshToken"] = tokens.refresh_token

    response = send_response(data)
    set_auth_cookies(response, tokens.access_token, tokens.refresh_token, payload.keep_me_logged_in)
    return response


@router.post("/logout")
async def logout():
    """令牌无状态，登出只清除 Cookie"""
    response = send_response({"message": "Logout successful"})
    clear_auth_cookies(response)
    return response


@router.post("/forgot-password")
async def forgot_password(payload: EmailRequest, auth: AuthService = Depends(get_auth_service)):
    result = await auth.forget_password(payload.email)
    return send_response({
        "message": "Password reset OTP sent to your email",
        "otpExpires": to_clean_iso(result.otp_expires),
        "notification": result.delivery,
    })


@router.post("/verify-otp")
async def verify_otp(payload: VerifyOtpRequest, auth: AuthService = Depends(get_auth_service)):
    result = await auth.verify_otp(payload.email, payload.otp, payload.event)
    data = {
        "message": "OTP verified successfully. Welcome to SyncMosaic!",
        "user": result.user.to_public(),
    }
    if result.delivery is not None:
        data["notification"] = result.delivery
    return send_response(data)


@router.post("/resend-otp")
async def resend_otp(payload: ResendOtpRequest, auth: AuthService = Depends(get_auth_service)):
    result = await auth.resend_otp(payload.email, payload.event)
    return send_response({
        "message": "OTP resent successfully. Please check your email.",
        "otpExpires": to_clean_iso(result.otp_expires),
        "notification": result.delivery,
    })


@router.post("/reset-password")
async def reset_password(payload: ResetPasswordRequest, auth: AuthService = Depends(get_auth_service)):
    await auth.reset_password(payload.email, payload.new_password, payload.confirm_password)
    return send_response({"message": "Password reset successfully"})


@router.post("/refresh-token")
async def refresh_token(
    request: Request,
    payload: RefreshTokenRequest | None = None,
    auth: AuthService = Depends(get_auth_service),
):
    """请求体中没有 refreshToken 时，回退读取 refreshToken Cookie"""
    token = (payload.refresh_token if payload else None) or request.cookies.get(REFRESH_COOKIE)
    access_token = auth.refresh(token)

    response = send_response({"message": "Token refreshed", "accessToken": access_token})
    set_auth_cookies(response, access_token)
    return response


@router.post("/adminsignup", status_code=status.HTTP_201_CREATED)
async def signup_admin(
    payload: AdminSignupRequest,
    secret: str | None = Depends(admin_secret),
    auth: AuthService = Depends(get_auth_service),
):
    user = await auth.signup_admin(payload, secret)
    return send_response(
        {"message": "Admin account created successfully", "admin": user.to_public()},
        status.HTTP_201_CREATED,
    )
