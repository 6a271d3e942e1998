"""
邮件服务

渲染三类 HTML 邮件并通过 SMTP 发送：
- OTP 验证码（注册 / 重新发送）
- 重置密码验证码
- 欢迎邮件（验证通过后）

smtplib 是阻塞 IO，发送放到线程池中执行，不阻塞事件循环。
MAIL_ENABLED=false 时只记录日志不真正发送（本地开发）。
"""

import asyncio
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape

from app.config import Settings, get_settings
from app.exceptions import EmailDeliveryError
from app.infra.logging import get_logger

logger = get_logger(__name__)

BRAND = "SyncMosaic"


@dataclass
class EmailMessage:
    to: str
    subject: str
    html: str
    template: str | None = None


# ==================== 模板 ====================

_LAYOUT = """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="background: {banner}; color: white; padding: 30px; text-align: center; border-radius: 10px 10px 0 0;">
    <h1 style="margin: 0; font-size: 28px;">{brand}</h1>
    <p style="margin: 10px 0 0 0; opacity: 0.9;">{tagline}</p>
  </div>
  <div style="background: #f8f9fa; padding: 30px; border-radius: 0 0 10px 10px;">
    {body}
    <div style="text-align: center; margin-top: 30px;">
      <p style="color: #999; font-size: 14px;">Best regards,<br>The {brand} Team</p>
    </div>
  </div>
</div>
"""

_CODE_BOX = """\
<div style="background: #fff; border: 2px dashed {color}; border-radius: 8px; padding: 20px; text-align: center; margin: 25px 0;">
  <h3 style="color: {color}; font-size: 32px; margin: 0; letter-spacing: 5px; font-weight: bold;">{otp}</h3>
</div>
"""


def _render(banner: str, tagline: str, body: str) -> str:
    return _LAYOUT.format(banner=banner, brand=BRAND, tagline=tagline, body=body)


def render_otp_email(to: str, otp: str, first_name: str | None, minutes: int) -> EmailMessage:
    body = (
        f'<h2 style="color: #333;">Hello {escape(first_name or "there")}!</h2>'
        f'<p style="color: #666; line-height: 1.6;">Thank you for signing up with {BRAND}. '
        "To complete your registration, please use the verification code below:</p>"
        + _CODE_BOX.format(color="#667eea", otp=escape(otp))
        + f'<p style="color: #666; line-height: 1.6;">This code will expire in {minutes} minutes. '
        "If you didn't request this verification, please ignore this email.</p>"
    )
    html = _render("linear-gradient(135deg, #667eea 0%, #764ba2 100%)", "Email Verification", body)
    return EmailMessage(to=to, subject=f"Verify Your Email - {BRAND}", html=html, template="otp")


def render_password_reset_email(to: str, otp: str, first_name: str | None, minutes: int) -> EmailMessage:
    body = (
        f'<h2 style="color: #333;">Hello {escape(first_name or "there")}!</h2>'
        '<p style="color: #666; line-height: 1.6;">We received a request to reset your password. '
        "Use the verification code below to proceed with the password reset:</p>"
        + _CODE_BOX.format(color="#ff6b6b", otp=escape(otp))
        + f'<p style="color: #666; line-height: 1.6;">This code will expire in {minutes} minutes. '
        "If you didn't request a password reset, please ignore this email and your password will remain unchanged.</p>"
    )
    html = _render("linear-gradient(135deg, #ff6b6b 0%, #ee5a24 100%)", "Password Reset", body)
    return EmailMessage(to=to, subject=f"Password Reset Request - {BRAND}", html=html, template="password_reset")


def render_welcome_email(to: str, first_name: str | None, site_url: str) -> EmailMessage:
    body = (
        f'<h2 style="color: #333;">Welcome {escape(first_name or "")}!</h2>'
        f'<p style="color: #666; line-height: 1.6;">Thank you for joining {BRAND}! '
        "Your account has been successfully verified and you're now ready to explore all the features we have to offer.</p>"
        '<div style="text-align: center; margin-top: 30px;">'
        f'<a href="{escape(site_url)}" style="background: #4facfe; color: white; padding: 12px 30px; '
        'text-decoration: none; border-radius: 5px; display: inline-block;">Get Started</a></div>'
    )
    html = _render("linear-gradient(135deg, #4facfe 0%, #00f2fe 100%)", "Welcome Aboard!", body)
    return EmailMessage(to=to, subject=f"Welcome to {BRAND}!", html=html, template="welcome")


# ==================== 发送 ====================

class EmailService:
    """SMTP 邮件发送"""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    def _send_sync(self, message: EmailMessage) -> None:
        s = self.settings
        mime = MIMEMultipart("alternative")
        mime["From"] = s.mail_from
        mime["To"] = message.to
        mime["Subject"] = message.subject
        mime.attach(MIMEText(message.html, "html", "utf-8"))

        # 465 端口使用隐式 TLS，其他端口使用 STARTTLS
        if s.mail_port == 465:
            server = smtplib.SMTP_SSL(s.mail_host, s.mail_port, timeout=s.mail_timeout_seconds)
        else:
            server = smtplib.SMTP(s.mail_host, s.mail_port, timeout=s.mail_timeout_seconds)
        with server:
            if s.mail_port != 465:
                server.starttls()
            if s.mail_user:
                server.login(s.mail_user, s.mail_password)
            server.send_message(mime)

    async def send(self, message: EmailMessage) -> None:
        """发送邮件，失败时抛出 EmailDeliveryError"""
        if not self.settings.mail_enabled:
            logger.info(f"邮件发送未启用，跳过: to={message.to} subject={message.subject}")
            return
        try:
            await asyncio.to_thread(self._send_sync, message)
        except (smtplib.SMTPException, OSError) as exc:
            raise EmailDeliveryError(f"Failed to send email to {message.to}: {exc}") from exc
        logger.info(f"邮件已发送: to={message.to} template={message.template}")

    # 便捷方法

    def otp_email(self, to: str, otp: str, first_name: str | None) -> EmailMessage:
        return render_otp_email(to, otp, first_name, self.settings.otp_expires_in_minutes)

    def password_reset_email(self, to: str, otp: str, first_name: str | None) -> EmailMessage:
        return render_password_reset_email(to, otp, first_name, self.settings.otp_expires_in_minutes)

    def welcome_email(self, to: str, first_name: str | None) -> EmailMessage:
        return render_welcome_email(to, first_name, self.settings.site_url)
