"""
通知投递（发件箱模式）

业务操作（注册、验证等）提交后才发送邮件。邮件发送失败不会让已经成功的业务操作失败：
失败的邮件写入 email_outbox，响应中标记 notification="queued"，
由后台任务 flush_outbox() 定期重试。

    业务写入 ──> 发送邮件 ──成功──> "sent"
                    │
                    └──失败──> 写入发件箱 ──> "queued" ──后台重试──> sent / failed
"""

import asyncio
from typing import Literal

from app.config import get_settings
from app.exceptions import EmailDeliveryError
from app.infra.logging import get_logger
from app.repositories.outbox import OutboxRepository
from app.services.email import EmailMessage, EmailService

logger = get_logger(__name__)

Delivery = Literal["sent", "queued"]


class Notifier:
    def __init__(self, email_service: EmailService, outbox: OutboxRepository) -> None:
        self.email_service = email_service
        self.outbox = outbox

    async def dispatch(self, message: EmailMessage) -> Delivery:
        try:
            await self.email_service.send(message)
            return "sent"
        except EmailDeliveryError as exc:
            logger.warning(f"邮件发送失败，进入发件箱重试: to={message.to} template={message.template} error={exc}")
            await self.outbox.enqueue(
                recipient=message.to,
                subject=message.subject,
                html=message.html,
                template=message.template,
                error=str(exc),
            )
            return "queued"

    async def flush_outbox(self, batch_size: int = 50) -> dict[str, int]:
        """重试发件箱中待发送的邮件，返回本次 sent / retrying / failed 数量"""
        max_attempts = get_settings().outbox_max_attempts
        stats = {"sent": 0, "retrying": 0, "failed": 0}

        for item in await self.outbox.pending(limit=batch_size):
            message = EmailMessage(to=item.recipient, subject=item.subject, html=item.html, template=item.template)
            try:
                await self.email_service.send(message)
            except EmailDeliveryError as exc:
                updated = await self.outbox.record_failure(item, str(exc), max_attempts)
                if updated is not None and updated.status.value == "failed":
                    stats["failed"] += 1
                    logger.error(f"邮件重试次数耗尽: id={item.id} to={item.recipient}")
                else:
                    stats["retrying"] += 1
                continue
            await self.outbox.mark_sent(item.id)
            stats["sent"] += 1

        if any(stats.values()):
            logger.info(f"发件箱处理完成: {stats}")
        return stats


async def run_outbox_worker(notifier: Notifier, interval_seconds: float) -> None:
    """后台循环：定期重试发件箱（应用关闭时被取消）"""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await notifier.flush_outbox()
        except Exception:
            logger.exception("发件箱处理失败")
