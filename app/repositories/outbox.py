"""
邮件发件箱仓储
"""

from app.db.repository import BaseRepository
from app.models.outbox import EmailOutbox, OutboxStatus
from app.utils.durations import utcnow


class OutboxRepository(BaseRepository[EmailOutbox]):
    model = EmailOutbox
    name = "EmailOutbox"
    soft_delete = False

    async def enqueue(
        self,
        *,
        recipient: str,
        subject: str,
        html: str,
        template: str | None,
        error: str | None,
    ) -> EmailOutbox:
        return await self.create({
            "recipient": recipient,
            "subject": subject,
            "html": html,
            "template": template,
            "status": OutboxStatus.PENDING,
            "attempts": 1,
            "last_error": error,
        })

    async def pending(self, limit: int = 50) -> list[EmailOutbox]:
        return await self.find({"status": OutboxStatus.PENDING}, sort="created_at", limit=limit)

    async def mark_sent(self, message_id: str) -> EmailOutbox | None:
        return await self.update_by_id(
            message_id,
            {"$set": {"status": OutboxStatus.SENT, "sent_at": utcnow(), "last_error": None}, "$inc": {"attempts": 1}},
        )

    async def record_failure(self, message: EmailOutbox, error: str, max_attempts: int) -> EmailOutbox | None:
        """记录一次失败；达到最大尝试次数后标记为 failed，不再重试"""
        attempts = message.attempts + 1
        status = OutboxStatus.FAILED if attempts >= max_attempts else OutboxStatus.PENDING
        return await self.update_by_id(
            message.id,
            {"status": status, "attempts": attempts, "last_error": error},
        )
