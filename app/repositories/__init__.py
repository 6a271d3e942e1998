"""
仓储层

在通用仓储（app/db/repository.py）之上为具体模型添加业务方法。
"""

from app.repositories.outbox import OutboxRepository
from app.repositories.user import UserRepository

__all__ = ["OutboxRepository", "UserRepository"]
