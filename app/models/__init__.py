"""
数据模型层 (ORM Models)

这个模块定义了所有的数据库表结构，使用 SQLAlchemy ORM 映射。

- User: 账号（认证、OTP、状态流转）
- Counter: 自增序号计数器
- EmailOutbox: 投递失败待重试的邮件
"""

from app.models.counter import Counter
from app.models.outbox import EmailOutbox, OutboxStatus
from app.models.user import Role, User, UserStatus

# 导出所有模型，方便外部导入
__all__ = [
    "Counter",
    "EmailOutbox",
    "OutboxStatus",
    "Role",
    "User",
    "UserStatus",
]
