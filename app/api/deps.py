"""
API 依赖注入函数

这个模块定义了所有 API 路由共用的依赖项。
FastAPI 的依赖注入系统会自动调用这些函数，并将结果注入到路由处理函数中。

测试中通过 app.dependency_overrides 替换 get_db / get_email_service，
即可让整个请求链路使用隔离的数据库和假的邮件发送。

使用示例：
    @router.get("/me")
    async def me(user: User = Depends(authenticate)):
        return send_response(user.to_public())
"""

from fastapi import Depends

from app.db.session import Database, get_database
from app.repositories.outbox import OutboxRepository
from app.repositories.user import UserRepository
from app.services.auth import AuthService
from app.services.email import EmailService
from app.services.notifier import Notifier


def get_db() -> Database:
    return get_database()


def get_email_service() -> EmailService:
    return EmailService()


def get_user_repository(db: Database = Depends(get_db)) -> UserRepository:
    return UserRepository(db)


def get_notifier(
    db: Database = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
) -> Notifier:
    return Notifier(email_service, OutboxRepository(db))


def get_auth_service(
    users: UserRepository = Depends(get_user_repository),
    notifier: Notifier = Depends(get_notifier),
    email_service: EmailService = Depends(get_email_service),
) -> AuthService:
    return AuthService(users, notifier, email_service)
