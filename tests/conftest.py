"""
测试公共夹具

- 每个测试使用 tmp_path 下独立的 SQLite 文件数据库（aiosqlite）
- 邮件发送替换为内存中的 FakeEmailService，可模拟发送失败
- Widget / Tag 是只在测试中使用的模型，用来覆盖租户隔离、自增序号和物理删除

运行方式：
    pytest tests -v
"""

import os
import re

# 设置测试环境变量（必须在导入 app 模块之前）
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("OUTBOX_FLUSH_INTERVAL_SECONDS", "0")
os.environ.setdefault("ADMIN_SECRET_KEY", "test-admin-secret")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import Integer, String  # noqa: E402
from sqlalchemy.orm import Mapped, mapped_column  # noqa: E402

from app.api.deps import get_db, get_email_service  # noqa: E402
from app.db.base import Base  # noqa: E402
from app.db.repository import BaseRepository  # noqa: E402
from app.db.session import Database  # noqa: E402
from app.exceptions import EmailDeliveryError  # noqa: E402
from app.main import app  # noqa: E402
from app.models.user import UserStatus  # noqa: E402
from app.models.mixins import UUID_PK, SequenceMixin, SoftDeleteMixin, TenantMixin, TimestampMixin  # noqa: E402
from app.repositories.user import UserRepository  # noqa: E402
from app.services.email import EmailMessage, EmailService  # noqa: E402


# ==================== 测试模型 ====================

class Widget(TenantMixin, SoftDeleteMixin, SequenceMixin, TimestampMixin, Base):
    __tablename__ = "test_widgets"

    id: Mapped[UUID_PK]
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str | None] = mapped_column(String(50))
    quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class Tag(TimestampMixin, Base):
    __tablename__ = "test_tags"

    id: Mapped[UUID_PK]
    label: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)


class WidgetRepository(BaseRepository[Widget]):
    model = Widget
    tenant_specific = True
    auto_increment = True
    search_fields = ("name", "category")


class TagRepository(BaseRepository[Tag]):
    model = Tag
    soft_delete = False


# ==================== 假邮件服务 ====================

class FakeEmailService(EmailService):
    """记录发送的邮件；fail=True 时模拟 SMTP 故障"""

    def __init__(self) -> None:
        super().__init__()
        self.sent: list[EmailMessage] = []
        self.fail = False

    async def send(self, message: EmailMessage) -> None:
        if self.fail:
            raise EmailDeliveryError(f"Failed to send email to {message.to}: connection refused")
        self.sent.append(message)

    def last_otp(self) -> str:
        """从最近一封验证码邮件中取出 6 位 OTP"""
        for message in reversed(self.sent):
            match = re.search(r">(\d{6})<", message.html)
            if match:
                return match.group(1)
        raise AssertionError("no OTP email was sent")


# ==================== 夹具 ====================

@pytest_asyncio.fixture
async def database(tmp_path):
    """独立的 SQLite 文件数据库（并发分页需要多个连接，不能用 :memory:）"""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
def email_service():
    return FakeEmailService()


@pytest.fixture
def users(database):
    return UserRepository(database)


@pytest.fixture
def widgets(database):
    return WidgetRepository(database, tenant_id="tenant_a")


@pytest_asyncio.fixture
async def client(database, email_service):
    """HTTP 测试客户端，依赖替换为测试数据库和假邮件服务"""
    app.dependency_overrides[get_db] = lambda: database
    app.dependency_overrides[get_email_service] = lambda: email_service
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def tags(database):
    return TagRepository(database)


@pytest.fixture
def make_user(users):
    """直接在仓储中创建已验证的 ACTIVE 用户"""

    async def factory(email: str, password: str = "Password123!", **extra):
        return await users.create({
            "email": email,
            "password": password,
            "first_name": "Test",
            "last_name": "User",
            "is_verified": True,
            "status": UserStatus.ACTIVE,
            **extra,
        })

    return factory
