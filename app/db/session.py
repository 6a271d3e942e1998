"""
数据库会话管理

Database 是一个显式的存储绑定对象：
1. 创建数据库引擎（连接池）
2. 提供异步会话工厂
3. 持有模型注册表（名称 → ORM 模型），以及变更监听器

每个仓储在构造时接收一个 Database 实例，测试可以创建互相隔离的 Database。

使用方式（在 FastAPI 路由中）：
    from app.api.deps import get_database

    @router.get("/users")
    async def list_users(db: Database = Depends(get_database)):
        users = await UserRepository(db).find({})
"""

import inspect
from collections import defaultdict
from collections.abc import Callable
from functools import lru_cache
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.config import get_settings
from app.db.base import Base
from app.infra.logging import get_logger

logger = get_logger(__name__)

ChangeListener = Callable[[Any], Any]


def _engine_options(url: str) -> dict[str, Any]:
    """SQLite 不支持连接池参数，只对服务端数据库设置"""
    if make_url(url).get_backend_name() == "sqlite":
        return {}
    return {
        "pool_pre_ping": True,  # 获取连接前先测试连接是否有效
        "pool_size": 10,
        "max_overflow": 20,
        "pool_timeout": 30,
        "pool_recycle": 1800,   # 防止数据库端超时断开
    }


class Database:
    """
    存储绑定

    Attributes:
        engine: 异步引擎
        sessionmaker: 会话工厂（expire_on_commit=False，提交后仍可读取对象属性）
    """

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self.url = url
        self.engine = create_async_engine(url, echo=echo, future=True, **_engine_options(url))
        self.sessionmaker = async_sessionmaker(self.engine, expire_on_commit=False)
        self._models: dict[str, type[Base]] = {}
        self._listeners: dict[str, list[ChangeListener]] = defaultdict(list)

    def session(self) -> AsyncSession:
        return self.sessionmaker()

    # ==================== 模型注册表 ====================

    def register(self, name: str, model: type[Base]) -> type[Base]:
        """注册模型；同名重复注册必须指向同一个模型"""
        existing = self._models.get(name)
        if existing is not None and existing is not model:
            raise RuntimeError(f"Model name '{name}' is already bound to {existing.__name__}")
        self._models[name] = model
        return model

    def get_model(self, name: str) -> type[Base]:
        try:
            return self._models[name]
        except KeyError:
            raise KeyError(f"Model {name} not registered") from None

    @property
    def models(self) -> dict[str, type[Base]]:
        return dict(self._models)

    # ==================== 变更通知 ====================

    def add_listener(self, name: str, listener: ChangeListener) -> Callable[[], None]:
        """订阅某个模型的写入事件，返回取消订阅函数"""
        self._listeners[name].append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners[name]:
                self._listeners[name].remove(listener)

        return unsubscribe

    async def emit(self, name: str, event: Any) -> None:
        for listener in list(self._listeners.get(name, ())):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                # 监听器故障不影响已提交的写入
                logger.exception(f"变更监听器执行失败: {name}")

    # ==================== 生命周期 ====================

    async def create_all(self) -> None:
        """
        根据所有 ORM 模型创建表（仅开发/测试环境使用）

        生产环境应该使用 Alembic 进行数据库迁移。
        """
        from app import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()


@lru_cache(maxsize=1)
def get_database() -> Database:
    """获取全局 Database 实例（按配置创建一次）"""
    settings = get_settings()
    return Database(settings.database_url, echo=settings.database_echo)


async def init_models() -> None:
    await get_database().create_all()
