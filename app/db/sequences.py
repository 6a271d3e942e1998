"""
自增序号分配

每个启用自增的模型在 counters 表中有一行计数器（name = 模型名）。
分配使用单条 UPDATE ... SET value = value + n RETURNING value，
并发请求由数据库行锁串行化，不会拿到重复的序号。

计数器第一次使用时，用表中现有的最大序号初始化，
这样对已有数据启用自增也不会产生冲突。
"""

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from app.db.session import Database
from app.infra.logging import get_logger
from app.models.counter import Counter

logger = get_logger(__name__)

_MAX_SEED_ATTEMPTS = 3


class SequenceAllocator:
    """按名称分配连续的序号区间"""

    def __init__(self, database: Database) -> None:
        self.database = database

    async def reserve(self, name: str, model: type, field: str = "seq", count: int = 1) -> int:
        """
        预留 count 个连续序号，返回第一个

        使用独立会话并立即提交：即使调用方的写入随后失败，
        序号也不会回收（与数据库 SEQUENCE 的语义一致，允许出现空洞）。
        """
        if count < 1:
            raise ValueError("count must be >= 1")

        for _ in range(_MAX_SEED_ATTEMPTS):
            async with self.database.session() as session:
                result = await session.execute(
                    update(Counter)
                    .where(Counter.name == name)
                    .values(value=Counter.value + count)
                    .returning(Counter.value)
                )
                value = result.scalar_one_or_none()
                if value is not None:
                    await session.commit()
                    return value - count + 1

                # 计数器不存在：用现有最大序号初始化
                column = getattr(model, field)
                current = await session.scalar(select(func.coalesce(func.max(column), 0)))
                session.add(Counter(name=name, value=current + count))
                try:
                    await session.commit()
                except IntegrityError:
                    # 并发初始化，另一个请求已经插入了计数器，重试 UPDATE
                    await session.rollback()
                    logger.debug(f"计数器 {name} 并发初始化，重试")
                    continue
                return current + 1

        raise RuntimeError(f"Could not allocate sequence for {name}")

    async def current(self, name: str) -> int:
        async with self.database.session() as session:
            value = await session.scalar(select(Counter.value).where(Counter.name == name))
            return value or 0
