"""
存储层异常转换

在仓储边界把 SQLAlchemy / 驱动异常转换为业务异常，避免原始驱动错误泄露到上层：
- 唯一约束冲突      → ConflictError (409)
- 非空/外键等约束   → ValidationError (400)
- 类型转换失败      → ValidationError (400)
- 查询无结果        → NotFoundError (404)
- 其他数据库错误    → InternalServerError (500)
"""

import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.exc import DataError, DBAPIError, IntegrityError, NoResultFound, StatementError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import (
    AppError,
    ConflictError,
    InternalServerError,
    NotFoundError,
    ValidationError,
)
from app.infra.logging import get_logger

logger = get_logger(__name__)

# SQLite:   UNIQUE constraint failed: users.email, users.tenant_id
_SQLITE_UNIQUE = re.compile(r"UNIQUE constraint failed: (.+)$", re.MULTILINE)
# Postgres: Key (email)=(a@x.com) already exists.
_PG_UNIQUE = re.compile(r"Key \((.+?)\)=")


def duplicate_keys(exc: IntegrityError) -> list[str]:
    """从唯一约束错误信息中提取冲突字段名"""
    message = str(exc.orig)
    match = _SQLITE_UNIQUE.search(message)
    if match:
        return [part.strip().split(".")[-1] for part in match.group(1).split(",")]
    match = _PG_UNIQUE.search(message)
    if match:
        return [part.strip() for part in match.group(1).split(",")]
    return []


def _is_unique_violation(exc: IntegrityError) -> bool:
    message = str(exc.orig).lower()
    return "unique" in message or "duplicate" in message


def translate(exc: Exception) -> AppError:
    """把存储层异常转换为对应的业务异常"""
    if isinstance(exc, IntegrityError):
        if _is_unique_violation(exc):
            keys = duplicate_keys(exc)
            message = f"Duplicate value for {', '.join(keys)}" if keys else "Duplicate value"
            return ConflictError(message, details={"keys": keys})
        return ValidationError("Document validation failed", details={"reason": str(exc.orig)})
    if isinstance(exc, NoResultFound):
        return NotFoundError("Document not found")
    if isinstance(exc, DataError):
        return ValidationError("Invalid value", details={"reason": str(exc.orig)})
    if isinstance(exc, DBAPIError):
        return InternalServerError("Database error")
    if isinstance(exc, StatementError):
        # 绑定参数在 Python 侧处理失败（如类型不匹配），相当于 CastError
        return ValidationError("Invalid value", details={"reason": str(exc.orig or exc)})
    return InternalServerError()


@asynccontextmanager
async def storage_errors(session: AsyncSession | None = None) -> AsyncIterator[None]:
    """
    存储异常转换上下文

    使用示例：
        async with db.session() as session, storage_errors(session):
            session.add(obj)
            await session.commit()
    """
    try:
        yield
    except AppError:
        raise
    except (IntegrityError, NoResultFound, StatementError) as exc:
        if session is not None:
            await session.rollback()
        error = translate(exc)
        if isinstance(error, InternalServerError):
            logger.error(f"数据库错误: {exc}")
        raise error from exc
