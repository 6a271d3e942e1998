"""
健康检查接口

用于 Kubernetes 等容器编排系统进行存活探测和就绪探测。
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text

from app.api.deps import get_db
from app.db.session import Database

router = APIRouter()


@router.get("/healthz")
async def healthcheck() -> dict:
    """存活探测：进程正常即返回 ok"""
    return {"status": "ok"}


@router.get("/readyz")
async def readiness(db: Database = Depends(get_db)) -> dict:
    """就绪探测：检查数据库连接"""
    async with db.session() as session:
        await session.execute(text("SELECT 1"))
    return {"status": "ok", "database": "ok"}
