"""
FastAPI 应用实例

这是 FastAPI 应用的核心配置文件，负责：
1. 创建 FastAPI 应用实例
2. 配置应用生命周期（建表、发件箱后台任务、释放连接池）
3. 注册所有 API 路由（统一挂载在 /api 下）
4. 配置结构化日志、请求追踪和统一错误响应
"""

import asyncio
import contextlib
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.responses import error_response
from app.api.routes import api_router
from app.config import get_settings
from app.db.session import get_database, init_models
from app.exceptions import AppError
from app.infra.logging import get_logger, setup_logging
from app.middleware import RequestTraceMiddleware
from app.repositories.outbox import OutboxRepository
from app.services.email import EmailService
from app.services.notifier import Notifier, run_outbox_worker

# 配置结构化日志
setup_logging()
logger = get_logger(__name__)

# 获取全局配置（单例模式，整个应用共享同一个配置实例）
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    应用生命周期管理器

    - yield 之前：应用启动时执行
    - yield 之后：应用关闭时执行

    注意：
        - 开发环境：使用 init_models() 自动创建表
        - 生产环境：应该使用 Alembic 进行数据库迁移
    """
    # ========== 启动时执行 ==========
    logger.info(f"应用启动中... 环境: {settings.environment}")

    if settings.is_development:
        await init_models()
        logger.info("数据库表初始化完成（开发模式）")
    else:
        logger.info("跳过自动建表，请使用 Alembic 迁移")

    worker = None
    if settings.outbox_flush_interval_seconds > 0:
        database = get_database()
        notifier = Notifier(EmailService(settings), OutboxRepository(database))
        worker = asyncio.create_task(run_outbox_worker(notifier, settings.outbox_flush_interval_seconds))
        logger.info(f"发件箱重试任务已启动，间隔 {settings.outbox_flush_interval_seconds}s")

    yield  # 应用运行中...

    # ========== 关闭时执行 ==========
    if worker is not None:
        worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await worker
    await get_database().dispose()
    logger.info("应用已关闭")


# 创建 FastAPI 应用实例
app = FastAPI(
    title=settings.app_name,
    lifespan=lifespan,
)

# 注册中间件
app.add_middleware(RequestTraceMiddleware)

# 注册所有 API 路由
app.include_router(api_router, prefix="/api")


# ==================== 统一错误响应 ====================
# {"status": "error", "message": "...", "details": ..., "stack": ...（非生产环境）}

@app.exception_handler(AppError)
async def app_error_handler(_: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__}: {exc.message}")
    return error_response(exc.status_code, exc.message, exc.details, exc)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_: Request, exc: RequestValidationError):
    # 请求参数校验失败统一返回 400
    return error_response(400, "Validation failed", exc.errors())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(_: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        return error_response(404, "Route not found")
    return error_response(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_exception_handler(_: Request, exc: Exception):
    logger.exception(f"未处理的异常: {exc}")
    return error_response(500, "Internal server error", exc=exc)
