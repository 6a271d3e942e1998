"""
业务异常定义

所有可预期的错误都继承自 AppError，携带 HTTP 状态码和可选的结构化详情。
全局异常处理器（app/main.py）将其渲染为统一的错误响应：
    {"status": "error", "message": "...", "details": {...}}
"""

from typing import Any


class AppError(Exception):
    """带状态码的业务异常基类"""

    status_code: int = 500
    default_message: str = "Internal Server Error"

    def __init__(self, message: str | None = None, details: Any = None) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.status_code}, {self.message!r})"


class ValidationError(AppError):
    """请求参数或数据校验失败"""
    status_code = 400
    default_message = "Validation failed"


class UnauthorizedError(AppError):
    """未认证或凭证无效"""
    status_code = 401
    default_message = "Unauthorized"


class ForbiddenError(AppError):
    """已认证但无权访问"""
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(AppError):
    """资源不存在"""
    status_code = 404
    default_message = "Not Found"


class ConflictError(AppError):
    """资源冲突（如邮箱重复）"""
    status_code = 409
    default_message = "Conflict"


class GoneError(AppError):
    """资源已失效（如 OTP 过期）"""
    status_code = 410
    default_message = "Gone"


class InternalServerError(AppError):
    """服务内部错误"""
    status_code = 500
    default_message = "Internal Server Error"


class SoftDeleteSubstituted(Exception):
    """
    物理删除被替换为软删除

    非致命信号：记录已经被标记为删除（is_deleted=True），
    调用方可以据此区分"已软删除"与"已物理移除"。
    """

    def __init__(self, model: str, count: int) -> None:
        self.model = model
        self.count = count
        super().__init__(f"{model}: {count} record(s) were soft deleted instead of being removed")


class EmailDeliveryError(Exception):
    """邮件发送失败"""
