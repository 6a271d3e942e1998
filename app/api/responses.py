"""
统一响应格式

成功：{"success": true, "data": ...}
失败：{"status": "error", "message": "...", "details": ..., "stack": ...}（stack 仅非生产环境）
"""

import traceback
from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from app.config import get_settings


def send_response(data: Any = None, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": True, "data": jsonable_encoder(data)})


def error_response(
    status_code: int,
    message: str,
    details: Any = None,
    exc: BaseException | None = None,
) -> JSONResponse:
    body: dict[str, Any] = {"status": "error", "message": message}
    if details is not None:
        body["details"] = jsonable_encoder(details)
    if exc is not None and not get_settings().is_production:
        body["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return JSONResponse(status_code=status_code, content=body)
