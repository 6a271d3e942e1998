"""
API 路由汇总

将所有子路由注册到主路由器，统一对外暴露（挂载在 /api 下）。

路由模块说明：
- health.py : 健康检查接口
- auth.py   : 注册、登录、OTP、重置密码、刷新令牌
- v1.py     : 需要认证的业务接口（含用户管理）
- ws.py     : 实时通知 WebSocket
"""

from fastapi import APIRouter

from app.api.routes import auth, health, v1, ws

# 主路由器，包含所有 API 端点
api_router = APIRouter()

# 注册各子路由，tags 用于 API 文档分组
api_router.include_router(health.router, tags=["health"])
api_router.include_router(auth.router)  # auth 路由自带 tags
api_router.include_router(v1.router)
api_router.include_router(ws.router, tags=["notifications"])
