"""
Mosaic API - 应用主包

多租户 REST 后端的核心应用包，包含以下子模块：
- api/          : API 路由、依赖注入和通用 CRUD 控制器
- auth/         : 认证（JWT、密码哈希、Cookie）
- db/           : 存储绑定、通用仓储、过滤与分页
- models/       : SQLAlchemy ORM 数据模型
- repositories/ : 具体模型的仓储
- schemas/      : Pydantic 请求/响应模式
- services/     : 业务逻辑（认证流程、邮件、实时通知）
- infra/        : 基础设施（日志）

项目架构遵循分层设计：
    API层 → 服务层 → 仓储层 → 存储层
"""
