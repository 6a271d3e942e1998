"""
数据库模块

这个模块负责数据库相关的所有底层操作：
- base.py        : SQLAlchemy 基类定义，所有 ORM 模型都继承自它
- session.py     : Database 存储绑定（引擎、会话工厂、模型注册表）
- repository.py  : 通用仓储，租户隔离 + 软删除 + 分页 + 批量操作
- filters.py     : 文档风格过滤条件到 SQL 表达式的编译
- pagination.py  : 统一的分页结果
- soft_delete.py : 软删除策略
- sequences.py   : 原子自增序号
- errors.py      : 存储层异常到业务异常的转换

使用 SQLAlchemy 2.0 + asyncpg 实现完全异步的数据库操作。
"""
