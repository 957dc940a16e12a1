"""
连接池模块

- ConnectionPool: 执行器依赖的连接池接口
- EnginePool: 由连接配置创建的 SQLAlchemy 引擎连接池
- CreatorPool: 基于 DB-API 连接工厂的 QueuePool
"""

from .base import ConnectionPool, DBAPIConnection, DBAPICursor
from .sqlalchemy_pool import CreatorPool, EnginePool

__all__ = [
    # ==================== 接口 ====================
    "ConnectionPool",
    "DBAPIConnection",
    "DBAPICursor",
    # ==================== 实现 ====================
    "EnginePool",
    "CreatorPool",
]
