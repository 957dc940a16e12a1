"""
DB Executor - 关系数据库查询执行层
==================================

在 DB-API 连接池之上提供查询、更新、批处理、存储过程调用和带保存点的事务，
查询结果以可关闭的惰性迭代器返回，迭代结束或关闭时自动归还连接。

主要特性:
- 支持 SQLite, PostgreSQL, MySQL, SQL Server, Oracle
- 查询参数中的列表自动展开为多个占位符
- 每条语句计时并记录日志，可单独输出慢查询
- 数据源配置加密存储，附带命令行工具

使用示例:
    >>> from db_executor import QueryExecutor
    >>> executor = QueryExecutor.from_config({"type": "sqlite", "database": "app.db"})
    >>> with executor.transaction() as tx:
    ...     tx.update("UPDATE accounts SET balance = balance - ? WHERE id = ?", 10, 1)
"""

from .core import (
    CloseableIterator,
    ConfigError,
    ConfigManager,
    ConnectionError,
    CryptoError,
    DatabaseError,
    DBExecutorError,
    Dialect,
    DriverError,
    NullConnectionError,
    ParameterCountError,
    QueryError,
    QueryExecutor,
    RichRow,
    SavePoint,
    ValidationError,
    closeable,
    get_dialect,
)
from .pools import ConnectionPool, CreatorPool, EnginePool

__version__ = "1.0.0"


def get_version() -> str:
    return __version__


__all__ = [
    # ==================== 执行 ====================
    "QueryExecutor",
    "SavePoint",
    "CloseableIterator",
    "RichRow",
    "closeable",
    # ==================== 方言与连接池 ====================
    "Dialect",
    "get_dialect",
    "ConnectionPool",
    "CreatorPool",
    "EnginePool",
    # ==================== 配置管理 ====================
    "ConfigManager",
    # ==================== 异常 ====================
    "DBExecutorError",
    "ConfigError",
    "CryptoError",
    "ValidationError",
    "DatabaseError",
    "ConnectionError",
    "NullConnectionError",
    "DriverError",
    "QueryError",
    "ParameterCountError",
    # ==================== 版本 ====================
    "__version__",
    "get_version",
]
