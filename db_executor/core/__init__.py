"""
查询执行器核心模块

- 惰性迭代器: CloseableIterator 及其组合子，结果集迭代器 ResultSetIterator
- 参数与语句: 查询参数、IN 列表展开、按位置绑定的 Statement
- 方言: 各数据库的占位符、保存点语法、生成主键和时间解析差异
- 执行: QueryExecutor（连接池）与 SavePoint（事务内）
- 配置: 加密保存的数据源与执行器设置

使用示例：
    >>> from db_executor.core import QueryExecutor
    >>>
    >>> executor = QueryExecutor.from_config({"type": "sqlite", "database": "app.db"})
    >>> executor.execute("CREATE TABLE IF NOT EXISTS t (id INTEGER PRIMARY KEY, v TEXT)")
    >>> executor.insert("INSERT INTO t (v) VALUES (?)", "a").to_list()
    [1]
    >>> executor.select("SELECT v FROM t WHERE id IN (?)", [1, 2],
    ...                 transform=lambda row: row.get_string("v")).to_list()
    ['a']
"""

from .config import ConfigManager
from .crypto import CryptoManager
from .cursor import MaterializedCursor, ResultSetIterator
from .dialects import (
    DIALECTS,
    Dialect,
    MySQLDialect,
    OracleDialect,
    PostgreSQLDialect,
    SQLiteDialect,
    SqlServerDialect,
    get_dialect,
)
from .exceptions import (
    ConfigError,
    ConnectionError,
    CryptoError,
    DatabaseError,
    DBExecutorError,
    DriverError,
    NullConnectionError,
    ParameterCountError,
    QueryError,
    ValidationError,
)
from .executor import QueryExecutor
from .iterators import BufferedIterator, CloseableIterator, closeable, empty, manage
from .params import NOTHING, Char, Left, Right, Some, format_query, to_param, to_params
from .queryable import DEFAULT_BATCH_SIZE, Queryable
from .rows import ColumnIndex, RichRow, StatementResult
from .savepoint import SavePoint
from .statement import Statement, bind_params
from .statement_executor import StatementExecutor

__all__ = [
    # ==================== 惰性迭代器 ====================
    "CloseableIterator",
    "BufferedIterator",
    "ResultSetIterator",
    "MaterializedCursor",
    "closeable",
    "empty",
    "manage",
    # ==================== 参数与语句 ====================
    "Some",
    "NOTHING",
    "Left",
    "Right",
    "Char",
    "to_param",
    "to_params",
    "format_query",
    "Statement",
    "bind_params",
    # ==================== 结果行 ====================
    "ColumnIndex",
    "RichRow",
    "StatementResult",
    # ==================== 方言 ====================
    "Dialect",
    "SQLiteDialect",
    "PostgreSQLDialect",
    "MySQLDialect",
    "SqlServerDialect",
    "OracleDialect",
    "DIALECTS",
    "get_dialect",
    # ==================== 执行 ====================
    "Queryable",
    "StatementExecutor",
    "QueryExecutor",
    "SavePoint",
    "DEFAULT_BATCH_SIZE",
    # ==================== 配置管理 ====================
    "ConfigManager",
    "CryptoManager",
    # ==================== 异常处理体系 ====================
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
]
