"""
基于 SQLAlchemy 的连接池

- EnginePool: 按连接配置创建 SQLAlchemy 引擎，借用其连接池提供 DB-API 连接
- CreatorPool: 对任意 DB-API 连接工厂使用 sqlalchemy.pool.QueuePool

两者返回的连接都是连接池代理对象，close() 即归还连接池，归还时自动回滚
未提交的事务。

支持的数据库类型（EnginePool）:
- Oracle（oracledb）
- PostgreSQL（psycopg）
- MySQL（pymysql）
- SQL Server（pymssql）
- SQLite（标准库 sqlite3）
"""

import re
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote_plus

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.pool import QueuePool

from ..core.exceptions import ConnectionError, DriverError
from ..utils.logging_utils import get_logger
from .base import ConnectionPool, DBAPIConnection

logger = get_logger(__name__)


def _acquire_error(pool_name: str, error: Exception) -> ConnectionError:
    if isinstance(error, PoolTimeoutError):
        message = f"连接池 {pool_name} 获取连接超时: {str(error)}"
        code = "POOL_TIMEOUT"
    else:
        message = f"连接池 {pool_name} 获取连接失败: {error.__class__.__name__}: {str(error)}"
        code = "ACQUIRE_FAILED"
    logger.error(message)
    return ConnectionError(message, error_code=code, pool_name=pool_name)


class EnginePool(ConnectionPool):
    """
    由 SQLAlchemy 引擎提供连接的连接池

    引擎在第一次获取连接时创建，也可以显式调用 connect()。

    Attributes:
        DRIVER_MAP (Dict[str, str]): 数据库类型到驱动名称的映射
        URL_TEMPLATES (Dict[str, str]): 各数据库类型的连接URL模板

    Example:
        >>> pool = EnginePool({"type": "sqlite", "database": "/tmp/app.db"})
        >>> con = pool.acquire()
        >>> pool.release(con)
        >>> pool.shutdown()
    """

    DRIVER_MAP: Dict[str, str] = {
        "oracle": "oracledb",
        "postgresql": "psycopg",
        "mysql": "pymysql",
        "mssql": "pymssql",
        "sqlite": "sqlite3",
    }

    URL_TEMPLATES: Dict[str, str] = {
        "oracle": "oracle+oracledb://{username}:{password}@{host}:{port}/?service_name={service_name}",
        "postgresql": "postgresql+psycopg://{username}:{password}@{host}:{port}/{database}",
        "mysql": "mysql+pymysql://{username}:{password}@{host}:{port}/{database}",
        "mssql": "mssql+pymssql://{username}:{password}@{host}:{port}/{database}",
        "sqlite": "sqlite:///{database}",
    }

    DEFAULT_PORTS: Dict[str, str] = {
        "oracle": "1521",
        "postgresql": "5432",
        "mysql": "3306",
        "mssql": "1433",
    }

    TEST_QUERY_DEFAULT: str = "SELECT 1"
    ORACLE_TEST_QUERY: str = "SELECT 1 FROM DUAL"

    def __init__(self, connection_config: Dict[str, Any], name: Optional[str] = None) -> None:
        """
        Args:
            connection_config: 连接配置，必需包含 type；服务器数据库还需要
                username、password、host 以及 database（Oracle 为 service_name），
                可选 port、pool_config、echo_sql 和驱动相关参数
            name: 连接池名称，用于日志

        Raises:
            ValueError: 配置为空或不是字典
            DriverError: 不支持的数据库类型
        """
        if not connection_config:
            raise ValueError("连接配置不能为空")
        if not isinstance(connection_config, dict):
            raise ValueError("连接配置必须为字典类型")

        self.connection_config = connection_config
        self.db_type = str(connection_config.get("type", "")).lower()
        if self.db_type not in self.URL_TEMPLATES:
            supported_types = ", ".join(self.URL_TEMPLATES.keys())
            raise DriverError(
                f"不支持的数据库类型: {self.db_type}，支持的类型: {supported_types}",
                driver_name=self.db_type,
            )
        self.name = name or connection_config.get("name") or self.db_type
        self.engine: Optional[Engine] = None

    # ------------------------------------------------------------------
    # 引擎
    # ------------------------------------------------------------------

    def connect(self) -> Engine:
        """
        创建 SQLAlchemy 引擎（已创建时直接返回）

        Raises:
            ConnectionError: 引擎创建失败
        """
        if self.engine is not None:
            return self.engine

        connection_url = self._build_connection_url()
        engine_kwargs: Dict[str, Any] = {
            "echo": self.connection_config.get("echo_sql", False),
            **self._get_pool_config(),
            **self._get_engine_config(),
        }
        try:
            self.engine = create_engine(connection_url, **engine_kwargs)
        except SQLAlchemyError as e:
            error_msg = f"数据库引擎创建失败: {e.__class__.__name__}: {str(e)}"
            logger.error(error_msg, exc_info=True)
            raise ConnectionError(error_msg, error_code="ENGINE_FAILED", pool_name=self.name)

        logger.info(f"数据库引擎创建成功: {self.name} ({self._mask_sensitive_info(connection_url)})")
        return self.engine

    def _build_connection_url(self) -> str:
        """
        构建连接 URL

        用户名和密码做 URL 编码；未配置端口时使用默认端口；
        SQLite 未配置 database 时使用内存数据库。

        Raises:
            DriverError: 缺少必需的连接参数
        """
        config = self.connection_config.copy()

        if self.db_type == "sqlite":
            config.setdefault("database", ":memory:")
            return self.URL_TEMPLATES["sqlite"].format(**config)

        required_fields = ["username", "password", "host"]
        required_fields.append("service_name" if self.db_type == "oracle" else "database")
        missing_fields = [field for field in required_fields if field not in config]
        if missing_fields:
            raise DriverError(
                f"缺少必需的连接参数: {', '.join(missing_fields)}", driver_name=self.db_type
            )

        config.setdefault("port", self.DEFAULT_PORTS.get(self.db_type, ""))
        config["username"] = quote_plus(str(config["username"]))
        config["password"] = quote_plus(str(config["password"]))
        if "@" in config["host"] or ":" in config["host"]:
            config["host"] = quote_plus(config["host"])

        url = self.URL_TEMPLATES[self.db_type].format(**config)
        logger.debug(f"构建的连接URL: {self._mask_sensitive_info(url)}")
        return url

    @staticmethod
    def _mask_sensitive_info(url: str) -> str:
        return re.sub(r":([^:@/]+)@", ":***@", url)

    def _get_pool_config(self) -> Dict[str, Any]:
        """
        合并默认连接池配置与用户配置

        SQLite 内存数据库使用单线程连接池，不支持 pool_size / max_overflow。
        """
        default_pool_config: Dict[str, Any] = {
            "pool_pre_ping": True,
            "pool_recycle": 3600,
        }
        memory_sqlite = self.db_type == "sqlite" and self.connection_config.get(
            "database", ":memory:"
        ) == ":memory:"
        if not memory_sqlite:
            default_pool_config.update({"pool_size": 10, "max_overflow": 20})

        user_pool_config = dict(self.connection_config.get("pool_config", {}))
        if memory_sqlite:
            user_pool_config.pop("max_overflow", None)
            user_pool_config.pop("pool_size", None)
        return {**default_pool_config, **user_pool_config}

    # 各数据库允许透传给驱动的连接参数
    CONNECT_ARG_KEYS: Dict[str, tuple] = {
        "oracle": ("mode",),
        "postgresql": ("sslmode", "sslrootcert", "sslcert", "sslkey", "connect_timeout"),
        "mysql": ("charset", "collation", "ssl_ca", "ssl_cert", "ssl_key"),
        "mssql": ("charset", "tds_version", "login_timeout", "timeout"),
        "sqlite": ("timeout", "isolation_level", "check_same_thread"),
    }

    def _get_engine_config(self) -> Dict[str, Any]:
        connect_args = {
            key: self.connection_config[key]
            for key in self.CONNECT_ARG_KEYS.get(self.db_type, ())
            if key in self.connection_config
        }
        return {"connect_args": connect_args} if connect_args else {}

    # ------------------------------------------------------------------
    # ConnectionPool
    # ------------------------------------------------------------------

    def acquire(self) -> DBAPIConnection:
        """
        从引擎连接池借出一个 DB-API 连接

        Raises:
            ConnectionError: 获取超时或建立连接失败
        """
        engine = self.connect()
        try:
            return engine.raw_connection()
        except SQLAlchemyError as e:
            raise _acquire_error(self.name, e) from e

    def release(self, connection: DBAPIConnection) -> None:
        connection.close()

    def shutdown(self) -> None:
        if self.engine is None:
            logger.debug(f"连接池 {self.name} 未创建引擎，无需关闭")
            return
        self.engine.dispose()
        self.engine = None
        logger.info(f"连接池 {self.name} 已关闭")

    def test_connection(self) -> bool:
        """
        执行测试查询验证连接可用，不抛出异常

        Returns:
            bool: 连接是否可用
        """
        test_query = (
            self.ORACLE_TEST_QUERY if self.db_type == "oracle" else self.TEST_QUERY_DEFAULT
        )
        try:
            with self.connect().connect() as conn:
                conn.execute(text(test_query))
            return True
        except Exception as e:
            logger.warning(f"连接池 {self.name} 连接测试失败: {e}")
            return False

    def status(self) -> str:
        """连接池状态描述"""
        if self.engine is None:
            return "未创建"
        return self.engine.pool.status()


class CreatorPool(ConnectionPool):
    """
    对 DB-API 连接工厂使用 QueuePool

    Args:
        creator: 无参函数，返回新的 DB-API 连接
        pool_size: 保持的连接数
        max_overflow: 允许超出 pool_size 的连接数
        timeout: 获取连接的等待秒数
        name: 连接池名称

    Example:
        >>> pool = CreatorPool(lambda: sqlite3.connect("app.db"), pool_size=2)
    """

    def __init__(
        self,
        creator: Callable[[], Any],
        pool_size: int = 5,
        max_overflow: int = 10,
        timeout: float = 30.0,
        name: str = "creator",
    ) -> None:
        self.name = name
        self._pool = QueuePool(
            creator,
            pool_size=pool_size,
            max_overflow=max_overflow,
            timeout=timeout,
        )

    def acquire(self) -> DBAPIConnection:
        try:
            return self._pool.connect()
        except SQLAlchemyError as e:
            raise _acquire_error(self.name, e) from e

    def release(self, connection: DBAPIConnection) -> None:
        connection.close()

    def shutdown(self) -> None:
        self._pool.dispose()
        logger.info(f"连接池 {self.name} 已关闭")

    def status(self) -> str:
        return self._pool.status()
