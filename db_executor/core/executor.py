"""
查询执行器

QueryExecutor 是面向调用方的入口: 每个操作从连接池获取连接，
执行、计时并记录日志，最后归还连接。返回惰性迭代器的操作
（select、insert、merge、proc）把连接交给迭代器，迭代器关闭时才归还。

Example:
    >>> executor = QueryExecutor(CreatorPool(lambda: sqlite3.connect("app.db")), SQLiteDialect())
    >>> executor.execute("CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT)")
    >>> user_id = executor.insert("INSERT INTO users (name) VALUES (?)", "alice").first()
    >>> executor.select_one("SELECT name FROM users WHERE id = ?", user_id,
    ...                     transform=lambda row: row.get_string("name"))
    'alice'
    >>> with executor.transaction() as tx:
    ...     tx.update("UPDATE users SET name = ? WHERE id = ?", "bob", user_id)
"""

from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional, Sequence

from ..pools.base import ConnectionPool, DBAPIConnection
from ..utils.logging_utils import get_logger
from .dialects import Dialect, get_dialect
from .exceptions import DatabaseError, NullConnectionError
from .queryable import Queryable
from .savepoint import SavePoint
from .statement_executor import R, StatementExecutor, timed_call

logger = get_logger(__name__)


class QueryExecutor(StatementExecutor):
    """
    基于连接池的查询执行器

    Args:
        pool: 连接池
        dialect: 数据库方言
        name: 执行器名称，用于日志
    """

    def __init__(
        self, pool: ConnectionPool, dialect: Dialect, name: Optional[str] = None
    ) -> None:
        super().__init__(dialect, Queryable(dialect, autocommit=True))
        self._pool = pool
        self.name = name or getattr(pool, "name", dialect.name)

    @classmethod
    def from_config(
        cls, connection_config: Dict[str, Any], name: Optional[str] = None, **dialect_options: Any
    ) -> "QueryExecutor":
        """
        按连接配置创建执行器（EnginePool + 对应方言）

        Args:
            connection_config: EnginePool 使用的连接配置，type 决定方言
            name: 执行器名称
            **dialect_options: 传给方言构造函数的参数
        """
        from ..pools.sqlalchemy_pool import EnginePool

        pool = EnginePool(connection_config, name=name)
        dialect = get_dialect(str(connection_config.get("type", "")), **dialect_options)
        return cls(pool, dialect, name=name or pool.name)

    @property
    def pool(self) -> ConnectionPool:
        return self._pool

    def __str__(self) -> str:
        return f"QueryExecutor({self.name})"

    __repr__ = __str__

    # ------------------------------------------------------------------
    # 连接
    # ------------------------------------------------------------------

    def _acquire(self) -> DBAPIConnection:
        connection = self._pool.acquire()
        if connection is None:
            logger.error(f"{self} 连接池返回了空连接")
            raise NullConnectionError(self.name)
        return connection

    def _release(self, connection: DBAPIConnection) -> None:
        try:
            self._pool.release(connection)
        except Exception as e:
            logger.error(f"{self} 归还连接失败: {e.__class__.__name__}: {str(e)}", exc_info=True)

    def _run(
        self,
        query: str,
        params: Sequence[Any],
        operation: Callable[[Any], R],
        lazy: bool = False,
    ) -> R:
        connection = self._acquire()
        handed_off = False

        def call() -> R:
            nonlocal handed_off
            result = operation(connection)
            if lazy:
                handed_off = True
                result.on_close(lambda: self._release(connection))
            return result

        try:
            return timed_call(str(self), query, params, call)
        finally:
            if not handed_off:
                self._release(connection)

    # ------------------------------------------------------------------
    # 事务
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[SavePoint]:
        """
        在一个连接上执行事务

        开始前关闭驱动的自动提交，结束后恢复原状态。正常退出时提交；
        出现异常时尽力回滚并重新抛出原异常（回滚失败只记录日志）；
        连接总会被归还。

        Raises:
            DatabaseError: 提交失败

        Example:
            >>> with executor.transaction() as tx:
            ...     tx.insert("INSERT INTO t (a) VALUES (?)", 1).to_list()
            ...     inner = tx.save()
            ...     inner.delete("DELETE FROM t")
            ...     inner.rollback()
        """
        connection = self._acquire()
        try:
            autocommit = self.dialect.begin(connection)
        except BaseException:
            self._release(connection)
            raise
        logger.debug(f"{self} 开始事务")
        try:
            try:
                yield SavePoint(connection, self.dialect)
            except BaseException:
                self._rollback_quietly(connection)
                raise
            try:
                connection.commit()
            except Exception as e:
                logger.error(f"{self} 事务提交失败: {e}", exc_info=True)
                self._rollback_quietly(connection)
                raise DatabaseError(
                    f"事务提交失败: {str(e)}",
                    error_code="COMMIT_FAILED",
                    database_type=self.dialect.name,
                    operation="commit",
                ) from e
            logger.debug(f"{self} 事务已提交")
        finally:
            self._restore_autocommit(connection, autocommit)
            self._release(connection)

    def transact(self, body: Callable[[SavePoint], R]) -> R:
        """在事务中执行 body 并返回其结果"""
        with self.transaction() as savepoint:
            return body(savepoint)

    def _restore_autocommit(self, connection: DBAPIConnection, state: Any) -> None:
        try:
            self.dialect.restore(connection, state)
        except Exception as e:
            logger.error(f"{self} 恢复自动提交失败: {e.__class__.__name__}: {str(e)}", exc_info=True)

    def _rollback_quietly(self, connection: DBAPIConnection) -> None:
        try:
            connection.rollback()
            logger.info(f"{self} 事务已回滚")
        except Exception as e:
            logger.error(f"{self} 事务回滚失败: {e.__class__.__name__}: {str(e)}", exc_info=True)

    # ------------------------------------------------------------------
    # 生命周期
    # ------------------------------------------------------------------

    def shutdown(self) -> None:
        """关闭连接池"""
        self._pool.shutdown()
        logger.info(f"{self} 已关闭")

    def __enter__(self) -> "QueryExecutor":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()
