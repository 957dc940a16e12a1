"""
事务与保存点

SavePoint 是事务内的执行句柄，持有事务的连接和一个保存点栈，
它的所有语句都在该连接上执行，不会从连接池获取新连接。
句柄本身不可变: save() 返回压入新保存点的子句柄，rollback() 返回
弹出保存点后的父句柄。
"""

import itertools
import re
from typing import Any, Callable, Iterator, Optional, Sequence, Tuple

from ..utils.logging_utils import get_logger
from .dialects import Dialect
from .queryable import Queryable
from .statement import Statement
from .statement_executor import R, StatementExecutor, timed_call

logger = get_logger(__name__)

SAVEPOINT_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class SavePoint(StatementExecutor):
    """
    事务内的执行句柄

    Args:
        connection: 事务持有的 DB-API 连接
        dialect: 数据库方言
        savepoints: 保存点名称栈，最新的在最前
        counter: 匿名保存点编号生成器，同一事务内共享

    Example:
        >>> with executor.transaction() as tx:
        ...     tx.update("UPDATE account SET balance = balance - ? WHERE id = ?", 100, 1)
        ...     checkpoint = tx.save()
        ...     checkpoint.update("UPDATE account SET flag = 1")
        ...     tx = checkpoint.rollback()
    """

    def __init__(
        self,
        connection: Any,
        dialect: Dialect,
        savepoints: Sequence[str] = (),
        counter: Optional[Iterator[int]] = None,
    ) -> None:
        super().__init__(dialect, Queryable(dialect, autocommit=False))
        self._connection = connection
        self._savepoints: Tuple[str, ...] = tuple(savepoints)
        self._counter = counter if counter is not None else itertools.count(1)

    @property
    def connection(self) -> Any:
        return self._connection

    @property
    def savepoints(self) -> Tuple[str, ...]:
        return self._savepoints

    @property
    def name(self) -> Optional[str]:
        """最新保存点的名称，事务起点为 None"""
        return self._savepoints[0] if self._savepoints else None

    def __repr__(self) -> str:
        return f"SavePoint({self.name or '<transaction>'}, depth={len(self._savepoints)})"

    def _run(
        self,
        query: str,
        params: Sequence[Any],
        operation: Callable[[Any], R],
        lazy: bool = False,
    ) -> R:
        return timed_call(repr(self), query, params, lambda: operation(self._connection))

    def _child(self, savepoints: Tuple[str, ...]) -> "SavePoint":
        return SavePoint(self._connection, self.dialect, savepoints, self._counter)

    def _execute_control(self, sql: str) -> None:
        def call() -> None:
            statement = Statement(self._connection, sql, self.dialect)
            try:
                statement.execute()
            finally:
                statement.close()

        timed_call(repr(self), sql, (), call)

    def save(self, name: Optional[str] = None) -> "SavePoint":
        """
        创建保存点

        Args:
            name: 保存点名称，None 时自动生成

        Returns:
            SavePoint: 压入新保存点后的句柄

        Raises:
            ValueError: 名称不是合法的标识符
        """
        if name is None:
            name = f"sp_{next(self._counter)}"
        elif not SAVEPOINT_NAME_PATTERN.match(name):
            raise ValueError(f"保存点名称不合法: {name!r}")
        self._execute_control(self.dialect.savepoint_sql(name))
        logger.debug(f"创建保存点: {name}")
        return self._child((name,) + self._savepoints)

    def rollback(self) -> "SavePoint":
        """
        回滚到最新的保存点；没有保存点时回滚整个事务

        Returns:
            SavePoint: 弹出保存点后的句柄
        """
        if not self._savepoints:
            timed_call(repr(self), "ROLLBACK", (), self._connection.rollback)
            logger.debug("事务已回滚到起点")
            return self._child(())

        name = self._savepoints[0]
        self._execute_control(self.dialect.rollback_to_sql(name))
        logger.debug(f"已回滚到保存点: {name}")
        return self._child(self._savepoints[1:])

    def release(self) -> "SavePoint":
        """
        释放最新的保存点，保留其后的修改

        不支持释放保存点的方言只弹出名称。

        Raises:
            ValueError: 没有可释放的保存点
        """
        if not self._savepoints:
            raise ValueError("没有可释放的保存点")
        name = self._savepoints[0]
        sql = self.dialect.release_sql(name)
        if sql is not None:
            self._execute_control(sql)
        return self._child(self._savepoints[1:])
