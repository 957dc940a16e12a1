"""
语句执行接口

StatementExecutor 定义事务内外一致的增删改查方法，子类只需实现 _run():
QueryExecutor 每次从连接池获取连接，SavePoint 使用事务持有的连接。

所有语句都经过 timed_call()，输出一条计时日志:

    查询计时: QUERY: <sql> PARAMS: <参数> 耗时 <N> ms

日志记录附带 query、params、elapsed_ms 三个属性，供 SlowQueryFilter 使用。
"""

import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable, List, Optional, Sequence, TypeVar

from ..utils.logging_utils import get_logger
from .dialects import Column, Dialect
from .exceptions import DBExecutorError, QueryError
from .iterators import CloseableIterator
from .params import describe_params
from .queryable import DEFAULT_BATCH_SIZE, OutParameters, Queryable
from .rows import RichRow, StatementResult

logger = get_logger(__name__)

R = TypeVar("R")
T = TypeVar("T")

# 调用方参数错误直接抛出，不包装为 QueryError
CALLER_ERRORS = (DBExecutorError, ValueError, TypeError)


def timed_call(owner: str, query: str, params: Sequence[Any], call: Callable[[], R]) -> R:
    """
    执行 call 并记录耗时

    驱动异常记录日志后包装为 QueryError（保留原始异常链），
    库内异常与参数错误原样抛出。
    """
    message = f"QUERY: {query} PARAMS: {describe_params(params)}"
    start = time.perf_counter()
    try:
        result = call()
    except CALLER_ERRORS as e:
        logger.error(f"{owner} 执行失败: {message} - {e}")
        raise
    except Exception as e:
        logger.error(f"{owner} 执行失败: {message} - {e}", exc_info=True)
        raise QueryError(
            f"语句执行失败: {e}",
            error_code="EXECUTION_FAILED",
            query=query,
            parameters=params,
        ) from e

    elapsed_ms = int((time.perf_counter() - start) * 1000)
    logger.info(
        f"查询计时: {message} 耗时 {elapsed_ms} ms",
        extra={"query": query, "params": list(params), "elapsed_ms": elapsed_ms},
    )
    return result


class StatementExecutor(ABC):
    """
    增删改查方法的公共实现

    参数按位置传入，转换函数通过关键字参数 transform 指定:

        >>> executor.select("SELECT * FROM t WHERE id IN (?)", [1, 2], transform=lambda r: r.get_int(1))
    """

    def __init__(self, dialect: Dialect, queryable: Queryable) -> None:
        self.dialect = dialect
        self._queryable = queryable

    @abstractmethod
    def _run(
        self,
        query: str,
        params: Sequence[Any],
        operation: Callable[[Any], R],
        lazy: bool = False,
    ) -> R:
        """
        在一个连接上执行 operation

        lazy 为 True 时 operation 返回 CloseableIterator，连接的生命周期
        跟随迭代器。
        """

    def select(
        self, query: str, *params: Any, transform: Optional[Callable[[RichRow], T]] = None
    ) -> CloseableIterator[T]:
        """
        执行查询，返回惰性迭代器

        转换函数只在取出元素时调用。迭代器耗尽或关闭时释放语句和连接。
        """
        return self._run(
            query,
            params,
            lambda con: self._queryable.select(con, query, params, transform),
            lazy=True,
        )

    def select_one(
        self, query: str, *params: Any, transform: Optional[Callable[[RichRow], T]] = None
    ) -> Optional[T]:
        """返回第一行的转换结果或 None，结果集总会被关闭"""
        return self.select(query, *params, transform=transform).first()

    def eagerly_select(
        self, query: str, *params: Any, transform: Optional[Callable[[RichRow], T]] = None
    ) -> List[T]:
        return self.select(query, *params, transform=transform).to_list()

    def insert(
        self,
        query: str,
        *params: Any,
        columns: Optional[Sequence[Column]] = None,
        transform: Optional[Callable[[RichRow], T]] = None,
    ) -> CloseableIterator[T]:
        """
        执行插入语句，返回生成键的惰性迭代器

        语句在返回前已经提交（事务内除外）。
        """
        return self._run(
            query,
            params,
            lambda con: self._queryable.insert(con, query, params, columns, transform),
            lazy=True,
        )

    def merge(
        self,
        query: str,
        *params: Any,
        columns: Optional[Sequence[Column]] = None,
        transform: Optional[Callable[[RichRow], T]] = None,
    ) -> CloseableIterator[T]:
        """执行 MERGE 语句；PostgreSQL 等方言只在指定 columns 时追加 RETURNING"""
        return self._run(
            query,
            params,
            lambda con: self._queryable.merge(con, query, params, columns, transform),
            lazy=True,
        )

    def update(self, query: str, *params: Any) -> int:
        """执行写语句，返回受影响行数"""
        return self._run(query, params, lambda con: self._queryable.update(con, query, params))

    def delete(self, query: str, *params: Any) -> int:
        return self.update(query, *params)

    def execute(self, query: str, *params: Any) -> None:
        """执行 DDL 或其他不返回结果的语句"""
        self._run(query, params, lambda con: self._queryable.execute(con, query, params))

    def execute_batch(
        self,
        query: str,
        params: Iterable[Sequence[Any]],
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> List[int]:
        """
        分组批量执行

        Args:
            query: SQL 模板
            params: 每个元素是一组参数；只会被遍历一次
            batch_size: 每组条数

        Returns:
            每条语句的受影响行数，按提交顺序排列
        """
        return self._run(
            query,
            [f"<批处理 batch_size={batch_size}>"],
            lambda con: self._queryable.execute_batch(con, query, params, batch_size),
        )

    def proc(
        self, name: str, *params: Any, transform: Optional[Callable[[RichRow], T]] = None
    ) -> CloseableIterator[T]:
        """调用存储过程并惰性读取其结果集"""
        return self._run(
            name,
            params,
            lambda con: self._queryable.proc(con, name, params, transform),
            lazy=True,
        )

    def proc_out(
        self,
        name: str,
        *params: Any,
        out: OutParameters,
        transform: Optional[Callable[[StatementResult], T]] = None,
    ) -> Any:
        """调用存储过程并读取 OUT 参数"""
        return self._run(
            name,
            params,
            lambda con: self._queryable.proc_out(con, name, out, params, transform),
        )
