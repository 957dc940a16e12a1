"""
连接级语句操作

Queryable 在调用方给定的连接上执行一次操作，不负责获取或归还连接。
准备或执行阶段出错时先关闭语句再抛出异常；返回迭代器的操作把语句
的所有权交给迭代器。autocommit 为 True 时写操作执行后立即提交。
"""

from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence, Union

from ..utils.logging_utils import get_logger
from .cursor import MaterializedCursor, ResultSetIterator
from .dialects import Column, Dialect
from .exceptions import QueryError
from .iterators import CloseableIterator, T, closeable
from .params import format_query, to_params
from .rows import ColumnIndex, RichRow, StatementResult
from .statement import Statement, bind_params

logger = get_logger(__name__)

# 批处理默认每组条数
DEFAULT_BATCH_SIZE = 1000

OutParameters = Union[Sequence[int], Mapping[str, int]]


def _identity(row: Any) -> Any:
    return row


class Queryable:
    """
    连接级操作集合

    Args:
        dialect: 数据库方言
        autocommit: 写操作后是否立即提交；事务内为 False
    """

    def __init__(self, dialect: Dialect, autocommit: bool = True) -> None:
        self.dialect = dialect
        self.autocommit = autocommit

    # ------------------------------------------------------------------
    # 语句准备
    # ------------------------------------------------------------------

    def prepare(
        self,
        connection: Any,
        query: str,
        params: Sequence[Any] = (),
        columns: Optional[Sequence[Column]] = None,
        insert: bool = False,
        by_default: bool = True,
    ) -> Statement:
        """
        展开模板、创建语句并绑定参数

        Raises:
            ParameterCountError: 参数与占位符个数不一致
        """
        converted = to_params(params)
        sql = format_query(query, converted)
        if insert:
            sql = self.dialect.prepare_insert(sql, columns, by_default)
        statement = Statement(connection, sql, self.dialect)
        try:
            bind_params(statement, converted)
        except BaseException:
            statement.close()
            raise
        return statement

    def _prepare_call(
        self,
        connection: Any,
        name: str,
        params: Sequence[Any],
        out_positions: Iterable[int] = (),
    ) -> Statement:
        statement = Statement(connection, name, self.dialect, procedure=True)
        try:
            bind_params(statement, to_params(params))
            for position in out_positions:
                statement.register_out_parameter(position)
        except BaseException:
            statement.close()
            raise
        return statement

    def _iterate(
        self, statement: Statement, cursor: Any, transform: Callable[[Any], T]
    ) -> ResultSetIterator[T]:
        columns = ColumnIndex.from_description(cursor.description)
        dialect = self.dialect
        return ResultSetIterator(
            statement,
            cursor,
            transform,
            wrap=lambda values: RichRow(values, columns, dialect),
            scrollable=dialect.scrollable_cursors and cursor is statement.cursor,
        )

    def _commit(self, connection: Any) -> None:
        if self.autocommit:
            connection.commit()

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    def select(
        self,
        connection: Any,
        query: str,
        params: Sequence[Any] = (),
        transform: Optional[Callable[[RichRow], T]] = None,
    ) -> ResultSetIterator[T]:
        """执行查询，返回惰性结果迭代器（关闭迭代器即关闭语句）"""
        statement = self.prepare(connection, query, params)
        try:
            cursor = statement.execute_query()
            return self._iterate(statement, cursor, transform or _identity)
        except BaseException:
            statement.close()
            raise

    def one(
        self,
        connection: Any,
        query: str,
        params: Sequence[Any] = (),
        transform: Optional[Callable[[RichRow], T]] = None,
    ) -> Optional[T]:
        """返回第一行的转换结果，没有结果时返回 None；语句总会被关闭"""
        return self.select(connection, query, params, transform).first()

    # ------------------------------------------------------------------
    # 写操作
    # ------------------------------------------------------------------

    def insert(
        self,
        connection: Any,
        query: str,
        params: Sequence[Any] = (),
        columns: Optional[Sequence[Column]] = None,
        transform: Optional[Callable[[RichRow], T]] = None,
    ) -> CloseableIterator[T]:
        """
        执行插入语句，返回生成键的迭代器

        默认转换读取第一个键列；指定 columns 时按列名或列位置返回这些列。
        """
        return self._write_keys(connection, query, params, columns, transform, True)

    def merge(
        self,
        connection: Any,
        query: str,
        params: Sequence[Any] = (),
        columns: Optional[Sequence[Column]] = None,
        transform: Optional[Callable[[RichRow], T]] = None,
    ) -> CloseableIterator[T]:
        """执行 MERGE 语句，只在指定 columns 时追加 RETURNING"""
        return self._write_keys(connection, query, params, columns, transform, False)

    def _write_keys(
        self,
        connection: Any,
        query: str,
        params: Sequence[Any],
        columns: Optional[Sequence[Column]],
        transform: Optional[Callable[[RichRow], T]],
        by_default: bool,
    ) -> CloseableIterator[T]:
        statement = self.prepare(
            connection, query, params, columns, insert=True, by_default=by_default
        )
        try:
            statement.execute_update()
            keys = statement.generated_keys(columns, by_default)
            self._commit(connection)
            return self._iterate(statement, keys, transform or self.dialect.generated_key)
        except BaseException:
            statement.close()
            raise

    def update(self, connection: Any, query: str, params: Sequence[Any] = ()) -> int:
        """执行写语句，返回受影响行数"""
        statement = self.prepare(connection, query, params)
        try:
            count = statement.execute_update()
            self._commit(connection)
            return count
        finally:
            statement.close()

    delete = update

    def execute(self, connection: Any, query: str, params: Sequence[Any] = ()) -> None:
        """执行不关心结果的语句（DDL 等）"""
        statement = self.prepare(connection, query, params)
        try:
            statement.execute()
            self._commit(connection)
        finally:
            statement.close()

    def execute_batch(
        self,
        connection: Any,
        query: str,
        params: Iterable[Sequence[Any]],
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> List[int]:
        """
        分组批量执行同一条语句

        参数按 batch_size 分组，各组按提交顺序执行，返回所有组拼接后的
        每条语句受影响行数。每组参数展开后的 SQL 必须一致。

        Raises:
            ValueError: batch_size 不是正整数
            QueryError: 某组参数展开后的 SQL 与第一组不同
        """
        if batch_size <= 0:
            raise ValueError(f"批处理大小必须为正整数: {batch_size}")

        source = params if isinstance(params, CloseableIterator) else closeable(params)
        chunks = source.grouped(batch_size)
        statement: Optional[Statement] = None
        counts: List[int] = []
        try:
            for chunk in chunks:
                for row in chunk:
                    if not isinstance(row, (list, tuple)):
                        row = (row,)
                    converted = to_params(row)
                    sql = format_query(query, converted)
                    if statement is None:
                        statement = Statement(connection, sql, self.dialect)
                    elif sql != statement.sql:
                        raise QueryError(
                            "批处理中各组参数展开后的语句不一致",
                            error_code="BATCH_SHAPE_MISMATCH",
                            query=sql,
                            parameters=row,
                        )
                    bind_params(statement, converted)
                    statement.add_batch()
                counts.extend(statement.execute_batch())
                logger.debug(f"批处理完成一组: {len(chunk)} 条")
            self._commit(connection)
            return counts
        finally:
            try:
                chunks.close()
            finally:
                if statement is not None:
                    statement.close()

    # ------------------------------------------------------------------
    # 存储过程
    # ------------------------------------------------------------------

    def proc(
        self,
        connection: Any,
        name: str,
        params: Sequence[Any] = (),
        transform: Optional[Callable[[RichRow], T]] = None,
    ) -> ResultSetIterator[T]:
        """调用存储过程，返回其结果集的迭代器；没有结果集时返回空迭代器"""
        statement = self._prepare_call(connection, name, params)
        try:
            statement.call()
            cursor = statement.cursor
            if cursor.description is None:
                cursor = MaterializedCursor([])
            self._commit(connection)
            return self._iterate(statement, cursor, transform or _identity)
        except BaseException:
            statement.close()
            raise

    def proc_out(
        self,
        connection: Any,
        name: str,
        out: OutParameters,
        params: Sequence[Any] = (),
        transform: Optional[Callable[[StatementResult], T]] = None,
    ) -> Any:
        """
        调用带 OUT 参数的存储过程

        Args:
            out: OUT 参数位置列表（从 1 开始），或名称到位置的映射
            transform: 读取 OUT 参数的函数，None 时返回 StatementResult
        """
        positions = list(out.values()) if isinstance(out, Mapping) else list(out)
        statement = self._prepare_call(connection, name, params, positions)
        try:
            values = statement.call()
            self._commit(connection)
            result = StatementResult(values, out, self.dialect)
            return transform(result) if transform else result
        finally:
            statement.close()
