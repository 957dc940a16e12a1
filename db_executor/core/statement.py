"""
预编译语句与位置参数绑定

Statement 包装一个 DB-API 游标，参数按从 1 开始的位置写入槽位，
执行时按位置顺序组成参数元组，并由方言转换为驱动的参数风格。

bind_params() 按顺序遍历参数列表，为每个叶子值分配一个连续的槽位，
集合参数中的每个元素占用各自的槽位。
"""

from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from ..utils.logging_utils import get_logger
from .cursor import MaterializedCursor
from .dialects import Column, Dialect
from .exceptions import DriverError, ParameterCountError
from .params import (
    CollectionParam,
    NullParam,
    Param,
    ParamKind,
    StreamParam,
    ValueParam,
    to_param,
)

logger = get_logger(__name__)

# 参数类型到 Statement 设置方法的映射，未列出的类型按通用值绑定
VALUE_SETTERS = {
    ParamKind.CHAR: "set_char",
    ParamKind.BOOLEAN: "set_boolean",
    ParamKind.DECIMAL: "set_decimal",
    ParamKind.BIG_INTEGER: "set_big_integer",
    ParamKind.DATETIME: "set_timestamp",
    ParamKind.DATE: "set_date",
    ParamKind.TIME: "set_time",
    ParamKind.BINARY: "set_bytes",
}


class Statement:
    """
    预编译语句

    Args:
        connection: DB-API 连接
        sql: 使用 ``?`` 占位符的 SQL（已经过 format_query 展开）；
            procedure 为 True 时是存储过程名称
        dialect: 数据库方言
        procedure: 是否为存储过程调用

    Example:
        >>> stmt = Statement(con, "UPDATE t SET a = ? WHERE id = ?", SQLiteDialect())
        >>> stmt.set_object(1, "x")
        >>> stmt.set_object(2, 7)
        >>> stmt.execute_update()
        1
        >>> stmt.close()
    """

    def __init__(
        self, connection: Any, sql: str, dialect: Dialect, procedure: bool = False
    ) -> None:
        self.sql = sql
        self.dialect = dialect
        self.procedure = procedure
        self.placeholder_count: Optional[int] = None if procedure else sql.count("?")
        self._cursor = connection.cursor()
        self._slots: Dict[int, Any] = {}
        self._out_positions: Set[int] = set()
        self._batch: List[tuple] = []
        self._closed = False
        self._close_callbacks: List[Callable[[], None]] = []

    @property
    def cursor(self) -> Any:
        return self._cursor

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # 参数设置
    # ------------------------------------------------------------------

    def _set(self, index: int, value: Any) -> None:
        if index < 1:
            raise ValueError(f"参数位置从 1 开始: {index}")
        self._slots[index] = value

    def set_null(self, index: int) -> None:
        self._set(index, None)

    def set_object(self, index: int, value: Any) -> None:
        self._set(index, self.dialect.bind_generic(value))

    def set_char(self, index: int, value: str) -> None:
        self._set(index, self.dialect.bind_char(value))

    def set_boolean(self, index: int, value: bool) -> None:
        self._set(index, self.dialect.bind_boolean(value))

    def set_decimal(self, index: int, value: Any) -> None:
        self._set(index, self.dialect.bind_decimal(value))

    def set_big_integer(self, index: int, value: int) -> None:
        self._set(index, self.dialect.bind_big_integer(value))

    def set_timestamp(self, index: int, value: Any) -> None:
        self._set(index, self.dialect.bind_datetime(value))

    def set_date(self, index: int, value: Any) -> None:
        self._set(index, self.dialect.bind_date(value))

    def set_time(self, index: int, value: Any) -> None:
        self._set(index, self.dialect.bind_time(value))

    def set_bytes(self, index: int, value: bytes) -> None:
        self._set(index, self.dialect.bind_binary(value))

    def set_binary_stream(self, index: int, stream: Any) -> None:
        self._set(index, self.dialect.bind_binary_stream(stream))

    def set_character_stream(self, index: int, stream: Any) -> None:
        self._set(index, self.dialect.bind_character_stream(stream))

    def register_out_parameter(self, position: int) -> None:
        """登记存储过程的 OUT 参数位置（从 1 开始）"""
        if position < 1:
            raise ValueError(f"参数位置从 1 开始: {position}")
        self._out_positions.add(position)

    def clear_parameters(self) -> None:
        self._slots.clear()

    @property
    def parameters(self) -> tuple:
        """
        按位置排列的参数值

        Raises:
            ParameterCountError: 已绑定的槽位与占位符个数不一致
        """
        if self.procedure:
            count = max([*self._slots, *self._out_positions], default=0)
            slots = {position: None for position in self._out_positions}
            slots.update(self._slots)
        else:
            count = self.placeholder_count
            slots = self._slots

        if sorted(slots) != list(range(1, count + 1)):
            raise ParameterCountError(
                f"参数槽位与占位符不一致: 需要 {count} 个，已绑定位置 {sorted(slots)}",
                query=self.sql,
                parameters=[slots[key] for key in sorted(slots)],
                expected=count,
                actual=len(slots),
            )
        return tuple(slots[position] for position in range(1, count + 1))

    # ------------------------------------------------------------------
    # 执行
    # ------------------------------------------------------------------

    def _execute(self, params: tuple) -> None:
        native_sql = self.dialect.native_sql(self.sql, bool(params))
        logger.debug(f"执行语句: {native_sql}")
        if params:
            self._cursor.execute(native_sql, params)
        else:
            self._cursor.execute(native_sql)

    def execute_query(self) -> Any:
        """执行查询，返回可读取结果的游标"""
        self._execute(self.parameters)
        return self._cursor

    def execute_update(self) -> int:
        """执行写语句，返回受影响行数"""
        self._execute(self.parameters)
        return self._cursor.rowcount

    def execute(self) -> None:
        self._execute(self.parameters)

    def add_batch(self) -> None:
        """把当前参数加入批处理并清空槽位"""
        self._batch.append(self.parameters)
        self._slots.clear()

    def execute_batch(self) -> List[int]:
        """
        依次执行批处理中的每组参数，返回每条语句的受影响行数

        不使用 executemany: 多数驱动只返回整批的合计行数。
        """
        batch, self._batch = self._batch, []
        counts = []
        for params in batch:
            self._execute(params)
            counts.append(self._cursor.rowcount)
        return counts

    def call(self) -> Sequence[Any]:
        """
        调用存储过程

        Returns:
            callproc() 返回的参数序列（包含 OUT 参数的值）

        Raises:
            DriverError: 方言或驱动不支持存储过程调用
        """
        callproc = getattr(self._cursor, "callproc", None)
        if not self.dialect.supports_callproc or callproc is None:
            raise DriverError(
                f"{self.dialect.name} 驱动不支持存储过程调用",
                error_code="CALLPROC_UNSUPPORTED",
                driver_name=self.dialect.name,
            )
        params = self.parameters
        logger.debug(f"调用存储过程: {self.sql}")
        result = callproc(self.sql, params)
        return params if result is None else result

    def generated_keys(
        self, columns: Optional[Sequence[Column]] = None, by_default: bool = True
    ) -> MaterializedCursor:
        return self.dialect.generated_keys(self._cursor, columns, by_default)

    # ------------------------------------------------------------------
    # 关闭
    # ------------------------------------------------------------------

    def on_close(self, callback: Callable[[], None]) -> None:
        """登记关闭后执行的动作；已关闭时立即执行"""
        if self._closed:
            callback()
        else:
            self._close_callbacks.append(callback)

    def close(self) -> None:
        """关闭游标，然后执行登记的关闭动作，重复调用无效果"""
        if self._closed:
            return
        self._closed = True
        callbacks, self._close_callbacks = self._close_callbacks, []
        try:
            self._cursor.close()
        finally:
            for callback in callbacks:
                callback()

    def __enter__(self) -> "Statement":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Statement({self.sql!r}, closed={self._closed})"


def bind_params(statement: Statement, params: Sequence[Any]) -> int:
    """
    按位置把参数绑定到语句

    槽位从 1 开始连续分配；集合参数递归展开，每个元素占用一个槽位。

    Args:
        statement: 目标语句（任何提供 set_* 方法的对象）
        params: Python 值或参数变体

    Returns:
        int: 使用的槽位数

    Example:
        >>> bind_params(stmt, [None, Some(5), [1, 2], "x"])
        5
    """
    index = 1

    def bind(param: Param) -> None:
        nonlocal index
        if isinstance(param, CollectionParam):
            for item in param.items:
                bind(item)
            return
        if isinstance(param, NullParam):
            statement.set_null(index)
        elif isinstance(param, StreamParam):
            if param.text:
                statement.set_character_stream(index, param.stream)
            else:
                statement.set_binary_stream(index, param.stream)
        elif isinstance(param, ValueParam):
            setter = VALUE_SETTERS.get(param.kind, "set_object")
            getattr(statement, setter)(index, param.value)
        else:
            raise TypeError(f"不支持的参数类型: {type(param).__name__}")
        index += 1

    for param in params:
        bind(to_param(param))
    return index - 1
