"""
行值读取

RichRow 包装游标返回的一行，StatementResult 包装存储过程调用后的 OUT 参数，
两者提供同一组类型化读取方法:

- get_int / get_long / get_float / get_double / get_bool: 数据库 NULL 时分别返回
  0、0、NaN、NaN、False，随后 was_null() 为 True；
- get_*_or_none: NULL 时返回 None；
- get_string / get_decimal / get_bytes / get_date / get_time / get_datetime:
  NULL 时返回 None。

列既可以用名称（先精确匹配，再忽略大小写）也可以用整数位置访问，
整数位置的起始值由方言决定（默认从 1 开始）。
"""

import math
from datetime import date, datetime, time
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Mapping, Optional, Sequence, Union

if TYPE_CHECKING:
    from .dialects import Dialect

Column = Union[int, str]

TRUE_STRINGS = {"1", "t", "true", "y", "yes", "on"}


class ColumnIndex:
    """
    列名到位置的映射，由 DB-API 的 cursor.description 构建

    同一个结果集的所有行共享一个实例。
    """

    def __init__(self, names: Sequence[str]) -> None:
        self.names: List[str] = list(names)
        self._exact: Dict[str, int] = {}
        self._folded: Dict[str, int] = {}
        for position, name in enumerate(self.names):
            self._exact.setdefault(name, position)
            self._folded.setdefault(name.lower(), position)

    @classmethod
    def from_description(cls, description: Optional[Sequence[Sequence[Any]]]) -> "ColumnIndex":
        if not description:
            return cls([])
        return cls([str(column[0]) for column in description])

    def position(self, name: str) -> int:
        if name in self._exact:
            return self._exact[name]
        folded = name.lower()
        if folded in self._folded:
            return self._folded[folded]
        raise KeyError(f"结果集中不存在列: {name}")

    def __len__(self) -> int:
        return len(self.names)


class ValueAccessor:
    """类型化读取方法的公共实现，子类提供 _lookup()"""

    def __init__(self, dialect: "Dialect") -> None:
        self._dialect = dialect
        self._last_was_null = False

    def _lookup(self, column: Column) -> Any:
        raise NotImplementedError

    def get_object(self, column: Column) -> Any:
        value = self._lookup(column)
        self._last_was_null = value is None
        return value

    def was_null(self) -> bool:
        """最近一次读取的值是否为数据库 NULL"""
        return self._last_was_null

    def get_string(self, column: Column) -> Optional[str]:
        value = self.get_object(column)
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, (bytes, bytearray)):
            return bytes(value).decode("utf-8")
        return str(value)

    def get_int(self, column: Column) -> int:
        value = self.get_object(column)
        return 0 if value is None else int(value)

    get_long = get_int

    def get_float(self, column: Column) -> float:
        value = self.get_object(column)
        return math.nan if value is None else float(value)

    get_double = get_float

    def get_bool(self, column: Column) -> bool:
        value = self.get_object(column)
        if value is None:
            return False
        if isinstance(value, str):
            return value.strip().lower() in TRUE_STRINGS
        return bool(value)

    def get_decimal(self, column: Column) -> Optional[Decimal]:
        value = self.get_object(column)
        if value is None or isinstance(value, Decimal):
            return value
        # float 先转字符串，避免二进制误差进入 Decimal
        return Decimal(str(value)) if isinstance(value, float) else Decimal(value)

    def get_bytes(self, column: Column) -> Optional[bytes]:
        value = self.get_object(column)
        if value is None:
            return None
        if isinstance(value, str):
            return value.encode("utf-8")
        return bytes(value)

    def get_date(self, column: Column) -> Optional[date]:
        return self._dialect.parse_date(self.get_object(column))

    def get_time(self, column: Column) -> Optional[time]:
        return self._dialect.parse_time(self.get_object(column))

    def get_datetime(self, column: Column) -> Optional[datetime]:
        """按方言规则解析日期时间（字符串格式、默认时区）"""
        return self._dialect.parse_datetime(self.get_object(column))

    def get_int_or_none(self, column: Column) -> Optional[int]:
        value = self.get_int(column)
        return None if self._last_was_null else value

    get_long_or_none = get_int_or_none

    def get_float_or_none(self, column: Column) -> Optional[float]:
        value = self.get_float(column)
        return None if self._last_was_null else value

    get_double_or_none = get_float_or_none

    def get_bool_or_none(self, column: Column) -> Optional[bool]:
        value = self.get_bool(column)
        return None if self._last_was_null else value

    get_string_or_none = get_string
    get_decimal_or_none = get_decimal
    get_datetime_or_none = get_datetime


class RichRow(ValueAccessor):
    """
    结果集中的一行

    值在读取时已从游标取出，行对象可以在迭代结束后继续使用。

    Example:
        >>> row.get_int("id"), row.get_string(2), row.get_double_or_none("score")
        (1, 'alice', None)
    """

    def __init__(self, values: Sequence[Any], columns: ColumnIndex, dialect: "Dialect") -> None:
        super().__init__(dialect)
        self._values = tuple(values)
        self._columns = columns

    def _lookup(self, column: Column) -> Any:
        if isinstance(column, str):
            return self._values[self._columns.position(column)]
        offset = self._dialect.column_offset(column)
        if offset >= len(self._values):
            raise IndexError(f"列位置超出范围: {column}（共 {len(self._values)} 列）")
        return self._values[offset]

    @property
    def values(self) -> tuple:
        return self._values

    def keys(self) -> List[str]:
        return list(self._columns.names)

    def as_dict(self) -> Dict[str, Any]:
        return dict(zip(self._columns.names, self._values))

    def __getitem__(self, column: Column) -> Any:
        return self.get_object(column)

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._values)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, RichRow):
            return self._values == other._values and self.keys() == other.keys()
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._values)

    def __repr__(self) -> str:
        return f"RichRow({self.as_dict()!r})"


class StatementResult(ValueAccessor):
    """
    存储过程调用结果中的 OUT 参数

    只能读取调用前登记过的位置；out 为映射时也可以按名称读取。
    OUT 参数位置与语句槽位一致，总是从 1 开始，不受方言列位置起始值影响。

    Args:
        values: DB-API callproc() 返回的参数序列
        out: 登记的 OUT 参数位置列表，或名称到位置的映射
        dialect: 用于日期时间解析的方言
    """

    def __init__(
        self,
        values: Sequence[Any],
        out: Union[Sequence[int], Mapping[str, int]],
        dialect: "Dialect",
    ) -> None:
        super().__init__(dialect)
        self._values = tuple(values) if values is not None else ()
        if isinstance(out, Mapping):
            self._names = dict(out)
            self._registered = set(out.values())
        else:
            self._names = {}
            self._registered = set(out)

    def _lookup(self, column: Column) -> Any:
        if isinstance(column, str):
            if column not in self._names:
                raise KeyError(f"未登记的 OUT 参数名称: {column}")
            position = self._names[column]
        else:
            position = column
        if position not in self._registered:
            raise KeyError(f"未登记的 OUT 参数位置: {position}")
        if position > len(self._values):
            raise IndexError(f"OUT 参数位置超出范围: {position}")
        return self._values[position - 1]

    def __repr__(self) -> str:
        return f"StatementResult(registered={sorted(self._registered)!r})"
