"""
查询参数与查询模板

调用方传入普通 Python 值，to_param() 把每个值转换为封闭集合中的一种参数:

    NullParam        数据库 NULL
    ValueParam       标量值，kind 决定绑定方式
    StreamParam      二进制或文本流
    CollectionParam  集合，展开为多个连续的占位符

format_query() 把模板中与集合参数对应的 ``?`` 展开为 ``?,?,...``，
空集合对应的 ``?`` 被删除。占位符只做字面匹配，不识别字符串字面量。

Example:
    >>> format_query("SELECT * FROM t WHERE a = ? AND b IN (?)", [1, [2, 3, 4]])
    'SELECT * FROM t WHERE a = ? AND b IN (?,?,?)'
"""

import io
import re
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, List, Sequence, Tuple, Union

from .exceptions import ParameterCountError

PLACEHOLDER_PATTERN = re.compile(r"\?")

# 超出有符号 64 位范围的整数按大整数绑定
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

COLLECTION_TYPES = (list, tuple, set, frozenset)


# ======================================================================
# 调用方包装类型
# ======================================================================


@dataclass(frozen=True)
class Some:
    """存在的可选值，按内部值直接绑定"""

    value: Any


class _Nothing:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NOTHING"

    def __bool__(self) -> bool:
        return False


# 不存在的可选值，绑定为 NULL
NOTHING = _Nothing()


@dataclass(frozen=True)
class Left:
    value: Any


@dataclass(frozen=True)
class Right:
    value: Any


@dataclass(frozen=True)
class Char:
    """单个字符，按字符类型绑定"""

    value: str

    def __post_init__(self) -> None:
        if not isinstance(self.value, str) or len(self.value) != 1:
            raise ValueError(f"Char 只能包含一个字符: {self.value!r}")


# ======================================================================
# 参数变体
# ======================================================================


class ParamKind(Enum):
    GENERIC = "generic"
    STRING = "string"
    CHAR = "char"
    INTEGER = "integer"
    BIG_INTEGER = "big_integer"
    DECIMAL = "decimal"
    FLOAT = "float"
    BOOLEAN = "boolean"
    DATE = "date"
    TIME = "time"
    DATETIME = "datetime"
    BINARY = "binary"


@dataclass(frozen=True)
class NullParam:
    pass


@dataclass(frozen=True)
class ValueParam:
    value: Any
    kind: ParamKind = ParamKind.GENERIC


@dataclass(frozen=True)
class StreamParam:
    stream: Any
    text: bool = False


@dataclass(frozen=True)
class CollectionParam:
    items: Tuple["Param", ...]

    @property
    def slot_count(self) -> int:
        """展开后占用的占位符个数（嵌套集合递归展开）"""
        return sum(
            item.slot_count if isinstance(item, CollectionParam) else 1
            for item in self.items
        )


Param = Union[NullParam, ValueParam, StreamParam, CollectionParam]
PARAM_TYPES = (NullParam, ValueParam, StreamParam, CollectionParam)


def to_param(value: Any) -> Param:
    """
    把 Python 值转换为参数变体

    转换规则按顺序匹配:
        None / NOTHING            -> NullParam
        已是参数变体               -> 原样返回
        Some / Left / Right       -> 内部值作为通用值直接绑定（只解一层）
        Char                      -> CHAR
        二进制 / 文本文件对象       -> StreamParam
        bool                      -> BOOLEAN
        int                       -> INTEGER，超出 64 位时为 BIG_INTEGER
        float / Decimal           -> FLOAT / DECIMAL
        datetime / date / time    -> DATETIME / DATE / TIME
        bytes / bytearray / memoryview -> BINARY
        str                       -> STRING
        list / tuple / set / frozenset -> CollectionParam
        其他                       -> GENERIC
    """
    if value is None or value is NOTHING:
        return NullParam()
    if isinstance(value, PARAM_TYPES):
        return value
    if isinstance(value, (Some, Left, Right)):
        return ValueParam(value.value, ParamKind.GENERIC)
    if isinstance(value, Char):
        return ValueParam(value.value, ParamKind.CHAR)
    if isinstance(value, (io.RawIOBase, io.BufferedIOBase)):
        return StreamParam(value, text=False)
    if isinstance(value, io.TextIOBase):
        return StreamParam(value, text=True)
    if isinstance(value, bool):
        return ValueParam(value, ParamKind.BOOLEAN)
    if isinstance(value, int):
        if INT64_MIN <= value <= INT64_MAX:
            return ValueParam(value, ParamKind.INTEGER)
        return ValueParam(value, ParamKind.BIG_INTEGER)
    if isinstance(value, float):
        return ValueParam(value, ParamKind.FLOAT)
    if isinstance(value, Decimal):
        return ValueParam(value, ParamKind.DECIMAL)
    # datetime 是 date 的子类，必须先判断
    if isinstance(value, datetime):
        return ValueParam(value, ParamKind.DATETIME)
    if isinstance(value, date):
        return ValueParam(value, ParamKind.DATE)
    if isinstance(value, time):
        return ValueParam(value, ParamKind.TIME)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return ValueParam(bytes(value), ParamKind.BINARY)
    if isinstance(value, str):
        return ValueParam(value, ParamKind.STRING)
    if isinstance(value, COLLECTION_TYPES):
        return CollectionParam(tuple(to_param(item) for item in value))
    return ValueParam(value, ParamKind.GENERIC)


def to_params(values: Sequence[Any]) -> List[Param]:
    return [to_param(value) for value in values]


def slot_count(params: Sequence[Param]) -> int:
    """参数列表展开后需要的占位符个数"""
    return sum(
        param.slot_count if isinstance(param, CollectionParam) else 1 for param in params
    )


def format_query(query: str, params: Sequence[Any]) -> str:
    """
    按集合参数展开查询模板中的占位符

    第 i 个顶层参数对应模板中第 i 个 ``?``:
    含 N 个叶子值的集合替换为 N 个以逗号分隔的 ``?``，空集合删除该 ``?``，
    其他参数保持不变。没有集合参数时原样返回模板。

    Args:
        query: 使用 ``?`` 占位符的 SQL 模板
        params: 顶层参数（Python 值或参数变体）

    Returns:
        str: 展开后的 SQL

    Raises:
        ParameterCountError: 参数多于或少于占位符

    Example:
        >>> format_query("DELETE FROM t WHERE id IN (?)", [[]])
        'DELETE FROM t WHERE id IN ()'
    """
    converted = [to_param(param) for param in params]

    if not any(isinstance(param, CollectionParam) for param in converted):
        placeholders = len(PLACEHOLDER_PATTERN.findall(query))
        if len(converted) > placeholders:
            raise _too_many(query, params, placeholders)
        if len(converted) < placeholders:
            raise _too_few(query, params, placeholders)
        return query

    pieces: List[str] = []
    position = 0
    matches = PLACEHOLDER_PATTERN.finditer(query)
    for index, param in enumerate(converted):
        match = next(matches, None)
        if match is None:
            partial = "".join(pieces) + query[position:]
            raise _too_many(partial, params, index)
        pieces.append(query[position:match.start()])
        if isinstance(param, CollectionParam):
            pieces.append(",".join("?" * param.slot_count))
        else:
            pieces.append("?")
        position = match.end()

    if next(matches, None) is not None:
        partial = "".join(pieces) + query[position:]
        raise _too_few(partial, params, len(PLACEHOLDER_PATTERN.findall(query)))

    pieces.append(query[position:])
    return "".join(pieces)


def _too_many(query: str, params: Sequence[Any], placeholders: int) -> ParameterCountError:
    return ParameterCountError(
        f"查询参数过多: {query}",
        query=query,
        parameters=params,
        expected=placeholders,
        actual=len(params),
    )


def _too_few(query: str, params: Sequence[Any], placeholders: int) -> ParameterCountError:
    return ParameterCountError(
        f"查询参数过少: {query}",
        query=query,
        parameters=params,
        expected=placeholders,
        actual=len(params),
    )


def describe_params(params: Sequence[Any]) -> str:
    """用于日志的参数描述"""
    return ", ".join(repr(param) for param in params)
