"""
查询参数与模板展开测试
"""

import io
from datetime import date, datetime, time
from decimal import Decimal

import pytest

from db_executor.core.exceptions import ParameterCountError, QueryError
from db_executor.core.params import (
    NOTHING,
    Char,
    CollectionParam,
    Left,
    NullParam,
    ParamKind,
    Right,
    Some,
    StreamParam,
    ValueParam,
    format_query,
    slot_count,
    to_param,
    to_params,
)


class TestFormatQuery:
    """format_query测试类"""

    def test_collection_expands(self):
        """测试集合参数展开为多个占位符"""
        query = format_query("SELECT * FROM t WHERE a = ? AND b IN (?)", [1, [2, 3, 4]])
        assert query == "SELECT * FROM t WHERE a = ? AND b IN (?,?,?)"

    def test_expansion_keeps_following_text(self):
        """测试展开后保留后续文本"""
        query = format_query("SELECT ? FROM t WHERE x IN (?) AND y = ? ORDER BY 1", [1, (5, 6), "z"])
        assert query == "SELECT ? FROM t WHERE x IN (?,?) AND y = ? ORDER BY 1"

    def test_empty_collection_removes_placeholder(self):
        """测试空集合删除占位符"""
        assert format_query("DELETE FROM t WHERE id IN (?)", [[]]) == "DELETE FROM t WHERE id IN ()"

    def test_nested_collection_counts_leaves(self):
        """测试嵌套集合按叶子数展开"""
        assert format_query("VALUES (?)", [[1, [2, 3]]]) == "VALUES (?,?,?)"

    def test_without_collection_returns_template(self):
        """测试没有集合参数时原样返回"""
        query = "UPDATE t SET a = ? WHERE b = ?"
        assert format_query(query, ["x", 1]) is query

    def test_no_params_no_placeholders(self):
        """测试无参数无占位符"""
        assert format_query("SELECT 1", []) == "SELECT 1"

    @pytest.mark.parametrize(
        "query,params",
        [
            ("SELECT ?", [1, 2]),
            ("SELECT ?", [[1, 2], 3]),
            ("SELECT 1", [[1]]),
        ],
    )
    def test_too_many_params(self, query, params):
        """测试参数多于占位符"""
        with pytest.raises(ParameterCountError) as exc_info:
            format_query(query, params)
        assert "过多" in str(exc_info.value)
        assert exc_info.value.error_code == "PARAMETER_COUNT_MISMATCH"

    @pytest.mark.parametrize(
        "query,params",
        [
            ("SELECT ?, ?", [1]),
            ("SELECT ? WHERE a IN (?)", [[1, 2]]),
            ("SELECT ?", []),
        ],
    )
    def test_too_few_params(self, query, params):
        """测试参数少于占位符"""
        with pytest.raises(ParameterCountError) as exc_info:
            format_query(query, params)
        assert "过少" in str(exc_info.value)

    def test_error_carries_parameters(self):
        """测试异常携带原始参数"""
        with pytest.raises(QueryError) as exc_info:
            format_query("SELECT ?", [1, 2])

        assert exc_info.value.parameters == [1, 2]
        assert exc_info.value.expected == 1
        assert exc_info.value.actual == 2


class TestToParam:
    """to_param转换测试类"""

    def test_null_values(self):
        """测试 None 和 NOTHING 转换为 NULL"""
        assert to_param(None) == NullParam()
        assert to_param(NOTHING) == NullParam()
        assert not NOTHING

    def test_wrappers_unwrap_one_level(self):
        """测试 Some / Left / Right 只解一层"""
        assert to_param(Some(5)) == ValueParam(5, ParamKind.GENERIC)
        assert to_param(Left("a")) == ValueParam("a", ParamKind.GENERIC)
        assert to_param(Right(Some(1))) == ValueParam(Some(1), ParamKind.GENERIC)

    def test_char(self):
        """测试单字符"""
        assert to_param(Char("x")) == ValueParam("x", ParamKind.CHAR)
        with pytest.raises(ValueError):
            Char("xy")

    @pytest.mark.parametrize(
        "value,kind",
        [
            (True, ParamKind.BOOLEAN),
            (42, ParamKind.INTEGER),
            (2**63, ParamKind.BIG_INTEGER),
            (-(2**63) - 1, ParamKind.BIG_INTEGER),
            (1.5, ParamKind.FLOAT),
            (Decimal("1.25"), ParamKind.DECIMAL),
            (datetime(2024, 1, 2, 3, 4, 5), ParamKind.DATETIME),
            (date(2024, 1, 2), ParamKind.DATE),
            (time(3, 4, 5), ParamKind.TIME),
            (b"\x00\x01", ParamKind.BINARY),
            ("text", ParamKind.STRING),
            (object, ParamKind.GENERIC),
        ],
    )
    def test_scalar_kinds(self, value, kind):
        """测试标量类型识别"""
        param = to_param(value)
        assert isinstance(param, ValueParam)
        assert param.kind == kind

    def test_bytearray_becomes_bytes(self):
        """测试 bytearray 转为 bytes"""
        assert to_param(bytearray(b"ab")) == ValueParam(b"ab", ParamKind.BINARY)

    def test_streams(self):
        """测试二进制流和文本流"""
        binary = io.BytesIO(b"data")
        text = io.StringIO("data")

        assert to_param(binary) == StreamParam(binary, text=False)
        assert to_param(text) == StreamParam(text, text=True)

    def test_collections(self):
        """测试集合参数"""
        param = to_param([1, None, (2, 3)])

        assert isinstance(param, CollectionParam)
        assert param.slot_count == 4
        assert isinstance(to_param({1}), CollectionParam)
        assert isinstance(to_param(frozenset()), CollectionParam)

    def test_param_passthrough(self):
        """测试已是参数变体时原样返回"""
        param = ValueParam(1, ParamKind.INTEGER)
        assert to_param(param) is param

    def test_slot_count(self):
        """测试展开后的占位符总数"""
        assert slot_count(to_params([None, Some(5), [1, 2], "x"])) == 5
        assert slot_count(to_params([[]])) == 0


if __name__ == "__main__":
    pytest.main()
