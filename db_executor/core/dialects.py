"""
数据库方言

方言对象集中描述各驱动之间的差异，由调用方显式创建并传给执行器:

- 参数风格: SQL 统一使用 ``?``，format / numeric 风格的驱动在执行前转换；
- 列位置起始值（默认从 1 开始）；
- 参数值转换（Decimal、大整数、日期时间、流）；
- 日期时间解析（strptime 格式优先，其次 dateutil，支持默认时区）；
- 生成键的读取方式（RETURNING 或 cursor.lastrowid）以及没有生成键时的策略；
- 保存点 SQL；
- 事务期间关闭并恢复驱动的自动提交。

Example:
    >>> dialect = SqlServerDialect()
    >>> dialect.parse_datetime("2024-01-02 03:04:05.678").tzname()
    'EST'
"""

import re
from datetime import date, datetime, time, tzinfo
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Type, Union

from dateutil import parser as date_parser
from dateutil import tz

from .cursor import MaterializedCursor
from .exceptions import DriverError, QueryError

Column = Union[int, str]

GENERATED_KEY_DESCRIPTION = (("generated_key", None, None, None, None, None, None),)

_QMARK = re.compile(r"\?")

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1


class Dialect:
    """
    通用方言

    Args:
        index_base: 整数列位置的起始值，None 使用类默认值
        require_generated_keys: 插入语句没有生成键时是否抛出 QueryError，
            False 时返回空迭代器
        timezone: 解析不带时区的日期时间时附加的时区名称
    """

    name = "generic"
    paramstyle = "qmark"
    default_index_base = 1
    scrollable_cursors = False
    supports_returning = False
    returning_by_default = False
    supports_callproc = True
    default_timezone: Optional[str] = None
    datetime_formats: Sequence[str] = ()
    test_query = "SELECT 1"

    savepoint_template = "SAVEPOINT {name}"
    rollback_to_template = "ROLLBACK TO SAVEPOINT {name}"
    release_template: Optional[str] = "RELEASE SAVEPOINT {name}"

    def __init__(
        self,
        index_base: Optional[int] = None,
        require_generated_keys: bool = False,
        timezone: Optional[str] = None,
    ) -> None:
        self.index_base = self.default_index_base if index_base is None else index_base
        if self.index_base not in (0, 1):
            raise ValueError(f"列位置起始值只能是 0 或 1: {self.index_base}")
        self.require_generated_keys = require_generated_keys

        zone_name = timezone or self.default_timezone
        self.timezone: Optional[tzinfo] = None
        if zone_name:
            self.timezone = tz.gettz(zone_name)
            if self.timezone is None:
                raise ValueError(f"未知的时区: {zone_name}")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(index_base={self.index_base})"

    # ------------------------------------------------------------------
    # SQL 文本
    # ------------------------------------------------------------------

    def native_sql(self, sql: str, has_params: bool = True) -> str:
        """把 ``?`` 占位符转换为驱动的参数风格"""
        if self.paramstyle == "qmark" or not has_params:
            return sql
        if self.paramstyle == "format":
            return _QMARK.sub("%s", sql.replace("%", "%%"))
        if self.paramstyle == "numeric":
            counter = iter(range(1, sql.count("?") + 1))
            return _QMARK.sub(lambda _: f":{next(counter)}", sql)
        raise DriverError(f"不支持的参数风格: {self.paramstyle}", driver_name=self.name)

    def savepoint_sql(self, name: str) -> str:
        return self.savepoint_template.format(name=name)

    def rollback_to_sql(self, name: str) -> str:
        return self.rollback_to_template.format(name=name)

    def release_sql(self, name: str) -> Optional[str]:
        if self.release_template is None:
            return None
        return self.release_template.format(name=name)

    # ------------------------------------------------------------------
    # 事务
    # ------------------------------------------------------------------

    def begin(self, connection: Any) -> Optional[bool]:
        """
        关闭驱动的自动提交以开始事务

        Returns:
            原来的自动提交状态，驱动不提供该状态时为 None
        """
        raw = driver_connection(connection)
        state = self._get_autocommit(raw)
        if state:
            self._set_autocommit(raw, False)
        return state

    def restore(self, connection: Any, state: Optional[bool]) -> None:
        """恢复 begin() 之前的自动提交状态"""
        if state:
            self._set_autocommit(driver_connection(connection), True)

    def _get_autocommit(self, raw: Any) -> Optional[bool]:
        state = getattr(raw, "autocommit", None)
        return state if isinstance(state, bool) else None

    def _set_autocommit(self, raw: Any, value: bool) -> None:
        raw.autocommit = value

    def column_offset(self, index: int) -> int:
        """把整数列位置转换为从 0 开始的下标"""
        offset = index - self.index_base
        if offset < 0:
            raise IndexError(f"列位置 {index} 小于起始值 {self.index_base}")
        return offset

    # ------------------------------------------------------------------
    # 参数值转换
    # ------------------------------------------------------------------

    def bind_char(self, value: str) -> Any:
        return value

    def bind_boolean(self, value: bool) -> Any:
        return value

    def bind_decimal(self, value: Decimal) -> Any:
        return value

    def bind_big_integer(self, value: int) -> Any:
        return value

    def bind_datetime(self, value: datetime) -> Any:
        return value

    def bind_date(self, value: date) -> Any:
        return value

    def bind_time(self, value: time) -> Any:
        return value

    def bind_binary(self, value: bytes) -> Any:
        return value

    def bind_binary_stream(self, stream: Any) -> Any:
        return self.bind_binary(bytes(stream.read()))

    def bind_character_stream(self, stream: Any) -> Any:
        return stream.read()

    def bind_generic(self, value: Any) -> Any:
        return value

    # ------------------------------------------------------------------
    # 值解析
    # ------------------------------------------------------------------

    def parse_datetime(self, value: Any) -> Optional[datetime]:
        """
        把数据库返回的值解析为 datetime

        字符串先按 datetime_formats 逐个尝试，再交给 dateutil 解析；
        结果不带时区且方言配置了时区时附加该时区。

        Raises:
            ValueError: 值无法解析为日期时间
        """
        if value is None:
            return None
        if isinstance(value, (bytes, bytearray)):
            value = bytes(value).decode("utf-8")
        if isinstance(value, datetime):
            result = value
        elif isinstance(value, date):
            result = datetime.combine(value, time())
        elif isinstance(value, str):
            result = self._parse_datetime_text(value)
        else:
            raise ValueError(f"无法解析为日期时间: {value!r}")
        if result.tzinfo is None and self.timezone is not None:
            result = result.replace(tzinfo=self.timezone)
        return result

    def _parse_datetime_text(self, text: str) -> datetime:
        for fmt in self.datetime_formats:
            try:
                return datetime.strptime(text, fmt)
            except ValueError:
                continue
        return date_parser.parse(text)

    def parse_date(self, value: Any) -> Optional[date]:
        if value is None:
            return None
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            try:
                return date.fromisoformat(value)
            except ValueError:
                return date_parser.parse(value).date()
        raise ValueError(f"无法解析为日期: {value!r}")

    def parse_time(self, value: Any) -> Optional[time]:
        if value is None:
            return None
        if isinstance(value, datetime):
            return value.time()
        if isinstance(value, time):
            return value
        if isinstance(value, str):
            try:
                return time.fromisoformat(value)
            except ValueError:
                return date_parser.parse(value).time()
        raise ValueError(f"无法解析为时间: {value!r}")

    # ------------------------------------------------------------------
    # 生成键
    # ------------------------------------------------------------------

    def prepare_insert(
        self, sql: str, columns: Optional[Sequence[Column]] = None, by_default: bool = True
    ) -> str:
        """
        为插入语句追加生成键的返回子句

        by_default 为 False 时（MERGE 语句）只在指定 columns 时追加。

        Raises:
            DriverError: 指定了生成键列但方言不支持 RETURNING
            ValueError: 列名与列位置混用
        """
        if columns:
            if not self.supports_returning:
                raise DriverError(
                    f"{self.name} 方言不支持指定生成键列", driver_name=self.name
                )
            return f"{_strip_statement(sql)} RETURNING {_returning_list(columns)}"
        if by_default and self.returning_by_default:
            return f"{_strip_statement(sql)} RETURNING *"
        return sql

    def generated_keys(
        self,
        cursor: Any,
        columns: Optional[Sequence[Column]] = None,
        by_default: bool = True,
    ) -> MaterializedCursor:
        """
        读取插入语句生成的键

        Raises:
            QueryError: 没有生成键且 require_generated_keys 为 True
        """
        if columns or (by_default and self.returning_by_default):
            rows = [tuple(row) for row in cursor.fetchall()]
            description = cursor.description
            if columns and all(isinstance(column, int) for column in columns):
                offsets = [self.column_offset(column) for column in columns]
                rows = [tuple(row[offset] for offset in offsets) for row in rows]
                if description:
                    description = tuple(description[offset] for offset in offsets)
        else:
            rows = self._lastrowid_rows(cursor)
            description = GENERATED_KEY_DESCRIPTION

        if not rows and self.require_generated_keys:
            raise QueryError("语句没有生成任何键", error_code="NO_GENERATED_KEYS")
        return MaterializedCursor(rows, description)

    def generated_key(self, row: Any) -> Any:
        """插入语句的默认生成键转换: 读取第一个键列的整数值"""
        return row.get_int(self.index_base)

    def _lastrowid_rows(self, cursor: Any) -> List[tuple]:
        key = getattr(cursor, "lastrowid", None)
        if key is None or cursor.rowcount == 0:
            return []
        return [(key,)]


class SQLiteDialect(Dialect):
    """
    SQLite（标准库 sqlite3）

    Decimal 与超出 64 位的整数以字符串绑定，日期时间以 ISO 格式字符串绑定。
    SQLite 3.35 起支持 RETURNING，只在指定生成键列时使用。
    """

    name = "sqlite"
    supports_returning = True
    supports_callproc = False

    def begin(self, connection: Any) -> Optional[bool]:
        state = super().begin(connection)
        raw = driver_connection(connection)
        # 旧式事务控制只在 DML 前隐式 BEGIN，保存点需要已开启的事务
        if not isinstance(getattr(raw, "autocommit", None), bool) and not raw.in_transaction:
            raw.execute("BEGIN")
        return state

    def _get_autocommit(self, raw: Any) -> Optional[bool]:
        autocommit = getattr(raw, "autocommit", None)
        if isinstance(autocommit, bool):
            return autocommit
        return raw.isolation_level is None

    def _set_autocommit(self, raw: Any, value: bool) -> None:
        if isinstance(getattr(raw, "autocommit", None), bool):
            raw.autocommit = value
        else:
            raw.isolation_level = None if value else ""

    def bind_decimal(self, value: Decimal) -> Any:
        return str(value)

    def bind_big_integer(self, value: int) -> Any:
        if INT64_MIN <= value <= INT64_MAX:
            return value
        return str(value)

    def bind_datetime(self, value: datetime) -> Any:
        return value.isoformat(sep=" ")

    def bind_date(self, value: date) -> Any:
        return value.isoformat()

    def bind_time(self, value: time) -> Any:
        return value.isoformat()

    def bind_generic(self, value: Any) -> Any:
        if isinstance(value, datetime):
            return self.bind_datetime(value)
        if isinstance(value, date):
            return self.bind_date(value)
        if isinstance(value, time):
            return self.bind_time(value)
        if isinstance(value, Decimal):
            return self.bind_decimal(value)
        if isinstance(value, int) and not isinstance(value, bool):
            return self.bind_big_integer(value)
        return value


class PostgreSQLDialect(Dialect):
    """PostgreSQL（psycopg），插入语句总是追加 RETURNING"""

    name = "postgresql"
    paramstyle = "format"
    scrollable_cursors = True
    supports_returning = True
    returning_by_default = True


class MySQLDialect(Dialect):
    """MySQL（PyMySQL），生成键来自 lastrowid，0 表示没有自增键"""

    name = "mysql"
    paramstyle = "format"

    def _get_autocommit(self, raw: Any) -> Optional[bool]:
        getter = getattr(raw, "get_autocommit", None)
        return bool(getter()) if callable(getter) else None

    def _set_autocommit(self, raw: Any, value: bool) -> None:
        raw.autocommit(value)

    def _lastrowid_rows(self, cursor: Any) -> List[tuple]:
        key = getattr(cursor, "lastrowid", None)
        if not key or cursor.rowcount == 0:
            return []
        return [(key,)]


class SqlServerDialect(Dialect):
    """
    SQL Server（pymssql）

    日期时间文本格式为 ``yyyy-MM-dd HH:mm:ss.SSS``，默认按 US/Eastern 解释；
    保存点使用 SAVE TRANSACTION，不支持释放保存点。
    """

    name = "mssql"
    paramstyle = "format"
    default_timezone = "US/Eastern"
    datetime_formats = ("%Y-%m-%d %H:%M:%S.%f", "%Y-%m-%d %H:%M:%S")
    savepoint_template = "SAVE TRANSACTION {name}"
    rollback_to_template = "ROLLBACK TRANSACTION {name}"
    release_template = None

    def _get_autocommit(self, raw: Any) -> Optional[bool]:
        state = getattr(raw, "autocommit_state", None)
        return bool(state) if state is not None else None

    def _set_autocommit(self, raw: Any, value: bool) -> None:
        raw.autocommit(value)


class OracleDialect(Dialect):
    """Oracle（python-oracledb），numeric 参数风格，lastrowid 为 ROWID"""

    name = "oracle"
    paramstyle = "numeric"
    test_query = "SELECT 1 FROM DUAL"
    release_template = None

    def generated_key(self, row: Any) -> Any:
        return row.get_string(self.index_base)


DIALECTS: Dict[str, Type[Dialect]] = {
    "generic": Dialect,
    "sqlite": SQLiteDialect,
    "postgresql": PostgreSQLDialect,
    "postgres": PostgreSQLDialect,
    "mysql": MySQLDialect,
    "mssql": SqlServerDialect,
    "sqlserver": SqlServerDialect,
    "oracle": OracleDialect,
}


def get_dialect(name: str, **options: Any) -> Dialect:
    """
    按名称创建方言实例

    Args:
        name: 数据库类型名称（不区分大小写）
        **options: 传给方言构造函数的参数

    Raises:
        ValueError: 不支持的数据库类型
    """
    dialect_class = DIALECTS.get(name.lower())
    if dialect_class is None:
        raise ValueError(f"不支持的数据库类型: {name}，支持: {sorted(DIALECTS)}")
    return dialect_class(**options)


def driver_connection(connection: Any) -> Any:
    """取得连接池代理背后的驱动连接"""
    return getattr(connection, "dbapi_connection", None) or connection


def _strip_statement(sql: str) -> str:
    return sql.rstrip().rstrip(";").rstrip()


def _returning_list(columns: Sequence[Column]) -> str:
    if all(isinstance(column, str) for column in columns):
        return ", ".join(columns)
    if all(isinstance(column, int) for column in columns):
        return "*"
    raise ValueError("生成键列不能混用列名和列位置")
