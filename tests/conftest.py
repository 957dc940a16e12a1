"""
测试公共夹具

FakeConnection / FakeCursor 是记录调用的内存 DB-API 替身，
sqlite_executor 使用临时文件上的真实 sqlite3 数据库。
"""

import sqlite3

import pytest

from db_executor.core.dialects import SQLiteDialect
from db_executor.core.executor import QueryExecutor
from db_executor.pools.base import ConnectionPool
from db_executor.pools.sqlalchemy_pool import CreatorPool


def make_description(*names):
    return tuple((name, None, None, None, None, None, None) for name in names)


class FakeCursor:
    """记录执行过的语句，按连接上预设的结果返回行"""

    def __init__(self, connection=None, rows=(), description=None):
        self.connection = connection
        self.description = description
        self.rowcount = -1
        self.lastrowid = None
        self.closed = False
        self.close_count = 0
        self.fetch_count = 0
        self.scrolls = []
        self._rows = list(rows)
        self._position = 0

    def _load(self, key):
        rows, description = self.connection.results.get(key, ([], None))
        self._rows = list(rows)
        self._position = 0
        self.description = description

    def execute(self, sql, params=()):
        connection = self.connection
        connection.executed.append((sql, tuple(params)))
        if connection.fail_on is not None and connection.fail_on in sql:
            raise RuntimeError(f"driver failure: {sql}")
        self._load(sql)
        self.rowcount = connection.rowcount
        self.lastrowid = connection.lastrowid

    def callproc(self, name, params=()):
        connection = self.connection
        connection.calls.append((name, tuple(params)))
        self._load(name)
        result = list(params)
        for position, value in connection.out_values.items():
            result[position - 1] = value
        return result

    def fetchone(self):
        self.fetch_count += 1
        if self._position >= len(self._rows):
            return None
        row = self._rows[self._position]
        self._position += 1
        return row

    def fetchall(self):
        rows = self._rows[self._position:]
        self._position = len(self._rows)
        return rows

    def scroll(self, value, mode="relative"):
        target = self._position + value
        if target > len(self._rows):
            raise IndexError("scroll out of range")
        self.scrolls.append(value)
        self._position = target

    def close(self):
        self.closed = True
        self.close_count += 1


class FakeConnection:
    """内存 DB-API 连接替身"""

    def __init__(self):
        self.results = {}
        self.executed = []
        self.calls = []
        self.out_values = {}
        self.cursors = []
        self.rowcount = 1
        self.lastrowid = None
        self.fail_on = None
        self.fail_commit = False
        self.commits = 0
        self.rollbacks = 0
        self.closed = False

    def cursor(self):
        cursor = FakeCursor(self)
        self.cursors.append(cursor)
        return cursor

    def commit(self):
        if self.fail_commit:
            raise RuntimeError("commit failed")
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        self.closed = True

    @property
    def statements(self):
        return [sql for sql, _ in self.executed]


class FakeAutocommitConnection(FakeConnection):
    """带 autocommit 属性的连接（psycopg、python-oracledb 风格），记录建游标时的状态"""

    def __init__(self):
        super().__init__()
        self.autocommit = True
        self.seen = []

    def cursor(self):
        self.seen.append(self.autocommit)
        return super().cursor()


class FakeMySQLConnection(FakeConnection):
    """以方法切换自动提交的连接（PyMySQL 风格）"""

    def __init__(self):
        super().__init__()
        self.state = True

    def get_autocommit(self):
        return self.state

    def autocommit(self, value):
        self.state = value


class FakePool(ConnectionPool):
    """每次 acquire 返回同一个 FakeConnection，并统计借还次数"""

    name = "fake"

    def __init__(self, connection=None, return_none=False):
        self.connection = connection or FakeConnection()
        self.return_none = return_none
        self.acquired = 0
        self.released = 0
        self.is_shutdown = False

    def acquire(self):
        self.acquired += 1
        return None if self.return_none else self.connection

    def release(self, connection):
        self.released += 1

    def shutdown(self):
        self.is_shutdown = True

    @property
    def outstanding(self):
        return self.acquired - self.released


@pytest.fixture
def description():
    return make_description


@pytest.fixture
def fake_connection():
    return FakeConnection()


@pytest.fixture
def autocommit_connection():
    return FakeAutocommitConnection()


@pytest.fixture
def mysql_connection():
    return FakeMySQLConnection()


@pytest.fixture
def fake_cursor():
    return FakeCursor


@pytest.fixture
def fake_pool():
    return FakePool()


@pytest.fixture
def fake_pool_factory():
    return FakePool


@pytest.fixture
def sqlite_path(tmp_path):
    return tmp_path / "executor.db"


@pytest.fixture
def sqlite_executor(sqlite_path):
    """带 users 表的 sqlite 执行器"""
    pool = CreatorPool(
        lambda: sqlite3.connect(str(sqlite_path)), pool_size=2, max_overflow=2, name="sqlite"
    )
    executor = QueryExecutor(pool, SQLiteDialect())
    executor.execute(
        "CREATE TABLE users (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL, score REAL)"
    )
    yield executor
    executor.shutdown()
