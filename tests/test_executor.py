"""
查询执行器测试

sqlite_executor 使用临时文件上的真实 SQLite 数据库，
其余用例使用 conftest 中记录调用的 FakePool。
"""

import logging

import pytest

from db_executor.core.dialects import Dialect, PostgreSQLDialect, SQLiteDialect
from db_executor.core.exceptions import (
    NullConnectionError,
    ParameterCountError,
    QueryError,
)
from db_executor.core.executor import QueryExecutor
from db_executor.core.statement import Statement


def add_users(executor, *names):
    return [
        executor.insert("INSERT INTO users (name, score) VALUES (?, ?)", name, float(index)).first()
        for index, name in enumerate(names, start=1)
    ]


class TestSqliteExecutor:
    """基于 SQLite 的执行器测试类"""

    def test_insert_returns_generated_key(self, sqlite_executor):
        """测试插入返回自增主键"""
        assert add_users(sqlite_executor, "alice", "bob") == [1, 2]

    def test_select_with_transform(self, sqlite_executor):
        """测试查询并转换结果"""
        add_users(sqlite_executor, "alice", "bob")

        names = sqlite_executor.eagerly_select(
            "SELECT name FROM users ORDER BY id", transform=lambda row: row.get_string("name")
        )

        assert names == ["alice", "bob"]

    def test_select_in_list(self, sqlite_executor):
        """测试列表参数展开为 IN 条件"""
        add_users(sqlite_executor, "a", "b", "c", "d")

        ids = sqlite_executor.select(
            "SELECT id FROM users WHERE id IN (?) AND name <> ? ORDER BY id",
            [1, 3, 4],
            "d",
            transform=lambda row: row.get_int(1),
        ).to_list()

        assert ids == [1, 3]

    def test_select_one(self, sqlite_executor):
        """测试查询单行"""
        add_users(sqlite_executor, "alice")

        assert sqlite_executor.select_one(
            "SELECT name FROM users WHERE id = ?", 1, transform=lambda row: row.get_string(1)
        ) == "alice"
        assert sqlite_executor.select_one("SELECT name FROM users WHERE id = ?", 99) is None

    def test_null_value(self, sqlite_executor):
        """测试读取 NULL"""
        sqlite_executor.insert("INSERT INTO users (name) VALUES (?)", "nobody").to_list()

        row = sqlite_executor.select_one("SELECT score FROM users")

        assert row.get_double_or_none("score") is None
        assert row.get_int("score") == 0
        assert row.was_null()

    def test_update_and_delete(self, sqlite_executor):
        """测试更新和删除返回受影响行数"""
        add_users(sqlite_executor, "a", "b", "c")

        assert sqlite_executor.update("UPDATE users SET score = ? WHERE id > ?", 9.5, 1) == 2
        assert sqlite_executor.delete("DELETE FROM users WHERE id IN (?)", [1, 2]) == 2
        assert sqlite_executor.eagerly_select(
            "SELECT id FROM users", transform=lambda row: row.get_int("id")
        ) == [3]

    def test_insert_with_returning_columns(self, sqlite_executor):
        """测试指定生成键列"""
        keys = sqlite_executor.insert(
            "INSERT INTO users (name) VALUES (?)",
            "alice",
            columns=["id", "name"],
            transform=lambda row: (row.get_int("id"), row.get_string("name")),
        ).to_list()

        assert keys == [(1, "alice")]

    def test_execute_batch(self, sqlite_executor):
        """测试批量插入"""
        counts = sqlite_executor.execute_batch(
            "INSERT INTO users (name, score) VALUES (?, ?)",
            [("u%d" % i, i) for i in range(7)],
            batch_size=3,
        )

        assert counts == [1] * 7
        assert sqlite_executor.select_one(
            "SELECT COUNT(*) FROM users", transform=lambda row: row.get_int(1)
        ) == 7

    def test_execute_batch_groups(self, sqlite_executor, monkeypatch):
        """测试批处理按 batch_size 分组执行"""
        sizes = []
        original = Statement.execute_batch

        def spy(self):
            sizes.append(len(self._batch))
            return original(self)

        monkeypatch.setattr(Statement, "execute_batch", spy)
        sqlite_executor.execute_batch(
            "INSERT INTO users (name) VALUES (?)", ["u%d" % i for i in range(7)], batch_size=3
        )

        assert sizes == [3, 3, 1]

    def test_execute_batch_invalid_size(self, sqlite_executor):
        """测试非法的批处理大小"""
        with pytest.raises(ValueError):
            sqlite_executor.execute_batch("INSERT INTO users (name) VALUES (?)", [("a",)], 0)

    def test_execute_batch_shape_mismatch(self, sqlite_executor):
        """测试批处理中展开后的语句不一致"""
        with pytest.raises(QueryError) as exc_info:
            sqlite_executor.execute_batch(
                "DELETE FROM users WHERE id IN (?)", [[[1]], [[1, 2]]]
            )
        assert exc_info.value.error_code == "BATCH_SHAPE_MISMATCH"

    def test_driver_error_wrapped(self, sqlite_executor):
        """测试驱动异常包装为 QueryError 并保留原始异常"""
        with pytest.raises(QueryError) as exc_info:
            sqlite_executor.select("SELECT * FROM missing_table").to_list()

        assert exc_info.value.error_code == "EXECUTION_FAILED"
        assert exc_info.value.query == "SELECT * FROM missing_table"
        assert exc_info.value.__cause__ is not None

    def test_parameter_count_error(self, sqlite_executor):
        """测试参数个数错误原样抛出"""
        with pytest.raises(ParameterCountError):
            sqlite_executor.select("SELECT * FROM users WHERE id = ?", 1, 2)

    def test_from_config(self, tmp_path):
        """测试按连接配置创建执行器"""
        config = {"type": "sqlite", "database": str(tmp_path / "config.db")}

        with QueryExecutor.from_config(config, name="local") as executor:
            assert executor.name == "local"
            assert isinstance(executor.dialect, SQLiteDialect)
            assert executor.select_one("SELECT 1", transform=lambda row: row.get_int(1)) == 1


class TestConnectionLifecycle:
    """连接借还测试类"""

    @pytest.fixture(autouse=True)
    def setup(self, fake_pool, description):
        """准备连接池和预设结果"""
        self.pool = fake_pool
        self.connection = fake_pool.connection
        self.connection.results["SELECT id FROM t"] = ([(1,), (2,), (3,)], description("id"))
        self.executor = QueryExecutor(self.pool, Dialect())

    def test_select_holds_connection_until_closed(self):
        """测试惰性查询在迭代器关闭时归还连接"""
        it = self.executor.select("SELECT id FROM t", transform=lambda row: row.get_int("id"))

        assert self.pool.outstanding == 1
        assert it.next() == 1
        it.close()

        assert self.pool.outstanding == 0
        assert self.connection.cursors[0].closed

    def test_zip_of_two_selects_releases_both(self, description):
        """测试两个查询结果 zip 耗尽后各自归还连接"""
        self.connection.results["SELECT name FROM u"] = ([("a",), ("b",)], description("name"))

        ids = self.executor.select("SELECT id FROM t", transform=lambda row: row.get_int(1))
        names = self.executor.select("SELECT name FROM u", transform=lambda row: row.get_string(1))
        assert self.pool.outstanding == 2

        assert ids.zip(names).to_list() == [(1, "a"), (2, "b")]
        assert self.pool.acquired == 2
        assert self.pool.released == 2
        assert all(cursor.closed for cursor in self.connection.cursors)

    def test_merge_skips_default_returning(self):
        """测试 PostgreSQL 的 MERGE 不追加默认 RETURNING"""
        executor = QueryExecutor(self.pool, PostgreSQLDialect())
        merge = "MERGE INTO t USING s ON t.id = s.id WHEN MATCHED THEN UPDATE SET v = ?"

        assert executor.merge(merge, 1).to_list() == []
        executor.insert("INSERT INTO t (v) VALUES (?)", 1).to_list()

        assert self.connection.statements == [
            "MERGE INTO t USING s ON t.id = s.id WHEN MATCHED THEN UPDATE SET v = %s",
            "INSERT INTO t (v) VALUES (%s) RETURNING *",
        ]
        assert self.pool.outstanding == 0

    def test_exhausted_select_releases(self):
        """测试迭代完成后归还连接"""
        values = self.executor.select("SELECT id FROM t", transform=lambda row: row.get_int(1))

        assert values.to_list() == [1, 2, 3]
        assert self.pool.outstanding == 0

    def test_empty_select_releases_immediately(self):
        """测试空结果集立即归还连接"""
        it = self.executor.select("SELECT id FROM empty")

        assert it.closed
        assert self.pool.acquired == 1
        assert self.pool.outstanding == 0

    def test_update_commits_and_releases(self):
        """测试写语句提交并归还连接"""
        self.connection.rowcount = 4

        assert self.executor.update("UPDATE t SET a = ?", 1) == 4
        assert self.connection.commits == 1
        assert self.pool.outstanding == 0

    def test_failure_releases_connection(self):
        """测试执行失败时归还连接"""
        self.connection.fail_on = "broken"

        with pytest.raises(QueryError) as exc_info:
            self.executor.update("UPDATE broken SET a = ?", 1)

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert exc_info.value.parameters == [1]
        assert self.pool.outstanding == 0
        assert self.connection.cursors[0].closed

    def test_null_connection(self, fake_pool_factory):
        """测试连接池返回空连接"""
        executor = QueryExecutor(fake_pool_factory(return_none=True), Dialect())

        with pytest.raises(NullConnectionError) as exc_info:
            executor.select("SELECT 1")
        assert exc_info.value.error_code == "NULL_CONNECTION"

    def test_release_failure_is_logged(self, caplog, fake_pool_factory):
        """测试归还连接失败只记录日志"""

        class BrokenReleasePool(fake_pool_factory):
            def release(self, connection):
                raise RuntimeError("release failed")

        executor = QueryExecutor(BrokenReleasePool(), Dialect())

        with caplog.at_level(logging.ERROR, logger="db_executor"):
            assert executor.update("UPDATE t SET a = 1") == 1
        assert "归还连接失败" in caplog.text

    def test_timing_log(self, caplog):
        """测试每条语句输出计时日志"""
        caplog.set_level(logging.INFO, logger="db_executor")

        self.executor.update("UPDATE t SET a = ? WHERE b = ?", "x", 2)

        records = [r for r in caplog.records if r.getMessage().startswith("查询计时")]
        assert len(records) == 1
        record = records[0]
        assert "QUERY: UPDATE t SET a = ? WHERE b = ? PARAMS: 'x', 2 耗时" in record.getMessage()
        assert record.getMessage().endswith(" ms")
        assert record.elapsed_ms >= 0
        assert record.params == ["x", 2]

    def test_proc(self, description):
        """测试调用存储过程并读取结果集"""
        self.connection.results["list_users"] = ([(1, "a"), (2, "b")], description("id", "name"))

        names = self.executor.proc(
            "list_users", 5, transform=lambda row: row.get_string("name")
        ).to_list()

        assert names == ["a", "b"]
        assert self.connection.calls == [("list_users", (5,))]
        assert self.pool.outstanding == 0

    def test_proc_without_result_set(self):
        """测试没有结果集的存储过程返回空迭代器"""
        assert self.executor.proc("touch").to_list() == []
        assert self.pool.outstanding == 0

    def test_proc_out(self):
        """测试读取存储过程 OUT 参数"""
        self.connection.out_values = {2: 42}

        value = self.executor.proc_out("compute", 5, out=[2], transform=lambda r: r.get_int(2))

        assert value == 42
        assert self.connection.calls == [("compute", (5, None))]

    def test_context_manager_shuts_down_pool(self):
        """测试 with 语句关闭连接池"""
        with self.executor:
            pass

        assert self.pool.is_shutdown


if __name__ == "__main__":
    pytest.main()
