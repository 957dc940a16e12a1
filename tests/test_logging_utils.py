"""
日志工具测试
"""

import logging

import pytest

from db_executor.utils.logging_utils import (
    SlowQueryFilter,
    add_slow_query_handler,
    set_log_level,
    setup_logging,
)


def make_record(message, **extra):
    record = logging.LogRecord("db_executor.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def close_handlers(logger):
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()


class TestSlowQueryFilter:
    """SlowQueryFilter测试类"""

    def test_elapsed_attribute(self):
        """测试按记录上的耗时属性过滤"""
        slow_filter = SlowQueryFilter(cutoff_ms=100)

        assert slow_filter.filter(make_record("x", elapsed_ms=101))
        assert not slow_filter.filter(make_record("x", elapsed_ms=100))

    def test_parse_message(self):
        """测试从消息末尾解析耗时"""
        slow_filter = SlowQueryFilter(cutoff_ms=1000)

        assert slow_filter.filter(make_record("查询计时: QUERY: SELECT 1 PARAMS:  耗时 1500 ms"))
        assert not slow_filter.filter(make_record("查询计时: QUERY: SELECT 1 PARAMS:  耗时 20 ms"))

    def test_untimed_record_dropped(self):
        """测试没有耗时信息的记录被丢弃"""
        assert not SlowQueryFilter(cutoff_ms=0).filter(make_record("普通日志"))

    def test_default_cutoff(self):
        """测试默认阈值"""
        assert SlowQueryFilter().cutoff_ms == 5000

    def test_negative_cutoff(self):
        """测试负数阈值"""
        with pytest.raises(ValueError):
            SlowQueryFilter(cutoff_ms=-1)


class TestSetupLogging:
    """setup_logging测试类"""

    def test_file_logging(self, tmp_path):
        """测试写入日志文件"""
        logger = setup_logging("db_executor_file_test", "DEBUG", log_dir=tmp_path)
        try:
            logger.info("hello")
            for handler in logger.handlers:
                handler.flush()

            log_file = tmp_path / "db_executor_file_test.log"
            assert log_file.exists()
            assert "hello" in log_file.read_text(encoding="utf-8")
            assert logger.level == logging.DEBUG
        finally:
            close_handlers(logger)

    def test_repeated_setup_replaces_handlers(self, tmp_path):
        """测试重复调用不会重复添加 handler"""
        setup_logging("db_executor_repeat_test", log_dir=tmp_path)
        logger = setup_logging("db_executor_repeat_test", log_dir=tmp_path, log_to_console=True)
        try:
            assert len(logger.handlers) == 2
        finally:
            close_handlers(logger)

    def test_invalid_level(self, tmp_path):
        """测试无效的日志级别"""
        with pytest.raises(ValueError):
            setup_logging("db_executor_level_test", "VERBOSE", log_dir=tmp_path)

    def test_no_output(self):
        """测试未启用任何输出"""
        with pytest.raises(ValueError):
            setup_logging("db_executor_none_test", log_to_console=False, log_to_file=False)

    def test_set_log_level(self):
        """测试动态调整日志级别"""
        set_log_level("db_executor_dynamic_test", "warning")

        assert logging.getLogger("db_executor_dynamic_test").level == logging.WARNING
        with pytest.raises(ValueError):
            set_log_level("db_executor_dynamic_test", "LOUD")


class TestSlowQueryHandler:
    """add_slow_query_handler测试类"""

    def test_only_slow_queries_written(self, tmp_path):
        """测试只写入慢查询"""
        log_file = tmp_path / "logs" / "slow.log"
        logger = logging.getLogger("db_executor_slow_test")
        handler = add_slow_query_handler(log_file, cutoff_ms=100, logger_name="db_executor_slow_test")
        try:
            logger.info("查询计时: QUERY: fast PARAMS:  耗时 5 ms", extra={"elapsed_ms": 5})
            logger.info("查询计时: QUERY: slow PARAMS:  耗时 500 ms", extra={"elapsed_ms": 500})
            logger.info("没有耗时的日志")
            handler.flush()

            content = log_file.read_text(encoding="utf-8")
            assert "QUERY: slow" in content
            assert "QUERY: fast" not in content
            assert "没有耗时" not in content
        finally:
            logger.removeHandler(handler)
            handler.close()


if __name__ == "__main__":
    pytest.main()
