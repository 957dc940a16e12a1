"""
日志配置模块

封装标准库 logging，提供:
- setup_logging: 配置应用 logger（控制台 / 滚动文件）
- get_logger: 获取模块 logger
- set_log_level: 动态调整级别
- SlowQueryFilter: 只放行耗时超过阈值的查询计时日志
- add_slow_query_handler: 把慢查询单独写入一个文件

执行器对每条语句输出一条形如
``查询计时: QUERY: <sql> PARAMS: <参数> 耗时 <N> ms`` 的 INFO 日志，
并在记录上附带 ``elapsed_ms`` 属性，SlowQueryFilter 依赖这两者工作。
"""

import logging
import logging.handlers
import re
import sys
from pathlib import Path

from .path_utils import PathHelper

DEFAULT_LOG_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s - %(message)s "
    + "[%(filename)s:%(lineno)d]"
)

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LOG_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# 慢查询默认阈值（毫秒）
DEFAULT_SLOW_QUERY_MS = 5000

# 计时日志的结尾格式，与 statement_executor 中的消息保持一致
TIMED_MESSAGE_PATTERN = re.compile(r"耗时 (\d+) ms$")


def setup_logging(
    app_name: str = "db_executor",
    level: str = "INFO",
    log_to_console: bool = False,
    log_to_file: bool = True,
    max_file_size: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    log_format: str | None = None,
    log_dir: str | Path | None = None,
) -> logging.Logger:
    """
    配置并初始化应用 logger

    重复调用会先移除旧的 handler，避免日志重复输出。

    Args:
        app_name (str): 应用名称，同时作为 logger 名称和日志文件名
        level (str): 日志级别
        log_to_console (bool): 是否输出到标准输出
        log_to_file (bool): 是否输出到滚动日志文件
        max_file_size (int): 单个日志文件最大字节数
        backup_count (int): 保留的备份文件数
        log_format (str | None): 自定义格式，None 使用 DEFAULT_LOG_FORMAT
        log_dir (str | Path | None): 日志目录，None 时使用用户配置目录下的 logs

    Returns:
        logging.Logger: 配置好的 logger

    Raises:
        ValueError: 日志级别无效或未启用任何输出
        OSError: 无法创建日志目录或文件

    Example:
        >>> logger = setup_logging("db_executor", "DEBUG", log_to_console=True)
        >>> logger.info("执行器启动")
    """
    log_level = _validate_log_level(level)
    formatter = logging.Formatter(log_format or DEFAULT_LOG_FORMAT)

    logger = logging.getLogger(app_name)
    logger.setLevel(log_level)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    handlers_added = 0

    if log_to_file:
        if log_dir is None:
            log_dir_path = PathHelper.get_user_config_dir(app_name) / "logs"
        else:
            log_dir_path = Path(log_dir)
        PathHelper.ensure_dir_exists(log_dir_path)

        log_file = log_dir_path / f"{app_name}.log"
        try:
            file_handler = logging.handlers.RotatingFileHandler(
                filename=str(log_file),
                maxBytes=max_file_size,
                backupCount=backup_count,
                encoding="utf-8",
            )
        except OSError as e:
            raise OSError(f"无法创建日志文件 {log_file}: {str(e)}")
        file_handler.setFormatter(formatter)
        file_handler.setLevel(log_level)
        logger.addHandler(file_handler)
        handlers_added += 1

    if log_to_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        console_handler.setLevel(log_level)
        logger.addHandler(console_handler)
        handlers_added += 1

    if handlers_added == 0:
        raise ValueError("至少需要启用一种日志输出方式（控制台或文件）")

    logger.debug(f"日志系统初始化完成 - 应用: {app_name}, 级别: {level.upper()}")
    return logger


def _validate_log_level(level: str) -> int:
    level_upper = level.upper()
    if level_upper not in VALID_LOG_LEVELS:
        raise ValueError(f"无效的日志级别: '{level}'，有效值为: {VALID_LOG_LEVELS}")
    return LOG_LEVEL_MAP[level_upper]


def get_logger(name: str) -> logging.Logger:
    """
    获取指定名称的 logger

    Args:
        name (str): logger 名称，通常为 __name__

    Returns:
        logging.Logger: logger 实例
    """
    return logging.getLogger(name)


def set_log_level(logger_name: str, level: str) -> None:
    """
    动态设置 logger 及其所有 handler 的级别

    Raises:
        ValueError: 日志级别无效
    """
    log_level = _validate_log_level(level)
    logger = get_logger(logger_name)
    logger.setLevel(log_level)
    for handler in logger.handlers:
        handler.setLevel(log_level)


class SlowQueryFilter(logging.Filter):
    """
    慢查询过滤器

    只放行耗时严格大于 cutoff_ms 的计时日志。优先读取记录上的
    ``elapsed_ms`` 属性，没有时从消息末尾的 ``耗时 N ms`` 解析；
    两者都没有的记录一律丢弃。

    Example:
        >>> handler = logging.FileHandler("slow.log")
        >>> handler.addFilter(SlowQueryFilter(cutoff_ms=1000))
    """

    def __init__(self, cutoff_ms: int = DEFAULT_SLOW_QUERY_MS, name: str = "") -> None:
        super().__init__(name)
        if cutoff_ms < 0:
            raise ValueError(f"慢查询阈值不能为负数: {cutoff_ms}")
        self.cutoff_ms = cutoff_ms

    def filter(self, record: logging.LogRecord) -> bool:
        if not super().filter(record):
            return False
        elapsed = getattr(record, "elapsed_ms", None)
        if elapsed is None:
            match = TIMED_MESSAGE_PATTERN.search(record.getMessage())
            if match is None:
                return False
            elapsed = int(match.group(1))
        return elapsed > self.cutoff_ms


def add_slow_query_handler(
    log_file: str | Path,
    cutoff_ms: int = DEFAULT_SLOW_QUERY_MS,
    logger_name: str = "db_executor",
    log_format: str | None = None,
) -> logging.Handler:
    """
    为 logger 增加一个只记录慢查询的文件 handler

    Args:
        log_file: 慢查询日志文件路径
        cutoff_ms: 慢查询阈值（毫秒）
        logger_name: 挂载的 logger 名称
        log_format: 自定义格式

    Returns:
        logging.Handler: 新增的 handler，调用方可自行移除
    """
    path = Path(log_file)
    PathHelper.ensure_dir_exists(path.parent)

    handler = logging.FileHandler(str(path), encoding="utf-8")
    handler.setFormatter(logging.Formatter(log_format or DEFAULT_LOG_FORMAT))
    handler.addFilter(SlowQueryFilter(cutoff_ms))

    logger = get_logger(logger_name)
    logger.addHandler(handler)
    if logger.level == logging.NOTSET or logger.level > logging.INFO:
        logger.setLevel(logging.INFO)
    return handler
