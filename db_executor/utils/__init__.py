"""
查询执行器工具模块

- 日志管理: setup_logging / get_logger / set_log_level / SlowQueryFilter
- 路径处理: PathHelper

使用示例：
    >>> from db_executor.utils import get_logger, setup_logging, add_slow_query_handler
    >>>
    >>> setup_logging(level="INFO", log_to_console=True, log_to_file=False)
    >>> add_slow_query_handler("slow.log", cutoff_ms=2000)
    >>> logger = get_logger(__name__)
"""

from .logging_utils import (
    DEFAULT_SLOW_QUERY_MS,
    SlowQueryFilter,
    add_slow_query_handler,
    get_logger,
    set_log_level,
    setup_logging,
)
from .path_utils import PathHelper

__all__ = [
    # ==================== 日志管理模块 ====================
    "setup_logging",
    "get_logger",
    "set_log_level",
    "SlowQueryFilter",
    "add_slow_query_handler",
    "DEFAULT_SLOW_QUERY_MS",
    # ==================== 路径处理模块 ====================
    "PathHelper",
]
