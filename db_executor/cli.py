"""
DB Executor CLI 工具
====================

管理加密保存的数据源，并通过 QueryExecutor 执行查询和更新。

功能特性:
- 数据源管理 (添加、删除、查看、列出、测试)
- 带位置参数的查询，参数中的列表会展开为 IN (?, ?, ...) 占位符
- 查询结果以表格、JSON 或 CSV 输出，可写入文件
- 执行更新语句并报告影响行数

使用示例:
    db-executor add local --type sqlite --database ./app.db
    db-executor query local "SELECT * FROM users WHERE id IN (?)" --param "[1, 2, 3]"
    db-executor exec local "UPDATE users SET name = ? WHERE id = ?" --param bob --param 1
"""

import argparse
import csv
import io
import json
import sys
from typing import Any, Dict, List, Optional, Sequence, Union

from .core.config import SUPPORTED_DATABASE_TYPES, ConfigManager
from .core.executor import QueryExecutor
from .utils.logging_utils import add_slow_query_handler, get_logger, setup_logging
from .utils.path_utils import PathHelper

logger = get_logger(__name__)

ParamValue = Union[None, bool, int, float, str, list]


class DBExecutorCLI:
    """
    DB Executor 命令行接口

    Attributes:
        BASIC_PARAMS (List[str]): 通过独立选项设置的数据源字段
        SENSITIVE_FIELDS (List[str]): 显示时隐藏的字段
        MAX_COLUMN_WIDTH (int): 表格输出的最大列宽
    """

    BASIC_PARAMS = ["type", "host", "port", "username", "password", "database", "service_name"]
    SENSITIVE_FIELDS = ["password", "passwd", "pwd"]
    MAX_COLUMN_WIDTH = 50

    def __init__(self, config_manager: Optional[ConfigManager] = None) -> None:
        self.config_manager = config_manager

    def _ensure_config_manager(self) -> ConfigManager:
        if self.config_manager is None:
            try:
                self.config_manager = ConfigManager()
            except Exception as e:
                logger.error(f"初始化配置管理器失败: {e}")
                print(f"❌ 初始化配置管理器失败: {e}")
                sys.exit(1)
        return self.config_manager

    def _create_executor(self, name: str) -> QueryExecutor:
        connection_config = self._ensure_config_manager().get_connection(name)
        return QueryExecutor.from_config(connection_config, name=name)

    # ------------------------------------------------------------------
    # 数据源管理
    # ------------------------------------------------------------------

    def add_connection(self, args: argparse.Namespace) -> None:
        """添加数据源"""
        config_manager = self._ensure_config_manager()
        config = self._build_connection_config(args)
        try:
            config_manager.add_connection(args.name, config)
        except Exception as e:
            logger.error(f"添加数据源失败: {e}")
            print(f"❌ 添加数据源失败: {e}")
            sys.exit(1)
        print(f"✅ 数据源 '{args.name}' 添加成功")

    def _build_connection_config(self, args: argparse.Namespace) -> Dict[str, Any]:
        config = {}
        for param in self.BASIC_PARAMS:
            value = getattr(args, param, None)
            if value is not None:
                config[param] = value
        for item in getattr(args, "custom_params", None) or []:
            if "=" not in item:
                logger.warning(f"忽略无效的自定义参数格式: {item}")
                continue
            key, value = item.split("=", 1)
            if key.strip():
                config[key.strip()] = self._convert_value_type(value.strip())
        return config

    @staticmethod
    def _convert_value_type(value: str) -> ParamValue:
        """
        把命令行字符串转换为参数值

        支持 null、true/false、整数、浮点数和 JSON 数组，其余保持字符串。

        Example:
            >>> DBExecutorCLI._convert_value_type("[1, 2]")
            [1, 2]
            >>> DBExecutorCLI._convert_value_type("null") is None
            True
        """
        value_lower = value.lower()
        if value_lower == "null":
            return None
        if value_lower in ("true", "false"):
            return value_lower == "true"
        if value.lstrip("-").isdigit():
            return int(value)
        if value.startswith("["):
            try:
                parsed = json.loads(value)
            except json.JSONDecodeError:
                return value
            if isinstance(parsed, list):
                return parsed
            return value
        try:
            return float(value)
        except ValueError:
            return value

    def remove_connection(self, args: argparse.Namespace) -> None:
        """删除数据源"""
        config_manager = self._ensure_config_manager()
        try:
            config_manager.remove_connection(args.name)
        except Exception as e:
            logger.error(f"删除数据源失败: {e}")
            print(f"❌ 删除数据源失败: {e}")
            sys.exit(1)
        print(f"✅ 数据源 '{args.name}' 已删除")

    def show_connection(self, args: argparse.Namespace) -> None:
        """显示数据源配置，密码类字段以 *** 代替"""
        config_manager = self._ensure_config_manager()
        try:
            config = config_manager.get_connection(args.name)
        except Exception as e:
            logger.error(f"获取数据源失败: {e}")
            print(f"❌ 获取数据源失败: {e}")
            sys.exit(1)

        print(f"🔍 数据源 '{args.name}' 的配置:")
        for key, value in config.items():
            if key in self.SENSITIVE_FIELDS:
                value = "***"
            print(f"  {key}: {value}")

    def list_connections(self, _args: argparse.Namespace) -> None:
        """列出全部数据源"""
        config_manager = self._ensure_config_manager()
        try:
            connections = config_manager.list_connections()
        except Exception as e:
            logger.error(f"列出数据源失败: {e}")
            print(f"❌ 列出数据源失败: {e}")
            sys.exit(1)

        if not connections:
            print("ℹ️  没有配置任何数据源")
            return
        print("📋 已配置的数据源:")
        for i, name in enumerate(connections, 1):
            print(f"  {i}. {name}")

    def test_connection(self, args: argparse.Namespace) -> None:
        """执行方言的测试查询"""
        try:
            with self._create_executor(args.name) as executor:
                executor.select_one(executor.dialect.test_query)
        except Exception as e:
            logger.error(f"数据源测试失败: {e}")
            print(f"❌ 数据源 '{args.name}' 测试失败: {e}")
            sys.exit(1)
        print(f"✅ 数据源 '{args.name}' 测试成功")

    # ------------------------------------------------------------------
    # 查询与更新
    # ------------------------------------------------------------------

    def _parse_params(self, raw: Optional[Sequence[str]]) -> List[ParamValue]:
        return [self._convert_value_type(value) for value in raw or []]

    def execute_query(self, args: argparse.Namespace) -> None:
        """执行查询并按格式输出"""
        params = self._parse_params(args.param)
        try:
            with self._create_executor(args.connection) as executor:
                rows = executor.select(args.query, *params, transform=lambda row: row.as_dict())
                if args.limit is not None:
                    rows = rows.take(args.limit)
                results = rows.to_list()
        except Exception as e:
            logger.error(f"执行查询失败: {e}")
            print(f"❌ 执行查询失败: {e}")
            sys.exit(1)

        rendered = self._render(results, args.format)
        if args.output:
            try:
                with open(args.output, "w", encoding="utf-8", newline="") as f:
                    f.write(rendered)
            except OSError as e:
                logger.error(f"保存结果失败: {e}")
                print(f"❌ 保存结果失败: {e}")
                sys.exit(1)
            print(f"✅ {len(results)} 行结果已保存到: {args.output}")
        elif not results:
            print("没有结果")
        else:
            print(rendered, end="")

    def execute_update(self, args: argparse.Namespace) -> None:
        """执行更新语句并输出影响行数"""
        params = self._parse_params(args.param)
        try:
            with self._create_executor(args.connection) as executor:
                count = executor.update(args.statement, *params)
        except Exception as e:
            logger.error(f"执行语句失败: {e}")
            print(f"❌ 执行语句失败: {e}")
            sys.exit(1)
        print(f"✅ 执行成功，影响 {count} 行")

    # ------------------------------------------------------------------
    # 输出格式
    # ------------------------------------------------------------------

    def _render(self, results: List[Dict[str, Any]], format: str) -> str:
        if format == "json":
            return json.dumps(results, indent=2, ensure_ascii=False, default=str) + "\n"
        if format == "csv":
            return self._render_csv(results)
        return self._render_table(results)

    @staticmethod
    def _render_csv(results: List[Dict[str, Any]]) -> str:
        if not results:
            return ""
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=list(results[0].keys()))
        writer.writeheader()
        writer.writerows(results)
        return buffer.getvalue()

    def _render_table(self, results: List[Dict[str, Any]]) -> str:
        if not results:
            return ""
        headers = list(results[0].keys())
        widths = {header: len(str(header)) for header in headers}
        for row in results:
            for header in headers:
                widths[header] = max(widths[header], len(str(row.get(header, ""))))
        for header in headers:
            widths[header] = min(widths[header], self.MAX_COLUMN_WIDTH)

        separator = "-+-".join("-" * widths[header] for header in headers)
        lines = [
            separator,
            " | ".join(f"{header:<{widths[header]}}" for header in headers),
            separator,
        ]
        for row in results:
            lines.append(
                " | ".join(
                    f"{self._truncate_value(str(row.get(header, '')), widths[header]):<{widths[header]}}"
                    for header in headers
                )
            )
        lines.append(separator)
        lines.append(f"总计: {len(results)} 行")
        return "\n".join(lines) + "\n"

    @staticmethod
    def _truncate_value(value: str, max_length: int) -> str:
        if len(value) <= max_length:
            return value
        return value[: max_length - 3] + "..."


class ChineseHelpFormatter(argparse.RawDescriptionHelpFormatter):
    """中文帮助格式化器"""

    def _format_usage(self, usage, actions, groups, prefix):
        if prefix is None:
            prefix = "\n使用情况: "
        return super()._format_usage(usage, actions, groups, prefix)

    def start_section(self, heading):
        if heading == "options":
            heading = "下列选项可用"
        super().start_section(heading)


def create_argument_parser(cli_instance: DBExecutorCLI) -> argparse.ArgumentParser:
    """
    创建命令行参数解析器

    Args:
        cli_instance: CLI 实例，子命令绑定到它的方法

    Returns:
        argparse.ArgumentParser: 配置好的解析器
    """
    parser = argparse.ArgumentParser(
        prog="db-executor",
        usage="db-executor [<命令>] [<选项>]",
        description="DB Executor - 数据库查询执行工具",
        formatter_class=ChineseHelpFormatter,
        epilog="""
使用示例:
  db-executor add local --type sqlite --database ./app.db
  db-executor list
  db-executor query local "SELECT * FROM users WHERE id IN (?)" --param "[1, 2]"
  db-executor exec local "DELETE FROM users WHERE id = ?" --param 3
        """,
        add_help=False,
    )
    parser.add_argument(
        "-h", "--help", action="help", default=argparse.SUPPRESS, help="显示帮助信息"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="在控制台输出日志")

    subparsers = parser.add_subparsers(title="下列命令有效", dest="command")

    add_parser = subparsers.add_parser("add", help="添加数据源")
    add_parser.add_argument("name", help="数据源名称")
    add_parser.add_argument(
        "-T", "--type", required=True, choices=SUPPORTED_DATABASE_TYPES, help="数据库类型"
    )
    add_parser.add_argument("-H", "--host", help="数据库主机")
    add_parser.add_argument("-P", "--port", type=int, help="数据库端口")
    add_parser.add_argument("-u", "--username", help="用户名")
    add_parser.add_argument("-p", "--password", help="密码")
    add_parser.add_argument("-d", "--database", help="数据库名（SQLite 为文件路径）")
    add_parser.add_argument("-s", "--service-name", help="Oracle服务名称")
    add_parser.add_argument(
        "-c", "--custom-params", nargs="+", help="自定义参数 (格式: key=value)"
    )
    add_parser.set_defaults(func=cli_instance.add_connection)

    remove_parser = subparsers.add_parser("remove", help="删除数据源")
    remove_parser.add_argument("name", help="数据源名称")
    remove_parser.set_defaults(func=cli_instance.remove_connection)

    show_parser = subparsers.add_parser("show", help="显示数据源配置")
    show_parser.add_argument("name", help="数据源名称")
    show_parser.set_defaults(func=cli_instance.show_connection)

    list_parser = subparsers.add_parser("list", help="列出所有数据源")
    list_parser.set_defaults(func=cli_instance.list_connections)

    test_parser = subparsers.add_parser("test", help="测试数据源")
    test_parser.add_argument("name", help="数据源名称")
    test_parser.set_defaults(func=cli_instance.test_connection)

    query_parser = subparsers.add_parser("query", help="执行查询")
    query_parser.add_argument("connection", help="数据源名称")
    query_parser.add_argument("query", help="SQL查询语句，使用 ? 作为占位符")
    query_parser.add_argument(
        "--param", action="append", help="位置参数，可重复；[1, 2] 形式展开为多个占位符"
    )
    query_parser.add_argument("--limit", type=int, help="最多输出的行数")
    query_parser.add_argument(
        "--format", choices=["table", "json", "csv"], default="table", help="输出格式 (默认: table)"
    )
    query_parser.add_argument("--output", help="输出文件路径")
    query_parser.set_defaults(func=cli_instance.execute_query)

    exec_parser = subparsers.add_parser("exec", help="执行更新语句")
    exec_parser.add_argument("connection", help="数据源名称")
    exec_parser.add_argument("statement", help="SQL语句，使用 ? 作为占位符")
    exec_parser.add_argument("--param", action="append", help="位置参数，可重复")
    exec_parser.set_defaults(func=cli_instance.execute_update)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    """DB Executor CLI 主入口"""
    cli = DBExecutorCLI()
    parser = create_argument_parser(cli)
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(0)

    settings = cli._ensure_config_manager().get_settings()
    setup_logging(level=settings["log_level"], log_to_console=args.verbose)
    add_slow_query_handler(
        PathHelper.get_user_config_dir() / "logs" / "slow_query.log", settings["slow_query_ms"]
    )
    args.func(args)


if __name__ == "__main__":
    main()
