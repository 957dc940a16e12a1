"""
路径处理工具模块

为配置文件、密钥文件和日志文件提供跨平台的目录定位。

- Windows: %APPDATA%\\{app_name}
- macOS: ~/Library/Application Support/{app_name}
- Linux: ~/.config/{app_name}
"""

import os
import platform
from pathlib import Path


class PathHelper:
    """路径辅助类，所有方法均为静态方法"""

    @staticmethod
    def get_user_config_dir(app_name: str = "db_executor") -> Path:
        """
        获取并创建应用的用户配置目录

        标准目录不可写时回退到当前工作目录下的隐藏目录。

        Args:
            app_name (str): 应用名称

        Returns:
            Path: 配置目录

        Raises:
            ValueError: 应用名称为空
            OSError: 标准目录与回退目录均无法创建

        Example:
            >>> PathHelper.get_user_config_dir("db_executor")
            PosixPath('/home/username/.config/db_executor')
        """
        if not app_name or not isinstance(app_name, str):
            raise ValueError("应用名称不能为空且必须是字符串")

        system = platform.system().lower()
        if system == "windows":
            base_dir = Path(os.environ.get("APPDATA", Path.home()))
        elif system == "darwin":
            base_dir = Path.home() / "Library" / "Application Support"
        else:
            base_dir = Path.home() / ".config"

        config_dir = base_dir / app_name
        try:
            config_dir.mkdir(parents=True, exist_ok=True)
            return config_dir
        except OSError as e:
            fallback_dir = Path.cwd() / f".{app_name}"
            try:
                fallback_dir.mkdir(exist_ok=True)
                return fallback_dir
            except OSError:
                raise OSError(f"无法创建配置目录: {str(e)}")

    @staticmethod
    def ensure_dir_exists(dir_path: str | Path) -> Path:
        """
        确保目录存在，不存在时递归创建

        Args:
            dir_path: 目录路径

        Returns:
            Path: 目录的 Path 对象

        Raises:
            ValueError: 路径为空或指向已存在的文件
            OSError: 创建失败
        """
        if not dir_path:
            raise ValueError("目录路径不能为空")

        path = Path(dir_path)
        if path.exists() and not path.is_dir():
            raise ValueError(f"路径已存在且不是目录: {path}")
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise OSError(f"无法创建目录 '{path}': {str(e)}")
        return path
