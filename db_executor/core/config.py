"""
数据源配置管理

数据源以 TOML 文件保存在用户配置目录下，每个字段先序列化为带类型信息的
JSON，再经 CryptoManager 加密；加密密钥保存在同目录的 encryption.key 中。
执行器设置（批大小、慢查询阈值、日志级别）以明文保存在 settings 表中。
"""

import json
import shutil
import tomllib
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import tomli_w

from ..utils.logging_utils import DEFAULT_SLOW_QUERY_MS, VALID_LOG_LEVELS, get_logger
from ..utils.path_utils import PathHelper
from .crypto import CryptoManager
from .exceptions import ConfigError, ValidationError
from .queryable import DEFAULT_BATCH_SIZE

logger = get_logger(__name__)

CONFIG_VERSION = "1.0.0"
SUPPORTED_VERSIONS = ["1.0.0"]

SUPPORTED_DATABASE_TYPES = ("oracle", "postgresql", "mysql", "mssql", "sqlite")

DEFAULT_SETTINGS: Dict[str, Any] = {
    "batch_size": DEFAULT_BATCH_SIZE,
    "slow_query_ms": DEFAULT_SLOW_QUERY_MS,
    "log_level": "INFO",
}

KEY_FILE_NAME = "encryption.key"

ERROR_EMPTY_CONNECTION_NAME = "数据源名称不能为空且必须是字符串"
ERROR_INVALID_CONFIG_DICT = "数据源配置不能为空且必须是字典"


def validate_connection_config(connection_config: Dict[str, Any]) -> None:
    """
    校验数据源配置

    Args:
        connection_config: 数据源配置字典

    Raises:
        ValidationError: 数据库类型不支持或缺少必需字段
    """
    db_type = str(connection_config.get("type", "")).lower()
    if db_type not in SUPPORTED_DATABASE_TYPES:
        raise ValidationError(
            f"不支持的数据库类型: {db_type or '<空>'}",
            field_name="type",
            expected=", ".join(SUPPORTED_DATABASE_TYPES),
        )
    if db_type == "sqlite":
        return

    required = ["host", "username", "password"]
    required.append("service_name" if db_type == "oracle" else "database")
    missing = [field for field in required if not connection_config.get(field)]
    if missing:
        raise ValidationError(
            f"{db_type} 数据源缺少必需字段: {', '.join(missing)}",
            field_name=missing[0],
        )


class ConfigManager:
    """
    数据源配置管理器

    Example:
        >>> manager = ConfigManager()
        >>> manager.add_connection("local", {"type": "sqlite", "database": "app.db"})
        >>> manager.get_connection("local")["database"]
        'app.db'
    """

    def __init__(
        self,
        app_name: str = "db_executor",
        config_file: str = "datasources.toml",
        config_dir: Optional[Path] = None,
    ) -> None:
        """
        Args:
            app_name: 应用名称，决定默认配置目录
            config_file: 配置文件名
            config_dir: 配置目录，None 时使用用户配置目录

        Raises:
            ConfigError: 配置文件或密钥初始化失败
        """
        self.app_name = app_name
        self.config_file = config_file
        if config_dir is None:
            self.config_dir = PathHelper.get_user_config_dir(app_name)
        else:
            self.config_dir = PathHelper.ensure_dir_exists(config_dir)
        self.config_path = self.config_dir / config_file
        self.crypto: Optional[CryptoManager] = None
        self._ensure_config_exists()

    # ------------------------------------------------------------------
    # 序列化
    # ------------------------------------------------------------------

    @staticmethod
    def _serialize_value(value: Any) -> str:
        return json.dumps({"type": type(value).__name__, "value": value}, ensure_ascii=False)

    @staticmethod
    def _deserialize_value(json_str: str) -> Any:
        try:
            return json.loads(json_str)["value"]
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            logger.warning(f"反序列化失败，返回原始字符串: {str(e)}")
            return json_str

    # ------------------------------------------------------------------
    # 文件
    # ------------------------------------------------------------------

    def _ensure_config_exists(self) -> None:
        try:
            if not self.config_path.exists():
                self._create_default_config()
            self._load_or_create_crypto_key()
        except ConfigError:
            raise
        except Exception as e:
            logger.error(f"初始化配置文件失败: {str(e)}")
            raise ConfigError(
                f"配置文件初始化失败: {str(e)}", config_file=str(self.config_path)
            ) from e
        logger.debug(f"配置文件就绪: {self.config_path}")

    def _create_default_config(self) -> None:
        now = datetime.now().astimezone().isoformat()
        self._save_config(
            {
                "version": CONFIG_VERSION,
                "app_name": self.app_name,
                "settings": dict(DEFAULT_SETTINGS),
                "connections": {},
                "metadata": {"created": now, "last_modified": now},
            }
        )
        logger.info(f"创建默认配置文件: {self.config_path}")

    def _load_or_create_crypto_key(self) -> None:
        key_file = self.config_dir / KEY_FILE_NAME

        if key_file.exists():
            try:
                key_data = tomllib.loads(key_file.read_text(encoding="utf-8"))
                if "password" not in key_data or "salt" not in key_data:
                    raise ConfigError("密钥文件格式无效", config_file=str(key_file))
                self.crypto = CryptoManager.from_saved_key(
                    key_data["password"], key_data["salt"], key_data.get("iterations")
                )
                logger.debug("加密密钥加载成功")
            except ConfigError:
                raise
            except Exception as e:
                logger.error(f"加载加密密钥失败: {str(e)}")
                raise ConfigError(
                    f"加密密钥加载失败: {str(e)}", config_file=str(key_file)
                ) from e
            return

        try:
            self.crypto = CryptoManager()
            key_file.write_text(tomli_w.dumps(self.crypto.get_key_info()), encoding="utf-8")
            logger.info("新加密密钥创建成功")
        except Exception as e:
            logger.error(f"创建加密密钥失败: {str(e)}")
            raise ConfigError(
                f"加密密钥创建失败: {str(e)}", config_file=str(key_file)
            ) from e

    def _load_config(self) -> Dict[str, Any]:
        """
        读取并校验配置文件

        Raises:
            ConfigError: 文件无法读取、TOML 格式错误或结构无效
        """
        try:
            with open(self.config_path, "rb") as f:
                config = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            logger.error(f"配置文件TOML格式错误: {str(e)}")
            raise ConfigError(
                f"配置文件格式无效: {str(e)}", config_file=str(self.config_path)
            ) from e
        except OSError as e:
            logger.error(f"加载配置文件失败: {str(e)}")
            raise ConfigError(
                f"配置文件加载失败: {str(e)}", config_file=str(self.config_path)
            ) from e

        self._validate_config(config)
        config.setdefault("settings", dict(DEFAULT_SETTINGS))
        return config

    def _validate_config(self, config: Dict[str, Any]) -> None:
        for field in ("version", "app_name", "connections", "metadata"):
            if field not in config:
                raise ConfigError(
                    f"配置文件缺少必需字段: {field}",
                    config_file=str(self.config_path),
                    config_key=field,
                )
        if config["version"] not in SUPPORTED_VERSIONS:
            raise ConfigError(
                f"不支持的配置版本: {config['version']}",
                config_file=str(self.config_path),
                config_key="version",
            )

    def _save_config(self, config: Dict[str, Any]) -> None:
        config["metadata"]["last_modified"] = datetime.now().astimezone().isoformat()
        self._validate_config(config)
        try:
            with open(self.config_path, "wb") as f:
                f.write(tomli_w.dumps(config).encode("utf-8"))
        except OSError as e:
            logger.error(f"保存配置文件失败: {str(e)}")
            raise ConfigError(
                f"配置文件保存失败: {str(e)}", config_file=str(self.config_path)
            ) from e
        logger.debug(f"配置文件已保存: {self.config_path}")

    def _require_crypto(self) -> CryptoManager:
        if self.crypto is None:
            raise ConfigError("加密管理器未初始化", config_file=str(self.config_path))
        return self.crypto

    # ------------------------------------------------------------------
    # 数据源
    # ------------------------------------------------------------------

    def add_connection(self, name: str, connection_config: Dict[str, Any]) -> None:
        """
        添加数据源，所有字段加密保存

        Args:
            name: 数据源名称
            connection_config: 数据源配置，必需包含 type

        Raises:
            ValueError: 名称或配置为空
            ValidationError: 配置校验失败
            ConfigError: 数据源已存在或保存失败

        Example:
            >>> manager.add_connection("orders", {
            ...     "type": "postgresql", "host": "db.local", "database": "orders",
            ...     "username": "app", "password": "secret",
            ... })
        """
        if not name or not isinstance(name, str):
            raise ValueError(ERROR_EMPTY_CONNECTION_NAME)
        if not connection_config or not isinstance(connection_config, dict):
            raise ValueError(ERROR_INVALID_CONFIG_DICT)
        validate_connection_config(connection_config)

        config = self._load_config()
        if name in config["connections"]:
            raise ConfigError(f"数据源已存在: {name}", config_key=name)

        crypto = self._require_crypto()
        config["connections"][name] = {
            key: crypto.encrypt(self._serialize_value(value))
            for key, value in connection_config.items()
        }
        self._save_config(config)
        logger.info(f"数据源已添加: {name}")

    def get_connection(self, name: str) -> Dict[str, Any]:
        """
        获取解密后的数据源配置

        Raises:
            ValueError: 名称为空
            ConfigError: 数据源不存在
            CryptoError: 解密失败
        """
        if not name or not isinstance(name, str):
            raise ValueError(ERROR_EMPTY_CONNECTION_NAME)

        config = self._load_config()
        if name not in config["connections"]:
            raise ConfigError(f"数据源不存在: {name}", config_key=name)

        crypto = self._require_crypto()
        decrypted = {
            key: self._deserialize_value(crypto.decrypt(value))
            for key, value in config["connections"][name].items()
        }
        logger.debug(f"数据源已读取: {name}")
        return decrypted

    def update_connection(self, name: str, connection_config: Dict[str, Any]) -> None:
        """
        用新配置替换已有数据源

        Raises:
            ValueError: 名称或配置为空
            ValidationError: 配置校验失败
            ConfigError: 数据源不存在
        """
        if not name or not isinstance(name, str):
            raise ValueError(ERROR_EMPTY_CONNECTION_NAME)
        if not connection_config or not isinstance(connection_config, dict):
            raise ValueError(ERROR_INVALID_CONFIG_DICT)
        validate_connection_config(connection_config)

        config = self._load_config()
        if name not in config["connections"]:
            raise ConfigError(f"数据源不存在: {name}", config_key=name)

        crypto = self._require_crypto()
        config["connections"][name] = {
            key: crypto.encrypt(self._serialize_value(value))
            for key, value in connection_config.items()
        }
        self._save_config(config)
        logger.info(f"数据源已更新: {name}")

    def remove_connection(self, name: str) -> None:
        """
        删除数据源

        Raises:
            ValueError: 名称为空
            ConfigError: 数据源不存在
        """
        if not name or not isinstance(name, str):
            raise ValueError(ERROR_EMPTY_CONNECTION_NAME)

        config = self._load_config()
        if name not in config["connections"]:
            raise ConfigError(f"数据源不存在: {name}", config_key=name)

        del config["connections"][name]
        self._save_config(config)
        logger.info(f"数据源已删除: {name}")

    def list_connections(self) -> List[str]:
        return list(self._load_config()["connections"].keys())

    def connection_exists(self, name: str) -> bool:
        try:
            return name in self._load_config()["connections"]
        except ConfigError:
            return False

    # ------------------------------------------------------------------
    # 设置
    # ------------------------------------------------------------------

    def get_settings(self) -> Dict[str, Any]:
        """返回执行器设置，缺失项使用默认值"""
        return {**DEFAULT_SETTINGS, **self._load_config()["settings"]}

    def update_settings(self, **settings: Any) -> Dict[str, Any]:
        """
        更新执行器设置

        Args:
            **settings: batch_size、slow_query_ms 或 log_level

        Returns:
            Dict[str, Any]: 更新后的全部设置

        Raises:
            ValidationError: 未知设置项或取值无效
        """
        for key, value in settings.items():
            if key not in DEFAULT_SETTINGS:
                raise ValidationError(
                    f"未知设置项: {key}", field_name=key, expected=", ".join(DEFAULT_SETTINGS)
                )
            if key in ("batch_size", "slow_query_ms"):
                if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                    raise ValidationError(
                        f"{key} 必须是非负整数: {value!r}", field_name=key, expected="int >= 0"
                    )
                if key == "batch_size" and value == 0:
                    raise ValidationError("batch_size 必须大于0", field_name=key, expected="int > 0")
            if key == "log_level":
                if str(value).upper() not in VALID_LOG_LEVELS:
                    raise ValidationError(
                        f"无效的日志级别: {value}",
                        field_name=key,
                        expected=", ".join(VALID_LOG_LEVELS),
                    )
                settings[key] = str(value).upper()

        config = self._load_config()
        config["settings"] = {**DEFAULT_SETTINGS, **config["settings"], **settings}
        self._save_config(config)
        logger.info(f"执行器设置已更新: {', '.join(settings)}")
        return dict(config["settings"])

    # ------------------------------------------------------------------
    # 信息与备份
    # ------------------------------------------------------------------

    def get_config_info(self) -> Dict[str, Any]:
        config = self._load_config()
        return {
            "version": config["version"],
            "app_name": config["app_name"],
            "connection_count": len(config["connections"]),
            "created": config["metadata"]["created"],
            "last_modified": config["metadata"]["last_modified"],
            "config_file": str(self.config_path),
        }

    def backup_config(self, backup_path: Optional[Path] = None) -> Path:
        """
        备份配置文件

        Args:
            backup_path: 备份路径，None 时在配置目录下按时间戳生成

        Raises:
            ConfigError: 复制失败
        """
        if backup_path is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            backup_path = self.config_dir / f"{self.config_file}.backup.{timestamp}"
        try:
            shutil.copy2(self.config_path, backup_path)
        except OSError as e:
            logger.error(f"备份配置文件失败: {str(e)}")
            raise ConfigError(
                f"配置文件备份失败: {str(e)}", config_file=str(self.config_path)
            ) from e
        logger.info(f"配置文件已备份: {backup_path}")
        return Path(backup_path)

    def __repr__(self) -> str:
        return f"ConfigManager(app_name='{self.app_name}', config_path='{self.config_path}')"
