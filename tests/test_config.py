"""
数据源配置管理测试
"""

import tomllib

import pytest

from db_executor.core.config import (
    DEFAULT_SETTINGS,
    KEY_FILE_NAME,
    ConfigManager,
    validate_connection_config,
)
from db_executor.core.exceptions import ConfigError, ValidationError

POSTGRES_CONFIG = {
    "type": "postgresql",
    "host": "db.local",
    "port": 5432,
    "database": "orders",
    "username": "app",
    "password": "secret",
    "pool_config": {"pool_size": 4},
}


class TestValidateConnectionConfig:
    """validate_connection_config测试类"""

    def test_sqlite_needs_no_server_fields(self):
        """测试 SQLite 不需要服务器字段"""
        validate_connection_config({"type": "sqlite", "database": "app.db"})

    def test_unsupported_type(self):
        """测试不支持的数据库类型"""
        with pytest.raises(ValidationError) as exc_info:
            validate_connection_config({"type": "db2"})
        assert exc_info.value.field_name == "type"

    def test_missing_fields(self):
        """测试缺少必需字段"""
        with pytest.raises(ValidationError):
            validate_connection_config({"type": "mysql", "host": "h", "username": "u"})

    def test_oracle_requires_service_name(self):
        """测试 Oracle 需要服务名"""
        config = {"type": "oracle", "host": "h", "username": "u", "password": "p", "database": "d"}
        with pytest.raises(ValidationError) as exc_info:
            validate_connection_config(config)
        assert exc_info.value.field_name == "service_name"


class TestConfigManager:
    """ConfigManager测试类"""

    @pytest.fixture(autouse=True)
    def setup(self, tmp_path):
        """在临时目录中创建配置管理器"""
        self.config_dir = tmp_path / "config"
        self.manager = ConfigManager(config_dir=self.config_dir)

    def test_files_created(self):
        """测试创建配置文件和密钥文件"""
        assert self.manager.config_path.exists()
        assert (self.config_dir / KEY_FILE_NAME).exists()
        assert self.manager.list_connections() == []

    def test_add_and_get_connection(self):
        """测试添加并读取数据源，保留字段类型"""
        self.manager.add_connection("orders", POSTGRES_CONFIG)

        loaded = self.manager.get_connection("orders")

        assert loaded == POSTGRES_CONFIG
        assert isinstance(loaded["port"], int)

    def test_values_encrypted_on_disk(self):
        """测试磁盘上的字段已加密"""
        self.manager.add_connection("orders", POSTGRES_CONFIG)

        raw = self.manager.config_path.read_text(encoding="utf-8")

        assert "secret" not in raw
        assert "db.local" not in raw

    def test_duplicate_connection(self):
        """测试重复添加数据源"""
        self.manager.add_connection("orders", POSTGRES_CONFIG)

        with pytest.raises(ConfigError):
            self.manager.add_connection("orders", POSTGRES_CONFIG)

    def test_invalid_arguments(self):
        """测试非法参数"""
        with pytest.raises(ValueError):
            self.manager.add_connection("", POSTGRES_CONFIG)
        with pytest.raises(ValueError):
            self.manager.add_connection("orders", {})
        with pytest.raises(ValidationError):
            self.manager.add_connection("orders", {"type": "postgresql"})

    def test_missing_connection(self):
        """测试读取不存在的数据源"""
        with pytest.raises(ConfigError):
            self.manager.get_connection("missing")
        with pytest.raises(ConfigError):
            self.manager.remove_connection("missing")
        with pytest.raises(ConfigError):
            self.manager.update_connection("missing", POSTGRES_CONFIG)

    def test_update_and_remove(self):
        """测试更新和删除数据源"""
        self.manager.add_connection("orders", POSTGRES_CONFIG)
        self.manager.update_connection("orders", {"type": "sqlite", "database": "orders.db"})

        assert self.manager.get_connection("orders") == {"type": "sqlite", "database": "orders.db"}
        assert self.manager.connection_exists("orders")

        self.manager.remove_connection("orders")

        assert not self.manager.connection_exists("orders")

    def test_persistence_across_instances(self):
        """测试新实例复用密钥读取已有配置"""
        self.manager.add_connection("local", {"type": "sqlite", "database": "app.db"})

        reopened = ConfigManager(config_dir=self.config_dir)

        assert reopened.list_connections() == ["local"]
        assert reopened.get_connection("local")["database"] == "app.db"

    def test_settings(self):
        """测试执行器设置"""
        assert self.manager.get_settings() == DEFAULT_SETTINGS

        updated = self.manager.update_settings(batch_size=200, log_level="debug")

        assert updated["batch_size"] == 200
        assert updated["log_level"] == "DEBUG"
        assert self.manager.get_settings()["slow_query_ms"] == DEFAULT_SETTINGS["slow_query_ms"]

    @pytest.mark.parametrize(
        "settings",
        [
            {"unknown": 1},
            {"batch_size": 0},
            {"batch_size": -5},
            {"slow_query_ms": "fast"},
            {"slow_query_ms": True},
            {"log_level": "LOUD"},
        ],
    )
    def test_invalid_settings(self, settings):
        """测试非法设置"""
        with pytest.raises(ValidationError):
            self.manager.update_settings(**settings)

    def test_config_info(self):
        """测试配置信息"""
        self.manager.add_connection("local", {"type": "sqlite"})

        info = self.manager.get_config_info()

        assert info["connection_count"] == 1
        assert info["app_name"] == "db_executor"
        assert info["config_file"] == str(self.manager.config_path)

    def test_backup(self, tmp_path):
        """测试备份配置文件"""
        self.manager.add_connection("local", {"type": "sqlite"})

        default_backup = self.manager.backup_config()
        explicit_backup = self.manager.backup_config(tmp_path / "copy.toml")

        assert default_backup.parent == self.config_dir
        assert explicit_backup == tmp_path / "copy.toml"
        with open(explicit_backup, "rb") as f:
            assert "local" in tomllib.load(f)["connections"]

    def test_corrupted_file(self):
        """测试配置文件格式错误"""
        self.manager.config_path.write_text("not = [valid", encoding="utf-8")

        with pytest.raises(ConfigError):
            self.manager.list_connections()
        assert not self.manager.connection_exists("local")


if __name__ == "__main__":
    pytest.main()
