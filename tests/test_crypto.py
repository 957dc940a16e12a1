"""
配置加密测试
"""

import pytest

from db_executor.core.crypto import CryptoManager
from db_executor.core.exceptions import CryptoError

# 测试中使用较少的迭代次数以加快密钥派生
FAST_ITERATIONS = 1000


class TestCryptoManager:
    """CryptoManager测试类"""

    def setup_method(self):
        """测试方法 setup"""
        self.crypto = CryptoManager(iterations=FAST_ITERATIONS)

    def test_encrypt_decrypt(self):
        """测试加密后可以解密"""
        token = self.crypto.encrypt("数据库密码 secret")

        assert token != "数据库密码 secret"
        assert self.crypto.decrypt(token) == "数据库密码 secret"

    def test_tokens_differ(self):
        """测试同一明文每次加密结果不同"""
        assert self.crypto.encrypt("same") != self.crypto.encrypt("same")

    @pytest.mark.parametrize("value", ["", None, 123])
    def test_invalid_input(self, value):
        """测试空值或非字符串"""
        with pytest.raises(ValueError):
            self.crypto.encrypt(value)
        with pytest.raises(ValueError):
            self.crypto.decrypt(value)

    def test_invalid_token(self):
        """测试无效的密文"""
        with pytest.raises(CryptoError):
            self.crypto.decrypt("not-a-valid-token")

    def test_wrong_key(self):
        """测试使用其他密钥解密"""
        token = self.crypto.encrypt("secret")
        other = CryptoManager(iterations=FAST_ITERATIONS)

        with pytest.raises(CryptoError) as exc_info:
            other.decrypt(token)
        assert exc_info.value.operation == "decrypt"

    def test_restore_from_saved_key(self):
        """测试由保存的密钥信息恢复"""
        token = self.crypto.encrypt("secret")
        key_info = self.crypto.get_key_info()

        restored = CryptoManager.from_saved_key(
            key_info["password"], key_info["salt"], key_info["iterations"]
        )

        assert key_info["iterations"] == FAST_ITERATIONS
        assert restored.decrypt(token) == "secret"

    def test_from_saved_key_requires_values(self):
        """测试恢复密钥时口令和盐值不能为空"""
        with pytest.raises(ValueError):
            CryptoManager.from_saved_key("", "c2FsdA==")
        with pytest.raises(ValueError):
            CryptoManager.from_saved_key("password", "")

    def test_default_iterations(self):
        """测试默认迭代次数"""
        assert CryptoManager.DEFAULT_ITERATIONS == 480000
        assert "iterations=1000" in repr(self.crypto)


if __name__ == "__main__":
    pytest.main()
