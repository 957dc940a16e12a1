"""
配置加密

数据源配置中的每个字段在写入磁盘前都经过 Fernet 对称加密，
密钥由随机口令和盐值经 PBKDF2-HMAC-SHA256 派生。
"""

import base64
import secrets
from typing import Any, Dict

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..utils.logging_utils import get_logger
from .exceptions import CryptoError

logger = get_logger(__name__)


class CryptoManager:
    """
    基于 Fernet 的字符串加解密

    Attributes:
        DEFAULT_SALT_LENGTH (int): 盐值字节数
        DEFAULT_PASSWORD_LENGTH (int): 自动生成口令的随机字节数
        DEFAULT_ITERATIONS (int): PBKDF2 迭代次数

    Example:
        >>> crypto = CryptoManager()
        >>> token = crypto.encrypt("secret")
        >>> crypto.decrypt(token)
        'secret'
    """

    DEFAULT_SALT_LENGTH = 16
    DEFAULT_PASSWORD_LENGTH = 32
    DEFAULT_ITERATIONS = 480000

    def __init__(
        self,
        password: str | None = None,
        salt: bytes | None = None,
        iterations: int | None = None,
    ) -> None:
        """
        Args:
            password: 口令，None 时随机生成
            salt: 盐值，None 时随机生成
            iterations: PBKDF2 迭代次数，None 使用 DEFAULT_ITERATIONS

        Raises:
            CryptoError: 密钥派生失败
        """
        self.password = password or base64.urlsafe_b64encode(
            secrets.token_bytes(self.DEFAULT_PASSWORD_LENGTH)
        ).decode("utf-8")
        self.salt = salt or secrets.token_bytes(self.DEFAULT_SALT_LENGTH)
        self.iterations = iterations or self.DEFAULT_ITERATIONS
        self.fernet = self._create_fernet()
        logger.debug(f"加密管理器初始化成功，迭代次数: {self.iterations}")

    def _create_fernet(self) -> Fernet:
        try:
            kdf = PBKDF2HMAC(
                algorithm=hashes.SHA256(),
                length=32,
                salt=self.salt,
                iterations=self.iterations,
            )
            key = base64.urlsafe_b64encode(kdf.derive(self.password.encode("utf-8")))
            return Fernet(key)
        except Exception as e:
            logger.error(f"加密密钥派生失败: {str(e)}")
            raise CryptoError(f"加密密钥派生失败: {str(e)}", operation="derive_key") from e

    def encrypt(self, data: str) -> str:
        """
        加密字符串

        Raises:
            ValueError: data 为空或不是字符串
            CryptoError: 加密失败
        """
        if not data or not isinstance(data, str):
            raise ValueError("加密数据不能为空且必须是字符串")
        try:
            token = self.fernet.encrypt(data.encode("utf-8"))
            return base64.urlsafe_b64encode(token).decode("utf-8")
        except Exception as e:
            logger.error(f"数据加密失败: {str(e)}")
            raise CryptoError(f"加密失败: {str(e)}", operation="encrypt") from e

    def decrypt(self, encrypted_data: str) -> str:
        """
        解密 encrypt() 的结果

        Raises:
            ValueError: encrypted_data 为空或不是字符串
            CryptoError: 数据被篡改、密钥不匹配或格式错误
        """
        if not encrypted_data or not isinstance(encrypted_data, str):
            raise ValueError("加密数据不能为空且必须是字符串")
        try:
            token = base64.urlsafe_b64decode(encrypted_data.encode("utf-8"))
            return self.fernet.decrypt(token).decode("utf-8")
        except InvalidToken as e:
            logger.error("解密令牌无效")
            raise CryptoError(
                "解密失败: 加密数据可能被篡改或密钥不匹配", operation="decrypt"
            ) from e
        except Exception as e:
            logger.error(f"数据解密失败: {str(e)}")
            raise CryptoError(f"解密失败: {str(e)}", operation="decrypt") from e

    def get_key_info(self) -> Dict[str, Any]:
        """返回持久化所需的口令、盐值（base64）和迭代次数"""
        return {
            "salt": base64.urlsafe_b64encode(self.salt).decode("utf-8"),
            "password": self.password,
            "iterations": self.iterations,
        }

    @classmethod
    def from_saved_key(
        cls, password: str, salt: str, iterations: int | None = None
    ) -> "CryptoManager":
        """
        由 get_key_info() 保存的信息恢复加密管理器

        Raises:
            ValueError: 口令或盐值为空
            CryptoError: 盐值格式错误或密钥派生失败
        """
        if not password or not salt:
            raise ValueError("密码和盐值不能为空")
        try:
            salt_bytes = base64.urlsafe_b64decode(salt.encode("utf-8"))
        except Exception as e:
            logger.error(f"盐值解码失败: {str(e)}")
            raise CryptoError(f"密钥恢复失败: {str(e)}", operation="load_key") from e
        return cls(password, salt_bytes, iterations)

    def __repr__(self) -> str:
        return f"<CryptoManager iterations={self.iterations}>"
