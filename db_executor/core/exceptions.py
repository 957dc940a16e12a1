"""
查询执行器异常模块

定义执行器使用的异常层次结构。所有库内错误都继承自 DBExecutorError，
携带错误代码与详细信息字典，便于日志记录和上层分类处理。

层次结构:
    DBExecutorError
    ├── ConfigError
    ├── CryptoError
    ├── ValidationError
    └── DatabaseError
        ├── ConnectionError
        │   └── NullConnectionError
        ├── DriverError
        └── QueryError
            └── ParameterCountError
"""

from typing import Any, Dict, Optional, Sequence


class DBExecutorError(Exception):
    """
    执行器基础异常类

    Attributes:
        message (str): 异常描述信息
        error_code (Optional[str]): 错误代码，用于错误分类
        details (Dict[str, Any]): 详细的错误信息
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def __str__(self) -> str:
        text = f"{self.__class__.__name__}: {self.message}"
        if self.error_code:
            text += f" (错误代码: {self.error_code})"
        return text

    def to_dict(self) -> Dict[str, Any]:
        """
        将异常信息转换为字典格式

        Returns:
            包含异常类型、信息、错误代码和详细信息的字典
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }


class ConfigError(DBExecutorError):
    """
    配置相关异常

    数据源配置文件的读取、解析、验证和保存失败时抛出。
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        config_file: Optional[str] = None,
        config_key: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, error_code, details)
        self.config_file = config_file
        self.config_key = config_key

        if config_file:
            self.details["config_file"] = config_file
        if config_key:
            self.details["config_key"] = config_key


class CryptoError(DBExecutorError):
    """加密或解密配置数据失败"""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, error_code, details)
        self.operation = operation
        if operation:
            self.details["operation"] = operation


class ValidationError(DBExecutorError):
    """
    数据验证异常

    用于配置项和数据源定义的校验失败。调用参数不合法（例如切片范围错误）
    使用内置的 ValueError。
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        field_name: Optional[str] = None,
        expected: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, error_code, details)
        self.field_name = field_name
        self.expected = expected

        if field_name:
            self.details["field_name"] = field_name
        if expected:
            self.details["expected"] = expected


class DatabaseError(DBExecutorError):
    """
    数据库操作基础异常

    Args:
        message: 异常描述信息
        error_code: 错误代码
        database_type: 数据库类型（sqlite、postgresql 等）
        operation: 操作类型（acquire、query、commit 等）
        details: 详细的错误信息
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        database_type: Optional[str] = None,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, error_code, details)
        self.database_type = database_type
        self.operation = operation

        if database_type:
            self.details["database_type"] = database_type
        if operation:
            self.details["operation"] = operation


class ConnectionError(DatabaseError):
    """
    连接获取异常

    连接池无法提供连接（超时、创建失败、已关闭）时抛出。
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        pool_name: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, error_code, operation="acquire", details=details)
        self.pool_name = pool_name
        if pool_name:
            self.details["pool_name"] = pool_name


class NullConnectionError(ConnectionError):
    """连接池返回了空连接"""

    def __init__(self, pool_name: Optional[str] = None) -> None:
        super().__init__(
            "连接池返回了空连接，无法执行语句",
            error_code="NULL_CONNECTION",
            pool_name=pool_name,
        )


class DriverError(DatabaseError):
    """
    驱动能力异常

    当前驱动或方言不支持所请求的功能（例如存储过程调用、指定生成键列）。
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        driver_name: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, error_code, database_type=driver_name, details=details)
        self.driver_name = driver_name


class QueryError(DatabaseError):
    """
    语句执行异常

    query 属性保存完整的 SQL 文本，parameters 保存调用方传入的参数列表；
    details 中只放入截断后的预览。
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        query: Optional[str] = None,
        parameters: Optional[Sequence[Any]] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, error_code, operation="query", details=details)
        self.query = query
        self.parameters = list(parameters) if parameters is not None else None

        if query:
            self.details["query_preview"] = self._get_query_preview(query)
        if self.parameters is not None:
            self.details["parameter_count"] = len(self.parameters)

    def _get_query_preview(self, query: str, max_length: int = 100) -> str:
        if len(query) <= max_length:
            return query
        return query[:max_length] + "..."


class ParameterCountError(QueryError):
    """
    参数个数与占位符个数不一致

    在语句发送到数据库之前同步抛出。query 为发现不一致时已部分改写的模板。
    """

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        parameters: Optional[Sequence[Any]] = None,
        expected: Optional[int] = None,
        actual: Optional[int] = None,
    ) -> None:
        super().__init__(
            message,
            error_code="PARAMETER_COUNT_MISMATCH",
            query=query,
            parameters=parameters,
        )
        self.expected = expected
        self.actual = actual
        if expected is not None:
            self.details["expected"] = expected
        if actual is not None:
            self.details["actual"] = actual
