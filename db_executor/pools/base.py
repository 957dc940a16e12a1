"""
连接池接口

执行器只依赖 ConnectionPool 的三个方法: acquire() 获取连接，
release() 归还连接，shutdown() 关闭连接池。连接对象遵循 DB-API 2.0
（PEP 249），下面的 Protocol 只描述执行器实际用到的部分。
"""

from abc import ABC, abstractmethod
from typing import Any, Optional, Protocol, Sequence


class DBAPICursor(Protocol):
    """DB-API 游标（执行器使用的最小接口）"""

    description: Optional[Sequence[Sequence[Any]]]
    rowcount: int

    def execute(self, operation: str, parameters: Sequence[Any] = ...) -> Any: ...

    def fetchone(self) -> Optional[Sequence[Any]]: ...

    def fetchall(self) -> Sequence[Sequence[Any]]: ...

    def close(self) -> None: ...


class DBAPIConnection(Protocol):
    """DB-API 连接（执行器使用的最小接口）"""

    def cursor(self) -> DBAPICursor: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def close(self) -> None: ...


class ConnectionPool(ABC):
    """
    连接池抽象基类

    acquire() 可能返回 None（由执行器作为空连接错误处理），
    无法提供连接时应抛出 ConnectionError。
    """

    name: str = "pool"

    @abstractmethod
    def acquire(self) -> Optional[DBAPIConnection]:
        """获取一个连接"""

    @abstractmethod
    def release(self, connection: DBAPIConnection) -> None:
        """归还连接"""

    @abstractmethod
    def shutdown(self) -> None:
        """关闭连接池并释放所有连接"""

    def __enter__(self) -> "ConnectionPool":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name})"
