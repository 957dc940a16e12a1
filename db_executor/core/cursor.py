"""
游标适配器

ResultSetIterator 把 DB-API 游标包装为 CloseableIterator:
构造时预取第一行，next() 对当前行执行转换后再预取下一行，
没有下一行时在返回前关闭。关闭迭代器即关闭所属的 Statement。
"""

from typing import Any, Callable, List, Optional, Sequence, Tuple

from .iterators import CloseableIterator, T


class ResultSetIterator(CloseableIterator[T]):
    """
    结果集迭代器

    Args:
        statement: 拥有游标的语句对象（需提供 close()）
        cursor: 已执行查询的 DB-API 游标
        transform: 行转换函数，只在 next() 中调用
        wrap: 把原始行包装为行对象（例如 RichRow）的函数，默认原样返回
        scrollable: 游标是否支持 scroll(n, "relative")
    """

    def __init__(
        self,
        statement: Any,
        cursor: Any,
        transform: Callable[[Any], T],
        wrap: Optional[Callable[[Sequence[Any]], Any]] = None,
        scrollable: bool = False,
    ) -> None:
        super().__init__()
        self._statement = statement
        self._cursor = cursor
        self._transform = transform
        self._wrap = wrap or (lambda row: row)
        self._scrollable = scrollable
        self._current: Any = None
        self._has_row = False
        self._advance()
        if not self._has_row:
            self.close()

    @property
    def statement(self) -> Any:
        return self._statement

    def _advance(self) -> None:
        try:
            row = self._cursor.fetchone()
        except Exception:
            self.close()
            raise
        self._has_row = row is not None
        self._current = row

    def _has_next(self) -> bool:
        return self._has_row

    def _next(self) -> T:
        value = self._transform(self._wrap(self._current))
        self._advance()
        if not self._has_row:
            self.close()
        return value

    def _skip(self, count: int) -> None:
        if count <= 0 or not self.has_next():
            return
        # 当前行已预取，跳过它之后还需要再跳过 count - 1 行
        remaining = count - 1
        if self._scrollable and remaining > 0:
            try:
                self._cursor.scroll(remaining, "relative")
            except IndexError:
                self.close()
                return
            except Exception:
                self.close()
                raise
        else:
            while remaining > 0:
                self._advance()
                if not self._has_row:
                    break
                remaining -= 1
            if not self._has_row:
                self.close()
                return
        self._advance()
        if not self._has_row:
            self.close()

    def _release(self) -> None:
        self._current = None
        self._has_row = False
        self._statement.close()


class MaterializedCursor:
    """
    内存中的只读游标

    提供 DB-API 游标的 fetchone / fetchall / description / close，
    用于生成键等已经完整读取的结果。
    """

    def __init__(
        self,
        rows: Sequence[Sequence[Any]],
        description: Optional[Sequence[Tuple[Any, ...]]] = None,
    ) -> None:
        self._rows: List[Tuple[Any, ...]] = [tuple(row) for row in rows]
        self.description = description
        self.rowcount = len(self._rows)
        self._position = 0
        self.closed = False

    def fetchone(self) -> Optional[Tuple[Any, ...]]:
        if self._position >= len(self._rows):
            return None
        row = self._rows[self._position]
        self._position += 1
        return row

    def fetchall(self) -> List[Tuple[Any, ...]]:
        rows = self._rows[self._position:]
        self._position = len(self._rows)
        return rows

    def close(self) -> None:
        self.closed = True
