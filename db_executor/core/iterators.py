"""
可关闭的惰性迭代器

CloseableIterator 是对底层资源（游标、语句、连接）的单次顺序遍历。
基本规则:

- close() 幂等，底层释放动作最多执行一次；
- close() 之后 has_next() 恒为 False；
- 底层报告没有更多元素时迭代器自动关闭；
- 越过末尾调用 next() 抛出 StopIteration("next on empty iterator")；
- 中途放弃遍历不会自动关闭，需要使用 manage() 或 with 语句。

组合操作（map、filter、slice、zip 等）返回新的迭代器，关闭结果会关闭
其所有上游迭代器；原迭代器交给组合操作后即视为已被消费。终结操作
（to_list、find、exists 等）在返回前无条件关闭迭代器。

Example:
    >>> rows = executor.select("SELECT name FROM users", transform=lambda r: r.get_string(1))
    >>> with rows:
    ...     first_ten = rows.slice(0, 10).to_list()
"""

from typing import (
    Any,
    Callable,
    Generic,
    Iterable,
    Iterator,
    List,
    Optional,
    Tuple,
    TypeVar,
    Union,
)

from ..utils.logging_utils import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
U = TypeVar("U")
V = TypeVar("V")

_MISSING: Any = object()


class CloseableIterator(Generic[T]):
    """
    持有底层资源的惰性迭代器基类

    子类实现三个钩子:
        _has_next(): 是否还有元素（可以预读）
        _next(): 返回下一个元素，只在 _has_next() 为 True 后调用
        _release(): 释放底层资源，最多调用一次
    """

    def __init__(self) -> None:
        self._closed = False
        self._close_callbacks: List[Callable[[], None]] = []

    # ------------------------------------------------------------------
    # 迭代协议
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        """迭代器是否已关闭"""
        return self._closed

    def has_next(self) -> bool:
        """
        是否还有下一个元素

        底层耗尽时自动关闭迭代器；关闭后恒返回 False。
        """
        if self._closed:
            return False
        if self._has_next():
            return True
        self.close()
        return False

    def next(self) -> T:
        """
        返回下一个元素

        Raises:
            StopIteration: 迭代器已耗尽或已关闭
        """
        if not self.has_next():
            raise StopIteration("next on empty iterator")
        return self._next()

    def __next__(self) -> T:
        return self.next()

    def __iter__(self) -> Iterator[T]:
        return self

    # ------------------------------------------------------------------
    # 资源管理
    # ------------------------------------------------------------------

    def close(self) -> None:
        """
        关闭迭代器并释放底层资源

        重复调用不会再次释放。释放失败时异常只抛出一次，之后的调用直接返回。
        """
        if self._closed:
            return
        self._closed = True
        callbacks, self._close_callbacks = self._close_callbacks, []
        try:
            self._release()
        finally:
            for callback in callbacks:
                callback()

    def on_close(self, callback: Callable[[], None]) -> None:
        """
        注册关闭时额外执行的释放动作

        在 _release() 之后执行；迭代器已关闭时立即执行。
        """
        if self._closed:
            callback()
        else:
            self._close_callbacks.append(callback)

    def __enter__(self) -> "CloseableIterator[T]":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is None:
            self.close()
        else:
            _close_quietly(self)

    def __del__(self) -> None:
        if getattr(self, "_closed", True):
            return
        try:
            logger.warning(f"{self.__class__.__name__} 未被显式关闭，由垃圾回收释放资源")
            self.close()
        except Exception as e:
            logger.warning(f"垃圾回收时关闭 {self.__class__.__name__} 失败: {e}")

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<{self.__class__.__name__} {state}>"

    # ------------------------------------------------------------------
    # 子类钩子
    # ------------------------------------------------------------------

    def _has_next(self) -> bool:
        raise NotImplementedError

    def _next(self) -> T:
        raise NotImplementedError

    def _release(self) -> None:
        raise NotImplementedError

    def _skip(self, count: int) -> None:
        """丢弃最多 count 个元素，子类可以用原生方式覆盖"""
        while count > 0 and self.has_next():
            self._next()
            count -= 1

    # ------------------------------------------------------------------
    # 组合操作
    # ------------------------------------------------------------------

    def map(self, func: Callable[[T], U]) -> "CloseableIterator[U]":
        return _Mapped(self, func)

    def filter(self, predicate: Callable[[T], bool]) -> "CloseableIterator[T]":
        return _Filtered(self, predicate, True)

    def filter_not(self, predicate: Callable[[T], bool]) -> "CloseableIterator[T]":
        return _Filtered(self, predicate, False)

    def flat_map(self, func: Callable[[T], Iterable[U]]) -> "CloseableIterator[U]":
        """
        将每个元素映射为一个可迭代对象并依次展开

        func 返回 CloseableIterator 时，它在耗尽或结果关闭时被关闭。
        """
        return _FlatMapped(self, func)

    def collect(
        self, predicate: Callable[[T], bool], func: Callable[[T], U]
    ) -> "CloseableIterator[U]":
        """只对满足 predicate 的元素应用 func"""
        return _Mapped(_Filtered(self, predicate, True), func)

    def take_while(self, predicate: Callable[[T], bool]) -> "CloseableIterator[T]":
        return _TakeWhile(self, predicate)

    def drop_while(self, predicate: Callable[[T], bool]) -> "CloseableIterator[T]":
        return _DropWhile(self, predicate)

    def slice(self, from_: int, to: int) -> "CloseableIterator[T]":
        """
        返回位置 [from_, to) 的元素

        前 from_ 个元素在调用时立即跳过；结果在取满 to - from_ 个元素
        或上游耗尽时自动关闭。

        Raises:
            ValueError: from_ 为负数或 from_ > to
        """
        _check_slice(from_, to)
        self._skip(from_)
        return _Sliced(self, to - from_)

    def take(self, count: int) -> "CloseableIterator[T]":
        return self.slice(0, max(count, 0))

    def drop(self, count: int) -> "CloseableIterator[T]":
        self._skip(max(count, 0))
        return _Sliced(self, None)

    def zip(self, that: Iterable[U]) -> "CloseableIterator[Tuple[T, U]]":
        """成对组合，长度取两者较短者，结束时关闭两侧"""
        return _Zipped(self, _as_closeable(that))

    def zip_all(
        self, that: Iterable[U], this_elem: T, that_elem: U
    ) -> "CloseableIterator[Tuple[T, U]]":
        """成对组合，长度取两者较长者，较短一侧用填充值补齐"""
        return _Zipped(self, _as_closeable(that), this_elem, that_elem, fill=True)

    def zip_with_index(self, start: int = 0) -> "CloseableIterator[Tuple[T, int]]":
        return _Indexed(self, start)

    def patch(
        self, from_: int, patch_elems: Iterable[T], replaced: int
    ) -> "CloseableIterator[T]":
        """
        从位置 from_ 起用 patch_elems 替换 replaced 个元素

        from_ 超过末尾时替换内容追加在最后；replaced 超过剩余元素时多余部分忽略。
        """
        return _Patched(self, max(from_, 0), _as_closeable(patch_elems), max(replaced, 0))

    def scan_left(self, initial: U, op: Callable[[U, T], U]) -> "CloseableIterator[U]":
        """依次产出 initial 以及每一步的累积结果"""
        return _ScanLeft(self, initial, op)

    def pad_to(self, length: int, elem: T) -> "CloseableIterator[T]":
        return _PaddedTo(self, length, elem)

    def buffered(self) -> "BufferedIterator[T]":
        """返回可以用 head() 预读下一个元素的迭代器"""
        return BufferedIterator(self)

    def grouped(self, size: int) -> "CloseableIterator[List[T]]":
        return self.sliding(size, size)

    def sliding(self, size: int, step: int = 1) -> "CloseableIterator[List[T]]":
        """
        滑动窗口，最后一个窗口可能不满

        Raises:
            ValueError: size 或 step 不是正整数
        """
        if size <= 0 or step <= 0:
            raise ValueError(f"窗口大小和步长必须为正整数: size={size}, step={step}")
        return _Sliding(self, size, step)

    # ------------------------------------------------------------------
    # 终结操作（返回前关闭迭代器）
    # ------------------------------------------------------------------

    def to_list(self) -> List[T]:
        try:
            return [value for value in self]
        finally:
            self.close()

    def foreach(self, func: Callable[[T], Any]) -> None:
        try:
            for value in self:
                func(value)
        finally:
            self.close()

    def first(self, default: Optional[T] = None) -> Optional[T]:
        """返回第一个元素（没有时返回 default），然后关闭"""
        try:
            return self.next() if self.has_next() else default
        finally:
            self.close()

    def find(self, predicate: Callable[[T], bool]) -> Optional[T]:
        try:
            for value in self:
                if predicate(value):
                    return value
            return None
        finally:
            self.close()

    def exists(self, predicate: Callable[[T], bool]) -> bool:
        try:
            return any(predicate(value) for value in self)
        finally:
            self.close()

    def for_all(self, predicate: Callable[[T], bool]) -> bool:
        try:
            return all(predicate(value) for value in self)
        finally:
            self.close()

    def contains(self, elem: Any) -> bool:
        return self.exists(lambda value: value == elem)

    def index_where(self, predicate: Callable[[T], bool]) -> int:
        """返回第一个满足条件的元素位置，没有时返回 -1"""
        try:
            for index, value in enumerate(self):
                if predicate(value):
                    return index
            return -1
        finally:
            self.close()

    def index_of(self, elem: Any) -> int:
        return self.index_where(lambda value: value == elem)

    def count(self, predicate: Optional[Callable[[T], bool]] = None) -> int:
        try:
            if predicate is None:
                return sum(1 for _ in self)
            return sum(1 for value in self if predicate(value))
        finally:
            self.close()

    def fold_left(self, initial: U, op: Callable[[U, T], U]) -> U:
        try:
            result = initial
            for value in self:
                result = op(result, value)
            return result
        finally:
            self.close()

    def reduce(self, op: Callable[[T, T], T]) -> T:
        """
        Raises:
            ValueError: 迭代器为空
        """
        try:
            if not self.has_next():
                raise ValueError("reduce on empty iterator")
            result = self.next()
            for value in self:
                result = op(result, value)
            return result
        finally:
            self.close()

    def max(self, key: Optional[Callable[[T], Any]] = None) -> T:
        try:
            return max(self, key=key) if key else max(self)
        finally:
            self.close()

    def min(self, key: Optional[Callable[[T], Any]] = None) -> T:
        try:
            return min(self, key=key) if key else min(self)
        finally:
            self.close()

    def same_elements(self, that: Iterable[Any]) -> bool:
        """逐个比较两侧元素，结束后关闭两侧"""
        other = _as_closeable(that)
        try:
            while self.has_next() and other.has_next():
                if self.next() != other.next():
                    return False
            return not self.has_next() and not other.has_next()
        finally:
            try:
                self.close()
            finally:
                other.close()

    def mk_string(self, sep: str = "", start: str = "", end: str = "") -> str:
        try:
            return start + sep.join(str(value) for value in self) + end
        finally:
            self.close()


# ----------------------------------------------------------------------
# 适配器
# ----------------------------------------------------------------------


class _IterableIterator(CloseableIterator[T]):
    """把普通可迭代对象包装为 CloseableIterator，关闭时只执行 on_close"""

    def __init__(
        self, iterable: Iterable[T], on_close: Optional[Callable[[], None]] = None
    ) -> None:
        super().__init__()
        self._iterator = iter(iterable)
        self._head: Any = _MISSING
        self._release_hook = on_close

    def _has_next(self) -> bool:
        if self._head is _MISSING:
            self._head = next(self._iterator, _MISSING)
        return self._head is not _MISSING

    def _next(self) -> T:
        value, self._head = self._head, _MISSING
        return value

    def _release(self) -> None:
        self._head = _MISSING
        if self._release_hook is not None:
            self._release_hook()


class _Adapter(CloseableIterator[U]):
    """包装一个上游迭代器，关闭时关闭上游"""

    def __init__(self, parent: CloseableIterator[Any]) -> None:
        super().__init__()
        self._parent = parent

    def _has_next(self) -> bool:
        return self._parent.has_next()

    def _next(self) -> U:
        return self._parent.next()

    def _release(self) -> None:
        self._parent.close()


class _BinaryAdapter(_Adapter[U]):
    """包装两个迭代器，关闭时两侧都关闭"""

    def __init__(self, parent: CloseableIterator[Any], other: CloseableIterator[Any]) -> None:
        super().__init__(parent)
        self._other = other

    def _release(self) -> None:
        try:
            self._parent.close()
        finally:
            self._other.close()


class _Mapped(_Adapter[U]):
    def __init__(self, parent: CloseableIterator[T], func: Callable[[T], U]) -> None:
        super().__init__(parent)
        self._func = func

    def _next(self) -> U:
        return self._func(self._parent.next())


class _Filtered(_Adapter[T]):
    def __init__(
        self, parent: CloseableIterator[T], predicate: Callable[[T], bool], expected: bool
    ) -> None:
        super().__init__(parent)
        self._predicate = predicate
        self._expected = expected
        self._head: Any = _MISSING

    def _has_next(self) -> bool:
        while self._head is _MISSING and self._parent.has_next():
            value = self._parent.next()
            if bool(self._predicate(value)) == self._expected:
                self._head = value
        return self._head is not _MISSING

    def _next(self) -> T:
        value, self._head = self._head, _MISSING
        return value


class _FlatMapped(_Adapter[U]):
    def __init__(self, parent: CloseableIterator[T], func: Callable[[T], Iterable[U]]) -> None:
        super().__init__(parent)
        self._func = func
        self._current: Optional[CloseableIterator[U]] = None

    def _has_next(self) -> bool:
        while True:
            if self._current is not None and self._current.has_next():
                return True
            if not self._parent.has_next():
                return False
            self._current = _as_closeable(self._func(self._parent.next()))

    def _next(self) -> U:
        return self._current.next()

    def _release(self) -> None:
        try:
            if self._current is not None:
                self._current.close()
        finally:
            self._parent.close()


class _TakeWhile(_Adapter[T]):
    def __init__(self, parent: CloseableIterator[T], predicate: Callable[[T], bool]) -> None:
        super().__init__(parent)
        self._predicate = predicate
        self._head: Any = _MISSING
        self._done = False

    def _has_next(self) -> bool:
        if self._done:
            return False
        if self._head is not _MISSING:
            return True
        if self._parent.has_next():
            value = self._parent.next()
            if self._predicate(value):
                self._head = value
                return True
        self._done = True
        return False

    def _next(self) -> T:
        value, self._head = self._head, _MISSING
        return value


class _DropWhile(_Adapter[T]):
    def __init__(self, parent: CloseableIterator[T], predicate: Callable[[T], bool]) -> None:
        super().__init__(parent)
        self._predicate = predicate
        self._head: Any = _MISSING
        self._dropping = True

    def _has_next(self) -> bool:
        if self._dropping:
            self._dropping = False
            while self._parent.has_next():
                value = self._parent.next()
                if not self._predicate(value):
                    self._head = value
                    break
        if self._head is not _MISSING:
            return True
        return self._parent.has_next()

    def _next(self) -> T:
        if self._head is not _MISSING:
            value, self._head = self._head, _MISSING
            return value
        return self._parent.next()


class _Sliced(_Adapter[T]):
    """最多产出 remaining 个元素，None 表示不限"""

    def __init__(self, parent: CloseableIterator[T], remaining: Optional[int]) -> None:
        super().__init__(parent)
        self._remaining = remaining
        if remaining == 0:
            self.close()

    def _has_next(self) -> bool:
        if self._remaining is not None and self._remaining <= 0:
            return False
        return self._parent.has_next()

    def _next(self) -> T:
        value = self._parent.next()
        if self._remaining is not None:
            self._remaining -= 1
            if self._remaining == 0:
                self.close()
        return value


class _Zipped(_BinaryAdapter[Tuple[Any, Any]]):
    def __init__(
        self,
        parent: CloseableIterator[Any],
        other: CloseableIterator[Any],
        this_elem: Any = None,
        that_elem: Any = None,
        fill: bool = False,
    ) -> None:
        super().__init__(parent, other)
        self._this_elem = this_elem
        self._that_elem = that_elem
        self._fill = fill

    def _has_next(self) -> bool:
        left = self._parent.has_next()
        right = self._other.has_next()
        return (left or right) if self._fill else (left and right)

    def _next(self) -> Tuple[Any, Any]:
        if self._fill:
            left = self._parent.next() if self._parent.has_next() else self._this_elem
            right = self._other.next() if self._other.has_next() else self._that_elem
        else:
            left = self._parent.next()
            right = self._other.next()
        if not self._has_next():
            self.close()
        return left, right


class _Indexed(_Adapter[Tuple[Any, int]]):
    def __init__(self, parent: CloseableIterator[Any], start: int) -> None:
        super().__init__(parent)
        self._index = start

    def _next(self) -> Tuple[Any, int]:
        value = self._parent.next()
        index = self._index
        self._index += 1
        return value, index


class _Patched(_BinaryAdapter[T]):
    _PREFIX, _PATCH, _REST = range(3)

    def __init__(
        self,
        parent: CloseableIterator[T],
        from_: int,
        patch_elems: CloseableIterator[T],
        replaced: int,
    ) -> None:
        super().__init__(parent, patch_elems)
        self._from = from_
        self._replaced = replaced
        self._index = 0
        self._phase = self._PREFIX

    def _has_next(self) -> bool:
        if self._phase == self._PREFIX:
            if self._index < self._from and self._parent.has_next():
                return True
            self._phase = self._PATCH
            dropped = 0
            while dropped < self._replaced and self._parent.has_next():
                self._parent.next()
                dropped += 1
        if self._phase == self._PATCH:
            if self._other.has_next():
                return True
            self._phase = self._REST
        return self._parent.has_next()

    def _next(self) -> T:
        if self._phase == self._PREFIX:
            self._index += 1
            return self._parent.next()
        if self._phase == self._PATCH:
            return self._other.next()
        return self._parent.next()

    def _release(self) -> None:
        try:
            self._other.close()
        finally:
            self._parent.close()


class _ScanLeft(_Adapter[U]):
    def __init__(
        self, parent: CloseableIterator[T], initial: U, op: Callable[[U, T], U]
    ) -> None:
        super().__init__(parent)
        self._acc = initial
        self._op = op
        self._started = False

    def _has_next(self) -> bool:
        return not self._started or self._parent.has_next()

    def _next(self) -> U:
        if self._started:
            self._acc = self._op(self._acc, self._parent.next())
        self._started = True
        return self._acc


class _PaddedTo(_Adapter[T]):
    def __init__(self, parent: CloseableIterator[T], length: int, elem: T) -> None:
        super().__init__(parent)
        self._length = length
        self._elem = elem
        self._count = 0

    def _has_next(self) -> bool:
        return self._parent.has_next() or self._count < self._length

    def _next(self) -> T:
        self._count += 1
        return self._parent.next() if self._parent.has_next() else self._elem


class BufferedIterator(_Adapter[T]):
    """支持 head() 预读的迭代器"""

    def __init__(self, parent: CloseableIterator[T]) -> None:
        super().__init__(parent)
        self._head: Any = _MISSING

    def head(self) -> T:
        """
        返回下一个元素但不消费它

        Raises:
            StopIteration: 迭代器为空
        """
        if not self.has_next():
            raise StopIteration("head on empty iterator")
        return self._head

    def _has_next(self) -> bool:
        if self._head is _MISSING and self._parent.has_next():
            self._head = self._parent.next()
        return self._head is not _MISSING

    def _next(self) -> T:
        value, self._head = self._head, _MISSING
        return value


class _Sliding(_Adapter[List[T]]):
    def __init__(self, parent: CloseableIterator[T], size: int, step: int) -> None:
        super().__init__(parent)
        self._size = size
        self._step = step
        self._window: List[T] = []
        self._pending: Any = _MISSING
        self._first = True

    def _pull(self, count: int) -> List[T]:
        values = []
        while len(values) < count and self._parent.has_next():
            values.append(self._parent.next())
        return values

    def _fill(self) -> Any:
        if self._first:
            self._first = False
            self._window = self._pull(self._size)
            return list(self._window) if self._window else _MISSING

        if self._step < self._size:
            kept = self._window[self._step:]
            fresh = self._pull(self._step)
        else:
            self._skip_parent(self._step - self._size)
            kept = []
            fresh = self._pull(self._size)
        if not fresh:
            return _MISSING
        self._window = kept + fresh
        return list(self._window)

    def _skip_parent(self, count: int) -> None:
        while count > 0 and self._parent.has_next():
            self._parent.next()
            count -= 1

    def _has_next(self) -> bool:
        if self._pending is _MISSING:
            self._pending = self._fill()
        return self._pending is not _MISSING

    def _next(self) -> List[T]:
        value, self._pending = self._pending, _MISSING
        return value


# ----------------------------------------------------------------------
# 辅助函数
# ----------------------------------------------------------------------


def _check_slice(from_: int, to: int) -> None:
    if from_ < 0:
        raise ValueError(f"切片起始位置不能为负数: {from_}")
    if from_ > to:
        raise ValueError(f"切片起始位置 {from_} 大于结束位置 {to}")


def _as_closeable(iterable: Union[Iterable[T], CloseableIterator[T]]) -> CloseableIterator[T]:
    if isinstance(iterable, CloseableIterator):
        return iterable
    return _IterableIterator(iterable)


def _close_quietly(iterator: CloseableIterator[Any]) -> None:
    try:
        iterator.close()
    except Exception as e:
        logger.error(f"异常处理过程中关闭迭代器失败: {e}", exc_info=True)


def closeable(
    iterable: Iterable[T], on_close: Optional[Callable[[], None]] = None
) -> CloseableIterator[T]:
    """
    把任意可迭代对象包装为 CloseableIterator

    Args:
        iterable: 数据来源
        on_close: 关闭时执行一次的释放动作

    Example:
        >>> closeable([1, 2, 3]).map(lambda x: x * 2).to_list()
        [2, 4, 6]
    """
    return _IterableIterator(iterable, on_close)


def empty() -> CloseableIterator[Any]:
    """返回一个空迭代器"""
    return _IterableIterator(())


def manage(iterator: CloseableIterator[T], func: Callable[[CloseableIterator[T]], V]) -> V:
    """
    在作用域内使用迭代器，结束后保证关闭

    func 抛出异常时同样关闭迭代器；此时关闭失败只记录日志，
    不会掩盖原始异常。

    Example:
        >>> total = manage(rows, lambda it: sum(r.get_int(1) for r in it.take(100)))
    """
    try:
        result = func(iterator)
    except BaseException:
        _close_quietly(iterator)
        raise
    iterator.close()
    return result
