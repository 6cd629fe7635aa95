"""
消費端生命週期。

ConsumerScope 代表一個短生命週期的觀察者（例如一個可見的畫面實例）。
它擁有一個單調的生命週期狀態，並提供依最低活動狀態啟停的訂閱：
狀態達到門檻時訂閱來源，低於門檻時暫停（取消上游訂閱），
重新達到門檻時再次訂閱，銷毀時永久拆除。
"""
import asyncio
import inspect
import itertools
import logging
import threading
from collections import deque
from enum import IntEnum
from typing import Any, Awaitable, Deque, Optional, Set

from reactivex import Observable
from reactivex import operators as ops
from reactivex.abc import DisposableBase
from reactivex.subject import BehaviorSubject

from .errors import LifecycleError, global_error_handler
from .types import ErrorCallback, ValueHandler

logger = logging.getLogger(__name__)

_scope_ids = itertools.count(1)


class LifecycleState(IntEnum):
    """消費端的生命週期狀態，數值越大代表越活躍。"""
    DESTROYED = 0
    INITIALIZED = 1
    CREATED = 2
    STARTED = 3
    RESUMED = 4

    def is_at_least(self, other: "LifecycleState") -> bool:
        return self >= other


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class ConsumerScope:
    """
    短生命週期的消費端作用域。

    每個實例只能從 INITIALIZED 往前走到 DESTROYED 一次；
    重新建立的消費端（例如設定變更後）必須是新的實例。
    """

    def __init__(self, name: Optional[str] = None):
        self.name = name or f"consumer-{next(_scope_ids)}"
        self._state = BehaviorSubject(LifecycleState.INITIALIZED)
        self._collections: Set["GatedCollection"] = set()
        self._tasks: Set[asyncio.Task] = set()

    def __repr__(self) -> str:
        return f"ConsumerScope(name={self.name!r}, state={self.state.name})"

    @property
    def state(self) -> LifecycleState:
        return self._state.value

    @property
    def is_destroyed(self) -> bool:
        return self.state is LifecycleState.DESTROYED

    def observe(self) -> Observable:
        """
        觀察生命週期狀態，新的觀察者會立刻收到目前狀態。
        """
        return self._state.pipe(ops.as_observable())

    def move_to(self, target: LifecycleState) -> None:
        """
        將生命週期移動到指定狀態。

        Args:
            target: 目標狀態

        Raises:
            LifecycleError: 作用域已銷毀，或嘗試回到 INITIALIZED
        """
        current = self.state
        if current is LifecycleState.DESTROYED:
            raise LifecycleError("consumer scope is already destroyed", self.name, target=target.name)
        if target is LifecycleState.INITIALIZED:
            raise LifecycleError("cannot move back to INITIALIZED", self.name, current=current.name)
        if target == current:
            return

        logger.debug("%s: %s -> %s", self.name, current.name, target.name)
        self._state.on_next(target)

        if target is LifecycleState.DESTROYED:
            self._teardown()

    def create(self) -> None:
        self.move_to(LifecycleState.CREATED)

    def start(self) -> None:
        self.move_to(LifecycleState.STARTED)

    def resume(self) -> None:
        self.move_to(LifecycleState.RESUMED)

    def pause(self) -> None:
        self.move_to(LifecycleState.STARTED)

    def stop(self) -> None:
        self.move_to(LifecycleState.CREATED)

    def destroy(self) -> None:
        if not self.is_destroyed:
            self.move_to(LifecycleState.DESTROYED)

    def launch(self, awaitable: Awaitable[Any]) -> Optional[asyncio.Task]:
        """
        在此作用域上啟動任務，作用域銷毀時任務會被取消。

        Returns:
            建立的 Task；作用域已銷毀時回傳 None，協程不會執行
        """
        if self.is_destroyed:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.debug("%s: launch ignored, scope destroyed", self.name)
            return None
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def collect(
        self,
        source: Observable,
        on_value: ValueHandler,
        *,
        min_state: LifecycleState = LifecycleState.STARTED,
        on_error: Optional[ErrorCallback] = None,
        conflate: bool = False,
        key: Optional[str] = None,
    ) -> "GatedCollection":
        """
        訂閱一個來源，僅在作用域至少處於 min_state 時傳遞值。

        Args:
            source: 要訂閱的 Observable
            on_value: 每個值的處理函數，可為協程函數（依序執行）
            min_state: 最低活動狀態
            on_error: 上游錯誤的處理函數，預設忽略
            conflate: 非同步處理落後時只保留最新的值
            key: 用於日誌的名稱

        Returns:
            可 dispose 的 GatedCollection
        """
        collection = GatedCollection(self, source, on_value, min_state, on_error, conflate, key)
        if self.is_destroyed:
            collection.dispose()
            return collection
        self._collections.add(collection)
        collection.watch()
        return collection

    def _forget(self, collection: "GatedCollection") -> None:
        self._collections.discard(collection)

    def _teardown(self) -> None:
        for collection in list(self._collections):
            collection.dispose()
        self._collections.clear()
        for task in list(self._tasks):
            task.cancel()
        self._state.on_completed()


class GatedCollection(DisposableBase):
    """
    依生命週期啟停的單一訂閱。

    來源若在其他執行緒發出值，會被轉送回建立時的事件迴圈執行緒。
    """

    def __init__(
        self,
        owner: ConsumerScope,
        source: Observable,
        on_value: ValueHandler,
        min_state: LifecycleState,
        on_error: Optional[ErrorCallback],
        conflate: bool,
        key: Optional[str],
    ):
        self._owner = owner
        self._source = source
        self._on_value = on_value
        self._on_error = on_error
        self._min_state = min_state
        self._conflate = conflate
        self.key = key
        self._loop = _running_loop()
        self._loop_thread = threading.get_ident() if self._loop is not None else None
        self._lifecycle_sub: Optional[DisposableBase] = None
        self._upstream: Optional[DisposableBase] = None
        self._token: Optional[object] = None
        self._pending: Deque[Any] = deque()
        self._drain: Optional[asyncio.Task] = None
        self.disposed = False

    @property
    def active(self) -> bool:
        """目前是否正在接收來源的值。"""
        return self._token is not None

    def watch(self) -> None:
        self._lifecycle_sub = self._owner.observe().subscribe(on_next=self._on_lifecycle)

    def dispose(self) -> None:
        if self.disposed:
            return
        self.disposed = True
        self._pause()
        if self._lifecycle_sub is not None:
            self._lifecycle_sub.dispose()
            self._lifecycle_sub = None
        self._owner._forget(self)

    def _on_lifecycle(self, state: LifecycleState) -> None:
        if state is LifecycleState.DESTROYED:
            self.dispose()
        elif state >= self._min_state:
            self._resume()
        else:
            self._pause()

    def _resume(self) -> None:
        if self.disposed or self._token is not None:
            return
        token = self._token = object()
        logger.debug("%s: collecting %s", self._owner.name, self.key or self._source)
        subscription = self._source.subscribe(
            on_next=lambda value: self._dispatch(self._receive, token, value),
            on_error=lambda error: self._dispatch(self._fail, token, error),
        )
        if self._token is token:
            self._upstream = subscription
        else:
            # 在 subscribe 期間已被暫停
            subscription.dispose()

    def _pause(self) -> None:
        if self._token is None:
            return
        self._token = None
        if self._upstream is not None:
            self._upstream.dispose()
            self._upstream = None
        self._pending.clear()
        if self._drain is not None:
            self._drain.cancel()
            self._drain = None

    def _dispatch(self, handler, token: object, payload: Any) -> None:
        if self._loop is not None and threading.get_ident() != self._loop_thread:
            self._loop.call_soon_threadsafe(handler, token, payload)
        else:
            handler(token, payload)

    def _receive(self, token: object, value: Any) -> None:
        if token is not self._token:
            return
        if self._drain is not None:
            if self._conflate:
                self._pending.clear()
            self._pending.append(value)
            return
        result = self._invoke(self._on_value, value)
        if inspect.isawaitable(result):
            self._drain = self._owner.launch(self._drain_from(token, result))

    async def _drain_from(self, token: object, first: Awaitable[Any]) -> None:
        try:
            await self._guarded(first)
            while self._pending and token is self._token:
                result = self._invoke(self._on_value, self._pending.popleft())
                if inspect.isawaitable(result):
                    await self._guarded(result)
        finally:
            if token is self._token:
                self._drain = None

    def _fail(self, token: object, error: Exception) -> None:
        if token is not self._token:
            return
        logger.debug("%s: source %s failed: %r", self._owner.name, self.key, error)
        if self._on_error is None:
            return
        result = self._invoke(self._on_error, error)
        if inspect.isawaitable(result):
            self._owner.launch(self._guarded(result))

    def _invoke(self, callback, value: Any) -> Any:
        try:
            return callback(value)
        except Exception as err:
            self._report(err)
            return None

    async def _guarded(self, awaitable: Awaitable[Any]) -> None:
        try:
            await awaitable
        except asyncio.CancelledError:
            raise
        except Exception as err:
            self._report(err)

    def _report(self, err: Exception) -> None:
        global_error_handler.handle(err, {"scope": self._owner.name, "key": self.key})
