import asyncio
import concurrent.futures
import contextlib
import inspect
import logging
from typing import Any, Callable, Generic, List, Optional, Tuple

from reactivex import Observable
from reactivex import operators as ops
from reactivex.subject import BehaviorSubject, Subject

from .config import StoreConfig
from .errors import ReducerAlreadyBoundError, ReducerNotBoundError, StoreClosedError, StoreError, global_error_handler, handle_error
from .immutable_utils import to_immutable
from .middleware import BaseMiddleware, LoggerMiddleware, PerformanceMonitorMiddleware
from .reducer import Reducer
from .scope import TaskScope
from .types import A, E, S

logger = logging.getLogger(__name__)


class Store(Generic[S, A, E]):
    """
    狀態容器：唯一的狀態來源，以及 Effect 的扇出點。

    Action 經由單一佇列逐一交給 Reducer 處理；每次寫入狀態都同步通知
    狀態觀察者，每次發出 Effect 都同步通知目前的 Effect 觀察者。
    """

    def __init__(
        self,
        initial_state: S,
        reducer: Reducer[S, A, E],
        *,
        scope: Optional[Any] = None,
        config: Optional[StoreConfig] = None,
        middleware: Tuple[Any, ...] = (),
    ):
        """
        建立 Store 並綁定 Reducer。

        Args:
            initial_state: 初始狀態
            reducer: 要綁定的 Reducer，每個 Reducer 只能綁定一次
            scope: 長生命週期背景作用域，預設為新的 TaskScope
            config: Store 配置
            middleware: 要註冊的中介軟體，可以是類或實例
        """
        if reducer.is_bound:
            raise ReducerAlreadyBoundError(reducer.name)
        self.config = config or StoreConfig()
        self._reducer = reducer
        # 狀態流（BehaviorSubject），新觀察者立即收到目前狀態
        self._state_subject = BehaviorSubject(self._prepare(initial_state))
        # Effect 流（Subject），不保留、不重播
        self._effect_subject = Subject()
        # process 拋出的異常
        self._error_subject = Subject()
        self.scope = scope if scope is not None else TaskScope(self.config.name)

        self._middleware: List[BaseMiddleware] = []
        if self.config.log_actions:
            self._middleware.append(LoggerMiddleware())
        if self.config.slow_action_threshold_ms is not None:
            self._middleware.append(PerformanceMonitorMiddleware(self.config.slow_action_threshold_ms))
        self.apply_middleware(*middleware)

        # 工作者在第一次 submit 時於執行中的事件迴圈上建立
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._closed = False

        reducer.default_min_active_state = self.config.min_active_state
        reducer.attach_scope(self.scope)
        reducer.bind(self.read, self._write, self._emit, self.submit)

    def __repr__(self) -> str:
        return f"Store(name={self.config.name!r}, reducer={self._reducer.name})"

    @property
    def reducer(self) -> Reducer[S, A, E]:
        return self._reducer

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def middleware(self) -> List[BaseMiddleware]:
        return list(self._middleware)

    def apply_middleware(self, *middlewares: Any) -> None:
        """
        一次註冊多個中介軟體，先註冊者在最外層。

        Args:
            *middlewares: 要註冊的中介軟體，可以是類或實例。
        """
        for m in middlewares:
            inst = m() if inspect.isclass(m) else m
            self._middleware.append(inst)

    # ---------- 狀態 ----------

    def _prepare(self, state: S) -> S:
        return to_immutable(state) if self.config.freeze_state else state

    def read(self) -> S:
        """同步取得目前狀態。"""
        return self._state_subject.value

    @property
    def state(self) -> S:
        """
        獲取當前狀態的快照。
        """
        return self._state_subject.value

    def _write(self, new_state: S) -> None:
        self._state_subject.on_next(self._prepare(new_state))

    def _emit(self, effect: E) -> None:
        self._effect_subject.on_next(effect)

    def observe_state(self) -> Observable:
        """
        觀察狀態：新的觀察者立即收到目前值，之後依序收到每個新值。
        """
        return self._state_subject.pipe(ops.as_observable())

    def observe_effects(self) -> Observable:
        """
        觀察 Effect：只會收到訂閱期間發出的 Effect，沒有觀察者時 Effect 會被丟棄。
        """
        return self._effect_subject.pipe(ops.as_observable())

    def observe_errors(self) -> Observable:
        """觀察 process 拋出、導致 Action 處理失敗的異常。"""
        return self._error_subject.pipe(ops.as_observable())

    def select(self, selector: Callable[[S], Any]) -> Observable:
        """
        選擇狀態的一部分進行觀察，只有選出的值改變時才發出。

        Args:
            selector: 一個函數，接收整個狀態並返回希望觀察的部分。

        Returns:
            一個可觀察對象，發送選定的狀態部分。
        """
        return self.observe_state().pipe(
            ops.map(selector),
            ops.distinct_until_changed(),
        )

    # ---------- Action 提交 ----------

    @handle_error
    def submit(self, action: A) -> asyncio.Future:
        """
        將 Action 放入處理佇列並立即返回。

        同一佇列中的 Action 依提交順序逐一處理，前一個完全處理完才開始下一個。
        必須在事件迴圈中呼叫；其他執行緒請使用 submit_threadsafe。

        Args:
            action: 要處理的 Action

        Returns:
            處理完成時完成的 Future；process 失敗時帶有該異常

        Raises:
            StoreClosedError: Store 已關閉
            ReducerNotBoundError: Reducer 尚未綁定
            StoreError: 沒有執行中的事件迴圈，或佇列已滿
        """
        if self._closed:
            raise StoreClosedError("submit")
        if not self._reducer.is_bound:
            raise ReducerNotBoundError(self._reducer.name, "submit")
        queue = self._ensure_worker("submit")
        future = self._loop.create_future()
        try:
            queue.put_nowait((action, future))
        except asyncio.QueueFull:
            raise StoreError("action queue is full", "submit", maxsize=queue.maxsize)
        return future

    def submit_threadsafe(self, action: A) -> concurrent.futures.Future:
        """
        從其他執行緒提交 Action。Store 必須已在事件迴圈上啟動（見 start）。

        同一執行緒的提交順序會被保留。

        Returns:
            處理完成時完成的 concurrent.futures.Future
        """
        if self._closed:
            raise StoreClosedError("submit_threadsafe")
        if self._loop is None:
            raise StoreError("store has not been started on an event loop", "submit_threadsafe")
        return asyncio.run_coroutine_threadsafe(self._submit_and_wait(action), self._loop)

    async def _submit_and_wait(self, action: A) -> None:
        await self.submit(action)

    async def start(self) -> None:
        """在目前的事件迴圈上啟動工作者。submit 也會自動啟動。"""
        if self._closed:
            raise StoreClosedError("start")
        self._ensure_worker("start")

    def _ensure_worker(self, operation: str) -> asyncio.Queue:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            raise StoreError("no running event loop", operation) from None
        if self._loop is None:
            self._loop = loop
            self._queue = asyncio.Queue(maxsize=self.config.queue_maxsize)
            self._worker = loop.create_task(self._run(), name=f"{self.config.name}-worker")
            logger.debug("%r worker started", self)
        elif loop is not self._loop:
            raise StoreError("store is running on another event loop", operation)
        return self._queue

    async def _run(self) -> None:
        while True:
            action, future = await self._queue.get()
            try:
                if future.cancelled():
                    continue
                await self._dispatch(action)
            except asyncio.CancelledError:
                if not future.done():
                    future.cancel()
                raise
            except Exception as err:
                self._fail(action, future, err)
            else:
                if not future.done():
                    future.set_result(None)
            finally:
                self._queue.task_done()

    async def _dispatch(self, action: A) -> None:
        # 每個中介軟體的 action_context 依註冊順序由外而內包住 accept
        with contextlib.ExitStack() as stack:
            contexts = [
                stack.enter_context(mw.action_context(action, self.state))
                for mw in self._middleware
            ]
            await self._reducer.accept(action)
            next_state = self.state
            for context in contexts:
                context['next_state'] = next_state

    def _fail(self, action: A, future: asyncio.Future, err: Exception) -> None:
        global_error_handler.handle(err, {"store": self.config.name, "action": type(action).__name__})
        self._error_subject.on_next(err)
        if not future.done():
            future.set_exception(err)
            # 已由 global_error_handler 回報；提交者不 await 時不再重複記錄
            future.exception()

    async def join(self) -> None:
        """等待佇列清空，包含處理期間 post_action 加入的 Action。"""
        if self._queue is not None:
            await self._queue.join()

    async def close(self) -> None:
        """
        關閉 Store 並結束所有資料流，Reducer 的消費端會一併分離。
        佇列中尚未處理的 Action 會被取消。
        """
        if self._closed:
            return
        self._closed = True
        if self._worker is not None:
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
        if self._queue is not None:
            while not self._queue.empty():
                _, future = self._queue.get_nowait()
                future.cancel()
                self._queue.task_done()
        self._reducer.detach_consumer()
        self.scope.cancel()
        for mw in self._middleware:
            mw.teardown()
        self._state_subject.on_completed()
        self._effect_subject.on_completed()
        self._error_subject.on_completed()
        logger.debug("%r closed", self)


def create_store(initial_state: S, reducer: Reducer[S, A, E], **kwargs: Any) -> Store[S, A, E]:
    """
    創建一個新的 Store 實例並綁定 Reducer。

    Returns:
        Store: 新創建的 Store 實例。
    """
    return Store(initial_state, reducer, **kwargs)
