"""
Reducer 核心抽象。

Reducer 持有狀態轉換邏輯，透過 Store 注入的鉤子讀寫狀態、發出 Effect、
重新提交 Action；所有 Action 經由互斥鎖逐一處理，一個 Action 的效果
不會與另一個交錯。另外管理綁定在消費端生命週期上的去重訂閱。
"""
import abc
import asyncio
import logging
import weakref
from enum import Enum
from typing import Any, Callable, Generic, List, NamedTuple, Optional, Set

from reactivex import Observable
from reactivex.disposable import CompositeDisposable

from .errors import (
    LifecycleError,
    ReducerAlreadyBoundError,
    ReducerError,
    ReducerNotBoundError,
    SubscriptionError,
)
from .lifecycle import ConsumerScope, LifecycleState
from .types import A, E, S, EmitEffect, ErrorCallback, PostAction, ReadState, StateTransform, ValueHandler, WriteState

logger = logging.getLogger(__name__)


class BindingState(Enum):
    """Reducer 與 Store / 消費端之間的綁定狀態。"""
    UNBOUND = "unbound"
    BOUND = "bound"
    SCOPE_ATTACHED = "scope_attached"
    SCOPE_DETACHED = "scope_detached"


class _PendingSubscription(NamedTuple):
    key: str
    start: Callable[[ConsumerScope], None]


class Reducer(Generic[S, A, E], abc.ABC):
    """
    Reducer 基礎類別。

    - 以 asyncio.Lock 序列化 Action 處理（先取得鎖者先執行）。
    - 以 Store 綁定的鉤子整個替換不可變狀態、發出一次性 Effect。
    - 提供綁定消費端生命週期的訂閱輔助（見 subscribe_once）。

    範例:
        ```python
        class TodoReducer(Reducer[TodoState, TodoAction, TodoEffect]):
            def on_load_action(self):
                return Load()

            async def process(self, action):
                if isinstance(action, Load):
                    # 每個消費端實例最多訂閱一次資料庫查詢
                    self.subscribe_once(
                        "items", repo.observe_items(),
                        lambda items: self.state(lambda s: s.update(items=items, loading=False)),
                    )
                    # 或在長生命週期作用域啟動背景工作
                    self.scope.launch(repo.sync())
                    self.state(lambda s: s.update(loading=True))
                elif isinstance(action, Play):
                    self.emit(NavigateToPlayer(id=action.id))
                    self.post_action(Load())
        ```
    """

    # subscribe_once 未指定時的最低活動狀態，Store 會依 StoreConfig 覆寫
    default_min_active_state: LifecycleState = LifecycleState.STARTED

    def __init__(self) -> None:
        self._read_fn: Optional[ReadState] = None
        self._write_fn: Optional[WriteState] = None
        self._emit_fn: Optional[EmitEffect] = None
        self._post_fn: Optional[PostAction] = None
        self._binding_state = BindingState.UNBOUND
        self._lock = asyncio.Lock()
        self._scope: Any = None

        self._consumer: Optional[ConsumerScope] = None
        # 目前消費端實例已註冊的訂閱 key
        self._consumer_keys: Set[str] = set()
        self._consumer_subscriptions = CompositeDisposable()
        # 消費端尚未 attach 時的訂閱請求
        self._pending: List[_PendingSubscription] = []
        # 已提交過 on_load_action 的消費端實例
        self._loaded_consumers: "weakref.WeakSet[ConsumerScope]" = weakref.WeakSet()

    @property
    def name(self) -> str:
        return type(self).__name__

    @property
    def binding_state(self) -> BindingState:
        return self._binding_state

    @property
    def is_bound(self) -> bool:
        return self._binding_state is not BindingState.UNBOUND

    @property
    def consumer(self) -> Optional[ConsumerScope]:
        return self._consumer

    # ---------- 綁定 ----------

    def bind(self, read: ReadState, write: WriteState, emit: EmitEffect, post: PostAction) -> None:
        """
        注入狀態、Effect 與 postAction 鉤子。由 Store 在建構時呼叫一次。

        Raises:
            ReducerAlreadyBoundError: 已經綁定過
        """
        if self.is_bound:
            raise ReducerAlreadyBoundError(self.name)
        self._read_fn = read
        self._write_fn = write
        self._emit_fn = emit
        self._post_fn = post
        self._binding_state = BindingState.BOUND
        logger.debug("%s bound", self.name)

    def attach_scope(self, scope: Any) -> None:
        """安裝長生命週期的背景作用域（TaskScope，或測試用的 ManualScope）。"""
        self._scope = scope

    @property
    def scope(self) -> Any:
        """
        長生命週期作用域，用於需要比消費端活得更久的工作。

        在這裡啟動的任務不受互斥鎖保護，可能與之後的 process 並行。
        """
        if self._scope is None:
            raise ReducerError("no background scope attached", self.name, operation="scope")
        return self._scope

    def _require_bound(self, operation: str) -> None:
        if not self.is_bound:
            raise ReducerNotBoundError(self.name, operation)

    # ---------- 狀態與 Effect ----------

    def read(self) -> S:
        """回傳目前狀態。"""
        self._require_bound("read")
        return self._read_fn()

    def state(self, transform: StateTransform) -> S:
        """
        讀取目前狀態、套用 transform 並寫回。

        只在 accept 持有的鎖內呼叫，讀寫之間不會有其他 Action 介入。

        Returns:
            寫入的新狀態
        """
        self._require_bound("state")
        new_state = transform(self._read_fn())
        self._write_fn(new_state)
        return new_state

    def emit(self, effect: E) -> None:
        """發出一次性 Effect；沒有觀察者時直接丟棄。"""
        self._require_bound("emit")
        self._emit_fn(effect)

    def post_action(self, action: A) -> Any:
        """
        將 Action 重新送入 Store 的序列化佇列，於目前 process 結束後處理。

        Returns:
            Store.submit 回傳的 Future（測試綁定時為 None）
        """
        self._require_bound("post_action")
        return self._post_fn(action)

    # ---------- Action 處理 ----------

    @abc.abstractmethod
    async def process(self, action: A) -> None:
        """
        處理一個 Action。唯一允許呼叫 state / emit / post_action 的地方。
        在互斥鎖內執行，await 期間鎖仍被持有。
        """

    async def accept(self, action: A) -> None:
        """
        Store 送來 Action 的入口，由互斥鎖序列化；process 失敗時鎖仍會釋放，
        異常原樣拋出。
        """
        self._require_bound("accept")
        async with self._lock:
            await self.process(action)

    # ---------- 可覆寫的鉤子 ----------

    def on_load_action(self) -> Optional[A]:
        """
        回傳每個消費端實例第一次 attach 時自動提交的 Action，None 表示不提交。

        消費端重建（新的實例）時會再次提交，讓 subscribe_once 在新實例上重新註冊。
        """
        return None

    def on_cleared(self) -> None:
        """消費端 detach 時呼叫，用於釋放非生命週期感知的資源。"""

    # ---------- 消費端 attach / detach ----------

    def attach_consumer(self, consumer: ConsumerScope) -> None:
        """
        附加目前的消費端作用域。

        清空去重集合、依 FIFO 順序啟動排隊中的訂閱，並在此消費端實例
        第一次 attach 時提交 on_load_action()。若已有其他消費端附加，會先將其 detach。

        Raises:
            ReducerNotBoundError: 尚未綁定
            LifecycleError: 消費端已銷毀
        """
        self._require_bound("attach_consumer")
        if consumer.is_destroyed:
            raise LifecycleError("cannot attach a destroyed consumer scope", consumer.name)
        if consumer is self._consumer:
            return
        if self._consumer is not None:
            self.detach_consumer()

        self._consumer = consumer
        self._consumer_keys.clear()
        self._consumer_subscriptions = CompositeDisposable()
        self._binding_state = BindingState.SCOPE_ATTACHED
        logger.debug("%s attached to %s", self.name, consumer.name)

        if self._pending:
            to_run = list(self._pending)
            self._pending.clear()
            for pending in to_run:
                pending.start(consumer)

        # 每個消費端實例只提交一次
        if consumer not in self._loaded_consumers:
            self._loaded_consumers.add(consumer)
            load_action = self.on_load_action()
            if load_action is not None:
                self.post_action(load_action)

    def detach_consumer(self) -> None:
        """
        分離目前的消費端：拆除其訂閱並呼叫 on_cleared()。
        不影響互斥鎖、狀態與背景作用域。
        """
        consumer = self._consumer
        if consumer is None:
            return
        self._consumer = None
        self._consumer_subscriptions.dispose()
        self._binding_state = BindingState.SCOPE_DETACHED
        logger.debug("%s detached from %s", self.name, consumer.name)
        self.on_cleared()

    # ---------- 訂閱輔助 ----------

    def subscribe_once(
        self,
        key: str,
        source: Observable,
        on_value: ValueHandler,
        min_active_state: Optional[LifecycleState] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        """
        在目前消費端實例上，以 key 為單位至多訂閱一次外部資料源。

        - 尚未有消費端時，請求會排隊，待 attach 時啟動。
        - 同一消費端實例上重複的 key 會被忽略。
        - 消費端低於 min_active_state 時暫停，回到門檻時恢復，detach 時拆除。

        Args:
            key: 在目前消費端實例內唯一的訂閱名稱
            source: 要訂閱的 Observable
            on_value: 每個值的處理函數，可為協程函數
            min_active_state: 最低活動狀態，預設為 default_min_active_state
            on_error: 上游失敗時呼叫，預設忽略
        """
        if not isinstance(key, str) or not key:
            raise SubscriptionError("subscription key must be a non-empty string", key=str(key))
        if not isinstance(source, Observable):
            raise SubscriptionError(
                "source must be an Observable", key=key, source_type=type(source).__name__
            )
        min_state = min_active_state or self.default_min_active_state

        def start(consumer: ConsumerScope) -> None:
            if key in self._consumer_keys:
                logger.debug("%s: subscription %r already active for %s", self.name, key, consumer.name)
                return
            self._consumer_keys.add(key)
            collection = consumer.collect(
                source, on_value, min_state=min_state, on_error=on_error, key=key
            )
            self._consumer_subscriptions.add(collection)

        if self._consumer is None:
            self._pending.append(_PendingSubscription(key, start))
        else:
            start(self._consumer)
