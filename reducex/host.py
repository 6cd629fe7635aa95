"""
Store 與消費端之間的綁定膠水。

StoreHost 是長生命週期的擁有者：建構時建立 Store（同時綁定 Reducer），
之後可以反覆 attach / detach 短生命週期的 ConsumerScope，例如畫面在
設定變更後被重建。
"""
import logging
from typing import Any, Callable, Generic, Optional

from reactivex.disposable import CompositeDisposable

from .config import StoreConfig
from .lifecycle import ConsumerScope, LifecycleState
from .reducer import Reducer
from .store import Store
from .types import A, E, S

logger = logging.getLogger(__name__)


class StoreHost(Generic[S, A, E]):
    """
    擁有一組 Store + Reducer，並把消費端接上 Reducer。

    範例:
        ```python
        host = StoreHost(TodoReducer(), TodoState())

        screen = ConsumerScope("todo-screen")
        host.attach(screen, on_effect=show_toast, on_state=render)
        screen.create()
        screen.start()        # 開始收集 state / effect
        host.post_action(Save(name="milk"))

        screen.destroy()      # 畫面消失
        host.detach()
        ```
    """

    def __init__(
        self,
        reducer: Reducer[S, A, E],
        initial_state: S,
        *,
        config: Optional[StoreConfig] = None,
        scope: Optional[Any] = None,
        middleware: tuple = (),
    ):
        self.store: Store[S, A, E] = Store(
            initial_state, reducer, scope=scope, config=config, middleware=middleware
        )
        self.reducer = reducer
        self._consumer: Optional[ConsumerScope] = None
        self._collections = CompositeDisposable()

    @property
    def state(self) -> S:
        return self.store.state

    @property
    def consumer(self) -> Optional[ConsumerScope]:
        return self._consumer

    def attach(
        self,
        consumer: ConsumerScope,
        on_effect: Optional[Callable[[E], Any]] = None,
        on_state: Optional[Callable[[S], Any]] = None,
        min_state: Optional[LifecycleState] = None,
    ) -> None:
        """
        附加一個新的消費端實例。

        Effect 與狀態只在消費端至少處於 min_state（預設為配置值）時傳遞；
        狀態採用最新值優先，非同步渲染落後時中間值會被略過。

        Args:
            consumer: 新的消費端實例
            on_effect: Effect 處理函數
            on_state: 狀態渲染函數
            min_state: 最低活動狀態
        """
        if self._consumer is not None:
            self.detach()
        gate = min_state or self.store.config.min_active_state

        self._consumer = consumer
        self._collections = CompositeDisposable()
        self.reducer.attach_consumer(consumer)

        if on_effect is not None:
            self._collections.add(
                consumer.collect(self.store.observe_effects(), on_effect, min_state=gate, key="effects")
            )
        if on_state is not None:
            self._collections.add(
                consumer.collect(self.store.observe_state(), on_state, min_state=gate, conflate=True, key="state")
            )
        logger.debug("%s attached to %r", consumer.name, self.store)

    def detach(self) -> None:
        """分離目前的消費端，Store 與 Reducer 保持存活。"""
        consumer = self._consumer
        if consumer is None:
            return
        self._consumer = None
        self._collections.dispose()
        self.reducer.detach_consumer()
        logger.debug("%s detached from %r", consumer.name, self.store)

    def post_action(self, action: A) -> Any:
        """從消費端轉送使用者事件。"""
        return self.store.submit(action)

    async def close(self) -> None:
        """擁有者被銷毀：分離消費端並關閉 Store。"""
        self.detach()
        await self.store.close()
