"""
測試輔助工具。

- bind_for_test: 不需要 Store，將 Reducer 的鉤子綁定到記憶體中的集合。
- ManualScope: 取代 TaskScope 的確定性排程器，背景工作只在測試呼叫
  advance_until_idle / advance_by 時執行，delay 使用虛擬時間。

範例:
    ```python
    reducer = TodoReducer()
    binding = bind_for_test(reducer, TodoState())

    await reducer.accept(Save(name="milk"))
    assert binding.current_state.items == ("milk",)

    await reducer.accept(Sync())       # 在 self.scope 啟動背景工作
    await reducer.scope.advance_until_idle()
    ```
"""
import asyncio
import heapq
import inspect
import itertools
import logging
from collections import deque
from typing import Any, Coroutine, Deque, Generic, List, Optional, Set, Tuple

from .reducer import Reducer
from .types import A, E, S

logger = logging.getLogger(__name__)


class InMemoryBinding(Generic[S, A, E]):
    """bind_for_test 使用的記憶體鉤子。"""

    def __init__(self, initial_state: S, effects: List[E], posted_actions: List[A]):
        self._state = initial_state
        self.effects = effects
        self.posted_actions = posted_actions
        # 所有寫入過的狀態，第一個元素為初始狀態
        self.history: List[S] = [initial_state]

    @property
    def current_state(self) -> S:
        return self._state

    def read(self) -> S:
        return self._state

    def write(self, new_state: S) -> None:
        self._state = new_state
        self.history.append(new_state)

    def emit(self, effect: E) -> None:
        self.effects.append(effect)

    def post(self, action: A) -> None:
        self.posted_actions.append(action)


def bind_for_test(
    reducer: Reducer[S, A, E],
    initial_state: S,
    effects: Optional[List[E]] = None,
    posted_actions: Optional[List[A]] = None,
    scope: Optional[Any] = None,
) -> InMemoryBinding[S, A, E]:
    """
    以記憶體集合綁定 Reducer，並安裝背景作用域（預設為 ManualScope）。

    Args:
        reducer: 要測試的 Reducer（尚未綁定）
        initial_state: 初始狀態
        effects: 收集 Effect 的列表
        posted_actions: 收集 post_action 的列表
        scope: 背景作用域

    Returns:
        InMemoryBinding，可透過 current_state 同步讀取狀態
    """
    binding = InMemoryBinding(
        initial_state,
        effects if effects is not None else [],
        posted_actions if posted_actions is not None else [],
    )
    reducer.bind(binding.read, binding.write, binding.emit, binding.post)
    reducer.attach_scope(scope if scope is not None else ManualScope())
    return binding


async def yield_to_loop(times: int = 10) -> None:
    """讓出事件迴圈數次，讓已排程的回調與任務推進。"""
    for _ in range(times):
        await asyncio.sleep(0)


class ManualScope:
    """
    由測試控制的確定性背景作用域。

    launch 只把協程排入佇列；advance_until_idle 依序啟動它們，並在所有
    任務都完成或停在 delay 上時，把虛擬時鐘推進到下一個計時器。
    """

    def __init__(self, max_spins: int = 1000):
        self.now = 0.0
        self.max_spins = max_spins
        self._queued: Deque[Tuple[Coroutine[Any, Any, Any], asyncio.Future]] = deque()
        self._tasks: Set[asyncio.Task] = set()
        self._parked: Set[asyncio.Task] = set()
        self._timers: List[Tuple[float, int, asyncio.Future, asyncio.Task]] = []
        self._seq = itertools.count()
        self._failures: List[BaseException] = []
        self._cancelled = False

    @property
    def active(self) -> bool:
        return not self._cancelled

    @property
    def pending(self) -> int:
        """尚未完成的工作數（包含還沒啟動的）。"""
        return len(self._queued) + sum(1 for task in self._tasks if not task.done())

    def launch(self, coro: Coroutine[Any, Any, Any], name: Optional[str] = None) -> asyncio.Future:
        """
        排入一個協程，等到 advance_until_idle / advance_by 時才執行。

        Returns:
            協程完成時帶有其結果的 Future
        """
        if self._cancelled:
            if inspect.iscoroutine(coro):
                coro.close()
            raise RuntimeError("ManualScope has been cancelled")
        result = asyncio.get_running_loop().create_future()
        self._queued.append((coro, result))
        return result

    async def delay(self, seconds: float) -> None:
        """停在虛擬時間上，直到時鐘被推進超過 now + seconds。"""
        task = asyncio.current_task()
        wakeup = asyncio.get_running_loop().create_future()
        heapq.heappush(self._timers, (self.now + seconds, next(self._seq), wakeup, task))
        self._parked.add(task)
        try:
            await wakeup
        finally:
            self._parked.discard(task)

    async def advance_until_idle(self) -> None:
        """執行所有工作與計時器，直到沒有任何待辦事項。"""
        await self._run_until(None)

    async def advance_by(self, seconds: float) -> None:
        """將虛擬時鐘推進 seconds，執行期間到期的工作。"""
        await self._run_until(self.now + seconds)

    async def join(self) -> None:
        await self.advance_until_idle()

    def cancel(self) -> None:
        self._cancelled = True
        while self._queued:
            coro, result = self._queued.popleft()
            coro.close()
            result.cancel()
        for task in list(self._tasks):
            task.cancel()

    def _start_queued(self) -> None:
        loop = asyncio.get_running_loop()
        while self._queued:
            coro, result = self._queued.popleft()
            task = loop.create_task(coro)
            self._tasks.add(task)
            task.add_done_callback(lambda t, r=result: self._on_done(t, r))

    def _on_done(self, task: asyncio.Task, result: asyncio.Future) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            result.cancel()
            return
        error = task.exception()
        if error is not None:
            # 失敗由 _run_until 重新拋出
            self._failures.append(error)
        if result.done():
            return
        if error is not None:
            result.set_exception(error)
            result.exception()
        else:
            result.set_result(task.result())

    async def _settle(self) -> None:
        # 讓每個任務推進到完成（且 _on_done 已執行）或停在 delay 上
        for _ in range(self.max_spins):
            running = [t for t in self._tasks if t not in self._parked]
            if not running:
                return
            await asyncio.sleep(0)
        logger.warning("ManualScope: %d task(s) did not settle", len(running))

    async def _run_until(self, deadline: Optional[float]) -> None:
        while True:
            self._start_queued()
            await self._settle()
            if self._queued:
                continue
            if not self._timers:
                break
            when, _, wakeup, task = self._timers[0]
            if deadline is not None and when > deadline:
                break
            heapq.heappop(self._timers)
            self.now = max(self.now, when)
            if not wakeup.done():
                wakeup.set_result(None)
                # 視為執行中，讓 _settle 等它推進
                self._parked.discard(task)
        if deadline is not None:
            self.now = max(self.now, deadline)
        if self._failures:
            error = self._failures.pop(0)
            self._failures.clear()
            raise error
