"""
長生命週期的背景作用域。

TaskScope 由 Store 擁有，用於比任何消費端都活得更久的背景工作
（網路同步、快取）。消費端的 attach/detach 不會取消這裡的任務。
"""
import asyncio
import inspect
import logging
from typing import Any, Coroutine, Optional, Set

from .errors import StoreClosedError, global_error_handler

logger = logging.getLogger(__name__)


class TaskScope:
    """
    結構化的 asyncio 任務集合。

    launch 的任務在 cancel() 時一併取消；任務失敗會交給 global_error_handler，
    不會影響作用域內其他任務。
    """

    def __init__(self, name: str = "store"):
        self.name = name
        self._tasks: Set[asyncio.Task] = set()
        self._cancelled = False

    @property
    def active(self) -> bool:
        return not self._cancelled

    @property
    def tasks(self) -> Set[asyncio.Task]:
        return set(self._tasks)

    def launch(self, coro: Coroutine[Any, Any, Any], name: Optional[str] = None) -> asyncio.Task:
        """
        在作用域內啟動一個協程。

        Args:
            coro: 要執行的協程
            name: 任務名稱

        Returns:
            建立的 asyncio.Task

        Raises:
            StoreClosedError: 作用域已被取消
        """
        if self._cancelled:
            if inspect.iscoroutine(coro):
                coro.close()
            raise StoreClosedError("launch")
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    async def delay(self, seconds: float) -> None:
        """暫停目前協程；測試時可由 ManualScope 以虛擬時間取代。"""
        await asyncio.sleep(seconds)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            global_error_handler.handle(error, {"scope": self.name, "task": task.get_name()})

    async def join(self) -> None:
        """等待目前所有任務結束（包含等待期間新啟動的任務）。"""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def cancel(self) -> None:
        """取消所有任務，之後不能再 launch。"""
        self._cancelled = True
        for task in list(self._tasks):
            task.cancel()
        logger.debug("scope %s cancelled", self.name)
