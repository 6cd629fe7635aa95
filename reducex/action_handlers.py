"""
基於類型分派的 Action 處理模塊。

DispatchReducer 為封閉的 Action 變體提供單一分派點：以 @on 標記的方法
依 Action 的類型（沿 MRO 查找）被選中執行，找不到處理函數時直接拋出
UnhandledActionError，而不是默默忽略。

用法:
    ```python
    class TodoReducer(DispatchReducer[TodoState, TodoAction, TodoEffect]):

        @on(Save)
        def _save(self, action):
            self.state(lambda s: s.update(items=s.items + (action.name,)))

        @on(TappedTodo)
        async def _tapped(self, action):
            self.emit(ToastTodo(name=action.name))
    ```
"""
import inspect
from typing import Any, Callable, Dict, Type, TypeVar

from .errors import UnhandledActionError
from .reducer import Reducer
from .types import A, E, S

F = TypeVar("F", bound=Callable[..., Any])

_HANDLES_ATTR = "__reducex_handles__"


def on(*action_types: Type[Any]) -> Callable[[F], F]:
    """
    裝飾器：將方法註冊為一個或多個 Action 類型的處理函數。

    Args:
        *action_types: 要處理的 Action 類別

    Returns:
        裝飾器函數
    """
    if not action_types:
        raise TypeError("on() requires at least one action type")

    def decorator(func: F) -> F:
        handled = getattr(func, _HANDLES_ATTR, ())
        setattr(func, _HANDLES_ATTR, handled + action_types)
        return func
    return decorator


class DispatchReducer(Reducer[S, A, E]):
    """
    以 @on 方法分派 Action 的 Reducer。

    子類別的處理函數可以是一般方法或協程方法；子類別會繼承並可覆寫
    父類別註冊的處理函數。
    """

    _handlers: Dict[type, str] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        handlers: Dict[type, str] = {}
        for base in reversed(cls.__mro__[1:]):
            handlers.update(getattr(base, "_handlers", {}))
        for name, member in vars(cls).items():
            for action_type in getattr(member, _HANDLES_ATTR, ()):
                handlers[action_type] = name
        cls._handlers = handlers

    @classmethod
    def handled_types(cls) -> tuple:
        """回傳已註冊處理函數的 Action 類型。"""
        return tuple(cls._handlers)

    def handler_for(self, action: Any) -> Callable[[Any], Any]:
        """
        找出處理 action 的綁定方法。

        Raises:
            UnhandledActionError: 沒有任何已註冊的類型匹配
        """
        for klass in type(action).__mro__:
            name = self._handlers.get(klass)
            if name is not None:
                return getattr(self, name)
        raise UnhandledActionError(self.name, action)

    async def process(self, action: A) -> None:
        result = self.handler_for(action)(action)
        if inspect.isawaitable(result):
            await result
