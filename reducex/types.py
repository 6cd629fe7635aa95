"""
reducex 共用型別定義。
"""
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from typing_extensions import TypedDict

S = TypeVar("S")  # 狀態類型
A = TypeVar("A")  # Action 類型
E = TypeVar("E")  # Effect 類型
T = TypeVar("T")  # 外部資料源的值類型

# Store 注入 Reducer 的四個鉤子
ReadState = Callable[[], S]
WriteState = Callable[[S], None]
EmitEffect = Callable[[E], None]
PostAction = Callable[[A], Any]

StateTransform = Callable[[S], S]

# 訂閱回調：同步函數或回傳 awaitable 的協程函數
ValueHandler = Callable[[T], Union[None, Awaitable[None]]]
ErrorCallback = Callable[[Exception], Union[None, Awaitable[None]]]


class ActionContext(TypedDict, total=False):
    """中介軟體 action_context 之間傳遞的上下文資料。"""
    action: Any
    prev_state: Any
    next_state: Optional[Any]
    error: Optional[Exception]
    timestamp: float
