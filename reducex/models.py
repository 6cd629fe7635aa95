"""
不可變的 State / Action / Effect 基礎類別。

應用程式以這些 frozen pydantic 模型定義封閉的變體型別，例如：

    class TodoState(State):
        items: Tuple[str, ...] = ()

    class Save(Action):
        name: str

    class ToastTodo(Effect):
        name: str
"""
from typing import Any

from pydantic import BaseModel, ConfigDict


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class State(_Frozen):
    """畫面狀態的不可變快照，每次變更都整個替換。"""

    def update(self, **changes: Any) -> "State":
        """
        回傳套用變更後的新狀態，原狀態不變。

        與 model_copy(update=...) 不同，這裡會重新驗證欄位。
        """
        return self.model_validate({**self.model_dump(), **changes})


class Action(_Frozen):
    """描述變更意圖的不可變值。"""


class Effect(_Frozen):
    """一次性事件（導航、提示訊息），不會保存在狀態中。"""
