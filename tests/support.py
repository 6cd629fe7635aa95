"""測試共用的狀態、Action、Effect 與 Reducer。"""
import asyncio
from typing import Tuple

from reducex import Action, DispatchReducer, Effect, State, on


class CounterState(State):
    count: int = 0
    items: Tuple[str, ...] = ()


class SampleAction(Action):
    pass


class Increment(SampleAction):
    pass


class Decrement(SampleAction):
    pass


class AddItem(SampleAction):
    item: str


class LoadItems(SampleAction):
    pass


class PostAnotherAction(SampleAction):
    pass


class Append(SampleAction):
    value: str
    pause: float = 0


class AppendThenPost(SampleAction):
    first: str
    second: str


class Fail(SampleAction):
    message: str


class Unknown(Action):
    pass


class ShowToast(Effect):
    message: str


class SampleReducer(DispatchReducer[CounterState, SampleAction, ShowToast]):

    def __init__(self, load_action=None):
        super().__init__()
        self.load_action = load_action
        self.cleared = 0

    def on_load_action(self):
        return self.load_action

    def on_cleared(self):
        self.cleared += 1

    @on(Increment)
    def _increment(self, action):
        self.state(lambda s: s.update(count=s.count + 1))

    @on(Decrement)
    def _decrement(self, action):
        self.state(lambda s: s.update(count=s.count - 1))

    @on(AddItem)
    def _add_item(self, action):
        new_items = self.read().items + (action.item,)
        self.state(lambda s: s.update(items=new_items))
        self.emit(ShowToast(message=f"Added {action.item}"))

    @on(LoadItems)
    def _load_items(self, action):
        self.scope.launch(self._load())

    async def _load(self):
        await self.scope.delay(0.1)  # 模擬網路請求
        self.state(lambda s: s.update(items=("item1", "item2")))

    @on(PostAnotherAction)
    def _post_another(self, action):
        self.post_action(Increment())

    @on(Append)
    async def _append(self, action):
        # 讀取與寫入之間有 await，沒有互斥鎖時會遺失更新
        items = self.read().items
        await asyncio.sleep(action.pause)
        self.state(lambda s: s.update(items=items + (action.value,)))

    @on(AppendThenPost)
    def _append_then_post(self, action):
        self.state(lambda s: s.update(items=s.items + (action.first,)))
        self.post_action(Append(value=action.second))

    @on(Fail)
    async def _fail(self, action):
        raise RuntimeError(action.message)
