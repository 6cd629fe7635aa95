"""
待辦清單範例。

模擬一個畫面：資料庫以 Subject 表示，畫面被「旋轉」重建後，
Store 與 Reducer 存活下來，新的畫面實例重新訂閱資料庫。

執行：python examples/todo_example.py
"""
import asyncio
import logging
from typing import Tuple

from reactivex.subject import BehaviorSubject

from reducex import (
    Action,
    ConsumerScope,
    DispatchReducer,
    Effect,
    State,
    StoreConfig,
    StoreHost,
    on,
)


# ====== 狀態 / Action / Effect ======

class TodoState(State):
    items: Tuple[str, ...] = ()
    loading: bool = False


class TodoAction(Action):
    pass


class Load(TodoAction):
    pass


class Save(TodoAction):
    name: str


class Delete(TodoAction):
    name: str


class Tapped(TodoAction):
    name: str


class Toast(Effect):
    message: str


# ====== 假的資料庫 ======

class TodoRepository:
    def __init__(self):
        self._items = BehaviorSubject(())

    def observe_items(self):
        return self._items

    async def save(self, name: str) -> None:
        await asyncio.sleep(0.05)
        self._items.on_next(self._items.value + (name,))

    async def delete(self, name: str) -> None:
        await asyncio.sleep(0.05)
        self._items.on_next(tuple(i for i in self._items.value if i != name))


# ====== Reducer ======

class TodoReducer(DispatchReducer[TodoState, TodoAction, Toast]):

    def __init__(self, repo: TodoRepository):
        super().__init__()
        self.repo = repo

    def on_load_action(self):
        return Load()

    @on(Load)
    def _load(self, action):
        self.state(lambda s: s.update(loading=True))
        self.subscribe_once(
            "items",
            self.repo.observe_items(),
            lambda items: self.state(lambda s: s.update(items=items, loading=False)),
        )

    @on(Save)
    def _save(self, action):
        # 寫入要比畫面活得久
        self.scope.launch(self.repo.save(action.name))

    @on(Delete)
    def _delete(self, action):
        self.scope.launch(self.repo.delete(action.name))

    @on(Tapped)
    def _tapped(self, action):
        self.emit(Toast(message=f"Tapped {action.name}"))


def render(tag):
    def _render(state: TodoState):
        print(f"[{tag}] items={list(state.items)} loading={state.loading}")
    return _render


async def main():
    logging.basicConfig(level=logging.INFO)
    host = StoreHost(
        TodoReducer(TodoRepository()),
        TodoState(),
        config=StoreConfig(name="todo", log_actions=True),
    )

    print("\n==== 第一個畫面 ====")
    first = ConsumerScope("todo-screen-1")
    host.attach(first, on_effect=lambda t: print(f"🍞 {t.message}"), on_state=render("screen-1"))
    first.create()
    first.start()

    host.post_action(Save(name="milk"))
    host.post_action(Save(name="eggs"))
    await host.store.join()
    await host.store.scope.join()
    host.post_action(Tapped(name="milk"))
    await host.store.join()

    print("\n==== 旋轉畫面：重建消費端 ====")
    first.destroy()
    second = ConsumerScope("todo-screen-2")
    # 新的畫面實例會再次提交 Load，重新訂閱資料庫
    host.attach(second, on_effect=lambda t: print(f"🍞 {t.message}"), on_state=render("screen-2"))
    second.create()
    second.start()

    host.post_action(Delete(name="milk"))
    await host.store.join()
    await host.store.scope.join()

    print("\n==== 最終狀態 ====")
    print(host.state)
    await host.close()


if __name__ == "__main__":
    asyncio.run(main())
