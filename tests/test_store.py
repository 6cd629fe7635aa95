"""Store：佇列順序、狀態/Effect 資料流、錯誤回報與中介軟體。"""
import asyncio
import gc
import logging
import threading

import pytest
from immutables import Map
from reactivex.subject import Subject

from reducex import (
    BaseMiddleware,
    BindingState,
    ConsumerScope,
    PerformanceMonitorMiddleware,
    Reducer,
    ReducerAlreadyBoundError,
    Store,
    StoreClosedError,
    StoreConfig,
    StoreError,
    create_selector,
    create_store,
)
from reducex.testing import ManualScope

from tests.support import (
    AddItem,
    AppendThenPost,
    CounterState,
    Fail,
    Increment,
    LoadItems,
    PostAnotherAction,
    SampleReducer,
    ShowToast,
)


@pytest.fixture
def reducer():
    return SampleReducer()


@pytest.fixture
def store(reducer):
    return Store(CounterState(), reducer, scope=ManualScope())


class TestStoreBasics:

    def test_initial_state_is_correctly_set(self, store):
        assert store.state == CounterState()
        assert store.read() == CounterState()

    def test_store_binds_reducer_and_scope(self, store, reducer):
        assert reducer.is_bound
        assert reducer.scope is store.scope

    def test_reducer_cannot_be_bound_to_two_stores(self, store, reducer):
        with pytest.raises(ReducerAlreadyBoundError):
            Store(CounterState(), reducer)

        assert reducer.scope is store.scope

    @pytest.mark.asyncio
    async def test_submit_updates_state_via_reducer(self, store):
        assert store.state.count == 0

        await store.submit(Increment())

        assert store.state.count == 1

    @pytest.mark.asyncio
    async def test_submit_returns_immediately(self, store):
        future = store.submit(Increment())

        assert not future.done()
        assert store.state.count == 0
        await future
        assert store.state.count == 1

    def test_submit_without_running_loop(self, store):
        with pytest.raises(StoreError, match="no running event loop"):
            store.submit(Increment())


class TestOrdering:

    @pytest.mark.asyncio
    async def test_actions_processed_in_submission_order(self, store):
        for item in ["a", "b", "c", "d"]:
            store.submit(AddItem(item=item))
        await store.join()

        assert store.state.items == ("a", "b", "c", "d")

    @pytest.mark.asyncio
    async def test_posted_action_runs_after_current_process(self, store):
        snapshots = []
        store.observe_state().subscribe(lambda s: snapshots.append(s.items))

        await store.submit(AppendThenPost(first="A", second="B"))
        await store.join()

        # B 在 A 的 process 回傳之後才被處理
        assert snapshots == [(), ("A",), ("A", "B")]

    @pytest.mark.asyncio
    async def test_posted_action_is_queued_behind_earlier_submissions(self, store):
        store.submit(PostAnotherAction())
        store.submit(AddItem(item="x"))
        await store.join()

        assert store.state == CounterState(count=1, items=("x",))

    @pytest.mark.asyncio
    async def test_increment_three_times_then_add_item(self, store):
        effects = []
        store.observe_effects().subscribe(effects.append)

        for _ in range(3):
            await store.submit(Increment())
        assert store.state.count == 3
        assert effects == []

        await store.submit(AddItem(item="x"))

        assert store.state.items.count("x") == 1
        assert effects == [ShowToast(message="Added x")]

    @pytest.mark.asyncio
    async def test_background_work_uses_store_scope(self, store):
        await store.submit(LoadItems())
        assert store.state.items == ()

        await store.scope.advance_until_idle()

        assert store.state.items == ("item1", "item2")


class TestStreams:

    @pytest.mark.asyncio
    async def test_reducer_effects_are_emitted_by_store(self, store):
        effects = []
        store.observe_effects().subscribe(effects.append)

        await store.submit(AddItem(item="hello"))

        assert effects == [ShowToast(message="Added hello")]

    @pytest.mark.asyncio
    async def test_effects_without_observers_are_dropped(self, store):
        await store.submit(AddItem(item="early"))

        effects = []
        store.observe_effects().subscribe(effects.append)
        await store.submit(AddItem(item="late"))

        assert effects == [ShowToast(message="Added late")]

    @pytest.mark.asyncio
    async def test_effects_are_multicast(self, store):
        first, second = [], []
        store.observe_effects().subscribe(first.append)
        subscription = store.observe_effects().subscribe(second.append)

        await store.submit(AddItem(item="a"))
        subscription.dispose()
        await store.submit(AddItem(item="b"))

        assert len(first) == 2
        assert second == [ShowToast(message="Added a")]

    @pytest.mark.asyncio
    async def test_state_observer_receives_current_then_updates(self, store):
        await store.submit(Increment())

        states = []
        store.observe_state().subscribe(states.append)
        await store.submit(Increment())
        await store.submit(AddItem(item="x"))

        assert [s.count for s in states] == [1, 2, 2]
        assert states[-1].items == ("x",)

    @pytest.mark.asyncio
    async def test_select_emits_only_changes(self, store):
        counts = []
        store.select(lambda s: s.count).subscribe(counts.append)

        await store.submit(AddItem(item="x"))
        await store.submit(Increment())

        assert counts == [0, 1]

    @pytest.mark.asyncio
    async def test_select_with_memoized_selector(self, store):
        get_items = lambda s: s.items
        get_summary = create_selector(get_items, result_fn=lambda items: ",".join(items))
        summaries = []
        store.select(get_summary).subscribe(summaries.append)

        await store.submit(Increment())
        await store.submit(AddItem(item="a"))

        assert summaries == ["", "a"]

    def test_selector_cache_statistics(self):
        items = ("a", "b")
        get_items = lambda s: s["items"]
        count_items = create_selector(get_items, result_fn=len)

        assert count_items({"items": items}) == 2
        assert count_items({"items": items, "other": 1}) == 2
        assert count_items({"items": ("c",)}) == 1

        info = count_items.cache_info()
        assert (info.hits, info.misses, info.currsize) == (1, 2, 2)

        count_items.cache_clear()

        assert count_items.cache_info() == (0, 0, 128, 0)


class TestFailures:

    @pytest.mark.asyncio
    async def test_process_failure_is_surfaced_and_queue_continues(self, store):
        errors = []
        store.observe_errors().subscribe(errors.append)

        failed = store.submit(Fail(message="boom"))
        store.submit(Increment())

        with pytest.raises(RuntimeError, match="boom"):
            await failed
        await store.join()

        assert store.state.count == 1
        assert [str(e) for e in errors] == ["boom"]

    @pytest.mark.asyncio
    async def test_failure_reported_to_error_handler(self, store, error_reports):
        with pytest.raises(RuntimeError):
            await store.submit(Fail(message="bad"))

        assert error_reports[-1].details["action"] == "Fail"
        assert isinstance(error_reports[-1].__cause__, RuntimeError)

    @pytest.mark.asyncio
    async def test_submit_after_close(self, store):
        await store.submit(Increment())
        await store.close()

        assert store.closed
        with pytest.raises(StoreClosedError):
            store.submit(Increment())

    @pytest.mark.asyncio
    async def test_close_completes_streams_and_cancels_queued(self, store):
        completed = []
        store.observe_state().subscribe(on_completed=lambda: completed.append("state"))
        store.observe_effects().subscribe(on_completed=lambda: completed.append("effects"))

        future = store.submit(Increment())
        await store.close()

        assert future.cancelled()
        assert completed == ["state", "effects"]

    @pytest.mark.asyncio
    async def test_close_detaches_consumer(self, store, reducer):
        consumer = ConsumerScope()
        consumer.create()
        consumer.start()
        reducer.attach_consumer(consumer)
        source = Subject()
        values = []
        reducer.subscribe_once("feed", source, values.append)

        await store.close()
        source.on_next("after close")

        assert values == []
        assert source.observers == []
        assert reducer.cleared == 1
        assert reducer.binding_state is BindingState.SCOPE_DETACHED

    @pytest.mark.asyncio
    async def test_unawaited_failure_is_reported_once(self, store, error_reports):
        loop = asyncio.get_running_loop()
        unhandled = []
        previous = loop.get_exception_handler()
        loop.set_exception_handler(lambda _, context: unhandled.append(context))
        try:
            store.submit(Fail(message="fire and forget"))
            store.submit(Increment())
            await store.join()
            gc.collect()
        finally:
            loop.set_exception_handler(previous)

        assert [str(e.__cause__) for e in error_reports] == ["fire and forget"]
        assert unhandled == []


class TestThreads:

    @pytest.mark.asyncio
    async def test_submit_threadsafe(self, store):
        await store.start()

        def worker():
            for _ in range(5):
                store.submit_threadsafe(Increment())
            store.submit_threadsafe(AddItem(item="done")).result(timeout=5)

        await asyncio.to_thread(worker)

        assert store.state == CounterState(count=5, items=("done",))

    def test_submit_threadsafe_requires_started_store(self, store):
        with pytest.raises(StoreError, match="not been started"):
            store.submit_threadsafe(Increment())


class TestMiddlewareAndConfig:

    @pytest.mark.asyncio
    async def test_middleware_sees_each_action(self):
        calls = []

        class Recorder(BaseMiddleware):
            def on_next(self, action, prev_state):
                calls.append(("next", type(action).__name__, prev_state.count))

            def on_complete(self, next_state, action):
                calls.append(("complete", type(action).__name__, next_state.count))

            def on_error(self, error, action):
                calls.append(("error", type(action).__name__, str(error)))

        store = Store(CounterState(), SampleReducer(), middleware=(Recorder,))
        await store.submit(Increment())
        with pytest.raises(RuntimeError):
            await store.submit(Fail(message="nope"))

        assert calls == [
            ("next", "Increment", 0),
            ("complete", "Increment", 1),
            ("next", "Fail", 1),
            ("error", "Fail", "nope"),
        ]

    @pytest.mark.asyncio
    async def test_performance_monitor_collects_metrics(self):
        monitor = PerformanceMonitorMiddleware(threshold_ms=10_000)
        store = Store(CounterState(), SampleReducer(), middleware=(monitor,))

        await store.submit(Increment())
        await store.submit(Increment())

        assert monitor.get_metrics()["Increment"]["count"] == 2

    @pytest.mark.asyncio
    async def test_log_actions_config(self, caplog):
        store = Store(CounterState(), SampleReducer(), config=StoreConfig(log_actions=True))

        with caplog.at_level(logging.INFO, logger="reducex"):
            await store.submit(Increment())

        assert any("Increment" in record.getMessage() for record in caplog.records)

    @pytest.mark.asyncio
    async def test_dict_state_is_frozen(self):
        class DictReducer(Reducer):
            async def process(self, action):
                self.state(lambda s: {**s, "tags": ["a", "b"]})

        store = create_store({"count": 0}, DictReducer())
        assert isinstance(store.state, Map)

        await store.submit("tag")

        assert isinstance(store.state, Map)
        assert store.state["tags"] == ("a", "b")

    def test_freeze_can_be_disabled(self):
        store = Store({"count": 0}, SampleReducer(), config=StoreConfig(freeze_state=False))

        assert store.state == {"count": 0}
        assert type(store.state) is dict

    def test_config_min_active_state_reaches_reducer(self):
        from reducex import LifecycleState

        reducer = SampleReducer()
        Store(CounterState(), reducer, config=StoreConfig(min_active_state="resumed"))

        assert reducer.default_min_active_state is LifecycleState.RESUMED


def test_worker_runs_on_loop_thread():
    # 工作者只在事件迴圈執行緒上處理 Action
    threads = []

    class ThreadRecorder(Reducer):
        async def process(self, action):
            threads.append(threading.get_ident())

    async def main():
        store = Store(None, ThreadRecorder())
        await store.submit("a")
        await store.close()

    asyncio.run(main())

    assert threads == [threading.get_ident()]
