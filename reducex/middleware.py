"""
基於 reducex 的中介軟體定義模組。

Store 的工作者在處理每個 Action 時，會依註冊順序進入每個中介軟體的
action_context，用於日誌記錄、性能監控等橫切邏輯。
中介軟體只觀察處理過程，不會改變 Action 或處理順序。
"""

import contextlib
import logging
import time
from typing import Any, Dict, Generator, List

from .immutable_utils import to_dict
from .types import ActionContext

logger = logging.getLogger(__name__)


def _action_name(action: Any) -> str:
    return type(action).__name__


# ———— Base Middleware ————
class BaseMiddleware:
    """
    基礎中介類，定義所有中介可能實現的鉤子。
    """

    def on_next(self, action: Any, prev_state: Any) -> None:
        """
        在 action 交給 reducer 之前調用。

        Args:
            action: 正在處理的 Action
            prev_state: 處理之前的狀態
        """
        pass

    def on_complete(self, next_state: Any, action: Any) -> None:
        """
        在 reducer 處理完 action 之後調用。

        Args:
            next_state: 處理之後的最新狀態
            action: 剛剛處理的 Action
        """
        pass

    def on_error(self, error: Exception, action: Any) -> None:
        """
        如果處理過程中拋出異常，則調用此鉤子。異常仍會繼續往外拋。

        Args:
            error: 拋出的異常
            action: 導致異常的 Action
        """
        pass

    def teardown(self) -> None:
        """
        當 Store 關閉時調用，用於清理中介軟體持有的資源。
        """
        pass

    @contextlib.contextmanager
    def action_context(self, action: Any, prev_state: Any) -> Generator[ActionContext, None, None]:
        """
        以上下文管理器包住一次 action 處理。

        Store 會在處理完成後把 next_state 寫入 context；
        子類覆蓋此方法時應負責呼叫對應的 hook。

        Args:
            action: 要處理的 Action
            prev_state: 處理前的狀態

        Yields:
            ActionContext: 上下文數據
        """
        context: ActionContext = {
            'action': action,
            'prev_state': prev_state,
            'next_state': None,
            'error': None,
        }
        self.on_next(action, prev_state)
        try:
            yield context
            if context.get('next_state') is not None:
                self.on_complete(context['next_state'], action)
        except Exception as err:
            context['error'] = err
            self.on_error(err, action)
            raise


# ———— LoggerMiddleware ————
class LoggerMiddleware(BaseMiddleware):
    """
    日誌中介，記錄每個 action 處理前和處理後的 state。

    使用場景:
    - 偵錯時需要觀察每次 state 的變化。
    - 確保 action 的執行順序正確。
    """

    def __init__(self, level: int = logging.INFO, log: logging.Logger = logger):
        self.level = level
        self.log = log

    def on_next(self, action: Any, prev_state: Any) -> None:
        self.log.log(self.level, "▶️ processing %s: %r", _action_name(action), action)
        self.log.log(self.level, "🔄 state before %s: %s", _action_name(action), to_dict(prev_state))

    def on_complete(self, next_state: Any, action: Any) -> None:
        self.log.log(self.level, "✅ state after %s: %s", _action_name(action), to_dict(next_state))

    def on_error(self, error: Exception, action: Any) -> None:
        self.log.error("❌ error in %s: %s", _action_name(action), error)


# ———— PerformanceMonitorMiddleware ————
class PerformanceMonitorMiddleware(BaseMiddleware):
    """
    性能監控中間件，記錄 action 處理時間（包含 process 內 await 的時間）。
    """

    def __init__(self, threshold_ms: float = 100, log_all: bool = False):
        """
        初始化 PerformanceMonitorMiddleware。

        Args:
            threshold_ms: 性能警告閾值，單位為毫秒，預設為 100 毫秒
            log_all: 是否記錄所有 action 的性能指標，預設為 False (只記錄超過閾值的)
        """
        self.threshold_ms = threshold_ms
        self.log_all = log_all
        self.metrics: Dict[str, List[float]] = {}

    @contextlib.contextmanager
    def action_context(self, action: Any, prev_state: Any) -> Generator[ActionContext, None, None]:
        context: ActionContext = {
            'action': action,
            'prev_state': prev_state,
            'next_state': None,
            'error': None,
            'timestamp': time.time(),
        }
        action_type = _action_name(action)
        start_time = time.perf_counter()
        try:
            yield context
        except Exception as err:
            context['error'] = err
            elapsed_ms = (time.perf_counter() - start_time) * 1000
            logger.warning("❌ Action %s failed after %.2fms: %s", action_type, elapsed_ms, err)
            raise
        elapsed_ms = (time.perf_counter() - start_time) * 1000
        self.metrics.setdefault(action_type, []).append(elapsed_ms)
        if elapsed_ms > self.threshold_ms:
            logger.warning("⚠️ Action %s exceeded threshold (%sms): took %.2fms", action_type, self.threshold_ms, elapsed_ms)
        elif self.log_all:
            logger.info("⏱️ Action %s took %.2fms", action_type, elapsed_ms)

    def get_metrics(self) -> Dict[str, Dict[str, float]]:
        """
        獲取性能指標統計信息。
        """
        result = {}
        for action_type, times in self.metrics.items():
            if not times:
                continue
            result[action_type] = {
                'avg': sum(times) / len(times),
                'max': max(times),
                'min': min(times),
                'count': len(times),
            }
        return result

    def teardown(self) -> None:
        self.metrics.clear()
