"""
reducex 錯誤處理模組。

定義所有 reducex 異常類別，以及集中式的錯誤處理器。
程式設計錯誤（例如在綁定前呼叫 Reducer API）一律立即拋出；
執行期錯誤則交由 ErrorHandler 記錄並通知已註冊的處理函數。
"""

import functools
import logging
import traceback
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ReducexError(Exception):
    """所有 reducex 異常的基礎類。"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.traceback = traceback.format_exc()

    def to_dict(self) -> Dict[str, Any]:
        """
        將異常轉換為可序列化的字典。

        Returns:
            包含錯誤類型、訊息與細節的字典
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "traceback": self.traceback,
        }

    def __str__(self) -> str:
        if not self.details:
            return self.message
        details = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
        return f"{self.message} ({details})"


class ReducerError(ReducexError):
    """與 Reducer 相關的錯誤。"""

    def __init__(self, message: str, reducer_name: str, action_type: Optional[str] = None, **kwargs: Any) -> None:
        details = {"reducer_name": reducer_name, **kwargs}
        if action_type is not None:
            details["action_type"] = action_type
        super().__init__(message, details)
        self.reducer_name = reducer_name
        self.action_type = action_type


class ReducerNotBoundError(ReducerError):
    """Reducer 尚未被 Store 綁定就被使用。"""

    def __init__(self, reducer_name: str, operation: str) -> None:
        super().__init__(
            f"Reducer not bound: cannot call {operation}() before bind(). "
            "Construct a Store (or use bind_for_test) first.",
            reducer_name,
            operation=operation,
        )


class ReducerAlreadyBoundError(ReducerError):
    """Reducer 被綁定了第二次。"""

    def __init__(self, reducer_name: str) -> None:
        super().__init__("Reducer is already bound to a store", reducer_name)


class UnhandledActionError(ReducerError):
    """DispatchReducer 收到沒有對應處理函數的 Action。"""

    def __init__(self, reducer_name: str, action: Any) -> None:
        super().__init__(
            f"No handler registered for {type(action).__name__}",
            reducer_name,
            action_type=type(action).__name__,
        )
        self.action = action


class StoreError(ReducexError):
    """與 Store 相關的錯誤。"""

    def __init__(self, message: str, operation: str, **kwargs: Any) -> None:
        super().__init__(message, {"operation": operation, **kwargs})
        self.operation = operation


class StoreClosedError(StoreError):
    """Store 已關閉後仍嘗試提交 Action。"""

    def __init__(self, operation: str) -> None:
        super().__init__("Store is closed", operation)


class SubscriptionError(ReducexError):
    """與外部資料源訂閱相關的錯誤。"""

    def __init__(self, message: str, key: Optional[str] = None, **kwargs: Any) -> None:
        details = dict(kwargs)
        if key is not None:
            details["key"] = key
        super().__init__(message, details)
        self.key = key


class LifecycleError(ReducexError):
    """非法的生命週期狀態轉換。"""

    def __init__(self, message: str, scope_name: str, **kwargs: Any) -> None:
        super().__init__(message, {"scope": scope_name, **kwargs})
        self.scope_name = scope_name


class ConfigurationError(ReducexError):
    """配置相關的錯誤。"""

    def __init__(self, message: str, component: str, config_key: Optional[str] = None, **kwargs: Any) -> None:
        details = {"component": component, **kwargs}
        if config_key is not None:
            details["config_key"] = config_key
        super().__init__(message, details)
        self.component = component
        self.config_key = config_key


class ErrorHandler:
    """
    集中式錯誤處理器，用於捕獲、日誌記錄和錯誤報告。

    所有未被應用程式自行處理的執行期錯誤（process 失敗、背景任務失敗、
    訂閱回調失敗）都會經過這裡。
    """

    def __init__(self, log_to_console: bool = True, log_to_file: bool = False, log_file: Optional[str] = None) -> None:
        self.log_to_console = log_to_console
        self.log_to_file = log_to_file
        self.log_file = log_file
        self.handlers: List[Callable[[ReducexError], None]] = []
        self._file_handler: Optional[logging.Handler] = None

        if log_to_file:
            if not log_file:
                raise ConfigurationError("log_file is required when log_to_file is set", "ErrorHandler", "log_file")
            self._file_handler = logging.FileHandler(log_file, encoding="utf-8")
            self._file_handler.setFormatter(
                logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
            )
            logger.addHandler(self._file_handler)

    def register_handler(self, handler: Callable[[ReducexError], None]) -> None:
        """
        註冊一個錯誤處理函數。

        Args:
            handler: 接收 ReducexError 的回調
        """
        self.handlers.append(handler)

    def unregister_handler(self, handler: Callable[[ReducexError], None]) -> None:
        if handler in self.handlers:
            self.handlers.remove(handler)

    def handle(self, error: Union[ReducexError, Exception], context: Optional[Dict[str, Any]] = None) -> None:
        """
        處理一個錯誤：記錄日誌並通知所有處理函數。

        一般異常會被包裝成 ReducexError，原始異常保存在 __cause__。

        Args:
            error: 要處理的異常
            context: 額外的上下文資訊，會併入錯誤細節
        """
        if not isinstance(error, ReducexError):
            wrapped = ReducexError(str(error) or error.__class__.__name__, {"error_type": error.__class__.__name__})
            wrapped.__cause__ = error
            wrapped.traceback = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )
            error = wrapped
        if context:
            error.details.update(context)

        if self.log_to_console or self.log_to_file:
            logger.error("%s: %s", error.__class__.__name__, error, exc_info=error.__cause__ or error)

        for handler in list(self.handlers):
            try:
                handler(error)
            except Exception:
                logger.exception("error handler %r failed", handler)

    def close(self) -> None:
        if self._file_handler is not None:
            logger.removeHandler(self._file_handler)
            self._file_handler.close()
            self._file_handler = None


# 單例錯誤處理器
global_error_handler = ErrorHandler()


def handle_error(func: Callable[..., T]) -> Callable[..., T]:
    """
    裝飾器：將函數拋出的異常交給 global_error_handler 處理後再重新拋出。
    """
    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return func(*args, **kwargs)
        except Exception as err:
            global_error_handler.handle(err, {"function": func.__qualname__})
            raise

    return wrapper
