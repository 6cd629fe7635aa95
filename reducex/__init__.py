"""
reducex：單向資料流的 Store / Reducer。

單一狀態格只能由序列化的 Action 處理流程修改，搭配一次性的 Effect 通道，
以及綁定消費端生命週期、以 key 去重的外部資料源訂閱。
"""

from .errors import (
    ReducexError, ReducerError, ReducerNotBoundError, ReducerAlreadyBoundError,
    UnhandledActionError, StoreError, StoreClosedError, SubscriptionError,
    LifecycleError, ConfigurationError, ErrorHandler, global_error_handler, handle_error,
)
from .models import State, Action, Effect
from .lifecycle import LifecycleState, ConsumerScope, GatedCollection
from .config import StoreConfig
from .scope import TaskScope
from .reducer import Reducer, BindingState
from .action_handlers import DispatchReducer, on
from .middleware import BaseMiddleware, LoggerMiddleware, PerformanceMonitorMiddleware
from .store import Store, create_store
from .store_selectors import create_selector
from .host import StoreHost
from .immutable_utils import to_immutable, to_dict

__version__ = "0.1.0"

# 匯出所有公開 API
__all__ = [
    # Errors
    "ReducexError", "ReducerError", "ReducerNotBoundError", "ReducerAlreadyBoundError",
    "UnhandledActionError", "StoreError", "StoreClosedError", "SubscriptionError",
    "LifecycleError", "ConfigurationError", "ErrorHandler", "global_error_handler", "handle_error",

    # Values
    "State", "Action", "Effect",

    # Lifecycle & scopes
    "LifecycleState", "ConsumerScope", "GatedCollection", "TaskScope",

    # Reducer
    "Reducer", "BindingState", "DispatchReducer", "on",

    # Store
    "Store", "create_store", "StoreConfig", "StoreHost", "create_selector",

    # Middleware
    "BaseMiddleware", "LoggerMiddleware", "PerformanceMonitorMiddleware",

    # Immutable Utils
    "to_immutable", "to_dict",
]
