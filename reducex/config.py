"""
Store 配置。

StoreConfig 以 pydantic 模型描述，可直接建構，或由環境變數覆寫：

    REDUCEX_NAME=todo
    REDUCEX_MIN_ACTIVE_STATE=RESUMED
    REDUCEX_LOG_ACTIONS=1
    REDUCEX_SLOW_ACTION_THRESHOLD_MS=50
"""
import os
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigurationError
from .lifecycle import LifecycleState


class StoreConfig(BaseModel):
    """Store / Reducer 的可調參數。"""

    model_config = ConfigDict(frozen=True)

    # 用於日誌與錯誤細節
    name: str = "store"
    # subscribe_once 與 StoreHost 收集資料的預設最低生命週期
    min_active_state: LifecycleState = LifecycleState.STARTED
    # 將 dict / list 狀態轉為不可變結構
    freeze_state: bool = True
    # 自動加上 LoggerMiddleware
    log_actions: bool = False
    # 超過此毫秒數的 action 會被 PerformanceMonitorMiddleware 警告
    slow_action_threshold_ms: Optional[float] = Field(default=None, gt=0)
    # 0 表示不限
    queue_maxsize: int = Field(default=0, ge=0)

    @field_validator("min_active_state", mode="before")
    @classmethod
    def _parse_state(cls, value: Any) -> Any:
        if isinstance(value, str):
            if value.strip().isdigit():
                return int(value)
            try:
                return LifecycleState[value.strip().upper()]
            except KeyError:
                raise ValueError(f"unknown lifecycle state {value!r}")
        return value

    @field_validator("min_active_state")
    @classmethod
    def _gate_must_be_live(cls, value: LifecycleState) -> LifecycleState:
        if value < LifecycleState.CREATED:
            raise ValueError("min_active_state must be at least CREATED")
        return value

    @classmethod
    def from_env(cls, prefix: str = "REDUCEX_", environ: Optional[Mapping[str, str]] = None, **overrides: Any) -> "StoreConfig":
        """
        從環境變數建立配置。

        Args:
            prefix: 環境變數前綴
            environ: 要讀取的映射，預設為 os.environ
            **overrides: 明確指定的值，優先於環境變數

        Returns:
            StoreConfig 實例

        Raises:
            ConfigurationError: 環境變數的值無法通過驗證
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for field in cls.model_fields:
            raw = environ.get(prefix + field.upper())
            if raw is not None:
                values[field] = raw
        values.update(overrides)
        try:
            return cls(**values)
        except ValidationError as err:
            first = err.errors()[0]
            key = ".".join(str(p) for p in first.get("loc", ())) or None
            raise ConfigurationError(
                f"invalid store configuration: {first.get('msg')}", "StoreConfig", key
            ) from err
