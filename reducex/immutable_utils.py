# reducex/immutable_utils.py
from typing import Any

from immutables import Map
from pydantic import BaseModel


def to_immutable(obj: Any) -> Any:
    """將字典、列表、集合轉換為不可變形式 (Pydantic 模型保持原樣)"""
    if isinstance(obj, BaseModel):
        # frozen 模型本身就不可變，保留型別以便 reducer 使用 update()
        return obj
    elif isinstance(obj, Map):
        return obj
    elif isinstance(obj, dict):
        # 字典轉為 Map
        return Map({k: to_immutable(v) for k, v in obj.items()})
    elif isinstance(obj, (list, tuple)):
        # 列表轉為元組
        return tuple(to_immutable(i) for i in obj)
    elif isinstance(obj, (set, frozenset)):
        # 集合轉為凍結集合
        return frozenset(to_immutable(i) for i in obj)
    # 其他類型直接返回
    return obj


def to_dict(obj: Any) -> Any:
    """將 Map、Pydantic 模型及其巢狀結構轉換為普通字典，方便記錄日誌"""
    if isinstance(obj, BaseModel):
        return obj.model_dump()
    elif isinstance(obj, Map):
        return {k: to_dict(v) for k, v in obj.items()}
    elif isinstance(obj, tuple):
        return [to_dict(i) for i in obj]
    elif isinstance(obj, frozenset):
        return [to_dict(i) for i in obj]
    return obj
