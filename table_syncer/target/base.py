"""
同步目标接口与注册表
"""
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from ..core.resolver import Row
from ..core.task import SyncMeta, TargetConfig


class Target(ABC):
    """
    同步目标接口

    一次运行中 before_sync 和 after_sync 各调用一次，
    sync_from 会被多个页面线程并发调用。
    """

    @abstractmethod
    def before_sync(self, config: TargetConfig, meta: SyncMeta) -> None:
        """运行开始前调用，负责分配 meta.version"""
        pass

    @abstractmethod
    def sync_from(self, config: TargetConfig, rows: List[Row], meta: SyncMeta) -> None:
        """写入一页数据"""
        pass

    @abstractmethod
    def after_sync(self, config: TargetConfig, meta: SyncMeta) -> None:
        """运行结束后调用（失败时也会调用）"""
        pass


class TargetRegistry:
    """目标注册表，名称 -> 目标实例"""

    def __init__(self):
        self._targets: Dict[str, Target] = {}
        self._lock = threading.RLock()

    def register(self, name: str, target: Target) -> None:
        with self._lock:
            self._targets[name] = target

    def get(self, name: str) -> Optional[Target]:
        with self._lock:
            return self._targets.get(name)

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._targets)


__all__ = ["Target", "TargetConfig", "TargetRegistry"]
