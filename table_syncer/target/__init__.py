"""同步目标模块"""

from .base import Target, TargetConfig, TargetRegistry
from .db_target import DBTarget, DBTargetConfig

__all__ = ["Target", "TargetConfig", "TargetRegistry", "DBTarget", "DBTargetConfig"]
