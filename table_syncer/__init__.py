"""
按任务定义把数据源中的表分页同步到目标表
"""

__version__ = "1.0.0"

from .config.config import Config
from .core.syncer import Syncer
from .core.task import Task, load_tasks

__all__ = ["Syncer", "Config", "Task", "load_tasks"]
