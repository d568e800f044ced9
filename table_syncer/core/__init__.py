"""同步核心模块"""

from .errors import (
    MetaError,
    PageError,
    SourceConnectionError,
    SyncerError,
    TargetError,
    TargetNotFoundError,
    TaskNotFoundError,
)
from .field_mapper import FieldMapper
from .resolver import ResolverRegistry, ValueResolver
from .syncer import Syncer, page_count
from .task import Filter, Order, SyncMeta, SyncStatus, TargetConfig, Task, load_tasks
from .task_registry import TaskRegistry

__all__ = [
    "Syncer",
    "page_count",
    "FieldMapper",
    "ResolverRegistry",
    "ValueResolver",
    "Task",
    "Filter",
    "Order",
    "SyncMeta",
    "SyncStatus",
    "TargetConfig",
    "load_tasks",
    "TaskRegistry",
    "SyncerError",
    "TaskNotFoundError",
    "SourceConnectionError",
    "MetaError",
    "TargetNotFoundError",
    "TargetError",
    "PageError",
]
