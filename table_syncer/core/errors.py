"""
同步异常定义
"""
from typing import Any, Optional


class SyncerError(Exception):
    """同步器异常基类，可附带本次运行的总数和元信息"""

    def __init__(self, message: str, total: int = 0, meta: Optional[Any] = None):
        super().__init__(message)
        self.total = total
        self.meta = meta


class TaskNotFoundError(SyncerError):
    """任务不存在"""


class SourceConnectionError(SyncerError):
    """数据源无法连接（未注册的 scheme 或连接失败）"""


class MetaError(SyncerError):
    """统计数据源总数失败"""


class TargetNotFoundError(SyncerError):
    """目标不存在"""


class TargetError(SyncerError):
    """目标钩子或配置错误"""


class PageError(SyncerError):
    """单页拉取或写入失败"""

    def __init__(self, page: int, cause: BaseException, total: int = 0, meta: Optional[Any] = None):
        super().__init__(f"page {page} failed: {cause}", total=total, meta=meta)
        self.page = page
        self.cause = cause
