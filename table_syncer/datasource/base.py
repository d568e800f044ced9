"""
数据源接口与注册表
"""
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence
from urllib.parse import ParseResult, urlparse

from loguru import logger

from ..core.errors import SourceConnectionError
from ..core.resolver import Row
from ..core.task import Filter, Order


@dataclass(frozen=True)
class ListMeta:
    total: int = 0


@dataclass
class ListOption:
    """分页查询参数，page 从 1 开始"""
    page: int = 1
    limit: int = 0
    without_meta: bool = False
    selects: Sequence[str] = ()
    filters: Sequence[Filter] = ()
    orders: Sequence[Order] = ()

    @property
    def offset(self) -> int:
        return (max(self.page, 1) - 1) * self.limit


@dataclass
class ListResult:
    data: List[Row] = field(default_factory=list)
    # without_meta 时为 None
    meta: Optional[ListMeta] = None


class Datasource(ABC):
    """数据源接口"""

    @abstractmethod
    def list(self, option: ListOption) -> ListResult:
        """分页查询"""
        pass

    @abstractmethod
    def list_meta(self, *filters: Filter) -> ListMeta:
        """统计满足条件的记录数"""
        pass

    @abstractmethod
    def find(self, record_id: Any) -> Optional[Row]:
        pass

    @abstractmethod
    def create(self, data: Row) -> Any:
        pass

    @abstractmethod
    def update(self, record_id: Any, data: Row) -> int:
        pass

    @abstractmethod
    def update_many(self, data: Row, *filters: Filter) -> int:
        pass

    @abstractmethod
    def delete(self, record_id: Any) -> int:
        pass

    @abstractmethod
    def delete_many(self, *filters: Filter) -> int:
        pass


# 数据源构造函数，接收解析后的连接地址
DatasourceFactory = Callable[[ParseResult], Datasource]


class DatasourceRegistry:
    """数据源注册表，scheme -> 构造函数"""

    def __init__(self):
        self._factories: Dict[str, DatasourceFactory] = {}
        self._lock = threading.RLock()

    def register(self, scheme: str, factory: DatasourceFactory) -> None:
        with self._lock:
            self._factories[scheme] = factory

    def get(self, scheme: str) -> Optional[DatasourceFactory]:
        with self._lock:
            return self._factories.get(scheme)

    def connect(self, locator: str) -> Datasource:
        """
        根据连接地址创建数据源

        地址格式: scheme://authority/path?query
        """
        try:
            url = urlparse(locator)
        except ValueError as e:
            raise SourceConnectionError(f"invalid datasource locator {locator!r}: {e}") from e

        factory = self.get(url.scheme)
        if factory is None:
            raise SourceConnectionError(f"unregistered datasource: {url.scheme!r}")

        try:
            return factory(url)
        except SourceConnectionError:
            raise
        except Exception as e:
            logger.error(f"Failed to connect datasource {url.scheme}://{url.netloc}{url.path}: {e}")
            raise SourceConnectionError(f"failed to connect datasource {locator!r}: {e}") from e
