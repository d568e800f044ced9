"""
同步任务与运行元信息
"""
import json
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import IntEnum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar, Union

T = TypeVar("T")


class SyncStatus(IntEnum):
    """同步状态，只能前进"""
    PENDING = 1
    RUNNING = 2
    SUCCESS = 3
    FAILED = 4

    @property
    def terminal(self) -> bool:
        return self in (SyncStatus.SUCCESS, SyncStatus.FAILED)


@dataclass(frozen=True)
class Filter:
    """过滤条件，between 的 value 为两个元素的列表"""
    field: str
    op: str = "="
    value: Any = None

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Filter":
        op = _pick(data, "op", "operator", default="=")
        value = _pick(data, "value")
        if isinstance(value, list):
            value = tuple(value)
        return Filter(field=_pick(data, "field"), op=op, value=value)


@dataclass(frozen=True)
class Order:
    """排序条件"""
    field: str
    direction: str = "asc"

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Order":
        return Order(
            field=_pick(data, "field"),
            direction=_pick(data, "direction", "order", default="asc"),
        )


class TargetConfig:
    """目标配置，原样保存 JSON 对象，由目标自行解码"""

    def __init__(self, raw: Optional[Dict[str, Any]] = None):
        self._raw = dict(raw or {})

    @property
    def raw(self) -> Dict[str, Any]:
        return dict(self._raw)

    def decode(self, cls: Type[T]) -> T:
        """解码为 dataclass，忽略未知字段"""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in self._raw.items() if k in known})

    def __eq__(self, other: object) -> bool:
        return isinstance(other, TargetConfig) and self._raw == other._raw

    def __hash__(self) -> int:
        return hash(json.dumps(self._raw, sort_keys=True, default=str))

    def __repr__(self) -> str:
        return f"TargetConfig({self._raw!r})"


@dataclass(frozen=True)
class Task:
    """同步任务定义，注册后不可变"""
    id: str
    source: str
    target: str
    mapping: Dict[str, str] = field(default_factory=dict)
    filters: Tuple[Filter, ...] = ()
    orders: Tuple[Order, ...] = ()
    size: int = 100
    workers: int = 1
    stop_on_error: bool = False
    target_config: TargetConfig = field(default_factory=TargetConfig)

    # at 为每天的执行时间，interval 为 nd 时作为起始时间
    at: str = ""
    interval: str = ""
    immediately: bool = False

    def __post_init__(self):
        if self.size <= 0:
            raise ValueError(f"task {self.id}: size must be positive, got {self.size}")
        if self.workers <= 0:
            raise ValueError(f"task {self.id}: workers must be positive, got {self.workers}")

    def __hash__(self) -> int:
        return hash(self.id)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Task":
        """从 JSON 对象创建任务"""
        if not data.get("id"):
            raise ValueError("task id is required")
        if not data.get("source"):
            raise ValueError(f"task {data['id']}: source is required")

        size = int(data.get("size") or 0)
        workers = int(data.get("workers") or 0)

        return Task(
            id=str(data["id"]),
            source=data["source"],
            target=data.get("target") or "default",
            mapping=dict(data.get("mapping") or {}),
            filters=tuple(Filter.from_dict(f) for f in data.get("filters") or []),
            orders=tuple(Order.from_dict(o) for o in data.get("orders") or []),
            size=size if size > 0 else 100,
            workers=workers if workers > 0 else 1,
            stop_on_error=bool(data.get("stop_on_error", False)),
            target_config=TargetConfig(data.get("target_config")),
            at=data.get("at") or "",
            interval=str(data.get("interval") or ""),
            immediately=bool(data.get("immediately", False)),
        )


@dataclass
class SyncMeta:
    """单次运行的元信息，只属于一次运行"""
    total: int = 0
    version: int = 0
    status: SyncStatus = SyncStatus.PENDING
    error: Optional[BaseException] = None
    pages: int = 0
    failed_pages: int = 0
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    def transition(self, status: SyncStatus) -> None:
        """切换状态，不允许回退"""
        if status < self.status or (self.status.terminal and status != self.status):
            raise ValueError(f"invalid status transition: {self.status.name} -> {status.name}")
        self.status = status
        if status.terminal and self.finished_at is None:
            self.finished_at = datetime.now()

    def fail(self, error: BaseException) -> None:
        self.transition(SyncStatus.FAILED)
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total': self.total,
            'version': self.version,
            'status': self.status.name.lower(),
            'error': str(self.error) if self.error else None,
            'pages': self.pages,
            'failed_pages': self.failed_pages,
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
        }


def parse_tasks(data: List[Dict[str, Any]]) -> List[Task]:
    """解析任务列表"""
    if not isinstance(data, list):
        raise ValueError("task definitions must be a JSON array")
    return [Task.from_dict(item) for item in data]


def load_tasks(path: Union[str, Path]) -> List[Task]:
    """从 JSON 文件加载任务"""
    with open(path, 'r', encoding='utf-8') as f:
        return parse_tasks(json.load(f))


def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    # 兼容首字母大写的键名
    for key in keys:
        for candidate in (key, key.capitalize()):
            if candidate in data:
                return data[candidate]
    return default
