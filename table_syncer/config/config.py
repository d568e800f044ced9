"""
配置管理模块
"""
import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional


@dataclass
class DatabaseConfig:
    """数据库连接配置"""
    host: str = "localhost"
    port: int = 3306
    user: str = "root"
    password: str = ""
    database: str = ""
    charset: str = "utf8mb4"
    pool_size: int = 5


@dataclass
class TargetEntryConfig:
    """目标配置，type 目前只支持 db"""
    connection: str
    type: str = "db"


@dataclass
class SyncerConfig:
    """同步器配置"""
    tasks_file: str = "tasks.json"
    backlog: int = 1000  # 每次运行等待队列上限
    jitter_min_ms: int = 10  # 写入前随机延迟下限（毫秒）
    jitter_max_ms: int = 30  # 写入前随机延迟上限（毫秒）
    timezone: Optional[str] = None  # 调度时区，默认本地时区


@dataclass
class MonitorConfig:
    """监控配置"""
    enable_metrics: bool = True
    alert_webhook: Optional[str] = None
    alert_on_failure: bool = True
    log_level: str = "INFO"
    log_file: str = "syncer.log"
    log_max_size: str = "100MB"
    log_backup_count: int = 10


class Config:
    """配置管理器"""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or self._find_config_file()
        self._data: Dict[str, Any] = {}

        # 配置对象
        self.databases: Dict[str, DatabaseConfig] = {}
        self.targets: Dict[str, TargetEntryConfig] = {}
        self.syncer: SyncerConfig = SyncerConfig()
        self.monitor: MonitorConfig = MonitorConfig()

        # 加载配置
        self.load()

    def _find_config_file(self) -> str:
        """查找配置文件"""
        search_paths = [
            Path.cwd() / "config.json",
            Path.cwd() / "config" / "config.json",
            Path.home() / ".table_syncer" / "config.json",
            Path("/etc/table_syncer/config.json")
        ]

        for path in search_paths:
            if path.exists():
                return str(path)

        # 默认配置文件路径
        return str(Path.cwd() / "config.json")

    def load(self) -> None:
        """加载配置文件"""
        if not os.path.exists(self.config_path):
            self._create_default_config()

        with open(self.config_path, 'r', encoding='utf-8') as f:
            self._data = json.load(f)

        self._parse_config()

    def _parse_config(self) -> None:
        """解析配置"""
        self.databases = {
            name: DatabaseConfig(**conf)
            for name, conf in self._data.get('databases', {}).items()
        }

        self.targets = {
            name: TargetEntryConfig(**conf)
            for name, conf in self._data.get('targets', {}).items()
        }

        self.syncer = SyncerConfig(**self._data.get('syncer', {}))
        self.monitor = MonitorConfig(**self._data.get('monitor', {}))

    def _create_default_config(self) -> None:
        """创建默认配置文件"""
        default_config = {
            "databases": {
                "remote": {
                    "host": "localhost",
                    "port": 3306,
                    "user": "root",
                    "password": "",
                    "database": "source"
                },
                "local": {
                    "host": "localhost",
                    "port": 3306,
                    "user": "root",
                    "password": "",
                    "database": "warehouse"
                }
            },
            "targets": {
                "default": {"type": "db", "connection": "local"}
            },
            "syncer": {
                "tasks_file": "tasks.json",
                "backlog": 1000,
                "jitter_min_ms": 10,
                "jitter_max_ms": 30
            },
            "monitor": {
                "enable_metrics": True,
                "log_level": "INFO",
                "log_file": "syncer.log"
            }
        }

        directory = os.path.dirname(self.config_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.config_path, 'w', encoding='utf-8') as f:
            json.dump(default_config, f, indent=4, ensure_ascii=False)

        self._data = default_config

    def to_dict(self) -> Dict[str, Any]:
        return {
            "databases": {name: asdict(conf) for name, conf in self.databases.items()},
            "targets": {name: asdict(conf) for name, conf in self.targets.items()},
            "syncer": asdict(self.syncer),
            "monitor": asdict(self.monitor)
        }

    def save(self) -> None:
        """保存配置"""
        with open(self.config_path, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, indent=4, ensure_ascii=False)

    def validate(self) -> bool:
        """验证配置是否有效"""
        for name, target in self.targets.items():
            if target.type != "db":
                raise ValueError(f"目标 '{name}' 的类型 '{target.type}' 不受支持")
            if target.connection not in self.databases:
                raise ValueError(f"目标 '{name}' 引用了不存在的数据库连接 '{target.connection}'")

        if self.syncer.backlog <= 0:
            raise ValueError("syncer.backlog 必须大于 0")

        if self.syncer.jitter_min_ms < 0 or self.syncer.jitter_max_ms < self.syncer.jitter_min_ms:
            raise ValueError("syncer.jitter_min_ms / jitter_max_ms 配置无效")

        return True

    def get(self, key: str, default: Any = None) -> Any:
        """获取配置值，支持 a.b.c 形式的键"""
        keys = key.split('.')
        value = self._data

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """设置配置值"""
        keys = key.split('.')
        data = self._data

        for k in keys[:-1]:
            if k not in data:
                data[k] = {}
            data = data[k]

        data[keys[-1]] = value
        self._parse_config()
