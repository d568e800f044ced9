"""配置模块"""

from .config import Config, DatabaseConfig, MonitorConfig, SyncerConfig, TargetEntryConfig

__all__ = ["Config", "DatabaseConfig", "MonitorConfig", "SyncerConfig", "TargetEntryConfig"]
