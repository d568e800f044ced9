"""
MySQL 同步目标，带版本号管理
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List

from loguru import logger

from ..core.errors import TargetError
from ..core.resolver import Row
from ..core.task import SyncMeta, TargetConfig
from ..db.database import Database, quote
from .base import Target

DEFAULT_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

STATUS_ACTIVE = 1
STATUS_INACTIVE = 0


@dataclass
class DBTargetConfig:
    """
    target_config 格式:
    {
        "table": "users",
        "uniques": ["id"],
        "updates": ["name", "age", "sync_version"],
        "version_field": "sync_version",
        "sync_time_field": "synced_at",
        "sync_time_fmt": "%Y-%m-%d %H:%M:%S",
        "sync_status_field": "sync_status",
        "max_version": 3
    }
    """
    table: str = ""
    uniques: List[str] = field(default_factory=list)
    updates: List[str] = field(default_factory=list)

    version_field: str = ""
    sync_time_field: str = ""
    sync_time_fmt: str = ""
    sync_status_field: str = ""
    max_version: int = 0


class DBTarget(Target):
    """写入 MySQL 表，upsert 并维护同步版本"""

    def __init__(self, database: Database):
        self.db = database

    def _config(self, conf: TargetConfig) -> DBTargetConfig:
        config = conf.decode(DBTargetConfig)
        if not config.table:
            raise TargetError("[target] db table is required")
        return config

    def before_sync(self, conf: TargetConfig, meta: SyncMeta) -> None:
        config = self._config(conf)

        if not config.version_field:
            return

        current = self.db.scalar(
            f"SELECT MAX({quote(config.version_field)}) AS version FROM {quote(config.table)}"
        )
        meta.version = int(current or 0) + 1
        logger.debug(f"Assigned version {meta.version} for {config.table}.{config.version_field}")

    def sync_from(self, conf: TargetConfig, rows: List[Row], meta: SyncMeta) -> None:
        config = self._config(conf)
        if not rows:
            return

        synced_at = datetime.now().strftime(config.sync_time_fmt or DEFAULT_TIME_FORMAT)

        stamped = []
        for row in rows:
            row = dict(row)
            if config.version_field:
                row[config.version_field] = meta.version
            if config.sync_time_field:
                row[config.sync_time_field] = synced_at
            if config.sync_status_field:
                row[config.sync_status_field] = STATUS_ACTIVE
            stamped.append(row)

        self.db.upsert_many(
            config.table,
            stamped,
            update_columns=config.updates,
            unique_keys=config.uniques,
        )

    def after_sync(self, conf: TargetConfig, meta: SyncMeta) -> None:
        config = self._config(conf)
        if not config.version_field:
            return

        table = quote(config.table)
        version = quote(config.version_field)

        # 旧版本标记为失效
        if config.sync_status_field:
            affected = self.db.execute(
                f"UPDATE {table} SET {quote(config.sync_status_field)} = %s WHERE {version} < %s",
                (STATUS_INACTIVE, meta.version)
            )
            logger.debug(f"Marked {affected} rows inactive in {config.table} (version < {meta.version})")

        # 删除超出保留窗口的版本
        if config.max_version > 0:
            affected = self.db.execute(
                f"DELETE FROM {table} WHERE {version} < %s AND {version} > %s",
                (meta.version - config.max_version, 0)
            )
            logger.debug(f"Deleted {affected} rows from {config.table} (version < {meta.version - config.max_version})")
