"""基本使用示例：不依赖配置文件，直接组装同步器"""

import os

from table_syncer import Syncer, Task
from table_syncer.config.config import DatabaseConfig, SyncerConfig
from table_syncer.core.resolver import ResolverRegistry
from table_syncer.datasource.base import DatasourceRegistry
from table_syncer.datasource.db import db_factory
from table_syncer.db.database import ConnectionManager
from table_syncer.target.base import TargetRegistry
from table_syncer.target.db_target import DBTarget


def gender(value, row, *args):
    """把 1/2 转换为文字"""
    return {1: "male", 2: "female"}.get(value, "unknown")


def main():
    """主函数"""
    connections = ConnectionManager({
        "remote": DatabaseConfig(
            host=os.getenv("SOURCE_DB_HOST", "localhost"),
            user=os.getenv("SOURCE_DB_USER", "root"),
            password=os.getenv("SOURCE_DB_PASSWORD", ""),
            database="source",
        ),
        "local": DatabaseConfig(database="warehouse"),
    })

    datasources = DatasourceRegistry()
    datasources.register("db", db_factory(connections))

    targets = TargetRegistry()
    targets.register("default", DBTarget(connections.get("local")))

    # 内置解析器之外再注册一个自定义解析器
    resolvers = ResolverRegistry.with_builtins()
    resolvers.register("gender", gender)

    syncer = Syncer(datasources, targets, resolvers=resolvers, settings=SyncerConfig())

    task = Task.from_dict({
        "id": "sync_users",
        "source": "db://remote/users",
        "mapping": {
            "id": "id",
            "name": "name|trim",
            "sex": "gender|gender;sex|int",
            "age": "age|int|default:0"
        },
        "filters": [{"field": "deleted", "op": "=", "value": 0}],
        "orders": [{"field": "id", "order": "asc"}],
        "size": 500,
        "workers": 4,
        "target_config": {
            "table": "users",
            "uniques": ["id"],
            "version_field": "sync_version",
            "sync_time_field": "synced_at",
            "sync_status_field": "sync_status",
            "max_version": 3
        }
    })
    syncer.add_task(task)

    print("开始同步 sync_users ...")
    meta = syncer.do_sync("sync_users")
    print(f"同步完成: 共 {meta.total} 行, {meta.pages} 页, 版本 {meta.version}, 失败页 {meta.failed_pages}")


if __name__ == "__main__":
    main()
