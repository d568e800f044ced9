"""
表同步服务
主程序入口
"""
import argparse
import json
import signal
import sys
import threading
from typing import List, Optional

from loguru import logger

from .config.config import Config
from .core.errors import SyncerError
from .core.syncer import Syncer
from .core.task import load_tasks
from .core.task_registry import TaskRegistry
from .datasource.base import DatasourceRegistry
from .datasource.db import db_factory
from .db.database import ConnectionManager
from .monitor.logger import setup_logger
from .monitor.metrics import MetricsCollector
from .scheduler.task_scheduler import TaskScheduler
from .target.base import TargetRegistry
from .target.db_target import DBTarget


class SyncApplication:
    """同步应用主类"""

    def __init__(self, config: Config, tasks_file: Optional[str] = None):
        self.config = config
        self.tasks_file = tasks_file or config.syncer.tasks_file
        self.syncer: Optional[Syncer] = None
        self.scheduler: Optional[TaskScheduler] = None
        self._stop = threading.Event()

    def initialize(self) -> None:
        """初始化各注册表和同步器"""
        self.config.validate()

        connections = ConnectionManager(self.config.databases)

        datasources = DatasourceRegistry()
        datasources.register("db", db_factory(connections))

        targets = TargetRegistry()
        for name, entry in self.config.targets.items():
            targets.register(name, DBTarget(connections.get(entry.connection)))

        metrics = MetricsCollector(self.config.monitor) if self.config.monitor.enable_metrics else None

        self.syncer = Syncer(
            datasources,
            targets,
            tasks=TaskRegistry(load_tasks(self.tasks_file)),
            settings=self.config.syncer,
            metrics=metrics,
        )

        logger.info(f"Loaded {len(self.syncer.tasks)} tasks from {self.tasks_file}")
        logger.info(f"Databases: {', '.join(connections.names()) or '-'}")
        logger.info(f"Targets: {', '.join(targets.names()) or '-'}")

    def run_task(self, task_id: str) -> int:
        """执行单个任务，返回退出码"""
        try:
            meta = self.syncer.do_sync(task_id)
        except SyncerError as e:
            logger.error(f"Task {task_id} failed after {e.total} rows: {e}")
            return 1

        print(json.dumps(meta.to_dict(), ensure_ascii=False, indent=2))
        return 0

    def list_tasks(self) -> List[str]:
        lines = []
        for task in self.syncer.tasks.all():
            schedule = task.interval or task.at or ("immediately" if task.immediately else "-")
            lines.append(f"{task.id}\t{task.source} -> {task.target}\t{schedule}")
        return lines

    def start(self) -> None:
        """启动调度，阻塞直到收到退出信号"""
        self.scheduler = TaskScheduler(self.syncer, timezone=self.config.syncer.timezone)
        scheduled = self.scheduler.schedule()
        if not scheduled:
            logger.warning("No scheduled tasks, exiting")
            return

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        self.scheduler.start()
        logger.info("Syncer started, press Ctrl+C to stop")

        while not self._stop.wait(60):
            self._print_status()

        self.stop()

    def stop(self) -> None:
        if self.scheduler:
            self.scheduler.shutdown(wait=True)
        logger.info("Application stopped")

    def _signal_handler(self, signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        self._stop.set()

    def _print_status(self) -> None:
        if not self.syncer.metrics:
            return
        health = self.syncer.metrics.get_health_status()
        logger.info(f"Health: {health['status']}, success rates: {health['metrics_summary']['success_rates']}")
        for issue in health['issues']:
            logger.warning(issue)


def main(argv: Optional[List[str]] = None) -> int:
    """主函数"""
    parser = argparse.ArgumentParser(description='Paginated table sync service')
    parser.add_argument('-c', '--config', help='Path to configuration file', default=None)
    parser.add_argument('-t', '--tasks', help='Path to task definition file', default=None)
    parser.add_argument('--run', metavar='TASK_ID', help='Run one task and exit')
    parser.add_argument('--list', action='store_true', help='List tasks and exit')
    parser.add_argument('--init', action='store_true', help='Initialize configuration file')

    args = parser.parse_args(argv)

    config = Config(args.config)

    if args.init:
        config.save()
        print(f"Configuration file created: {config.config_path}")
        print("Please edit the configuration file and run the service again")
        return 0

    setup_logger(config.monitor)

    app = SyncApplication(config, args.tasks)
    try:
        app.initialize()
    except (ValueError, OSError) as e:
        logger.error(f"Failed to initialize application: {e}")
        return 1

    if args.list:
        for line in app.list_tasks():
            print(line)
        return 0

    if args.run:
        return app.run_task(args.run)

    app.start()
    return 0


if __name__ == '__main__':
    sys.exit(main())
