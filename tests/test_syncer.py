"""
同步编排器测试
"""
import threading
import time
import unittest
from unittest.mock import Mock

from table_syncer.config.config import MonitorConfig, SyncerConfig
from table_syncer.core.errors import (
    MetaError, PageError, SourceConnectionError, TargetError, TargetNotFoundError, TaskNotFoundError
)
from table_syncer.core.syncer import Syncer, page_count
from table_syncer.core.task import SyncStatus, Task
from table_syncer.datasource.base import DatasourceRegistry
from table_syncer.monitor.metrics import MetricsCollector
from table_syncer.target.base import TargetRegistry

from tests.fakes import MemoryDatasource, MemoryTarget


def make_rows(count):
    return [{"id": i, "name": f" user{i} ", "age": f"{20 + i % 50}"} for i in range(1, count + 1)]


def make_task(**overrides):
    data = {
        "id": "users",
        "source": "mem://local/users",
        "mapping": {"id": "id", "name": "name|trim", "age": "age|int"},
        "size": 20,
        "workers": 3,
        "target": "memory",
    }
    data.update(overrides)
    return Task.from_dict(data)


class TestPageCount(unittest.TestCase):
    """页数计算测试"""

    def test_page_count(self):
        self.assertEqual(page_count(95, 20), 5)
        self.assertEqual(page_count(100, 20), 5)
        self.assertEqual(page_count(1, 20), 1)
        self.assertEqual(page_count(0, 20), 0)

    def test_invalid_size(self):
        with self.assertRaises(ValueError):
            page_count(10, 0)


class SyncerTestCase(unittest.TestCase):

    def setUp(self):
        self.source = MemoryDatasource(make_rows(95))
        self.target = MemoryTarget()

        self.datasources = DatasourceRegistry()
        self.datasources.register("mem", lambda url: self.source)

        self.targets = TargetRegistry()
        self.targets.register("memory", self.target)

        self.metrics = MetricsCollector(MonitorConfig(alert_webhook=None))
        self.syncer = Syncer(
            self.datasources,
            self.targets,
            settings=SyncerConfig(jitter_min_ms=0, jitter_max_ms=0),
            metrics=self.metrics,
        )


class TestSyncTask(SyncerTestCase):
    """正常同步流程测试"""

    def test_sync_all_pages(self):
        meta = self.syncer.sync_task(make_task())

        self.assertEqual(meta.total, 95)
        self.assertEqual(meta.pages, 5)
        self.assertEqual(meta.status, SyncStatus.SUCCESS)
        self.assertIsNone(meta.error)
        self.assertEqual(sorted(self.source.pages), [1, 2, 3, 4, 5])
        self.assertEqual(len(self.target.rows), 95)
        self.assertEqual(self.target.rows[1]["name"], "user1")
        self.assertEqual(self.target.rows[1]["age"], 21)
        self.assertEqual(self.target.after_calls, 1)

    def test_rows_stamped_with_run_version(self):
        meta = self.syncer.sync_task(make_task())

        self.assertEqual(meta.version, 1)
        self.assertTrue(all(r["version"] == 1 for r in self.target.rows.values()))

    def test_versions_increase_between_runs(self):
        first = self.syncer.sync_task(make_task())
        second = self.syncer.sync_task(make_task())

        self.assertGreater(second.version, first.version)

    def test_total_fixed_when_source_grows(self):
        original = self.target.sync_from
        grown = []

        def growing(config, rows, meta):
            # 写入第一页后源表新增 105 行
            if not grown:
                grown.append(True)
                self.source.rows = self.source.rows + make_rows(200)[95:]
            original(config, rows, meta)

        self.target.sync_from = growing
        meta = self.syncer.sync_task(make_task(workers=1))

        self.assertEqual(len(self.source.rows), 200)
        self.assertEqual(meta.total, 95)
        self.assertEqual(meta.pages, 5)
        self.assertEqual(sorted(self.source.pages), [1, 2, 3, 4, 5])

    def test_zero_total_skips_target(self):
        self.source.rows = []
        meta = self.syncer.sync_task(make_task())

        self.assertEqual(meta.total, 0)
        self.assertEqual(meta.status, SyncStatus.SUCCESS)
        self.assertEqual(self.target.before_calls, 0)
        self.assertEqual(self.target.after_calls, 0)

    def test_do_sync_by_id(self):
        self.syncer.add_task(make_task())
        meta = self.syncer.do_sync("users")

        self.assertEqual(meta.total, 95)
        self.assertEqual(self.syncer.get_task("users").id, "users")

    def test_do_sync_unknown_task(self):
        with self.assertRaises(TaskNotFoundError):
            self.syncer.do_sync("missing")

    def test_metrics_recorded(self):
        self.syncer.sync_task(make_task())

        last = self.metrics.get_metrics()["last_runs"]["users"]
        self.assertEqual(last["status"], "success")
        self.assertEqual(last["rows"], 95)


class TestSetupErrors(SyncerTestCase):
    """运行前错误测试"""

    def test_unregistered_scheme(self):
        with self.assertRaises(SourceConnectionError):
            self.syncer.sync_task(make_task(source="nope://x/y"))
        self.assertEqual(self.target.before_calls, 0)

    def test_connection_failure(self):
        def broken(url):
            raise OSError("refused")

        self.datasources.register("broken", broken)
        with self.assertRaises(SourceConnectionError):
            self.syncer.sync_task(make_task(source="broken://x/y"))

    def test_meta_failure(self):
        self.source.list_meta = Mock(side_effect=RuntimeError("count failed"))

        with self.assertRaises(MetaError):
            self.syncer.sync_task(make_task())
        self.assertEqual(self.target.before_calls, 0)

    def test_unknown_target(self):
        with self.assertRaises(TargetNotFoundError):
            self.syncer.sync_task(make_task(target="missing"))
        self.assertEqual(self.source.pages, [])

    def test_before_sync_failure_runs_no_pages(self):
        self.target.before_sync = Mock(side_effect=RuntimeError("no version"))

        with self.assertRaises(TargetError) as ctx:
            self.syncer.sync_task(make_task())

        self.assertEqual(ctx.exception.total, 95)
        self.assertIs(ctx.exception.meta.error, ctx.exception)
        self.assertEqual(ctx.exception.meta.status, SyncStatus.FAILED)
        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)
        self.assertEqual(self.source.pages, [])
        self.assertEqual(self.target.after_calls, 0)
        self.assertEqual(self.metrics.get_metrics()["last_runs"]["users"]["status"], "failed")


class TestPageErrors(SyncerTestCase):
    """页面错误测试"""

    def test_stop_on_error_fails_run(self):
        self.target.fail_on = 45
        with self.assertRaises(PageError) as ctx:
            self.syncer.sync_task(make_task(stop_on_error=True))

        error = ctx.exception
        self.assertEqual(error.page, 3)
        self.assertEqual(error.total, 95)
        self.assertEqual(error.meta.status, SyncStatus.FAILED)
        self.assertIs(error.meta.error, error)
        self.assertEqual(self.target.after_calls, 1)
        self.assertEqual(self.target.after_status, [SyncStatus.FAILED])

    def test_stop_on_error_stops_pending_pages(self):
        self.target.fail_on = 1
        with self.assertRaises(PageError):
            self.syncer.sync_task(make_task(stop_on_error=True, workers=1))

        # 第一页失败后不再写入其他页面
        self.assertEqual(self.target.batches, [])
        self.assertEqual(self.target.after_calls, 1)

    def test_in_flight_pages_finish_before_after_sync(self):
        lock = threading.Lock()
        started, finished, seen = [], [], []
        original_sync = self.target.sync_from
        original_after = self.target.after_sync

        def slow_sync(config, rows, meta):
            page = (rows[0]["id"] - 1) // 20 + 1
            with lock:
                started.append(page)
            try:
                if page == 1:
                    time.sleep(0.02)
                    raise RuntimeError("write failed")
                time.sleep(0.1)
                original_sync(config, rows, meta)
            finally:
                with lock:
                    finished.append(page)

        def after(config, meta):
            with lock:
                seen.append((sorted(started), sorted(finished)))
            original_after(config, meta)

        self.target.sync_from = slow_sync
        self.target.after_sync = after

        with self.assertRaises(PageError) as ctx:
            self.syncer.sync_task(make_task(stop_on_error=True, workers=3))

        self.assertEqual(ctx.exception.page, 1)
        started_pages, finished_pages = seen[0]
        self.assertGreater(len(started_pages), 1)
        self.assertEqual(started_pages, finished_pages)
        self.assertEqual(self.target.after_status, [SyncStatus.FAILED])

    def test_page_dropped_without_stop_on_error(self):
        self.target.fail_on = 45
        meta = self.syncer.sync_task(make_task(stop_on_error=False))

        self.assertEqual(meta.status, SyncStatus.SUCCESS)
        self.assertEqual(meta.failed_pages, 1)
        self.assertEqual(len(self.target.rows), 75)
        self.assertEqual(self.metrics.get_metrics()["recent_page_errors"][0]["page"], 3)

    def test_fetch_error_with_stop_on_error(self):
        original = self.source.list

        def flaky(option):
            if option.page == 2:
                raise RuntimeError("read timeout")
            return original(option)

        self.source.list = flaky
        with self.assertRaises(PageError) as ctx:
            self.syncer.sync_task(make_task(stop_on_error=True))

        self.assertEqual(ctx.exception.page, 2)
        self.assertIsInstance(ctx.exception.cause, RuntimeError)

    def test_after_sync_failure_keeps_status(self):
        self.target.after_sync = Mock(side_effect=RuntimeError("cleanup failed"))

        with self.assertRaises(TargetError) as ctx:
            self.syncer.sync_task(make_task())

        self.assertEqual(ctx.exception.meta.status, SyncStatus.SUCCESS)
        self.assertEqual(len(self.target.rows), 95)


class TestConcurrency(SyncerTestCase):
    """并发控制测试"""

    def test_worker_limit(self):
        active = []
        peak = []
        lock = threading.Lock()
        original = self.target.sync_from

        def tracked(config, rows, meta):
            with lock:
                active.append(1)
                peak.append(len(active))
            try:
                original(config, rows, meta)
            finally:
                with lock:
                    active.pop()

        self.target.sync_from = tracked
        self.source.rows = make_rows(200)
        self.syncer.settings = SyncerConfig(backlog=2, jitter_min_ms=5, jitter_max_ms=10)

        meta = self.syncer.sync_task(make_task(size=10, workers=3))

        self.assertEqual(meta.pages, 20)
        self.assertLessEqual(max(peak), 3)
        self.assertEqual(len(self.target.rows), 200)


class TestVersionRetention(unittest.TestCase):
    """版本保留窗口测试"""

    def test_old_versions_marked_and_deleted(self):
        target = MemoryTarget(max_version=3)
        target.rows = {
            v: {"id": v, "version": v, "sync_status": 1} for v in range(1, 10)
        }
        datasources = DatasourceRegistry()
        datasources.register("mem", lambda url: MemoryDatasource([{"id": 100}]))
        targets = TargetRegistry()
        targets.register("memory", target)

        syncer = Syncer(datasources, targets, settings=SyncerConfig(jitter_min_ms=0, jitter_max_ms=0))
        meta = syncer.sync_task(make_task(mapping={"id": "id"}))

        self.assertEqual(meta.version, 10)
        self.assertEqual(sorted(target.rows), [7, 8, 9, 100])
        self.assertTrue(all(target.rows[v]["sync_status"] == 0 for v in (7, 8, 9)))
        self.assertEqual(target.rows[100]["sync_status"], 1)


if __name__ == '__main__':
    unittest.main()
