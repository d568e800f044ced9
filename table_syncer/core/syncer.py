"""
同步编排器

一次运行: 统计总数 -> 分页 -> 线程池并发拉取、映射、写入 -> 汇总状态 -> 目标收尾
"""
import math
import random
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import List, Optional

from loguru import logger

from ..config.config import SyncerConfig
from ..datasource.base import Datasource, DatasourceRegistry, ListOption
from ..monitor.metrics import MetricsCollector
from ..target.base import Target, TargetRegistry
from .errors import MetaError, PageError, SyncerError, TargetError, TargetNotFoundError, TaskNotFoundError
from .field_mapper import FieldMapper
from .resolver import ResolverRegistry
from .task import SyncMeta, SyncStatus, Task
from .task_registry import TaskRegistry


def page_count(total: int, size: int) -> int:
    """计算页数"""
    if size <= 0:
        raise ValueError(f"page size must be positive, got {size}")
    if total <= 0:
        return 0
    return math.ceil(total / size)


class _PageTracker:
    """等待所有页面完成或第一个上报的错误"""

    def __init__(self, pages: int):
        self._remaining = pages
        self._lock = threading.Lock()
        self._done = threading.Event()
        self.error: Optional[PageError] = None
        self.failed_pages = 0
        if pages <= 0:
            self._done.set()

    @property
    def stopped(self) -> bool:
        return self.error is not None

    def complete(self) -> None:
        with self._lock:
            self._remaining -= 1
            if self._remaining <= 0:
                self._done.set()

    def drop(self) -> None:
        """页面失败但不影响整体结果"""
        with self._lock:
            self.failed_pages += 1
        self.complete()

    def fail(self, error: PageError) -> None:
        with self._lock:
            self.failed_pages += 1
            if self.error is None:
                self.error = error
            self._done.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)


class Syncer:
    """同步器，持有各注册表并执行任务"""

    def __init__(self, datasources: DatasourceRegistry,
                 targets: TargetRegistry,
                 resolvers: Optional[ResolverRegistry] = None,
                 tasks: Optional[TaskRegistry] = None,
                 settings: Optional[SyncerConfig] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.datasources = datasources
        self.targets = targets
        self.resolvers = resolvers or ResolverRegistry.with_builtins()
        self.tasks = tasks or TaskRegistry()
        self.settings = settings or SyncerConfig()
        self.metrics = metrics

    def add_task(self, *tasks: Task) -> None:
        self.tasks.add(*tasks)

    def get_task(self, task_id: str) -> Optional[Task]:
        return self.tasks.get(task_id)

    def do_sync(self, task_id: str) -> SyncMeta:
        """按 ID 执行任务"""
        task = self.tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(f"[syncer] task not found: {task_id}")
        return self.sync_task(task)

    def sync_task(self, task: Task) -> SyncMeta:
        """
        执行一次同步

        成功时返回运行元信息；失败时抛出 SyncerError 子类，
        异常上的 total 和 meta 记录了本次运行的状态。
        """
        started = time.monotonic()
        logger.info(f"Sync task {task.id} started: {task.source} -> {task.target}")

        try:
            meta = self._sync(task)
        except SyncerError as e:
            logger.error(f"Sync task {task.id} failed: {e}")
            self._record(task, 'failed', e.total, started, str(e))
            raise

        logger.info(f"Sync task {task.id} finished: {meta.total} rows, version {meta.version}, "
                    f"{meta.failed_pages} pages dropped")
        self._record(task, 'success', meta.total, started)
        return meta

    def _sync(self, task: Task) -> SyncMeta:
        datasource = self.datasources.connect(task.source)

        try:
            total = datasource.list_meta(*task.filters).total
        except Exception as e:
            raise MetaError(f"[syncer] failed to count rows of task {task.id}: {e}") from e

        if total == 0:
            logger.info(f"Sync task {task.id}: nothing to sync")
            meta = SyncMeta(total=0)
            meta.transition(SyncStatus.SUCCESS)
            return meta

        target = self.targets.get(task.target)
        if target is None:
            raise TargetNotFoundError(f"[syncer] target not found: {task.target}")

        meta = SyncMeta(total=total)

        try:
            target.before_sync(task.target_config, meta)
        except Exception as e:
            error = self._target_error("before_sync", task, e, meta)
            # 尚未进入 RUNNING，状态直接由 PENDING 进入 FAILED
            meta.fail(error)
            if error is e:
                raise
            raise error from e

        meta.pages = page_count(total, task.size)
        meta.transition(SyncStatus.RUNNING)
        logger.info(f"Sync task {task.id}: {total} rows in {meta.pages} pages, "
                    f"{task.workers} workers, version {meta.version}")

        self._run_pages(task, datasource, target, meta)

        try:
            target.after_sync(task.target_config, meta)
        except Exception as e:
            error = self._target_error("after_sync", task, e, meta)
            if error is e:
                raise
            raise error from e

        if meta.status == SyncStatus.FAILED:
            error = meta.error
            error.total = total
            error.meta = meta
            raise error

        return meta

    def _run_pages(self, task: Task, datasource: Datasource, target: Target, meta: SyncMeta) -> None:
        """并发执行所有页面，等待全部完成或第一个错误"""
        mapper = FieldMapper(task.mapping, self.resolvers)
        tracker = _PageTracker(meta.pages)
        # 限制等待队列长度，队列满时提交会阻塞
        slots = threading.BoundedSemaphore(task.workers + self.settings.backlog)
        executor = ThreadPoolExecutor(max_workers=task.workers, thread_name_prefix=f"syncer-{task.id}")
        futures: List[Future] = []

        try:
            for page in range(1, meta.pages + 1):
                slots.acquire()
                if tracker.stopped:
                    slots.release()
                    break
                future = executor.submit(self._sync_page, task, page, datasource, target, mapper, meta, tracker)
                future.add_done_callback(lambda _: slots.release())
                futures.append(future)

            tracker.wait()
        finally:
            if tracker.stopped:
                # 取消尚未开始的页面，已开始的页面继续执行完
                cancelled = sum(1 for f in futures if f.cancel())
                if cancelled:
                    logger.warning(f"Sync task {task.id}: cancelled {cancelled} pending pages")
            executor.shutdown(wait=True)

        meta.failed_pages = tracker.failed_pages
        if tracker.error is not None:
            meta.fail(tracker.error)
        else:
            meta.transition(SyncStatus.SUCCESS)

    def _sync_page(self, task: Task, page: int, datasource: Datasource, target: Target,
                   mapper: FieldMapper, meta: SyncMeta, tracker: _PageTracker) -> None:
        if tracker.stopped:
            return

        try:
            self._process_page(task, page, datasource, target, mapper, meta)
        except Exception as e:
            error = PageError(page, e)
            if task.stop_on_error:
                logger.error(f"Sync task {task.id}: page {page} failed, stopping: {e}")
                tracker.fail(error)
            else:
                logger.warning(f"Sync task {task.id}: page {page} dropped: {e}")
                if self.metrics:
                    self.metrics.record_page_error(task.id, page, str(e))
                tracker.drop()
            return

        tracker.complete()

    def _process_page(self, task: Task, page: int, datasource: Datasource, target: Target,
                      mapper: FieldMapper, meta: SyncMeta) -> None:
        result = datasource.list(ListOption(
            page=page,
            limit=task.size,
            without_meta=True,
            filters=task.filters,
            orders=task.orders,
        ))

        if not result.data:
            return

        rows = mapper.map_rows(result.data)

        # 随机延迟，错开并发写入
        time.sleep(self._jitter())
        target.sync_from(task.target_config, rows, meta)
        logger.debug(f"Sync task {task.id}: page {page}/{meta.pages} synced {len(rows)} rows")

    def _jitter(self) -> float:
        low = self.settings.jitter_min_ms
        high = max(self.settings.jitter_max_ms, low)
        return random.uniform(low, high) / 1000

    def _target_error(self, hook: str, task: Task, cause: Exception, meta: SyncMeta) -> TargetError:
        """目标抛出的 TargetError 原样使用，其他异常包装为 TargetError"""
        if isinstance(cause, TargetError):
            cause.total = meta.total
            cause.meta = meta
            return cause
        return TargetError(
            f"[syncer] target {task.target} {hook} failed: {cause}", total=meta.total, meta=meta
        )

    def _record(self, task: Task, status: str, total: int, started: float, error: Optional[str] = None) -> None:
        if self.metrics:
            self.metrics.record_run(task.id, status, total, time.monotonic() - started, error)
