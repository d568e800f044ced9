"""
任务调度

把任务的 interval/at/immediately 配置转换为 APScheduler 触发器。
"""
import re
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from ..core.errors import SyncerError
from ..core.syncer import Syncer
from ..core.task import Task

DAY_SUFFIXES = ("days", "day", "d")
JOB_PREFIX = "syncer:"

_DURATION_PART = re.compile(r'(\d+(?:\.\d+)?)(ms|s|m|h)')
_DURATION_UNITS = {'ms': 'milliseconds', 's': 'seconds', 'm': 'minutes', 'h': 'hours'}


def job_id(task_id: str) -> str:
    return f"{JOB_PREFIX}{task_id}"


def split_day_interval(interval: str) -> Optional[str]:
    """interval 以 d/day/days 结尾时返回数字部分"""
    for suffix in DAY_SUFFIXES:
        if interval.endswith(suffix):
            return interval[:-len(suffix)]
    return None


def parse_duration(value: str) -> Optional[timedelta]:
    """解析 45s、10m、1h30m、500ms 形式的时长，格式不符返回 None"""
    value = value.strip()
    if not value:
        return None

    pos = 0
    kwargs: Dict[str, float] = {}
    for match in _DURATION_PART.finditer(value):
        if match.start() != pos:
            return None
        unit = _DURATION_UNITS[match.group(2)]
        kwargs[unit] = kwargs.get(unit, 0) + float(match.group(1))
        pos = match.end()

    if pos != len(value):
        return None

    return timedelta(**kwargs)


def parse_at(at: str) -> Optional[tuple]:
    """解析 HH:MM 或 HH:MM:SS"""
    if not at:
        return None
    parts = at.strip().split(':')
    if len(parts) not in (2, 3) or not all(p.isdigit() for p in parts):
        raise ValueError(f"invalid at time: {at!r}")

    hour, minute = int(parts[0]), int(parts[1])
    second = int(parts[2]) if len(parts) == 3 else 0
    if hour > 23 or minute > 59 or second > 59:
        raise ValueError(f"invalid at time: {at!r}")
    return hour, minute, second


def next_time_of_day(hour: int, minute: int, second: int, now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now()
    start = now.replace(hour=hour, minute=minute, second=second, microsecond=0)
    if start <= now:
        start += timedelta(days=1)
    return start


def build_trigger(task: Task, timezone: Optional[str] = None) -> Optional[BaseTrigger]:
    """
    根据任务配置生成触发器

    - "3d" / "3day" / "3days": 每 3 天一次，设置了 at 时从该时刻开始
    - 其他时长 "45s"、"1h30m": 固定间隔
    - 五段 cron 表达式: "0 */2 * * *"
    - 只有 at: 每天该时刻
    - 只有 immediately: 立即执行一次
    """
    interval = task.interval.strip()
    at = parse_at(task.at)

    if interval:
        days = split_day_interval(interval)
        if days is not None:
            if not days.isdigit() or int(days) <= 0:
                raise ValueError(f"invalid day interval: {interval!r}")
            start_date = next_time_of_day(*at) if at else None
            return IntervalTrigger(days=int(days), start_date=start_date, timezone=timezone)

        duration = parse_duration(interval)
        if duration is not None:
            if duration.total_seconds() <= 0:
                raise ValueError(f"invalid interval: {interval!r}")
            return IntervalTrigger(seconds=duration.total_seconds(), timezone=timezone)

        if len(interval.split()) == 5:
            return CronTrigger.from_crontab(interval, timezone=timezone)

        raise ValueError(f"unsupported interval: {interval!r}")

    if at:
        hour, minute, second = at
        return CronTrigger(hour=hour, minute=minute, second=second, timezone=timezone)

    if task.immediately:
        return DateTrigger(run_date=datetime.now(), timezone=timezone)

    return None


class TaskScheduler:
    """为同步器中的任务注册定时任务，每个任务一个 job，job id 为 syncer:<任务ID>"""

    def __init__(self, syncer: Syncer, scheduler: Optional[BackgroundScheduler] = None,
                 timezone: Optional[str] = None):
        self.syncer = syncer
        self.timezone = timezone
        if scheduler is None:
            scheduler = BackgroundScheduler(timezone=timezone) if timezone else BackgroundScheduler()
        self.scheduler = scheduler

    def schedule(self, tasks: Optional[List[Task]] = None) -> List[str]:
        """注册任务，返回已调度的任务ID"""
        scheduled = []
        for task in tasks if tasks is not None else self.syncer.tasks.all():
            try:
                trigger = build_trigger(task, self.timezone)
            except ValueError as e:
                logger.error(f"Skip scheduling task {task.id}: {e}")
                continue

            if trigger is None:
                logger.debug(f"Task {task.id} has no schedule")
                continue

            kwargs = {}
            if task.immediately and not isinstance(trigger, DateTrigger):
                kwargs['next_run_time'] = datetime.now()

            self.scheduler.add_job(
                self._run,
                trigger=trigger,
                args=[task],
                id=job_id(task.id),
                name=f"sync {task.id}",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                **kwargs
            )
            scheduled.append(task.id)
            logger.info(f"Scheduled task {task.id}: {trigger}")

        return scheduled

    def cancel(self, task_id: str) -> bool:
        """取消任务调度"""
        try:
            self.scheduler.remove_job(job_id(task_id))
        except JobLookupError:
            return False
        logger.info(f"Cancelled schedule of task {task_id}")
        return True

    def jobs(self) -> List[Job]:
        return [job for job in self.scheduler.get_jobs() if job.id.startswith(JOB_PREFIX)]

    def start(self) -> None:
        self.scheduler.start()
        logger.info(f"Scheduler started with {len(self.jobs())} jobs")

    def shutdown(self, wait: bool = True) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("Scheduler stopped")

    def _run(self, task: Task) -> None:
        try:
            self.syncer.sync_task(task)
        except SyncerError as e:
            # sync_task 已记录错误，等待下次调度
            logger.debug(f"Scheduled run of task {task.id} ended with error: {e}")
        except Exception as e:
            logger.exception(f"Unexpected error in scheduled task {task.id}: {e}")
