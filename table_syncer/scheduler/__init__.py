"""调度模块"""

from .task_scheduler import TaskScheduler, build_trigger, parse_duration

__all__ = ["TaskScheduler", "build_trigger", "parse_duration"]
