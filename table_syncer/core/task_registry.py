"""
任务注册表
"""
import threading
from typing import Dict, List, Optional

from loguru import logger

from .task import Task


class TaskRegistry:
    """线程安全的任务存储，按任务 ID 索引"""

    def __init__(self, tasks: Optional[List[Task]] = None):
        self._tasks: Dict[str, Task] = {}
        self._lock = threading.RLock()
        if tasks:
            self.add(*tasks)

    def add(self, *tasks: Task) -> None:
        """添加任务，同 ID 覆盖"""
        with self._lock:
            for task in tasks:
                if task.id in self._tasks:
                    logger.debug(f"Replacing task {task.id}")
                self._tasks[task.id] = task

    def get(self, task_id: str) -> Optional[Task]:
        with self._lock:
            return self._tasks.get(task_id)

    def remove(self, task_id: str) -> bool:
        with self._lock:
            return self._tasks.pop(task_id, None) is not None

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._tasks)

    def all(self) -> List[Task]:
        """返回任务快照"""
        with self._lock:
            return list(self._tasks.values())

    def __contains__(self, task_id: object) -> bool:
        with self._lock:
            return task_id in self._tasks

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)
