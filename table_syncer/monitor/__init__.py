"""监控模块"""

from .logger import setup_logger
from .metrics import MetricsCollector

__all__ = ["MetricsCollector", "setup_logger"]
