"""
日志配置
"""
import sys
from pathlib import Path
from typing import List

from loguru import logger

from ..config.config import MonitorConfig

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{thread.name}</cyan> | <cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {thread.name} | {name}:{function}:{line} - {message}"


def log_files(config: MonitorConfig) -> List[Path]:
    """返回运行日志和错误日志路径，未配置 log_file 时为空"""
    if not config.log_file:
        return []
    path = Path(config.log_file)
    return [path, path.with_suffix('.error.log')]


def setup_logger(config: MonitorConfig) -> None:
    """
    配置日志

    控制台始终输出；配置了 log_file 时另写运行日志和只含 ERROR 的错误日志。
    同步页面在线程池中写日志，文件 sink 使用 enqueue 串行写入。
    """
    logger.remove()
    logger.add(sys.stdout, level=config.log_level, format=CONSOLE_FORMAT, colorize=True)

    files = log_files(config)
    if files:
        run_log, error_log = files
        run_log.parent.mkdir(parents=True, exist_ok=True)

        for path, level, retention in (
            (run_log, config.log_level, config.log_backup_count),
            # 错误日志保留更久
            (error_log, "ERROR", config.log_backup_count * 2),
        ):
            logger.add(
                str(path),
                level=level,
                format=FILE_FORMAT,
                rotation=config.log_max_size,
                retention=retention,
                compression="zip",
                encoding="utf-8",
                enqueue=True
            )

    logger.info(f"Logger initialized with level {config.log_level}, files: "
                f"{', '.join(str(p) for p in files) or '-'}")
