"""数据库操作模块"""

from .database import ConnectionManager, Database, quote

__all__ = ["ConnectionManager", "Database", "quote"]
