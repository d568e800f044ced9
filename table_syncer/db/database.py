"""
数据库操作封装
"""
import re
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import pymysql
from dbutils.pooled_db import PooledDB
from loguru import logger
from pymysql.connections import Connection
from pymysql.cursors import DictCursor

from ..config.config import DatabaseConfig

_IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_$]*(\.[A-Za-z_][A-Za-z0-9_$]*)?$')


def quote(identifier: str) -> str:
    """校验并转义表名或字段名"""
    if not _IDENTIFIER.match(identifier or ""):
        raise ValueError(f"invalid identifier: {identifier!r}")
    return '.'.join(f"`{part}`" for part in identifier.split('.'))


class Database:
    """数据库操作类，每次调用从连接池取一个连接，可在多线程间共享"""

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._pool = None
        self._init_pool()

    def _init_pool(self) -> None:
        """初始化连接池"""
        try:
            self._pool = PooledDB(
                creator=pymysql,
                maxconnections=self.config.pool_size,
                mincached=0,
                maxcached=self.config.pool_size,
                blocking=True,
                host=self.config.host,
                port=self.config.port,
                user=self.config.user,
                password=self.config.password,
                database=self.config.database,
                charset=self.config.charset,
                cursorclass=DictCursor
            )
            logger.info(f"Database connection pool initialized: {self.config.host}:{self.config.port}/{self.config.database}")
        except Exception as e:
            logger.error(f"Failed to initialize database pool: {e}")
            raise

    @contextmanager
    def get_connection(self) -> Iterator[Connection]:
        """获取数据库连接（上下文管理器）"""
        conn = None
        try:
            conn = self._pool.connection()
            yield conn
        except Exception as e:
            if conn:
                conn.rollback()
            logger.error(f"Database operation error: {e}")
            raise
        finally:
            if conn:
                conn.close()

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> int:
        """执行SQL语句，返回影响行数"""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            try:
                result = cursor.execute(sql, params)
                conn.commit()
                return result
            finally:
                cursor.close()

    def execute_many(self, sql: str, params_list: List[Tuple]) -> int:
        """批量执行SQL语句"""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            try:
                result = cursor.executemany(sql, params_list)
                conn.commit()
                return result
            finally:
                cursor.close()

    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        """查询数据"""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(sql, params)
                return list(cursor.fetchall())
            finally:
                cursor.close()

    def query_one(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[Dict[str, Any]]:
        """查询单条数据"""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(sql, params)
                return cursor.fetchone()
            finally:
                cursor.close()

    def scalar(self, sql: str, params: Optional[Sequence[Any]] = None) -> Any:
        """查询单个值"""
        row = self.query_one(sql, params)
        if not row:
            return None
        return next(iter(row.values()))

    def insert(self, table: str, data: Dict[str, Any]) -> int:
        """插入数据，返回自增ID"""
        columns = list(data.keys())
        placeholders = ', '.join(['%s'] * len(columns))

        sql = f"INSERT INTO {quote(table)} ({', '.join(quote(c) for c in columns)}) VALUES ({placeholders})"

        with self.get_connection() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(sql, list(data.values()))
                conn.commit()
                return cursor.lastrowid
            finally:
                cursor.close()

    def upsert_many(self, table: str, rows: List[Dict[str, Any]],
                    update_columns: Optional[Sequence[str]] = None,
                    unique_keys: Sequence[str] = ()) -> int:
        """
        批量插入或更新

        冲突时只更新 update_columns；未指定时更新除 unique_keys 外的所有列。
        """
        if not rows:
            return 0

        columns: List[str] = []
        for row in rows:
            for col in row:
                if col not in columns:
                    columns.append(col)

        if update_columns:
            updates = [col for col in update_columns if col in columns]
        else:
            updates = [col for col in columns if col not in unique_keys]

        placeholders = ', '.join(['%s'] * len(columns))
        sql = f"INSERT INTO {quote(table)} ({', '.join(quote(c) for c in columns)}) VALUES ({placeholders})"
        if updates:
            sql += " ON DUPLICATE KEY UPDATE " + ', '.join(
                f"{quote(col)} = VALUES({quote(col)})" for col in updates
            )

        values_list = [tuple(row.get(col) for col in columns) for row in rows]
        return self.execute_many(sql, values_list)

    def test_connection(self) -> bool:
        """测试数据库连接"""
        try:
            self.query_one("SELECT 1 as test")
            return True
        except Exception as e:
            logger.error(f"Database connection test failed: {e}")
            return False


class ConnectionManager:
    """按名称管理数据库连接，首次使用时创建连接池"""

    def __init__(self, configs: Optional[Dict[str, DatabaseConfig]] = None):
        self._configs: Dict[str, DatabaseConfig] = dict(configs or {})
        self._connections: Dict[str, Database] = {}
        self._lock = threading.Lock()

    def get(self, name: str) -> Database:
        with self._lock:
            if name in self._connections:
                return self._connections[name]

            config = self._configs.get(name)
            if config is None:
                raise KeyError(f"unknown database connection: {name}")

            database = Database(config)
            self._connections[name] = database
            return database

    def names(self) -> List[str]:
        with self._lock:
            return sorted(set(self._configs) | set(self._connections))
