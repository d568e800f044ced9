"""
MySQL 数据源

连接地址: db://<连接名>/<表名>?pk=<主键>
"""
from typing import Any, Callable, List, Optional, Sequence, Tuple
from urllib.parse import ParseResult, parse_qs

from ..core.errors import SourceConnectionError
from ..core.resolver import Row
from ..core.task import Filter, Order
from ..db.database import ConnectionManager, Database, quote
from .base import Datasource, ListMeta, ListOption, ListResult

OPERATORS = {'=', '!=', '<>', '>', '>=', '<', '<=', 'like', 'not like', 'in', 'not in', 'between'}
DIRECTIONS = {'asc', 'desc'}


def build_where(filters: Sequence[Filter]) -> Tuple[str, List[Any]]:
    """把过滤条件转换为 WHERE 子句和参数"""
    clauses = []
    params: List[Any] = []

    for f in filters:
        op = f.op.strip().lower()
        if op not in OPERATORS:
            raise ValueError(f"unsupported filter operator: {f.op!r}")

        column = quote(f.field)
        if op == 'between':
            values = list(f.value) if isinstance(f.value, (list, tuple)) else []
            # between 必须是两个值，否则忽略该条件
            if len(values) != 2:
                continue
            clauses.append(f"{column} BETWEEN %s AND %s")
            params.extend(values)
        elif op in ('in', 'not in'):
            values = list(f.value) if isinstance(f.value, (list, tuple)) else [f.value]
            if not values:
                continue
            clauses.append(f"{column} {op.upper()} ({', '.join(['%s'] * len(values))})")
            params.extend(values)
        else:
            clauses.append(f"{column} {op.upper()} %s")
            params.append(f.value)

    if not clauses:
        return "", params

    return " WHERE " + " AND ".join(clauses), params


def build_order(orders: Sequence[Order]) -> str:
    parts = []
    for order in orders:
        direction = (order.direction or 'asc').strip().lower()
        if direction not in DIRECTIONS:
            raise ValueError(f"unsupported order direction: {order.direction!r}")
        parts.append(f"{quote(order.field)} {direction.upper()}")

    if not parts:
        return ""
    return " ORDER BY " + ", ".join(parts)


class DBDatasource(Datasource):
    """基于单表的 MySQL 数据源"""

    def __init__(self, database: Database, table: str, pk: str = "id"):
        self.db = database
        self.table_name = table
        self.table = quote(table)
        self.pk = quote(pk)

    def list(self, option: ListOption) -> ListResult:
        where, params = build_where(option.filters)
        result = ListResult()

        if not option.without_meta:
            result.meta = self.list_meta(*option.filters)

        selects = ', '.join(quote(s) for s in option.selects) if option.selects else '*'
        sql = f"SELECT {selects} FROM {self.table}{where}{build_order(option.orders)}"

        if option.limit > 0:
            sql += " LIMIT %s OFFSET %s"
            params = params + [option.limit, option.offset]

        result.data = self.db.query(sql, params)
        return result

    def list_meta(self, *filters: Filter) -> ListMeta:
        where, params = build_where(filters)
        total = self.db.scalar(f"SELECT COUNT(*) AS total FROM {self.table}{where}", params)
        return ListMeta(total=int(total or 0))

    def find(self, record_id: Any) -> Optional[Row]:
        return self.db.query_one(f"SELECT * FROM {self.table} WHERE {self.pk} = %s", (record_id,))

    def create(self, data: Row) -> Any:
        return self.db.insert(self.table_name, data)

    def update(self, record_id: Any, data: Row) -> int:
        set_clause = ', '.join(f"{quote(k)} = %s" for k in data)
        sql = f"UPDATE {self.table} SET {set_clause} WHERE {self.pk} = %s"
        return self.db.execute(sql, list(data.values()) + [record_id])

    def update_many(self, data: Row, *filters: Filter) -> int:
        where, params = build_where(filters)
        set_clause = ', '.join(f"{quote(k)} = %s" for k in data)
        return self.db.execute(f"UPDATE {self.table} SET {set_clause}{where}", list(data.values()) + params)

    def delete(self, record_id: Any) -> int:
        return self.db.execute(f"DELETE FROM {self.table} WHERE {self.pk} = %s", (record_id,))

    def delete_many(self, *filters: Filter) -> int:
        where, params = build_where(filters)
        return self.db.execute(f"DELETE FROM {self.table}{where}", params)


def db_factory(connections: ConnectionManager) -> Callable[[ParseResult], Datasource]:
    """创建 db:// 数据源构造函数"""

    def factory(url: ParseResult) -> Datasource:
        table = url.path.lstrip('/')
        if not table:
            raise ValueError("[datasource] db table is required")

        query = parse_qs(url.query)
        pk = query.get('pk', ['id'])[0] or 'id'

        # 连接池不会预先建立连接，这里先确认数据库可达
        database = connections.get(url.netloc)
        if not database.test_connection():
            raise SourceConnectionError(f"[datasource] database {url.netloc!r} is unreachable")

        return DBDatasource(database, table, pk)

    return factory
