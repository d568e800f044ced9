"""数据源模块"""

from .base import Datasource, DatasourceRegistry, ListMeta, ListOption, ListResult
from .db import DBDatasource, db_factory

__all__ = [
    "Datasource",
    "DatasourceRegistry",
    "ListMeta",
    "ListOption",
    "ListResult",
    "DBDatasource",
    "db_factory",
]
