"""MySQL 数据源与数据库封装测试"""

from unittest.mock import MagicMock, Mock, patch

import pymysql
import pytest

from table_syncer.config.config import DatabaseConfig
from table_syncer.core.errors import SourceConnectionError
from table_syncer.core.task import Filter, Order
from table_syncer.datasource.base import DatasourceRegistry, ListOption
from table_syncer.datasource.db import DBDatasource, build_order, build_where, db_factory
from table_syncer.db.database import ConnectionManager, Database, quote


class TestSQLBuilders:
    """SQL 片段生成测试"""

    def test_quote(self):
        assert quote("users") == "`users`"
        assert quote("db.users") == "`db`.`users`"
        with pytest.raises(ValueError):
            quote("users; DROP TABLE x")

    def test_where_between(self):
        where, params = build_where([
            Filter("status", "=", 1),
            Filter("created_at", "between", ("2024-01-01", "2024-12-31")),
        ])
        assert where == " WHERE `status` = %s AND `created_at` BETWEEN %s AND %s"
        assert params == [1, "2024-01-01", "2024-12-31"]

    def test_where_between_needs_two_values(self):
        where, params = build_where([Filter("created_at", "between", ("2024-01-01",))])
        assert where == ""
        assert params == []

    def test_where_in(self):
        where, params = build_where([Filter("role", "in", ("a", "b"))])
        assert where == " WHERE `role` IN (%s, %s)"
        assert params == ["a", "b"]

    def test_where_rejects_unknown_operator(self):
        with pytest.raises(ValueError):
            build_where([Filter("id", "; --", 1)])

    def test_order(self):
        assert build_order([Order("id", "desc"), Order("name", "ASC")]) == " ORDER BY `id` DESC, `name` ASC"
        with pytest.raises(ValueError):
            build_order([Order("id", "sideways")])


class TestDBDatasource:
    """DBDatasource 测试"""

    @pytest.fixture
    def db(self) -> Mock:
        return Mock(spec=Database)

    def test_list_page(self, db):
        db.query.return_value = [{"id": 21}]
        source = DBDatasource(db, "users")

        result = source.list(ListOption(
            page=2, limit=20, without_meta=True,
            filters=[Filter("status", "=", 1)], orders=[Order("id")]
        ))

        sql, params = db.query.call_args[0]
        assert sql == "SELECT * FROM `users` WHERE `status` = %s ORDER BY `id` ASC LIMIT %s OFFSET %s"
        assert params == [1, 20, 20]
        assert result.data == [{"id": 21}]
        assert result.meta is None
        db.scalar.assert_not_called()

    def test_list_with_meta(self, db):
        db.query.return_value = []
        db.scalar.return_value = 95
        source = DBDatasource(db, "users")

        result = source.list(ListOption(page=1, limit=20))

        assert result.meta.total == 95

    def test_list_meta(self, db):
        db.scalar.return_value = 42
        source = DBDatasource(db, "users")

        meta = source.list_meta(Filter("status", "=", 1))

        assert meta.total == 42
        assert db.scalar.call_args[0][0] == "SELECT COUNT(*) AS total FROM `users` WHERE `status` = %s"

    def test_crud_uses_pk(self, db):
        source = DBDatasource(db, "roles", pk="role_id")

        source.find(3)
        assert db.query_one.call_args[0] == ("SELECT * FROM `roles` WHERE `role_id` = %s", (3,))

        source.update(3, {"name": "x"})
        assert db.execute.call_args[0] == ("UPDATE `roles` SET `name` = %s WHERE `role_id` = %s", ["x", 3])

        source.delete_many(Filter("name", "like", "tmp%"))
        assert db.execute.call_args[0] == ("DELETE FROM `roles` WHERE `name` LIKE %s", ["tmp%"])

        source.create({"name": "y"})
        db.insert.assert_called_once_with("roles", {"name": "y"})


class TestDatasourceRegistry:
    """数据源注册表测试"""

    def test_connect_db_locator(self):
        connections = Mock(spec=ConnectionManager)
        connections.get.return_value = Mock(spec=Database)
        registry = DatasourceRegistry()
        registry.register("db", db_factory(connections))

        source = registry.connect("db://remote/roles?pk=role_id")

        connections.get.assert_called_once_with("remote")
        assert source.table == "`roles`"
        assert source.pk == "`role_id`"

    def test_unregistered_scheme(self):
        with pytest.raises(SourceConnectionError):
            DatasourceRegistry().connect("redis://cache/users")

    def test_missing_table(self):
        registry = DatasourceRegistry()
        registry.register("db", db_factory(Mock(spec=ConnectionManager)))

        with pytest.raises(SourceConnectionError):
            registry.connect("db://remote/")

    def test_unreachable_database(self):
        database = Mock(spec=Database)
        database.test_connection.return_value = False
        connections = Mock(spec=ConnectionManager)
        connections.get.return_value = database
        registry = DatasourceRegistry()
        registry.register("db", db_factory(connections))

        with pytest.raises(SourceConnectionError):
            registry.connect("db://remote/users")

    def test_unreachable_database_with_pool(self):
        with patch('table_syncer.db.database.PooledDB') as pool_cls:
            pool_cls.return_value.connection.side_effect = pymysql.err.OperationalError(2003, "refused")
            registry = DatasourceRegistry()
            registry.register("db", db_factory(ConnectionManager({"remote": DatabaseConfig(port=1)})))

            with pytest.raises(SourceConnectionError):
                registry.connect("db://remote/users")

    def test_unknown_connection(self):
        registry = DatasourceRegistry()
        registry.register("db", db_factory(ConnectionManager()))

        with pytest.raises(SourceConnectionError):
            registry.connect("db://missing/users")


class TestDatabase:
    """Database 封装测试（不连接真实数据库）"""

    @pytest.fixture
    def database(self):
        with patch('table_syncer.db.database.PooledDB') as pool_cls:
            conn = MagicMock()
            cursor = conn.cursor.return_value
            cursor.executemany.return_value = 2
            pool_cls.return_value.connection.return_value = conn
            yield Database(DatabaseConfig(database="warehouse")), cursor

    def test_upsert_many(self, database):
        db, cursor = database

        affected = db.upsert_many(
            "users",
            [{"id": 1, "name": "a"}, {"id": 2, "name": "b", "age": 3}],
            update_columns=["name", "age"],
        )

        sql, values = cursor.executemany.call_args[0]
        assert sql == (
            "INSERT INTO `users` (`id`, `name`, `age`) VALUES (%s, %s, %s)"
            " ON DUPLICATE KEY UPDATE `name` = VALUES(`name`), `age` = VALUES(`age`)"
        )
        assert values == [(1, "a", None), (2, "b", 3)]
        assert affected == 2

    def test_upsert_defaults_to_non_unique_columns(self, database):
        db, cursor = database

        db.upsert_many("users", [{"id": 1, "name": "a"}], unique_keys=["id"])

        sql = cursor.executemany.call_args[0][0]
        assert sql.endswith("ON DUPLICATE KEY UPDATE `name` = VALUES(`name`)")

    def test_upsert_empty(self, database):
        db, cursor = database
        assert db.upsert_many("users", []) == 0
        cursor.executemany.assert_not_called()

    def test_scalar(self, database):
        db, cursor = database
        cursor.fetchone.return_value = {"version": 7}
        assert db.scalar("SELECT MAX(v) AS version FROM t") == 7

    def test_connection_manager_creates_once(self):
        with patch('table_syncer.db.database.PooledDB'):
            manager = ConnectionManager({"local": DatabaseConfig(database="w")})
            assert manager.get("local") is manager.get("local")
            assert manager.names() == ["local"]
            with pytest.raises(KeyError):
                manager.get("missing")
