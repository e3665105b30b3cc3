import json
import os
import tempfile
import unittest
from urllib.parse import unquote_plus
from sqltomongo.config.loader import (
    dump_xml_config,
    encode_config,
    load_config,
    load_encoded_config,
    load_xml_config,
    save_config,
)
from sqltomongo.connectors.factory import ConnectorFactory
from sqltomongo.connectors.sqlserver import SQLServerConnector
from sqltomongo.errors import ConfigurationError
from sqltomongo.models.config import DatabaseConfig, SyncConfig, TableMapping

XML_CONFIG = """<?xml version="1.0" encoding="utf-8" ?>
<SQLToMongo>
  <Mapping SQLConnection="mssql+pyodbc://sa:secret@db/Shop?driver=ODBC+Driver+17+for+SQL+Server"
           MongoConnection="mongodb://localhost:27017/shop">
    <Table PrimaryKeyColumn="OrderID" IsSelected="True" LastSyncIdentity="1500" PageSize="200"
           MongoCollection="orders" SQLTable="Orders" />
    <Table PrimaryKeyColumn="" IsSelected="False" LastSyncIdentity="" PageSize=""
           MongoCollection="" SQLTable="Customers" />
  </Mapping>
</SQLToMongo>
"""


class TestJsonConfig(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, "config.json")

    def tearDown(self):
        self.tmp.cleanup()

    def write(self, data):
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f)

    def test_load_with_connection_strings(self):
        self.write({
            "source": "postgresql+psycopg2://app:pw@db:5432/shop",
            "target": "mongodb://localhost:27017/shop",
            "tables": [
                {"source": "orders", "target": "orders", "primary_key": "id", "page_size": 0},
                {"source": "customers", "last_sync_cursor": 42, "selected": False}
            ],
            "retry_times": 5
        })

        config = load_config(self.path)

        self.assertEqual(config.source.type, "postgresql")
        self.assertEqual(config.target.type, "mongodb")
        self.assertEqual(config.tables[0].page_size, 500)
        self.assertEqual(config.tables[0].primary_key_column, "id")
        self.assertEqual(config.tables[1].target, "customers")
        self.assertEqual(config.tables[1].last_sync_cursor, "42")
        self.assertFalse(config.tables[1].selected)
        self.assertEqual(config.retry_times, 5)
        self.assertEqual(config.retry_interval, 5)
        self.assertEqual([m.source for m in config.selected_tables()], ["orders"])

    def test_load_with_discrete_database_settings(self):
        self.write({
            "source": {"type": "sqlserver", "host": "db", "port": 1433, "username": "sa",
                       "password": "p@ss", "database": "Shop"},
            "target": {"type": "mongodb", "host": "localhost", "database": "shop"},
            "tables": [{"source": "Orders"}]
        })

        config = load_config(self.path)

        self.assertTrue(config.source.has_connection())
        self.assertEqual(config.source.type, "sqlserver")
        self.assertIsNone(config.source.url)

    def test_malformed_values_are_rejected(self):
        for table in ({"source": "orders", "last_sync_cursor": "abc"},
                      {"source": "orders", "page_size": "many"},
                      {"source": ""},
                      {"target": "orders"}):
            self.write({"source": "sqlite:///x.db", "target": "mongodb://h/db", "tables": [table]})
            with self.assertRaises(ConfigurationError):
                load_config(self.path)

    def test_invalid_json(self):
        with open(self.path, "w", encoding="utf-8") as f:
            f.write("{not json")
        with self.assertRaises(ConfigurationError):
            load_config(self.path)

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            load_config(os.path.join(self.tmp.name, "nope.json"))

    def test_save_persists_cursors(self):
        self.write({
            "source": "sqlite:///source.db",
            "target": "mongodb://localhost:27017/shop",
            "tables": [{"source": "orders", "target": "orders_copy"}]
        })
        config = load_config(self.path)

        save_config(config.with_cursors({("orders", "orders_copy"): "1200"}), self.path)
        reloaded = load_config(self.path)

        self.assertEqual(reloaded.tables[0].last_sync_cursor, "1200")
        self.assertEqual(reloaded.tables[0].target, "orders_copy")
        self.assertEqual(reloaded.source.url, "sqlite:///source.db")


class TestXmlConfig(unittest.TestCase):
    def test_load_xml_document(self):
        config = load_xml_config(XML_CONFIG)

        self.assertEqual(config.source.type, "mssql")
        self.assertEqual(config.target.url, "mongodb://localhost:27017/shop")
        orders, customers = config.tables
        self.assertEqual((orders.source, orders.target, orders.primary_key_column), ("Orders", "orders", "OrderID"))
        self.assertEqual((orders.page_size, orders.last_sync_cursor, orders.selected), (200, "1500", True))
        self.assertEqual((customers.target, customers.page_size, customers.selected), ("Customers", 500, False))
        self.assertIsNone(customers.primary_key_column)

    def test_dump_and_encode(self):
        config = load_xml_config(XML_CONFIG)
        config = config.with_cursors({("Orders", "orders"): "1700"})

        reloaded = load_encoded_config(encode_config(config))

        self.assertEqual(reloaded.tables[0].last_sync_cursor, "1700")
        self.assertEqual(reloaded.source.url, config.source.url)
        self.assertIn('IsSelected="False"', dump_xml_config(config))

    def test_wrong_root_element(self):
        with self.assertRaises(ConfigurationError):
            load_xml_config("<Settings><Mapping /></Settings>")

    def test_invalid_boolean(self):
        with self.assertRaises(ConfigurationError):
            load_xml_config('<SQLToMongo><Mapping><Table SQLTable="t" IsSelected="maybe" /></Mapping></SQLToMongo>')

    def test_adonet_connection_string(self):
        """Data Source=... 格式的连接字符串转换为 pyodbc URL"""
        content = XML_CONFIG.replace(
            'SQLConnection="mssql+pyodbc://sa:secret@db/Shop?driver=ODBC+Driver+17+for+SQL+Server"',
            'SQLConnection="Data Source=db01,1433;Initial Catalog=Shop;User ID=sa;Password=p;'
            'TrustServerCertificate=True;Connect Timeout=30"'
        )

        config = load_xml_config(content)

        self.assertEqual(config.source.type, "mssql")
        self.assertIsInstance(ConnectorFactory.get_connector(config.source), SQLServerConnector)
        prefix = "mssql+pyodbc:///?odbc_connect="
        self.assertTrue(config.source.url.startswith(prefix))
        self.assertEqual(
            unquote_plus(config.source.url[len(prefix):]),
            "DRIVER={ODBC Driver 17 for SQL Server};SERVER=db01,1433;DATABASE=Shop;UID=sa;PWD=p;TrustServerCertificate=yes"
        )

    def test_connection_string_must_be_url(self):
        with self.assertRaises(ConfigurationError):
            load_xml_config('<SQLToMongo><Mapping SQLConnection="Initial Catalog=Shop" '
                            'MongoConnection="mongodb://localhost/shop" /></SQLToMongo>')
        with self.assertRaises(ConfigurationError):
            load_xml_config('<SQLToMongo><Mapping SQLConnection="shop.db" '
                            'MongoConnection="mongodb://localhost/shop" /></SQLToMongo>')

    def test_invalid_base64(self):
        with self.assertRaises(ConfigurationError):
            load_encoded_config("not base64!!")

    def test_xml_save_requires_connection_strings(self):
        config = SyncConfig(
            source=DatabaseConfig(type="sqlite", database="x.db"),
            target=DatabaseConfig.from_url("mongodb://localhost/db"),
            tables=[TableMapping(source="t")]
        )
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(ConfigurationError):
                save_config(config, os.path.join(tmp, "config.xml"))


if __name__ == '__main__':
    unittest.main()
