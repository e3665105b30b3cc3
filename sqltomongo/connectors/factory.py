from typing import Dict, Type
from sqltomongo.connectors.base import BaseConnector
from sqltomongo.connectors.mongodb import MongoDBConnector
from sqltomongo.connectors.mysql import MySQLConnector
from sqltomongo.connectors.sqlite import SQLiteConnector
from sqltomongo.connectors.sqlserver import SQLServerConnector
from sqltomongo.connectors.postgresql import PostgreSQLConnector
from sqltomongo.errors import ConfigurationError
from sqltomongo.models.config import DatabaseConfig


class ConnectorFactory:
    _connectors: Dict[str, Type[BaseConnector]] = {
        "mysql": MySQLConnector,
        "mariadb": MySQLConnector,
        "sqlserver": SQLServerConnector,
        "mssql": SQLServerConnector,
        "postgresql": PostgreSQLConnector,
        "postgres": PostgreSQLConnector,
        "sqlite": SQLiteConnector
    }

    _targets: Dict[str, Type[MongoDBConnector]] = {
        "mongodb": MongoDBConnector
    }

    @classmethod
    def get_connector(cls, config: DatabaseConfig) -> BaseConnector:
        """
        获取源数据库连接器实例

        Args:
            config: 数据库配置，类型取自 type 或连接字符串前缀

        Returns:
            BaseConnector: 数据库连接器实例

        Raises:
            ConfigurationError: 如果数据库类型不支持
        """
        connector_class = cls._connectors.get(config.type.lower())
        if not connector_class:
            raise ConfigurationError(f"Unsupported source database type: {config.type}")

        return connector_class(config)

    @classmethod
    def get_target_connector(cls, config: DatabaseConfig) -> MongoDBConnector:
        connector_class = cls._targets.get(config.type.lower())
        if not connector_class:
            raise ConfigurationError(f"Unsupported target database type: {config.type}")

        return connector_class(config)
