from typing import Dict, Any
from urllib.parse import quote_plus
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from loguru import logger
from sqltomongo.connectors.base import BaseConnector
from sqltomongo.errors import ConfigurationError, SchemaError

DEFAULT_DRIVER = "ODBC Driver 17 for SQL Server"

# ADO.NET 连接字符串关键字 -> ODBC 关键字
ADO_NET_KEYWORDS = {
    "data source": "SERVER",
    "server": "SERVER",
    "address": "SERVER",
    "addr": "SERVER",
    "network address": "SERVER",
    "initial catalog": "DATABASE",
    "database": "DATABASE",
    "user id": "UID",
    "uid": "UID",
    "user": "UID",
    "password": "PWD",
    "pwd": "PWD",
    "encrypt": "Encrypt",
    "trustservercertificate": "TrustServerCertificate",
    "trust server certificate": "TrustServerCertificate",
}
BOOLEAN_KEYWORDS = {"Encrypt", "TrustServerCertificate"}


def _odbc_value(value: str) -> str:
    if any(c in value for c in ";{}"):
        return "{" + value.replace("}", "}}") + "}"
    return value


def is_adonet_connection_string(value: str) -> bool:
    return "://" not in value and "=" in value


def url_from_adonet(connection_string: str, driver: str = DEFAULT_DRIVER) -> str:
    """
    将 ADO.NET 格式的连接字符串（Data Source=...;Initial Catalog=...）转换为 pyodbc URL

    Raises:
        ConfigurationError: 无法解析或缺少服务器地址
    """
    parts = {}
    for item in connection_string.split(";"):
        if not item.strip():
            continue
        if "=" not in item:
            raise ConfigurationError(f"Invalid SQL Server connection string segment: {item.strip()!r}")
        key, value = item.split("=", 1)
        parts[" ".join(key.lower().split())] = value.strip()

    odbc = {"DRIVER": "{" + driver + "}"}
    for key, value in parts.items():
        if key == "integrated security":
            if value.lower() in ("true", "yes", "sspi"):
                odbc["Trusted_Connection"] = "yes"
            continue
        name = ADO_NET_KEYWORDS.get(key)
        if name is None:
            logger.warning(f"Ignoring unsupported SQL Server connection string keyword: {key}")
            continue
        if name in BOOLEAN_KEYWORDS:
            value = "yes" if value.lower() in ("true", "yes") else "no"
        odbc[name] = _odbc_value(value)

    if "SERVER" not in odbc:
        raise ConfigurationError("SQL Server connection string has no Data Source")
    odbc_connect = ";".join(f"{k}={v}" for k, v in odbc.items())
    return f"mssql+pyodbc:///?odbc_connect={quote_plus(odbc_connect)}"


class SQLServerConnector(BaseConnector):
    # SQL Server 2005
    MIN_VERSION = (9,)
    PRODUCT_NAME = "SQL Server"
    DEFAULT_SCHEMA = "dbo"

    def build_url(self) -> str:
        # 构建SQL Server连接字符串
        driver = self.config.driver or DEFAULT_DRIVER
        trust_cert = "yes" if self.config.trust_server_certificate else "no"
        port = self.config.port or 1433

        return (
            f"mssql+pyodbc://{quote_plus(self.config.username or '')}:{quote_plus(self.config.password or '')}@"
            f"{self.config.host}:{port}/{self.config.database}?"
            f"driver={quote_plus(driver)}&TrustServerCertificate={trust_cert}"
        )

    async def get_table_schema(self, table_name: str) -> Dict[str, Any]:
        query = """
        SELECT
            c.COLUMN_NAME,
            c.DATA_TYPE,
            c.CHARACTER_MAXIMUM_LENGTH,
            c.IS_NULLABLE,
            CASE WHEN pk.COLUMN_NAME IS NOT NULL THEN 1 ELSE 0 END as IS_PRIMARY_KEY
        FROM
            INFORMATION_SCHEMA.COLUMNS c
        LEFT JOIN (
            SELECT ku.COLUMN_NAME
            FROM INFORMATION_SCHEMA.TABLE_CONSTRAINTS tc
            JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE ku
                ON tc.CONSTRAINT_NAME = ku.CONSTRAINT_NAME
                AND tc.TABLE_SCHEMA = ku.TABLE_SCHEMA
            WHERE tc.CONSTRAINT_TYPE = 'PRIMARY KEY'
                AND ku.TABLE_NAME = :table
                AND ku.TABLE_SCHEMA = :schema
        ) pk ON pk.COLUMN_NAME = c.COLUMN_NAME
        WHERE
            c.TABLE_NAME = :table
            AND c.TABLE_SCHEMA = :schema
        ORDER BY
            c.ORDINAL_POSITION
        """
        try:
            with self._engine.connect() as conn:
                result = conn.execute(text(query), {"table": table_name, "schema": self.schema})
                columns = []
                for row in result:
                    columns.append({
                        "name": row.COLUMN_NAME,
                        "type": row.DATA_TYPE.lower(),
                        "length": row.CHARACTER_MAXIMUM_LENGTH,
                        "nullable": row.IS_NULLABLE == 'YES',
                        "is_primary": bool(row.IS_PRIMARY_KEY)
                    })
                return {"table_name": table_name, "columns": columns}
        except SQLAlchemyError as e:
            logger.error(f"Failed to get schema for table {table_name}: {str(e)}")
            raise SchemaError(f"Failed to read column metadata: {e}", table=table_name, operation="get_table_schema") from e
