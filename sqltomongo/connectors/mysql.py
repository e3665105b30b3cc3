from typing import Dict, Any, Optional, Tuple
from urllib.parse import quote_plus
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from loguru import logger
from sqltomongo.connectors.base import BaseConnector
from sqltomongo.errors import SchemaError


class MySQLConnector(BaseConnector):
    MIN_VERSION = (8, 0)
    # MariaDB 从 10.2 开始支持窗口函数
    MARIADB_MIN_VERSION = (10, 2)
    PRODUCT_NAME = "MySQL"

    @property
    def schema(self) -> Optional[str]:
        # MySQL 中 schema 即数据库
        return self.config.schema

    def build_url(self) -> str:
        port = self.config.port or 3306
        return (
            f"mysql+pymysql://{quote_plus(self.config.username or '')}:{quote_plus(self.config.password or '')}@"
            f"{self.config.host}:{port}/{self.config.database}"
        )

    def minimum_version(self) -> Tuple[int, ...]:
        if self._engine is not None and getattr(self._engine.dialect, "is_mariadb", False):
            return self.MARIADB_MIN_VERSION
        return self.MIN_VERSION

    async def get_table_schema(self, table_name: str) -> Dict[str, Any]:
        query = """
        SELECT COLUMN_NAME, DATA_TYPE, CHARACTER_MAXIMUM_LENGTH, IS_NULLABLE, COLUMN_KEY
        FROM INFORMATION_SCHEMA.COLUMNS
        WHERE TABLE_SCHEMA = COALESCE(:database, DATABASE()) AND TABLE_NAME = :table
        ORDER BY ORDINAL_POSITION
        """
        try:
            with self._engine.connect() as conn:
                result = conn.execute(
                    text(query),
                    {"database": self.schema, "table": table_name}
                )
                columns = []
                for row in result:
                    columns.append({
                        "name": row.COLUMN_NAME,
                        "type": row.DATA_TYPE,
                        "length": row.CHARACTER_MAXIMUM_LENGTH,
                        "nullable": row.IS_NULLABLE == "YES",
                        "is_primary": row.COLUMN_KEY == "PRI"
                    })
                return {"table_name": table_name, "columns": columns}
        except SQLAlchemyError as e:
            logger.error(f"Failed to get schema for table {table_name}: {str(e)}")
            raise SchemaError(f"Failed to read column metadata: {e}", table=table_name, operation="get_table_schema") from e
