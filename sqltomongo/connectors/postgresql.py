from typing import Dict, Any
from urllib.parse import quote_plus
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from loguru import logger
from sqltomongo.connectors.base import BaseConnector
from sqltomongo.errors import SchemaError


class PostgreSQLConnector(BaseConnector):
    MIN_VERSION = (8, 4)
    PRODUCT_NAME = "PostgreSQL"
    DEFAULT_SCHEMA = "public"

    def build_url(self) -> str:
        # 构建PostgreSQL连接字符串
        port = self.config.port or 5432
        connection_string = (
            f"postgresql+psycopg2://{quote_plus(self.config.username or '')}:{quote_plus(self.config.password or '')}@"
            f"{self.config.host}:{port}/{self.config.database}"
        )
        if self.config.sslmode:
            connection_string += f"?sslmode={self.config.sslmode}"
        return connection_string

    async def get_table_schema(self, table_name: str) -> Dict[str, Any]:
        query = """
        SELECT
            c.column_name,
            c.data_type,
            c.character_maximum_length,
            c.is_nullable,
            (SELECT true
             FROM information_schema.table_constraints tc
             JOIN information_schema.key_column_usage ku
                ON tc.constraint_name = ku.constraint_name
                AND tc.table_schema = ku.table_schema
             WHERE tc.constraint_type = 'PRIMARY KEY'
                AND ku.table_name = :table
                AND ku.table_schema = :schema
                AND ku.column_name = c.column_name
             LIMIT 1
            ) as is_primary_key
        FROM
            information_schema.columns c
        WHERE
            c.table_name = :table
            AND c.table_schema = :schema
        ORDER BY
            c.ordinal_position
        """
        try:
            with self._engine.connect() as conn:
                result = conn.execute(
                    text(query),
                    {"table": table_name, "schema": self.schema}
                )
                columns = []
                for row in result:
                    columns.append({
                        "name": row.column_name,
                        "type": row.data_type,
                        "length": row.character_maximum_length,
                        "nullable": row.is_nullable == 'YES',
                        "is_primary": bool(row.is_primary_key)
                    })
                return {"table_name": table_name, "columns": columns}
        except SQLAlchemyError as e:
            logger.error(f"Failed to get schema for table {table_name}: {str(e)}")
            raise SchemaError(f"Failed to read column metadata: {e}", table=table_name, operation="get_table_schema") from e
