from typing import Dict, Any, Optional
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, DisconnectionError, SQLAlchemyError
from loguru import logger
from sqltomongo.connectors.base import BaseConnector
from sqltomongo.errors import SchemaError


class SQLiteConnector(BaseConnector):
    MIN_VERSION = (3, 25)
    PRODUCT_NAME = "SQLite"

    @property
    def schema(self) -> Optional[str]:
        return None

    def build_url(self) -> str:
        return f"sqlite:///{self.config.database}"

    def is_connection_error(self, error: SQLAlchemyError) -> bool:
        # SQLite 将缺表、缺列也报告为 OperationalError，只有文件不可用或被锁才可重试
        if isinstance(error, DisconnectionError):
            return True
        if isinstance(error, DBAPIError) and error.connection_invalidated:
            return True
        message = str(error).lower()
        return "unable to open database" in message or "database is locked" in message

    async def get_table_schema(self, table_name: str) -> Dict[str, Any]:
        query = f"PRAGMA table_info({self.quote_table(table_name)})"
        try:
            with self._engine.connect() as conn:
                result = conn.execute(text(query))
                columns = []
                for row in result:
                    columns.append({
                        "name": row.name,
                        "type": (row.type or "").lower(),
                        "length": None,
                        "nullable": not row.notnull,
                        "is_primary": bool(row.pk)
                    })
                return {"table_name": table_name, "columns": columns}
        except SQLAlchemyError as e:
            logger.error(f"Failed to get schema for table {table_name}: {str(e)}")
            raise SchemaError(f"Failed to read column metadata: {e}", table=table_name, operation="get_table_schema") from e
