from abc import ABC, abstractmethod
from typing import List, Dict, Any, Optional, Tuple
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, DisconnectionError, InterfaceError, OperationalError, SQLAlchemyError
from loguru import logger
from sqltomongo.errors import DatabaseConnectionError, SchemaError, SourceQueryError
from sqltomongo.models.config import DatabaseConfig
from sqltomongo.services.query_builder import PageQuery, SqlDialect


class BaseConnector(ABC):
    """基于SQLAlchemy的源数据库连接器"""

    # 支持 ROW_NUMBER() OVER 的最低版本
    MIN_VERSION: Tuple[int, ...] = ()
    PRODUCT_NAME = "database"
    DEFAULT_SCHEMA: Optional[str] = None

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._engine: Engine = None

    @property
    def schema(self) -> Optional[str]:
        return self.config.schema or self.DEFAULT_SCHEMA

    @property
    def connection_string(self) -> str:
        return self.config.url or self.build_url()

    @abstractmethod
    def build_url(self) -> str:
        """根据离散的配置项构建连接字符串"""
        pass

    @abstractmethod
    async def get_table_schema(self, table_name: str) -> Dict[str, Any]:
        """获取表结构"""
        pass

    async def connect(self) -> None:
        """建立数据库连接"""
        try:
            self._engine = create_engine(self.connection_string)
            # 测试连接
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info(f"Successfully connected to {self.PRODUCT_NAME} database: {self._engine.url.database}")
        except SQLAlchemyError as e:
            logger.error(f"Failed to connect to {self.PRODUCT_NAME} database: {str(e)}")
            raise DatabaseConnectionError(
                f"Failed to connect to {self.PRODUCT_NAME} database: {e}",
                operation="connect"
            ) from e

    async def disconnect(self) -> None:
        """关闭数据库连接"""
        if self._engine:
            self._engine.dispose()
            self._engine = None
            logger.info(f"Disconnected from {self.PRODUCT_NAME} database")

    @property
    def dialect(self) -> SqlDialect:
        return SqlDialect.from_sqlalchemy(self._engine.dialect, self.schema)

    def quote_table(self, table_name: str) -> str:
        return self.dialect.table(table_name)

    async def server_version(self) -> Tuple[int, ...]:
        """获取服务器版本号"""
        try:
            with self._engine.connect():
                # 建立首个连接后方言才会填充版本信息
                version = self._engine.dialect.server_version_info
        except SQLAlchemyError as e:
            raise DatabaseConnectionError(f"Failed to read server version: {e}", operation="server_version") from e
        return tuple(version or ())

    def minimum_version(self) -> Tuple[int, ...]:
        return self.MIN_VERSION

    def is_connection_error(self, error: SQLAlchemyError) -> bool:
        """判断是否为连接类错误（可重试）"""
        if isinstance(error, (OperationalError, InterfaceError, DisconnectionError)):
            return True
        return isinstance(error, DBAPIError) and error.connection_invalidated

    async def table_exists(self, table_name: str) -> bool:
        try:
            return inspect(self._engine).has_table(table_name, schema=self.schema)
        except SQLAlchemyError as e:
            raise SchemaError(f"Failed to check table existence: {e}", table=table_name, operation="table_exists") from e

    async def fetch_page(self, table_name: str, query: PageQuery) -> List[Dict[str, Any]]:
        """
        执行分页查询

        Args:
            table_name: 源表名，仅用于错误上下文
            query: 分页查询

        Returns:
            按 RowID 升序排列的行
        """
        try:
            with self._engine.connect() as conn:
                result = conn.execute(text(query.sql), query.params)
                return [dict(row._mapping) for row in result]
        except SQLAlchemyError as e:
            logger.error(f"Failed to read page from table {table_name}: {str(e)}")
            if self.is_connection_error(e):
                raise DatabaseConnectionError(f"Connection lost while reading page: {e}", table=table_name, operation="fetch_page") from e
            raise SourceQueryError(f"Failed to read page: {e}", table=table_name, operation="fetch_page") from e

    async def get_row_count(self, table_name: str) -> int:
        """
        获取表的总行数

        Args:
            table_name: 表名

        Returns:
            表中的记录数
        """
        try:
            with self._engine.connect() as conn:
                result = conn.execute(text(f"SELECT COUNT(*) AS count FROM {self.quote_table(table_name)}"))
                count = result.scalar()
                logger.debug(f"Table {table_name} has {count} rows")
                return count
        except SQLAlchemyError as e:
            logger.error(f"Failed to get row count for table {table_name}: {str(e)}")
            if self.is_connection_error(e):
                raise DatabaseConnectionError(f"Connection lost while counting rows: {e}", table=table_name, operation="get_row_count") from e
            raise SourceQueryError(f"Failed to count rows: {e}", table=table_name, operation="get_row_count") from e

    async def list_tables(self) -> List[Dict[str, Any]]:
        """
        列出源库中的表及其主键

        Returns:
            [{"table_name": ..., "primary_key": [...]}, ...]
        """
        try:
            inspector = inspect(self._engine)
            tables = []
            for table_name in inspector.get_table_names(schema=self.schema):
                constraint = inspector.get_pk_constraint(table_name, schema=self.schema) or {}
                tables.append({
                    "table_name": table_name,
                    "primary_key": list(constraint.get("constrained_columns") or [])
                })
            return tables
        except SQLAlchemyError as e:
            logger.error(f"Failed to list tables: {str(e)}")
            raise SchemaError(f"Failed to list tables: {e}", operation="list_tables") from e
