from loguru import logger
from sqltomongo.connectors.base import BaseConnector
from sqltomongo.errors import SchemaError
from sqltomongo.models.state import ROW_ID, ColumnSchema


class SchemaIntrospector:
    """从源库元数据目录读取表结构，每次运行重新获取，不做持久化"""

    def __init__(self, connector: BaseConnector):
        self.connector = connector

    async def discover(self, table_name: str) -> ColumnSchema:
        """
        获取表的列名和数据类型

        Args:
            table_name: 源表名

        Returns:
            ColumnSchema: 按目录顺序排列的列，以及声明的主键列

        Raises:
            SchemaError: 表不存在、无法读取元数据或列名与 RowID 冲突
        """
        if not await self.connector.table_exists(table_name):
            raise SchemaError("Table does not exist", table=table_name, operation="discover_schema")

        raw = await self.connector.get_table_schema(table_name)
        schema = ColumnSchema(table=table_name)
        for column in raw.get("columns", []):
            name = column["name"]
            if name.lower() == ROW_ID.lower():
                raise SchemaError(
                    f"Column '{name}' collides with the reserved ordinal column {ROW_ID}",
                    table=table_name,
                    operation="discover_schema"
                )
            schema.columns[name] = column["type"]
            if column.get("is_primary"):
                schema.primary_key.append(name)

        logger.debug(f"Discovered {len(schema)} columns for {table_name}, primary key: {schema.primary_key}")
        return schema
