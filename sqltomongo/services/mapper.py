import datetime
from decimal import Decimal, DecimalException
from typing import Any, Dict, Mapping, Optional
from bson import Binary, Decimal128
from sqltomongo.errors import MappingError
from sqltomongo.models.state import IDENTITY_FIELD, ROW_ID, ColumnSchema

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1


def to_bson_value(value: Any) -> Any:
    """
    将数据库值转换为BSON原生类型

    能无损映射的类型（数值、布尔、日期、二进制）保持原生表示，其余转换为字符串。
    """
    if value is None or isinstance(value, (bool, str, float)):
        return value
    if isinstance(value, int):
        return value if INT64_MIN <= value <= INT64_MAX else str(value)
    if isinstance(value, Decimal):
        try:
            return Decimal128(value)
        except DecimalException:
            # 超出 Decimal128 精度
            return str(value)
    if isinstance(value, datetime.datetime):
        return value
    if isinstance(value, datetime.date):
        return datetime.datetime.combine(value, datetime.time.min)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return Binary(bytes(value))
    return str(value)


def target_field_name(column: str, primary_key_column: Optional[str]) -> str:
    return IDENTITY_FIELD if primary_key_column and column == primary_key_column else column


def map_row(schema: ColumnSchema, row: Mapping[str, Any], primary_key_column: Optional[str] = None) -> Dict[str, Any]:
    """
    将一行源数据转换为目标文档

    Args:
        schema: 表结构，决定输出哪些字段
        row: 源数据行，必须包含所有列以及 RowID
        primary_key_column: 主键列，写入文档的 _id 字段

    Returns:
        目标文档

    Raises:
        MappingError: 行中缺少表结构中的列（运行期间表结构发生变化）
    """
    document = {}
    for column in schema.names:
        if column not in row:
            raise MappingError(f"Row is missing column '{column}'", table=schema.table, operation="map_row")
        document[target_field_name(column, primary_key_column)] = to_bson_value(row[column])

    if ROW_ID not in row:
        raise MappingError(f"Row is missing column '{ROW_ID}'", table=schema.table, operation="map_row")
    try:
        document[ROW_ID] = int(row[ROW_ID])
    except (TypeError, ValueError) as e:
        raise MappingError(f"Invalid {ROW_ID} value: {row[ROW_ID]!r}", table=schema.table, operation="map_row") from e

    return document
