from typing import Any, Callable, Dict, Optional
from dataclasses import dataclass, field
from sqlalchemy.engine import Dialect
from sqltomongo.models.config import DEFAULT_PAGE_SIZE
from sqltomongo.models.state import ROW_ID, ColumnSchema
from sqltomongo.services.cursor import parse_cursor

# 子查询别名
WINDOW_ALIAS = "S"


@dataclass(frozen=True)
class SqlDialect:
    """生成分页查询所需的方言信息：标识符引用方式、行数限制写法、表所属schema"""
    name: str
    quote: Callable[[str], str]
    schema: Optional[str] = None
    use_top: bool = False

    @classmethod
    def from_sqlalchemy(cls, dialect: Dialect, schema: Optional[str] = None) -> "SqlDialect":
        return cls(
            name=dialect.name,
            quote=dialect.identifier_preparer.quote,
            schema=schema,
            use_top=dialect.name == "mssql"
        )

    def table(self, name: str) -> str:
        name = name.strip().strip("[]")
        if self.schema:
            return f"{self.quote(self.schema)}.{self.quote(name)}"
        return self.quote(name)


@dataclass(frozen=True)
class PageQuery:
    sql: str
    params: Dict[str, Any] = field(default_factory=dict)


def build_page_query(schema: ColumnSchema,
                     ordering_column: Optional[str],
                     page_size: int,
                     table: str,
                     cursor: Optional[str],
                     dialect: SqlDialect) -> PageQuery:
    """
    构建基于 ROW_NUMBER() 的分页查询

    每行按排序列升序获得连续序号 RowID，外层查询取序号大于游标的前 page_size 行。
    序号每次根据排序键重新计算，与物理位置无关。

    Args:
        schema: 表结构
        ordering_column: 排序列，为空时使用第一列
        page_size: 每页行数，非正数时使用默认值
        table: 源表名
        cursor: 上一页最后一行的序号，空表示从头开始
        dialect: SQL方言

    Returns:
        PageQuery: SQL文本及绑定参数
    """
    if not schema or not table or not table.strip():
        raise ValueError("A non-empty schema and table name are required to build a page query")

    if page_size <= 0:
        page_size = DEFAULT_PAGE_SIZE
    ordering_column = ordering_column or schema.first_column

    q = dialect.quote
    row_id = q(ROW_ID)
    inner_columns = ", ".join(q(column) for column in schema.names)
    outer_columns = ", ".join(f"{WINDOW_ALIAS}.{q(column)}" for column in schema.names)

    inner = (
        f"SELECT {inner_columns}, ROW_NUMBER() OVER (ORDER BY {q(ordering_column)}) AS {row_id} "
        f"FROM {dialect.table(table)}"
    )

    if dialect.use_top:
        sql = f"SELECT TOP {page_size} {outer_columns}, {WINDOW_ALIAS}.{row_id}"
    else:
        sql = f"SELECT {outer_columns}, {WINDOW_ALIAS}.{row_id}"
    sql += f" FROM ({inner}) AS {WINDOW_ALIAS}"

    params = {}
    start = parse_cursor(cursor)
    if start is not None:
        sql += f" WHERE {WINDOW_ALIAS}.{row_id} > :cursor"
        params["cursor"] = start

    sql += f" ORDER BY {WINDOW_ALIAS}.{row_id}"
    if not dialect.use_top:
        sql += f" LIMIT {page_size}"

    return PageQuery(sql=sql, params=params)
