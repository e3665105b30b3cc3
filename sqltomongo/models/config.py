from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass, field, replace
from sqltomongo.errors import ConfigurationError
from sqltomongo.services.cursor import parse_cursor

DEFAULT_PAGE_SIZE = 500


@dataclass
class DatabaseConfig:
    type: str = ""
    host: Optional[str] = None
    port: Optional[int] = None
    username: Optional[str] = None
    password: Optional[str] = None
    database: Optional[str] = None
    driver: Optional[str] = None
    schema: Optional[str] = None
    sslmode: Optional[str] = None
    trust_server_certificate: Optional[bool] = None
    url: Optional[str] = None

    def __post_init__(self):
        if self.url and not self.type:
            self.type = scheme_of(self.url)
        self.type = (self.type or "").lower()

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "DatabaseConfig":
        return cls(url=url.strip(), **kwargs)

    def has_connection(self) -> bool:
        """是否配置了可用的连接信息（完整URL或类型+数据库名）"""
        if self.url:
            return True
        return bool(self.type and self.database)


def scheme_of(url: str) -> str:
    """从连接字符串中取出数据库类型，如 mssql+pyodbc://... -> mssql"""
    scheme = url.split("://", 1)[0] if "://" in url else url.split(":", 1)[0]
    return scheme.split("+", 1)[0].lower()


@dataclass
class TableMapping:
    source: str
    target: str = ""
    primary_key_column: Optional[str] = None
    page_size: int = DEFAULT_PAGE_SIZE
    last_sync_cursor: str = ""
    selected: bool = True
    verify: bool = True

    def __post_init__(self):
        if not self.source or not str(self.source).strip():
            raise ConfigurationError("Table mapping requires a source table name")
        self.source = str(self.source).strip()
        self.target = str(self.target).strip() if self.target else self.source
        if self.primary_key_column is not None:
            self.primary_key_column = str(self.primary_key_column).strip() or None

        self.page_size = _to_page_size(self.page_size, self.source)

        if self.last_sync_cursor is None:
            self.last_sync_cursor = ""
        self.last_sync_cursor = str(self.last_sync_cursor).strip()
        try:
            parse_cursor(self.last_sync_cursor)
        except ValueError as e:
            raise ConfigurationError(str(e), table=self.source) from e

        if not isinstance(self.selected, bool) or not isinstance(self.verify, bool):
            raise ConfigurationError("selected/verify must be booleans", table=self.source)


def _to_page_size(value, table: str) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid page size: {value!r}", table=table)
    if value is None or value == "":
        return DEFAULT_PAGE_SIZE
    try:
        page_size = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid page size: {value!r}", table=table) from e
    # 非正数按默认页大小处理
    return page_size if page_size > 0 else DEFAULT_PAGE_SIZE


@dataclass
class SyncConfig:
    source: DatabaseConfig
    target: DatabaseConfig
    tables: List[TableMapping] = field(default_factory=list)
    retry_times: int = 3
    retry_interval: float = 5
    verify_data: bool = True

    def __post_init__(self):
        if self.retry_times < 1:
            raise ConfigurationError(f"retry_times must be at least 1, got {self.retry_times}")
        if self.retry_interval < 0:
            raise ConfigurationError(f"retry_interval must not be negative, got {self.retry_interval}")

    def selected_tables(self, names: Optional[List[str]] = None) -> List[TableMapping]:
        """
        获取本次要同步的表映射

        Args:
            names: 指定的源表名（不区分大小写），为空时返回所有选中的映射

        Returns:
            按配置顺序排列的表映射
        """
        if names:
            wanted = {name.strip().lower() for name in names}
            return [m for m in self.tables if m.source.lower() in wanted]
        return [m for m in self.tables if m.selected]

    def with_cursors(self, cursors: Dict[Tuple[str, str], str]) -> "SyncConfig":
        """返回更新了游标的配置副本，键为 (源表名, 目标集合名)"""
        tables = [
            replace(m, last_sync_cursor=cursors[(m.source, m.target)]) if (m.source, m.target) in cursors else m
            for m in self.tables
        ]
        return replace(self, tables=tables)
