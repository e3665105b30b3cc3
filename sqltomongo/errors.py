from typing import Optional


class SyncError(Exception):
    """同步过程中的错误基类，携带表名和操作上下文"""

    def __init__(self, message: str, table: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.table = table
        self.operation = operation

    @property
    def cause(self) -> Optional[BaseException]:
        return self.__cause__

    def __str__(self) -> str:
        context = []
        if self.table:
            context.append(f"table={self.table}")
        if self.operation:
            context.append(f"operation={self.operation}")
        if context:
            return f"{self.message} ({', '.join(context)})"
        return self.message


class ConfigurationError(SyncError):
    """配置缺失或格式错误，终止整个运行"""


class UnsupportedVersionError(SyncError):
    """源数据库版本低于最低支持版本，终止整个运行"""


class SchemaError(SyncError):
    """表不存在或无法读取元数据"""


class DatabaseConnectionError(SyncError):
    """源或目标连接失败，可重试"""


class SourceQueryError(SyncError):
    """源查询执行失败（非连接类错误）"""


class MappingError(SyncError):
    """行数据与发现的表结构不一致"""


class LoadCountMismatchError(SyncError):
    def __init__(self, expected: int, inserted: int, table: Optional[str] = None, operation: Optional[str] = "insert_batch"):
        super().__init__(
            f"Inserted {inserted} documents but {expected} were submitted",
            table=table,
            operation=operation
        )
        self.expected = expected
        self.inserted = inserted


class TargetWriteError(SyncError):
    """目标写入失败（非连接类错误）"""


class VerificationError(SyncError):
    """源表与目标集合行数不一致"""


# 以下错误会终止整个运行，其余错误只影响当前映射
RUN_SCOPED_ERRORS = (ConfigurationError, UnsupportedVersionError)
