import time
from enum import Enum
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass, field
from sqltomongo.errors import SyncError

# 代理序号列名，既用于分页游标也写入每个文档
ROW_ID = "RowID"
# 主键列在目标文档中的字段名
IDENTITY_FIELD = "_id"


class SyncPhase(Enum):
    INIT = "init"
    SCHEMA_DISCOVERED = "schema_discovered"
    PAGING = "paging"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ColumnSchema:
    """按目录顺序排列的列名 -> 数据类型"""
    table: str
    columns: Dict[str, str] = field(default_factory=dict)
    primary_key: List[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.columns)

    def __iter__(self):
        return iter(self.columns)

    def __contains__(self, name) -> bool:
        return name in self.columns

    @property
    def names(self) -> List[str]:
        return list(self.columns)

    @property
    def first_column(self) -> Optional[str]:
        return next(iter(self.columns), None)

    def find(self, name: str) -> Optional[str]:
        """按列名查找（不区分大小写），返回目录中的原始列名"""
        if name in self.columns:
            return name
        lowered = name.lower()
        for column in self.columns:
            if column.lower() == lowered:
                return column
        return None


@dataclass(frozen=True)
class MappingState:
    cursor: str = ""
    pages: int = 0
    rows_copied: int = 0
    cleared: bool = False


@dataclass(frozen=True)
class PageResult:
    cursor: str
    rows_seen: int
    inserted: int
    cleared: bool = False


@dataclass
class MappingResult:
    source: str
    target: str
    status: SyncPhase
    rows_copied: int = 0
    pages: int = 0
    cursor: str = ""
    error: Optional[SyncError] = None

    @property
    def succeeded(self) -> bool:
        return self.status == SyncPhase.DONE


@dataclass
class SyncReport:
    results: List[MappingResult] = field(default_factory=list)
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    @property
    def total_rows(self) -> int:
        return sum(r.rows_copied for r in self.results)

    @property
    def succeeded(self) -> bool:
        return all(r.succeeded for r in self.results)

    @property
    def failed(self) -> List[MappingResult]:
        return [r for r in self.results if r.status == SyncPhase.FAILED]

    @property
    def duration(self) -> float:
        end = self.finished_at if self.finished_at is not None else time.time()
        return end - self.started_at

    def cursors(self) -> Dict[Tuple[str, str], str]:
        """每个映射的最终游标，供外部配置持久化"""
        return {(r.source, r.target): r.cursor for r in self.results}
