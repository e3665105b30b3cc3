from typing import Any, Dict, Optional, Sequence
from dataclasses import replace
from sqltomongo.errors import MappingError
from sqltomongo.models.state import ROW_ID, MappingState, PageResult


def parse_cursor(cursor: Optional[str]) -> Optional[int]:
    """
    解析游标字符串

    Args:
        cursor: 游标，空字符串表示全量重新同步

    Returns:
        游标对应的序号，空游标返回 None

    Raises:
        ValueError: 游标不是非负整数
    """
    if cursor is None or not str(cursor).strip():
        return None
    text = str(cursor).strip()
    if not text.isdigit():
        raise ValueError(f"Sync cursor must be a non-negative integer, got {cursor!r}")
    return int(text)


class CursorTracker:
    """决定是否需要重置目标集合，并在每页写入成功后推进游标"""

    @staticmethod
    def requires_reset(cursor: Optional[str]) -> bool:
        return parse_cursor(cursor) is None

    @staticmethod
    def next_cursor(current: str, documents: Sequence[Dict[str, Any]], table: Optional[str] = None) -> str:
        """
        计算新的游标

        Args:
            current: 当前游标
            documents: 本页已写入的文档（按序号升序）
            table: 源表名，仅用于错误上下文

        Returns:
            本页最后一个文档的序号；空页时游标不变
        """
        if not documents:
            return current

        last = documents[-1].get(ROW_ID)
        try:
            ordinal = int(last)
        except (TypeError, ValueError) as e:
            raise MappingError(f"Invalid {ROW_ID} value: {last!r}", table=table, operation="next_cursor") from e

        previous = parse_cursor(current)
        if previous is not None and ordinal <= previous:
            raise MappingError(
                f"Cursor did not advance: {ordinal} <= {previous}",
                table=table,
                operation="next_cursor"
            )
        return str(ordinal)

    @staticmethod
    def advance(state: MappingState, page: PageResult) -> MappingState:
        return replace(
            state,
            cursor=page.cursor,
            pages=state.pages + 1,
            rows_copied=state.rows_copied + page.inserted,
            cleared=state.cleared or page.cleared
        )
