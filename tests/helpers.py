from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional
from sqlalchemy import create_engine, text
from sqltomongo.errors import DatabaseConnectionError
from sqltomongo.models.state import IDENTITY_FIELD, ROW_ID


def create_orders_table(path: str, count: int, step: int = 3, table: str = "orders") -> None:
    """创建测试用的订单表，主键不连续（按 step 递增）"""
    engine = create_engine(f"sqlite:///{path}")
    with engine.begin() as conn:
        conn.execute(text(
            f"CREATE TABLE {table} (order_id INTEGER PRIMARY KEY, customer TEXT NOT NULL, amount REAL)"
        ))
        if count:
            conn.execute(
                text(f"INSERT INTO {table} (order_id, customer, amount) VALUES (:id, :customer, :amount)"),
                [{"id": (i + 1) * step, "customer": f"customer-{i + 1}", "amount": i * 1.5} for i in range(count)]
            )
    engine.dispose()


class FakeMongoConnector:
    """内存中的目标连接器，记录每次操作"""

    def __init__(self):
        self.collections: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self.operations: List[tuple] = []
        self.connected = False
        self.database_name = "test"
        self.insert_calls = 0
        # 第 N 次写入只写入指定条数
        self.insert_limits: Dict[int, int] = {}
        # 接下来的若干次写入在写入一半后抛出连接错误
        # 写入计数包括 insert 和 upsert
        self.failing_inserts = 0
        self.on_insert: Optional[Callable[[int], None]] = None

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    async def clear(self, collection: str) -> int:
        self.operations.append(("clear", collection))
        removed = len(self.collections[collection])
        self.collections[collection] = []
        return removed

    def _store(self, collection: str, documents: List[Dict[str, Any]], upsert: bool) -> int:
        """写入文档，与有序 insert_many 一样遇到重复 _id 即停止，返回写入数"""
        stored = self.collections[collection]
        written = 0
        for doc in documents:
            if upsert:
                stored[:] = [d for d in stored if d.get(IDENTITY_FIELD) != doc[IDENTITY_FIELD]]
            elif IDENTITY_FIELD in doc and any(d.get(IDENTITY_FIELD) == doc[IDENTITY_FIELD] for d in stored):
                break
            stored.append(dict(doc))
            written += 1
        return written

    async def _write(self, kind: str, collection: str, documents: List[Dict[str, Any]]) -> int:
        self.insert_calls += 1
        self.operations.append((kind, collection, [doc[ROW_ID] for doc in documents]))
        upsert = kind == "upsert"
        if self.failing_inserts > 0:
            self.failing_inserts -= 1
            self._store(collection, documents[:len(documents) // 2], upsert)
            raise DatabaseConnectionError("connection reset", table=collection, operation=f"{kind}_batch")

        count = self.insert_limits.get(self.insert_calls, len(documents))
        written = self._store(collection, documents[:count], upsert)
        if self.on_insert:
            self.on_insert(self.insert_calls)
        return written

    async def insert_batch(self, collection: str, documents: List[Dict[str, Any]]) -> int:
        return await self._write("insert", collection, documents)

    async def upsert_batch(self, collection: str, documents: List[Dict[str, Any]]) -> int:
        return await self._write("upsert", collection, documents)

    async def delete_rows(self, collection: str, row_ids: List[int]) -> int:
        self.operations.append(("delete_rows", collection, list(row_ids)))
        wanted = set(row_ids)
        before = len(self.collections[collection])
        self.collections[collection] = [d for d in self.collections[collection] if d[ROW_ID] not in wanted]
        return before - len(self.collections[collection])

    async def count_documents(self, collection: str) -> int:
        return len(self.collections[collection])

    def inserts(self, collection: str) -> List[List[int]]:
        return [op[2] for op in self.operations if op[0] in ("insert", "upsert") and op[1] == collection]

    def clears(self, collection: str) -> int:
        return sum(1 for op in self.operations if op == ("clear", collection))
