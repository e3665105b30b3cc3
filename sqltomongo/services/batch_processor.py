import time
from typing import Any, Dict, List
from loguru import logger
from sqltomongo.connectors.mongodb import MongoDBConnector
from sqltomongo.errors import LoadCountMismatchError
from sqltomongo.models.state import IDENTITY_FIELD, ROW_ID
from sqltomongo.services.retry import with_retry


class BatchLoader:
    """批次写入器，每页数据一次往返写入目标集合"""

    def __init__(self,
                 target_connector: MongoDBConnector,
                 retry_times: int = 3,
                 retry_interval: float = 5,
                 log=logger):
        self.target_connector = target_connector
        self.retry_times = retry_times
        self.retry_interval = retry_interval
        self.log = log

    async def load_page(self,
                        collection: str,
                        documents: List[Dict[str, Any]],
                        is_first_page_of_reset: bool,
                        page_num: int = 1) -> int:
        """
        写入一页文档

        Args:
            collection: 目标集合名
            documents: 本页文档
            is_first_page_of_reset: 是否为全量重新同步的第一页，是则先清空集合
            page_num: 页码，仅用于日志

        Returns:
            写入的文档数

        Raises:
            LoadCountMismatchError: 写入数与提交数不一致
        """
        row_ids = [doc[ROW_ID] for doc in documents]
        # 带 _id 的文档按主键覆盖，否则按 RowID 先删后插
        upsert = bool(documents) and IDENTITY_FIELD in documents[0]

        async def attempt(_) -> int:
            if is_first_page_of_reset:
                await self.target_connector.clear(collection)
                self.log.info(f"已清空目标集合: {collection}")
            elif upsert:
                return await self.target_connector.upsert_batch(collection, documents)
            elif documents:
                # 从较早的游标续传或重试时，本页可能已经写入过
                await self.target_connector.delete_rows(collection, row_ids)

            if not documents:
                return 0
            return await self.target_connector.insert_batch(collection, documents)

        page_start_time = time.time()
        inserted = await with_retry(
            attempt,
            self.retry_times,
            self.retry_interval,
            f"页 {page_num} 写入 {collection}",
            log=self.log
        )

        if inserted != len(documents):
            self.log.error(f"页 {page_num} 写入数量不一致: 提交 {len(documents)} 条, 写入 {inserted} 条")
            raise LoadCountMismatchError(len(documents), inserted, table=collection)

        page_duration = time.time() - page_start_time
        rate = inserted / page_duration if page_duration > 0 else 0
        self.log.info(f"页 {page_num} 写入完成: {inserted} 条, "
                      f"耗时: {page_duration:.2f}秒, "
                      f"速率: {rate:.2f} 条/秒")
        return inserted
