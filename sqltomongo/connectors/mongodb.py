from typing import Any, Dict, List, Optional
from urllib.parse import quote_plus
from pymongo import MongoClient, ReplaceOne
from pymongo.database import Database
from pymongo.errors import BulkWriteError, ConnectionFailure, PyMongoError
from pymongo.errors import ConfigurationError as MongoConfigurationError
from loguru import logger
from sqltomongo.errors import ConfigurationError, DatabaseConnectionError, TargetWriteError
from sqltomongo.models.config import DatabaseConfig
from sqltomongo.models.state import IDENTITY_FIELD, ROW_ID


class MongoDBConnector:
    """MongoDB 目标连接器"""

    def __init__(self, config: DatabaseConfig, server_selection_timeout_ms: int = 30000):
        self.config = config
        self.server_selection_timeout_ms = server_selection_timeout_ms
        self._client: Optional[MongoClient] = None
        self._db: Optional[Database] = None

    @property
    def connection_string(self) -> str:
        return self.config.url or self.build_url()

    def build_url(self) -> str:
        port = self.config.port or 27017
        credentials = ""
        if self.config.username:
            credentials = f"{quote_plus(self.config.username)}:{quote_plus(self.config.password or '')}@"
        return f"mongodb://{credentials}{self.config.host}:{port}/{self.config.database}"

    @property
    def database_name(self) -> Optional[str]:
        return self._db.name if self._db is not None else None

    async def connect(self) -> None:
        try:
            self._client = MongoClient(
                self.connection_string,
                serverSelectionTimeoutMS=self.server_selection_timeout_ms
            )
            # 连接字符串中必须包含数据库名
            self._db = self._client.get_default_database()
            # 测试连接
            self._client.admin.command("ping")
            logger.info(f"Successfully connected to MongoDB database: {self._db.name}")
        except MongoConfigurationError as e:
            await self.disconnect()
            raise ConfigurationError(f"Invalid MongoDB connection string: {e}", operation="connect") from e
        except PyMongoError as e:
            logger.error(f"Failed to connect to MongoDB database: {str(e)}")
            await self.disconnect()
            raise DatabaseConnectionError(f"Failed to connect to MongoDB database: {e}", operation="connect") from e

    async def disconnect(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            self._db = None
            logger.info("Disconnected from MongoDB database")

    def _raise(self, error: PyMongoError, collection: str, operation: str):
        logger.error(f"Failed to {operation} on collection {collection}: {str(error)}")
        if isinstance(error, ConnectionFailure):
            raise DatabaseConnectionError(f"Connection lost during {operation}: {error}", table=collection, operation=operation) from error
        raise TargetWriteError(f"Failed to {operation}: {error}", table=collection, operation=operation) from error

    async def clear(self, collection: str) -> int:
        """清空集合，返回删除的文档数"""
        try:
            result = self._db[collection].delete_many({})
            logger.debug(f"Cleared {result.deleted_count} documents from {collection}")
            return result.deleted_count
        except PyMongoError as e:
            self._raise(e, collection, "clear")

    async def insert_batch(self, collection: str, documents: List[Dict[str, Any]]) -> int:
        """
        批量写入文档

        Args:
            collection: 集合名
            documents: 文档列表

        Returns:
            实际写入的文档数
        """
        if not documents:
            return 0
        try:
            result = self._db[collection].insert_many(documents, ordered=True)
            return len(result.inserted_ids)
        except BulkWriteError as e:
            # 部分写入时返回实际写入数，由调用方判定数据丢失
            inserted = e.details.get("nInserted", 0)
            logger.error(f"Bulk insert into {collection} stopped after {inserted} documents: {e.details.get('writeErrors')}")
            return inserted
        except PyMongoError as e:
            self._raise(e, collection, "insert_batch")

    async def upsert_batch(self, collection: str, documents: List[Dict[str, Any]]) -> int:
        """
        按 _id 覆盖写入文档，已存在的文档被替换

        Returns:
            新增与覆盖的文档数之和
        """
        if not documents:
            return 0
        requests = [ReplaceOne({IDENTITY_FIELD: doc[IDENTITY_FIELD]}, doc, upsert=True) for doc in documents]
        try:
            result = self._db[collection].bulk_write(requests, ordered=True)
            return result.upserted_count + result.matched_count
        except BulkWriteError as e:
            written = e.details.get("nUpserted", 0) + e.details.get("nMatched", 0)
            logger.error(f"Bulk upsert into {collection} stopped after {written} documents: {e.details.get('writeErrors')}")
            return written
        except PyMongoError as e:
            self._raise(e, collection, "upsert_batch")

    async def delete_rows(self, collection: str, row_ids: List[int]) -> int:
        """删除指定 RowID 的文档，用于重写本页前清理已写入的文档"""
        if not row_ids:
            return 0
        try:
            result = self._db[collection].delete_many({ROW_ID: {"$in": list(row_ids)}})
            return result.deleted_count
        except PyMongoError as e:
            self._raise(e, collection, "delete_rows")

    async def count_documents(self, collection: str) -> int:
        try:
            return self._db[collection].count_documents({})
        except PyMongoError as e:
            self._raise(e, collection, "count_documents")
