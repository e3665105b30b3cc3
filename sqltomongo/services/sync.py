import threading
import time
import uuid
from typing import Any, Dict, List, Optional, Tuple
from loguru import logger
from sqltomongo.connectors.base import BaseConnector
from sqltomongo.connectors.factory import ConnectorFactory
from sqltomongo.connectors.mongodb import MongoDBConnector
from sqltomongo.errors import (
    RUN_SCOPED_ERRORS,
    ConfigurationError,
    SchemaError,
    SyncError,
    UnsupportedVersionError,
    VerificationError,
)
from sqltomongo.models.config import SyncConfig, TableMapping
from sqltomongo.models.state import ColumnSchema, MappingResult, MappingState, PageResult, SyncPhase, SyncReport
from sqltomongo.services.batch_processor import BatchLoader
from sqltomongo.services.cursor import CursorTracker
from sqltomongo.services.mapper import map_row
from sqltomongo.services.query_builder import build_page_query
from sqltomongo.services.retry import with_retry
from sqltomongo.services.schema import SchemaIntrospector


class SyncService:
    def __init__(self,
                 config: SyncConfig,
                 log=None,
                 source_connector: Optional[BaseConnector] = None,
                 target_connector: Optional[MongoDBConnector] = None):
        self.config = config
        # 每次运行独立的日志上下文
        self.log = log or logger.bind(run_id=uuid.uuid4().hex[:8])
        self.source_connector = source_connector
        self.target_connector = target_connector
        self._cancel_event = threading.Event()

    def cancel(self) -> None:
        """请求取消，当前页写入完成后停止"""
        self.log.warning("收到取消请求，将在当前页完成后停止")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def _validate_config(self) -> None:
        if not self.config.source.has_connection():
            raise ConfigurationError("Missing source connection string")
        if not self.config.target.has_connection():
            raise ConfigurationError("Missing target connection string")

    async def initialize(self) -> None:
        """初始化源和目标数据库连接，并检查源库版本"""
        self._validate_config()

        self.log.debug("当前配置:")
        self.log.debug(f"tables: {[m.source for m in self.config.tables]}")
        self.log.debug(f"verify_data: {self.config.verify_data}")
        self.log.debug(f"retry_times: {self.config.retry_times}")
        self.log.debug(f"retry_interval: {self.config.retry_interval}")

        if self.source_connector is None:
            self.source_connector = ConnectorFactory.get_connector(self.config.source)
        if self.target_connector is None:
            self.target_connector = ConnectorFactory.get_target_connector(self.config.target)

        await self.source_connector.connect()
        await self.check_version()
        await self.target_connector.connect()
        self.log.info("初始化完成")

    async def check_version(self) -> Tuple[int, ...]:
        version = await self.source_connector.server_version()
        minimum = self.source_connector.minimum_version()
        if tuple(version) < tuple(minimum):
            found = ".".join(str(v) for v in version) or "unknown"
            required = ".".join(str(v) for v in minimum)
            raise UnsupportedVersionError(
                f"{self.source_connector.PRODUCT_NAME} {found} is not supported, {required} or above is required",
                operation="check_version"
            )
        self.log.debug(f"源库版本: {version}")
        return version

    async def cleanup(self) -> None:
        """清理资源"""
        try:
            if self.source_connector:
                await self.source_connector.disconnect()
        finally:
            if self.target_connector:
                await self.target_connector.disconnect()

    async def sync_all(self, tables: Optional[List[str]] = None) -> SyncReport:
        """
        同步所有选中的表

        Args:
            tables: 指定要同步的源表名（不区分大小写，忽略 selected 标记）

        Returns:
            SyncReport: 每个映射的状态、最终游标以及总行数

        Raises:
            ConfigurationError: 缺少连接字符串
            UnsupportedVersionError: 源库版本过低
            DatabaseConnectionError: 无法建立连接
        """
        report = SyncReport()
        self.log.info("开始同步...")
        try:
            await self.initialize()
            for mapping in self.config.selected_tables(tables):
                if self.cancelled:
                    report.results.append(self._result(mapping, SyncPhase.CANCELLED, MappingState(cursor=mapping.last_sync_cursor)))
                    continue
                report.results.append(await self.sync_table(mapping))
        finally:
            await self.cleanup()
            report.finished_at = time.time()

        if report.succeeded:
            self.log.success(f"所有表同步完成，共 {report.total_rows} 行，总耗时: {report.duration:.2f}秒")
        else:
            failed = [r.source for r in report.failed]
            self.log.error(f"同步结束，失败的表: {failed}，共 {report.total_rows} 行，总耗时: {report.duration:.2f}秒")
        return report

    async def sync_table(self, mapping: TableMapping) -> MappingResult:
        """同步单个表映射，映射级错误记录在结果中而不抛出"""
        log = self.log.bind(table=mapping.source)
        state = MappingState(cursor=mapping.last_sync_cursor)
        phase = SyncPhase.INIT
        table_start_time = time.time()
        log.info(f"开始同步表 {mapping.source} -> {mapping.target}，游标: '{state.cursor}'")

        try:
            schema = await SchemaIntrospector(self.source_connector).discover(mapping.source)
            phase = SyncPhase.SCHEMA_DISCOVERED
            if not schema:
                log.warning(f"表 {mapping.source} 没有任何列，跳过")
                return self._result(mapping, SyncPhase.DONE, state)

            ordering_column, identity_column = self._resolve_key_columns(mapping, schema, log)
            reset = CursorTracker.requires_reset(state.cursor)
            loader = BatchLoader(
                self.target_connector,
                retry_times=self.config.retry_times,
                retry_interval=self.config.retry_interval,
                log=log
            )

            phase = SyncPhase.PAGING
            while True:
                if self.cancelled:
                    log.warning(f"表 {mapping.source} 同步已取消，游标停留在 '{state.cursor}'")
                    return self._result(mapping, SyncPhase.CANCELLED, state)

                page = await self._sync_page(
                    mapping, schema, ordering_column, identity_column, state,
                    clear_first=reset and state.pages == 0,
                    loader=loader
                )
                state = CursorTracker.advance(state, page)
                # 不足一页说明已经读完
                if page.rows_seen < mapping.page_size:
                    break

            if self.config.verify_data and mapping.verify:
                await self._verify(mapping, log, incremental=not reset)

            total_duration = time.time() - table_start_time
            avg_speed = state.rows_copied / total_duration if total_duration > 0 else 0
            log.success(f"表 {mapping.source} -> {mapping.target} 同步完成")
            log.info(f"总记录数: {state.rows_copied}, "
                     f"总耗时: {total_duration:.2f}秒, "
                     f"平均速率: {avg_speed:.2f} 行/秒, "
                     f"页数: {state.pages}, 游标: {state.cursor}")
            return self._result(mapping, SyncPhase.DONE, state)

        except RUN_SCOPED_ERRORS:
            raise
        except SyncError as e:
            log.error(f"同步表 {mapping.source} 失败（阶段: {phase.value}）: {str(e)}")
            return self._result(mapping, SyncPhase.FAILED, state, error=e)

    async def _sync_page(self,
                         mapping: TableMapping,
                         schema: ColumnSchema,
                         ordering_column: str,
                         identity_column: Optional[str],
                         state: MappingState,
                         clear_first: bool,
                         loader: BatchLoader) -> PageResult:
        """读取、转换并写入一页数据，返回新的游标和行数"""
        page_num = state.pages + 1
        query = build_page_query(
            schema,
            ordering_column,
            mapping.page_size,
            mapping.source,
            state.cursor,
            self.source_connector.dialect
        )

        rows = await with_retry(
            lambda _: self.source_connector.fetch_page(mapping.source, query),
            self.config.retry_times,
            self.config.retry_interval,
            f"页 {page_num} 读取 {mapping.source}",
            log=loader.log
        )
        documents = [map_row(schema, row, identity_column) for row in rows]
        cursor = CursorTracker.next_cursor(state.cursor, documents, table=mapping.source)

        inserted = await loader.load_page(mapping.target, documents, clear_first, page_num)
        return PageResult(cursor=cursor, rows_seen=len(rows), inserted=inserted, cleared=clear_first)

    def _resolve_key_columns(self, mapping: TableMapping, schema: ColumnSchema, log) -> Tuple[str, Optional[str]]:
        """
        确定排序列和写入 _id 的主键列

        Returns:
            (排序列, 主键列)，未配置主键列时主键列为 None
        """
        if mapping.primary_key_column:
            column = schema.find(mapping.primary_key_column)
            if column is None:
                raise SchemaError(
                    f"Primary key column '{mapping.primary_key_column}' not found",
                    table=mapping.source,
                    operation="resolve_key_columns"
                )
            return column, column

        if len(schema.primary_key) == 1:
            return schema.primary_key[0], None

        log.warning(f"表 {mapping.source} 未配置主键列且没有单列主键，按第一列 {schema.first_column} 排序，序号可能不稳定")
        return schema.first_column, None

    async def _verify(self, mapping: TableMapping, log, incremental: bool = False) -> None:
        """
        验证源表和目标集合的数据行数

        增量同步不会删除目标中已写入的文档，源表删除过行时目标文档数可能更多，此时只记录警告
        """
        source_count = await with_retry(
            lambda _: self.source_connector.get_row_count(mapping.source),
            self.config.retry_times, self.config.retry_interval, f"统计 {mapping.source} 行数", log=log
        )
        target_count = await with_retry(
            lambda _: self.target_connector.count_documents(mapping.target),
            self.config.retry_times, self.config.retry_interval, f"统计 {mapping.target} 文档数", log=log
        )
        if incremental and target_count > source_count:
            log.warning(f"目标集合 {mapping.target} 比源表多 {target_count - source_count} 个文档，"
                        f"源表中删除的行不会同步到目标")
            return
        if source_count != target_count:
            raise VerificationError(
                f"Row count mismatch: source={source_count}, target={target_count}",
                table=mapping.source,
                operation="verify"
            )
        log.success(f"数据验证成功: {source_count} 行")

    def _result(self, mapping: TableMapping, status: SyncPhase, state: MappingState,
                error: Optional[SyncError] = None) -> MappingResult:
        return MappingResult(
            source=mapping.source,
            target=mapping.target,
            status=status,
            rows_copied=state.rows_copied,
            pages=state.pages,
            cursor=state.cursor,
            error=error
        )

    async def check_connections(self) -> Dict[str, Any]:
        """测试源和目标连接，返回源库版本和目标数据库名"""
        try:
            await self.initialize()
            version = await self.source_connector.server_version()
            return {
                "source_version": ".".join(str(v) for v in version),
                "target_database": self.target_connector.database_name
            }
        finally:
            await self.cleanup()

    async def discover_mappings(self) -> List[TableMapping]:
        """列出源库中的表，生成默认的表映射（单列主键作为 _id）"""
        if not self.config.source.has_connection():
            raise ConfigurationError("Missing source connection string")
        if self.source_connector is None:
            self.source_connector = ConnectorFactory.get_connector(self.config.source)

        try:
            await self.source_connector.connect()
            mappings = []
            for table in await self.source_connector.list_tables():
                primary_key = table["primary_key"]
                mappings.append(TableMapping(
                    source=table["table_name"],
                    target=table["table_name"],
                    primary_key_column=primary_key[0] if len(primary_key) == 1 else None
                ))
            self.log.info(f"发现 {len(mappings)} 张表")
            return mappings
        finally:
            await self.source_connector.disconnect()
