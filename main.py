import asyncio
import json
import signal
import sys
from dataclasses import replace
from typing import Dict
from loguru import logger
from sqltomongo.config.loader import config_to_dict, load_config, save_config
from sqltomongo.errors import SyncError

# 移除默认的处理器
logger.remove()

# 添加文件处理器
logger.add(
    "sync.log",
    rotation="500 MB",
    level="INFO",
    format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)

# 添加控制台处理器
logger.add(
    sys.stdout,
    level="DEBUG",
    format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <level>{message}</level>"
)


def parse_args() -> Dict[str, str]:
    """
    解析命令行参数

    config=<配置文件路径> [tables=表1,表2] [persist=true|false] [discover=true] [check=true]
    """
    args = {}
    for arg in sys.argv[1:]:
        if "=" in arg:
            key, value = arg.split("=", 1)
            # 去除可能存在的引号
            args[key.strip().lower()] = value.strip("'\"")

    if not args.get("config"):
        raise ValueError("Missing required argument: config=<path_to_config_file>")

    logger.debug(f"Parsed arguments: {args}")
    return args


def _is_true(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes")


async def main() -> int:
    try:
        args = parse_args()
        config_path = args["config"]

        logger.info(f"Loading configuration from: {config_path}")
        config = load_config(config_path)

        # 创建同步服务
        from sqltomongo.services.sync import SyncService
        sync_service = SyncService(config)

        if _is_true(args.get("discover", "false")):
            mappings = await sync_service.discover_mappings()
            discovered = config_to_dict(replace(config, tables=mappings))
            print(json.dumps(discovered, indent=2, ensure_ascii=False))
            return 0

        if _is_true(args.get("check", "false")):
            info = await sync_service.check_connections()
            logger.info(f"Source version: {info['source_version']}, target database: {info['target_database']}")
            return 0

        # SIGTERM 时在当前页完成后停止
        signal.signal(signal.SIGTERM, lambda *_: sync_service.cancel())

        tables = [t for t in args.get("tables", "").split(",") if t.strip()] or None

        # 执行同步
        report = await sync_service.sync_all(tables)

        if _is_true(args.get("persist", "true")):
            save_config(config.with_cursors(report.cursors()), config_path)

        for result in report.results:
            logger.info(f"{result.source} -> {result.target}: {result.status.value}, "
                        f"{result.rows_copied} 行, 游标: '{result.cursor}'")
        logger.info(f"Total: {report.total_rows}")
        return 0 if report.succeeded else 1

    except (SyncError, ValueError, FileNotFoundError) as e:
        logger.error(f"Sync failed: {str(e)}")
        return 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
