import asyncio
from typing import Awaitable, Callable, TypeVar
from loguru import logger
from sqltomongo.errors import DatabaseConnectionError

T = TypeVar("T")


async def with_retry(operation: Callable[[int], Awaitable[T]],
                     retry_times: int,
                     retry_interval: float,
                     description: str,
                     log=logger) -> T:
    """
    执行操作，连接类错误时按固定间隔重试

    Args:
        operation: 以尝试次数（从1开始）为参数的协程函数
        retry_times: 最多尝试次数
        retry_interval: 重试间隔（秒）
        description: 用于日志的操作描述

    Returns:
        操作的返回值
    """
    attempt = 1
    while True:
        try:
            return await operation(attempt)
        except DatabaseConnectionError as e:
            if attempt >= retry_times:
                log.error(f"{description} 失败，已重试 {attempt} 次: {str(e)}")
                raise
            log.warning(f"{description} 失败，{retry_interval}秒后进行第 {attempt + 1} 次重试: {str(e)}")
            attempt += 1
            await asyncio.sleep(retry_interval)
