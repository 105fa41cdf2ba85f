"""
SwapEngine 主入口

默认以 HTTP 服务 + 进程内 Worker 运行; 配置见 config/default.yaml。
"""

import asyncio
import logging
from typing import Optional

from swapengine.core.config import Config, load_config
from swapengine.engine import EngineServices

logger = logging.getLogger(__name__)


async def run_server(config: Config, with_worker: bool = True) -> None:
    """启动 HTTP/WebSocket 服务 (可选同进程 Worker), 直到被取消"""
    from swapengine.server.app import OrderServer

    services = await EngineServices.create(config)
    server = OrderServer(services, host=config.server.host, port=config.server.port)

    await services.start_status_listener()
    if with_worker:
        await services.scheduler.start()
    await server.start()

    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        await server.stop()
        await services.shutdown()


async def run_worker(config: Config) -> None:
    """仅运行 Worker (共享 Redis 队列时横向扩展用)"""
    services = await EngineServices.create(config)
    if services.queue.backend_name != "redis":
        logger.warning("Standalone worker on in-memory queue will only see its own jobs")

    await services.scheduler.start()
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        await services.shutdown()


async def main(config_path: Optional[str] = None) -> None:
    config = load_config(config_path)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format=config.log_format,
    )
    await run_server(config)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
