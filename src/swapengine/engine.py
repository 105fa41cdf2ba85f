"""
进程级服务容器

队列、广播器、提供方等在进程启动时创建, 显式传给流水线和调度器;
关闭顺序: 调度器 (等待在途任务) -> 订阅者 -> 队列 -> 提供方。
"""

import logging
from dataclasses import dataclass
from typing import Optional

from swapengine.core.config import Config
from swapengine.jobs import JobQueue, RedisJobQueue, create_job_queue
from swapengine.order.pipeline import OrderPipeline
from swapengine.order.router import VenueRouter
from swapengine.order.store import OrderStore
from swapengine.server.broadcaster import StatusBroadcaster
from swapengine.server.relay import RedisStatusRelay
from swapengine.venue import VenueProvider, create_provider
from swapengine.worker import SlidingWindowRateLimiter, WorkerScheduler

logger = logging.getLogger(__name__)


@dataclass
class EngineServices:
    """订单引擎的全部协作对象"""
    config: Config
    store: OrderStore
    queue: JobQueue
    broadcaster: StatusBroadcaster
    provider: VenueProvider
    router: VenueRouter
    pipeline: OrderPipeline
    scheduler: WorkerScheduler
    relay: Optional[RedisStatusRelay] = None

    @classmethod
    async def create(
        cls,
        config: Config,
        queue: Optional[JobQueue] = None,
        provider: Optional[VenueProvider] = None,
    ) -> "EngineServices":
        """按配置组装服务 (queue / provider 可注入)"""
        store = OrderStore(config.database.sqlite_path)

        if queue is None:
            queue = await create_job_queue(config.queue)
        else:
            await queue.connect()

        provider = provider or create_provider(config.venue)
        await provider.start()

        # Redis 队列可能被多个进程共享, 状态事件经 Pub/Sub 转发
        relay = None
        if isinstance(queue, RedisJobQueue):
            relay = RedisStatusRelay(queue.redis, channel=queue.status_channel)
        broadcaster = StatusBroadcaster(relay)
        router = VenueRouter(
            provider,
            venues=config.venue.venues,
            quote_timeout=config.venue.quote_timeout,
        )
        pipeline = OrderPipeline(
            router=router,
            provider=provider,
            store=store,
            broadcaster=broadcaster,
            submit_delay=config.worker.submit_delay,
            wrap_tokens=config.worker.wrap_tokens,
        )
        scheduler = WorkerScheduler(
            queue=queue,
            pipeline=pipeline,
            concurrency=config.worker.concurrency,
            rate_limiter=SlidingWindowRateLimiter(
                max_jobs=config.worker.rate_limit_max,
                window_seconds=config.worker.rate_limit_window_seconds,
            ),
            poll_interval=config.queue.poll_interval,
        )

        logger.info(
            f"Engine ready: queue={queue.backend_name}, venues={router.venues}, "
            f"mode={config.venue.mode}"
        )
        return cls(
            config=config,
            store=store,
            queue=queue,
            broadcaster=broadcaster,
            provider=provider,
            router=router,
            pipeline=pipeline,
            scheduler=scheduler,
            relay=relay,
        )

    async def start_status_listener(self) -> None:
        """服务进程: 订阅其他进程 (或本进程) 发布的状态事件"""
        if self.relay is not None:
            await self.relay.start(self.broadcaster)

    async def shutdown(self) -> None:
        """按依赖顺序释放资源"""
        await self.scheduler.stop()
        if self.relay is not None:
            await self.relay.stop()
        await self.broadcaster.close_all()
        await self.queue.close()
        await self.provider.close()
        logger.info("Engine shut down")
