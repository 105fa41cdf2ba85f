"""
Prometheus 指标模块

提供系统监控指标:
- 订单提交 / 状态流转
- 任务结果 (完成 / 重试 / 死信)
- 场所报价结果与阶段耗时
- 在途任务与 WebSocket 订阅数
"""

import time

from aiohttp import web
from prometheus_client import Counter, Gauge, Histogram, Info, generate_latest, CONTENT_TYPE_LATEST


# ============ 订单指标 ============
ORDERS_SUBMITTED = Counter(
    'swapengine_orders_submitted_total',
    'Total orders accepted by the intake endpoint',
)

ORDERS_REJECTED = Counter(
    'swapengine_orders_rejected_total',
    'Total order submissions rejected',
    ['reason']
)

STATUS_TRANSITIONS = Counter(
    'swapengine_status_transitions_total',
    'Order status transitions emitted by the pipeline',
    ['status']
)

STAGE_DURATION = Histogram(
    'swapengine_stage_duration_seconds',
    'Time spent in each pipeline stage',
    ['stage'],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

# ============ 任务指标 ============
JOBS_PROCESSED = Counter(
    'swapengine_jobs_total',
    'Jobs processed by workers',
    ['result']  # completed / retried / dead_lettered
)

JOBS_IN_FLIGHT = Gauge(
    'swapengine_jobs_in_flight',
    'Jobs currently executing'
)

# ============ 场所指标 ============
VENUE_QUOTES = Counter(
    'swapengine_venue_quotes_total',
    'Venue quote requests',
    ['venue', 'result']  # ok / error / timeout
)

ROUTES_CHOSEN = Counter(
    'swapengine_routes_chosen_total',
    'Venue selected by the router',
    ['venue']
)

# ============ WebSocket ============
WS_SUBSCRIBERS = Gauge(
    'swapengine_ws_subscribers',
    'Live status channel subscribers'
)

# ============ 系统信息 ============
SYSTEM_INFO = Info(
    'swapengine',
    'SwapEngine order execution engine information'
)

SYSTEM_INFO.info({
    'version': '1.0.0',
})


def record_status(status: str) -> None:
    """记录状态流转"""
    STATUS_TRANSITIONS.labels(status=status).inc()


def record_job(result: str) -> None:
    """记录任务结果"""
    JOBS_PROCESSED.labels(result=result).inc()


def record_quote(venue: str, result: str) -> None:
    """记录报价结果"""
    VENUE_QUOTES.labels(venue=venue, result=result).inc()


class StageTimer:
    """阶段计时器"""

    def __init__(self, stage: str):
        self.stage = stage
        self.start_time = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args):
        duration = time.perf_counter() - self.start_time
        STAGE_DURATION.labels(stage=self.stage).observe(duration)


# ============ HTTP 端点 ============

async def metrics_handler(request: web.Request) -> web.Response:
    """Prometheus metrics endpoint"""
    return web.Response(
        body=generate_latest(),
        headers={"Content-Type": CONTENT_TYPE_LATEST},
    )
