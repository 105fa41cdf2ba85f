"""
订单 HTTP / WebSocket 服务

- POST /api/orders/execute   提交 swap 订单
- GET  /ws/orders/{orderId}  订单状态通道
- GET  /api/orders/{orderId} 订单记录
- GET  /api/dead-letters     死信任务
- GET  /health, /metrics
"""

import json
import logging
from datetime import datetime
from typing import Optional

from aiohttp import web, WSMsgType

from swapengine import metrics
from swapengine.core.exceptions import ValidationError
from swapengine.engine import EngineServices
from swapengine.order.id_manager import generate_order_id, is_valid_order_id
from swapengine.order.models import Order, OrderRequest, OrderStatus

logger = logging.getLogger(__name__)


class OrderServer:
    """订单执行引擎的外部接口"""

    def __init__(self, services: EngineServices, host: str = "0.0.0.0", port: int = 3000):
        self.services = services
        self.host = host
        self.port = port

        self.app = web.Application()
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._setup_routes()

    def _setup_routes(self) -> None:
        self.app.router.add_get("/", self._handle_index)
        self.app.router.add_get("/health", self._handle_health)
        self.app.router.add_get("/metrics", metrics.metrics_handler)
        self.app.router.add_post("/api/orders/execute", self._handle_execute)
        self.app.router.add_get("/api/orders/{order_id}", self._handle_get_order)
        self.app.router.add_get("/api/dead-letters", self._handle_dead_letters)
        self.app.router.add_get("/ws/orders", self._handle_status_ws)
        self.app.router.add_get("/ws/orders/{order_id:.*}", self._handle_status_ws)

    async def start(self) -> None:
        """启动 HTTP 服务"""
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, self.host, self.port)
        await self._site.start()

        logger.info(f"Server listening on http://{self.host}:{self.port}")

    async def stop(self) -> None:
        """停止 HTTP 服务"""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        logger.info("Server stopped")

    # ========== HTTP ==========

    async def _handle_index(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "ok", "service": "Order Execution Engine"})

    async def _handle_health(self, request: web.Request) -> web.Response:
        """健康检查"""
        queue = self.services.queue
        return web.json_response({
            "status": "ok",
            "queue": {"backend": queue.backend_name, **(await queue.stats())},
            "worker": self.services.scheduler.snapshot(),
            "subscribers": self.services.broadcaster.subscriber_count,
            "timestamp": datetime.now().isoformat(),
        })

    async def _handle_execute(self, request: web.Request) -> web.Response:
        """提交订单: 校验 -> 入库 -> 入队"""
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            metrics.ORDERS_REJECTED.labels(reason="payload").inc()
            return web.json_response({"error": "Invalid payload", "field": ""}, status=400)

        try:
            order_request = OrderRequest.from_payload(body)
        except ValidationError as e:
            metrics.ORDERS_REJECTED.labels(reason=e.field or "payload").inc()
            return web.json_response({"error": e.message, "field": e.field}, status=400)

        order_id = generate_order_id()
        order = Order.from_request(order_id, order_request)

        try:
            await self.services.store.insert(order)
            queued = await self.services.queue.submit(
                order_id, {"orderId": order_id, "order": order_request.to_dict()}
            )
            if not queued:
                await self.services.store.update(
                    order_id, status=OrderStatus.FAILED, error="Duplicate order id"
                )
        except Exception as e:
            logger.error(f"Failed to accept order {order_id}: {e}", exc_info=True)
            return web.json_response({"error": "Internal Server Error"}, status=500)

        if not queued:
            metrics.ORDERS_REJECTED.labels(reason="duplicate").inc()
            logger.warning(f"Order {order_id} already queued, rejected")
            return web.json_response(
                {"error": "Duplicate order", "orderId": order_id}, status=409
            )

        metrics.ORDERS_SUBMITTED.inc()
        logger.info(
            f"Order {order_id} queued: {order_request.amount_in} "
            f"{order_request.token_in} -> {order_request.token_out}"
        )

        return web.json_response(
            {"orderId": order_id, "status": "queued", "wsUrl": self._ws_url(request, order_id)},
            status=202,
        )

    @staticmethod
    def _ws_url(request: web.Request, order_id: str) -> str:
        """按请求协议生成状态通道地址 (兼容反向代理)"""
        forwarded_proto = request.headers.get("X-Forwarded-Proto", "").split(",")[0].strip()
        secure = request.secure or forwarded_proto == "https"
        scheme = "wss" if secure else "ws"
        return f"{scheme}://{request.host}/ws/orders/{order_id}"

    async def _handle_get_order(self, request: web.Request) -> web.Response:
        order_id = request.match_info["order_id"]
        order = await self.services.store.get(order_id)
        if order is None:
            return web.json_response({"error": "Order not found", "orderId": order_id}, status=404)
        return web.json_response(order.to_dict())

    async def _handle_dead_letters(self, request: web.Request) -> web.Response:
        jobs = await self.services.queue.dead_letters()
        return web.json_response({"deadLetters": [job.to_dict() for job in jobs]})

    # ========== WebSocket ==========

    async def _handle_status_ws(self, request: web.Request) -> web.WebSocketResponse:
        """订单状态通道"""
        order_id = request.match_info.get("order_id", "")

        ws = web.WebSocketResponse(heartbeat=30)
        await ws.prepare(request)
        logger.info(f"[WS] New connection from {request.path}")

        if not is_valid_order_id(order_id):
            logger.info("[WS] Invalid URL, closing")
            await ws.send_json({"error": "Invalid URL format"})
            await ws.close()
            return ws

        try:
            await self.services.broadcaster.bind(order_id, ws, greeting={
                "status": "connected",
                "orderId": order_id,
                "message": "Waiting for updates...",
            })

            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    await self._handle_ws_message(ws, msg.data)
                elif msg.type == WSMsgType.ERROR:
                    logger.error(f"WebSocket error: {ws.exception()}")
        finally:
            self.services.broadcaster.unbind(order_id, ws)
            logger.info(f"[WS] Subscriber for {order_id} disconnected")

        return ws

    async def _handle_ws_message(self, ws: web.WebSocketResponse, raw: str) -> None:
        """客户端消息: 仅支持 ping"""
        if raw.strip() == "ping":
            await ws.send_json({"type": "pong", "timestamp": datetime.now().isoformat()})
            return

        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug(f"Ignoring non-JSON client message: {raw[:50]}")
            return

        if isinstance(data, dict) and data.get("type") == "ping":
            await ws.send_json({"type": "pong", "timestamp": datetime.now().isoformat()})
