"""Order model, routing and execution pipeline."""

from .models import Order, OrderRequest, OrderStatus, OrderType
from .id_manager import generate_order_id, generate_tx_hash, is_valid_order_id
from .router import VenueRouter, RoutingDecision
from .store import OrderStore
from .pipeline import OrderPipeline, AttemptState

__all__ = [
    "Order",
    "OrderRequest",
    "OrderStatus",
    "OrderType",
    "generate_order_id",
    "generate_tx_hash",
    "is_valid_order_id",
    "VenueRouter",
    "RoutingDecision",
    "OrderStore",
    "OrderPipeline",
    "AttemptState",
]
