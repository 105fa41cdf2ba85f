"""Quote / execution providers."""

from swapengine.core.config import VenueConfig

from .base import (
    ExecutionResult,
    Quote,
    VenueProvider,
    check_slippage,
    slippage_floor,
)
from .live import LiveVenueProvider
from .simulated import SimulatedVenueProvider, VenueProfile


def create_provider(config: VenueConfig) -> VenueProvider:
    """根据配置创建提供方"""
    if config.mode == "simulated":
        return SimulatedVenueProvider(
            venues=config.venues,
            base_price=config.base_price,
            latency_scale=config.latency_scale,
        )
    if config.mode == "live":
        return LiveVenueProvider(
            base_url=config.live_base_url,
            venues=config.venues,
            api_key=config.live_api_key,
            request_timeout=config.request_timeout,
        )
    raise ValueError(f"Unknown venue mode: {config.mode}")


__all__ = [
    "ExecutionResult",
    "Quote",
    "VenueProvider",
    "check_slippage",
    "slippage_floor",
    "LiveVenueProvider",
    "SimulatedVenueProvider",
    "VenueProfile",
    "create_provider",
]
