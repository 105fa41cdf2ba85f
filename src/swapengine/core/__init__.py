"""Core configuration and exceptions."""

from .config import (
    Config,
    QueueConfig,
    WorkerConfig,
    VenueConfig,
    ServerConfig,
    DatabaseConfig,
    load_config,
)
from .exceptions import (
    SwapEngineError,
    ValidationError,
    RoutingError,
    SlippageExceeded,
    ProviderError,
    RateLimitError,
    DeadLettered,
    InvalidTransitionError,
    QueueError,
)

__all__ = [
    "Config",
    "QueueConfig",
    "WorkerConfig",
    "VenueConfig",
    "ServerConfig",
    "DatabaseConfig",
    "load_config",
    "SwapEngineError",
    "ValidationError",
    "RoutingError",
    "SlippageExceeded",
    "ProviderError",
    "RateLimitError",
    "DeadLettered",
    "InvalidTransitionError",
    "QueueError",
]
