"""
SwapEngine 配置管理

支持 YAML 配置文件和环境变量覆盖。
"""

import os
from dataclasses import dataclass, field, fields as dataclass_fields
from pathlib import Path
from typing import Dict, List, Optional

import yaml


@dataclass
class QueueConfig:
    """任务队列配置"""
    redis_url: str = "redis://127.0.0.1:6379"
    prefix: str = "order-engine"
    name: str = "orders"

    # 重试策略
    max_attempts: int = 3
    backoff_base_ms: int = 1000

    # 出队等待 (秒)
    poll_interval: float = 1.0

    # Redis 不可用时是否允许内存队列
    allow_memory_fallback: bool = True


@dataclass
class WorkerConfig:
    """Worker 调度配置"""
    concurrency: int = 10

    # 全局吞吐限制: rate_limit_max 个任务 / 窗口
    rate_limit_max: int = 100
    rate_limit_window_seconds: float = 60.0

    # 模拟链上提交延迟 (秒)
    submit_delay: float = 0.5

    # 需要 wrap 的原生代币
    wrap_tokens: List[str] = field(default_factory=lambda: ["SOL"])


@dataclass
class VenueConfig:
    """报价场所配置"""
    mode: str = "simulated"  # "simulated" | "live"
    venues: List[str] = field(default_factory=lambda: ["raydium", "meteora"])

    # 单场所报价超时 (秒), None 表示不限
    quote_timeout: Optional[float] = 5.0

    # Simulated
    base_price: float = 100.0
    latency_scale: float = 1.0

    # Live
    live_base_url: str = ""
    live_api_key: str = ""
    request_timeout: float = 10.0


@dataclass
class ServerConfig:
    """HTTP / WebSocket 服务配置"""
    host: str = "0.0.0.0"
    port: int = 3000


@dataclass
class DatabaseConfig:
    """数据库配置"""
    sqlite_path: str = "data/orders.db"


@dataclass
class Config:
    """SwapEngine 主配置"""
    queue: QueueConfig = field(default_factory=QueueConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    venue: VenueConfig = field(default_factory=VenueConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)

    # 日志配置
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @classmethod
    def from_yaml(cls, path: str) -> "Config":
        """从 YAML 文件加载配置"""
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)

        return cls._from_dict(data if isinstance(data, dict) else {})

    @classmethod
    def from_env(cls) -> "Config":
        """从环境变量加载配置"""
        config = cls()
        apply_env_overrides(config)
        return config

    @classmethod
    def _from_dict(cls, data: Dict) -> "Config":
        """从字典创建配置"""
        config = cls()

        def _filter_kwargs(dc_cls, raw: dict) -> dict:
            allowed = {f.name for f in dataclass_fields(dc_cls) if f.init}
            return {k: v for k, v in raw.items() if k in allowed}

        if queue_data := data.get("queue"):
            config.queue = QueueConfig(**_filter_kwargs(QueueConfig, queue_data))

        if worker_data := data.get("worker"):
            config.worker = WorkerConfig(**_filter_kwargs(WorkerConfig, worker_data))

        if venue_data := data.get("venue"):
            config.venue = VenueConfig(**_filter_kwargs(VenueConfig, venue_data))

        if server_data := data.get("server"):
            config.server = ServerConfig(**_filter_kwargs(ServerConfig, server_data))

        if db_data := data.get("database"):
            config.database = DatabaseConfig(**_filter_kwargs(DatabaseConfig, db_data))

        config.log_level = data.get("log_level", "INFO")
        if log_format := data.get("log_format"):
            config.log_format = log_format

        return config


def _env_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return int(value)


def _env_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return float(value)


def apply_env_overrides(config: Config) -> Config:
    """环境变量覆盖 (仅覆盖已设置的变量)"""
    # Queue
    if redis_url := os.getenv("REDIS_URL"):
        config.queue.redis_url = redis_url
    if prefix := os.getenv("QUEUE_PREFIX"):
        config.queue.prefix = prefix
    if (attempts := _env_int("QUEUE_ATTEMPTS")) is not None:
        config.queue.max_attempts = attempts
    if (backoff := _env_int("QUEUE_BACKOFF_MS")) is not None:
        config.queue.backoff_base_ms = backoff

    # Worker
    if (concurrency := _env_int("WORKER_CONCURRENCY")) is not None:
        config.worker.concurrency = concurrency
    if (rate_max := _env_int("RATE_LIMIT_MAX")) is not None:
        config.worker.rate_limit_max = rate_max
    if (rate_window := _env_float("RATE_LIMIT_WINDOW")) is not None:
        config.worker.rate_limit_window_seconds = rate_window
    if (submit_delay := _env_float("SUBMIT_DELAY")) is not None:
        config.worker.submit_delay = submit_delay

    # Venue
    if mode := os.getenv("VENUE_MODE"):
        config.venue.mode = mode
    if base_url := os.getenv("VENUE_BASE_URL"):
        config.venue.live_base_url = base_url
    if api_key := os.getenv("VENUE_API_KEY"):
        config.venue.live_api_key = api_key
    if (quote_timeout := _env_float("QUOTE_TIMEOUT")) is not None:
        config.venue.quote_timeout = quote_timeout if quote_timeout > 0 else None

    # Server
    if host := os.getenv("HOST"):
        config.server.host = host
    if (port := _env_int("PORT")) is not None:
        config.server.port = port

    # Database
    if sqlite_path := os.getenv("SQLITE_PATH"):
        config.database.sqlite_path = sqlite_path

    if log_level := os.getenv("LOG_LEVEL"):
        config.log_level = log_level

    return config


def load_config(config_path: Optional[str] = None) -> Config:
    """
    加载配置

    优先级: 环境变量 > 配置文件 > 默认值
    """
    config = Config()
    resolved_path = resolve_config_path(config_path)
    if resolved_path is not None:
        config = Config.from_yaml(str(resolved_path))

    return apply_env_overrides(config)


def resolve_config_path(config_path: Optional[str] = None) -> Optional[Path]:
    """
    Resolve config file path.

    Priority:
      1) env SWAPENGINE_CONFIG
      2) given config_path (absolute/relative)
      3) cwd config/default.yaml
      4) project_root/config/default.yaml (relative to this module)
    """
    candidates: List[Path] = []

    env_path = os.getenv("SWAPENGINE_CONFIG")
    if env_path:
        candidates.append(Path(env_path))

    project_root = Path(__file__).resolve().parents[3]

    if config_path:
        p = Path(config_path)
        candidates.append(p)
        if not p.is_absolute():
            candidates.append(project_root / p)

    candidates.append(Path("config/default.yaml"))
    candidates.append(project_root / "config" / "default.yaml")

    for p in candidates:
        if p.exists():
            return p

    return None
