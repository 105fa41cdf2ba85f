"""
测试配置加载: YAML + 环境变量覆盖
"""

from swapengine.core.config import Config, load_config


def test_defaults_match_engine_constants():
    config = Config()

    assert config.queue.max_attempts == 3
    assert config.queue.backoff_base_ms == 1000
    assert config.worker.concurrency == 10
    assert config.worker.rate_limit_max == 100
    assert config.worker.rate_limit_window_seconds == 60.0
    assert config.venue.venues == ["raydium", "meteora"]
    assert config.server.port == 3000


def test_from_yaml_ignores_unknown_keys(tmp_path):
    path = tmp_path / "engine.yaml"
    path.write_text(
        "queue:\n"
        "  max_attempts: 5\n"
        "  unknown_key: 1\n"
        "worker:\n"
        "  concurrency: 2\n"
        "venue:\n"
        "  venues: [meteora]\n"
        "log_level: DEBUG\n",
        encoding="utf-8",
    )

    config = Config.from_yaml(str(path))

    assert config.queue.max_attempts == 5
    assert config.queue.backoff_base_ms == 1000
    assert config.worker.concurrency == 2
    assert config.venue.venues == ["meteora"]
    assert config.log_level == "DEBUG"


def test_env_overrides_file(tmp_path, monkeypatch):
    path = tmp_path / "engine.yaml"
    path.write_text("server:\n  port: 4000\n", encoding="utf-8")

    monkeypatch.delenv("SWAPENGINE_CONFIG", raising=False)
    monkeypatch.setenv("PORT", "5000")
    monkeypatch.setenv("WORKER_CONCURRENCY", "4")
    monkeypatch.setenv("REDIS_URL", "redis://cache:6379/1")
    monkeypatch.setenv("QUOTE_TIMEOUT", "0")

    config = load_config(str(path))

    assert config.server.port == 5000
    assert config.worker.concurrency == 4
    assert config.queue.redis_url == "redis://cache:6379/1"
    assert config.venue.quote_timeout is None
