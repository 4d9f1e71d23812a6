"""Tests for configuration loading."""

import flowengine.persistence as persistence
from flowengine.config import load_config
from flowengine.persistence import InMemoryExecutionRepository, SQLiteExecutionRepository
from flowengine.transports import InMemoryTransport, get_transport
from flowengine.transports.redis import RedisTransport


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
transport:
  backend: redis
  redis:
    host: testhost
    port: 1234
scheduler:
  max_loop_iterations: 7
supervisor:
  stuck_threshold: 30
log_level: DEBUG
"""
    )
    monkeypatch.setenv("FLOWENGINE_CONFIG", str(config_path))

    config = load_config()
    assert config.transport.backend == "redis"
    assert config.transport.redis.host == "testhost"
    assert config.transport.redis.port == 1234
    assert config.scheduler.max_loop_iterations == 7
    assert config.scheduler.max_parallel_children == 5
    assert config.supervisor.stuck_threshold == 30
    assert config.log_level == "DEBUG"


def test_load_config_defaults_without_file(tmp_path):
    config = load_config(str(tmp_path / "missing.yaml"))
    assert config.transport.backend == "inmemory"
    assert config.database_url is None
    assert config.supervisor.sweep_interval == 60
    assert config.worker.max_concurrent_executions == 5


def test_env_overrides_database_url(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("database_url: sqlite://from-file.db\n")
    monkeypatch.setenv("DATABASE_URL", "sqlite://from-env.db")

    config = load_config(str(config_path))
    assert config.database_url == "sqlite://from-env.db"


def test_get_transport_uses_config(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
transport:
  backend: redis
  redis:
    host: confighost
    port: 6380
"""
    )
    monkeypatch.setenv("FLOWENGINE_CONFIG", str(config_path))

    transport = get_transport()
    assert isinstance(transport, RedisTransport)
    assert transport.host == "confighost"
    assert transport.port == 6380


def test_get_transport_env_backend_wins(tmp_path, monkeypatch):
    monkeypatch.setenv("FLOWENGINE_CONFIG", str(tmp_path / "none.yaml"))
    monkeypatch.setenv("FLOWENGINE_TRANSPORT", "inmemory")
    assert isinstance(get_transport(), InMemoryTransport)


def test_get_repository_selects_backend(tmp_path, monkeypatch):
    monkeypatch.setenv("FLOWENGINE_CONFIG", str(tmp_path / "none.yaml"))
    assert isinstance(persistence.get_repository(), InMemoryExecutionRepository)
    # cached for subsequent calls
    assert persistence.get_repository() is persistence.get_repository()

    db_url = f"sqlite://{tmp_path / 'executions.db'}"
    repo = persistence.get_repository(database_url=db_url)
    assert isinstance(repo, SQLiteExecutionRepository)
    repo.close()
