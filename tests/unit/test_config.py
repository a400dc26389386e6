"""Tests for configuration loading."""

import pytest

from sectionflow.checkpoint import (
    InMemoryCheckpointStore,
    SQLiteCheckpointStore,
    get_checkpoint_store,
)
from sectionflow.checkpoint.redis import RedisCheckpointStore
from sectionflow.config import load_config


def test_defaults_without_config_file():
    config = load_config()
    assert config.checkpoint.backend == "inmemory"
    assert config.generation.deadline_seconds == 60
    assert config.generation.max_retries == 3
    assert config.evaluation.passing_threshold == 70
    assert config.worker_pool_size == 4


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
checkpoint:
  backend: redis
  redis:
    host: testhost
    port: 1234
generation:
  deadline_seconds: 5
  max_retries: 1
evaluation:
  passing_threshold: 80
worker_pool_size: 2
"""
    )
    monkeypatch.setenv("SECTIONFLOW_CONFIG", str(config_path))

    config = load_config()
    assert config.checkpoint.backend == "redis"
    assert config.checkpoint.redis.host == "testhost"
    assert config.checkpoint.redis.port == 1234
    assert config.generation.deadline_seconds == 5
    assert config.generation.max_retries == 1
    assert config.evaluation.passing_threshold == 80
    assert config.worker_pool_size == 2


def test_env_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("SECTIONFLOW_DATABASE_URL", "sqlite:///tmp/sf.db")
    monkeypatch.setenv("SECTIONFLOW_DEPENDENCY_MAP", str(tmp_path / "deps.yaml"))

    config = load_config()
    assert config.checkpoint.database_url == "sqlite:///tmp/sf.db"
    assert config.dependency_map_path == str(tmp_path / "deps.yaml")


def test_invalid_values_are_rejected(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("generation:\n  deadline_seconds: 0\n")
    with pytest.raises(ValueError):
        load_config(str(config_path))


def test_get_checkpoint_store_defaults_to_memory():
    store = get_checkpoint_store()
    assert isinstance(store, InMemoryCheckpointStore)
    assert get_checkpoint_store() is store


def test_get_checkpoint_store_uses_sqlite_url(tmp_path):
    store = get_checkpoint_store(f"sqlite://{tmp_path / 'sf.db'}")
    assert isinstance(store, SQLiteCheckpointStore)
    store.close()


def test_get_checkpoint_store_uses_config(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
checkpoint:
  backend: redis
  redis:
    host: confighost
    port: 6380
"""
    )
    monkeypatch.setenv("SECTIONFLOW_CONFIG", str(config_path))

    store = get_checkpoint_store()
    assert isinstance(store, RedisCheckpointStore)
    assert store.host == "confighost"
    assert store.port == 6380


def test_get_checkpoint_store_rejects_unknown_url():
    with pytest.raises(ValueError, match="Unsupported"):
        get_checkpoint_store("mysql://localhost/db")
