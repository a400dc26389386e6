"""Checkpoint persistence for sectionflow workflow instances."""

from __future__ import annotations

import os
from typing import Optional

from ..config import SectionflowConfig, load_config
from .inmemory import InMemoryCheckpointStore
from .models import Checkpoint
from .sqlite import SQLiteCheckpointStore
from .store import CheckpointStore

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresCheckpointStore
except ImportError:  # pragma: no cover - optional dependency
    PostgresCheckpointStore = None  # type: ignore

_store_instance: CheckpointStore | None = None


def get_checkpoint_store(
    database_url: Optional[str] = None, config: Optional[SectionflowConfig] = None
) -> CheckpointStore:
    """Factory function to obtain a checkpoint store.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``SECTIONFLOW_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory store is returned.
    """

    global _store_instance
    if _store_instance is not None and database_url is None and config is None:
        return _store_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("SECTIONFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.checkpoint.database_url
    )

    if not database_url:
        if config.checkpoint.backend == "redis":
            from .redis import RedisCheckpointStore

            redis_conf = config.checkpoint.redis
            _store_instance = RedisCheckpointStore(
                host=redis_conf.host,
                port=redis_conf.port,
                db=redis_conf.db,
                password=redis_conf.password,
            )
        elif config.checkpoint.backend != "inmemory":
            raise ValueError(
                f"Checkpoint backend '{config.checkpoint.backend}' requires a database_url"
            )
        else:
            _store_instance = InMemoryCheckpointStore()
        return _store_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _store_instance = SQLiteCheckpointStore(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        if PostgresCheckpointStore is None:
            raise RuntimeError("Postgres support not available")
        _store_instance = PostgresCheckpointStore(database_url)
    elif database_url.startswith("redis://"):
        from .redis import RedisCheckpointStore

        _store_instance = RedisCheckpointStore.from_url(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _store_instance


__all__ = [
    "Checkpoint",
    "CheckpointStore",
    "InMemoryCheckpointStore",
    "SQLiteCheckpointStore",
    "PostgresCheckpointStore",
    "get_checkpoint_store",
]
