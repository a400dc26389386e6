from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_DEADLINE_SECONDS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_PASSING_THRESHOLD,
    DEFAULT_WORKER_POOL_SIZE,
)


class RedisConfig(BaseModel):
    """Configuration for the Redis checkpoint store."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class CheckpointConfig(BaseModel):
    """Checkpoint store settings."""

    backend: Literal["inmemory", "sqlite", "postgres", "redis"] = "inmemory"
    database_url: Optional[str] = None
    redis: RedisConfig = RedisConfig()


class GenerationConfig(BaseModel):
    """Generation collaborator and retry policy."""

    deadline_seconds: float = Field(default=DEFAULT_DEADLINE_SECONDS, gt=0)
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    retry_backoff_base: float = 1.5
    retry_jitter: float = 0.5
    generator: Optional[str] = Field(
        default=None, description="Import path of the generator, 'module:attribute'"
    )
    evaluator: Optional[str] = Field(
        default=None, description="Import path of the evaluator, 'module:attribute'"
    )


class EvaluationConfig(BaseModel):
    """Evaluation criteria consumed by the orchestrator."""

    criteria_path: Optional[str] = None
    passing_threshold: float = DEFAULT_PASSING_THRESHOLD
    require_review: bool = True


class SectionflowConfig(BaseModel):
    """Top-level configuration model."""

    checkpoint: CheckpointConfig = CheckpointConfig()
    dependency_map_path: Optional[str] = None
    generation: GenerationConfig = GenerationConfig()
    evaluation: EvaluationConfig = EvaluationConfig()
    worker_pool_size: int = Field(default=DEFAULT_WORKER_POOL_SIZE, ge=1)
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> SectionflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to SECTIONFLOW_CONFIG env
            variable or 'sectionflow.yaml' in the current directory.
    """

    config_path = path or os.getenv("SECTIONFLOW_CONFIG", "sectionflow.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = SectionflowConfig(**data)
    else:
        config = SectionflowConfig()

    env_db_url = os.getenv("SECTIONFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.checkpoint.database_url = env_db_url
    env_map = os.getenv("SECTIONFLOW_DEPENDENCY_MAP")
    if env_map:
        config.dependency_map_path = env_map
    return config
