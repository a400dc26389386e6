"""Shared defaults for sectionflow."""

DEFAULT_DEADLINE_SECONDS = 60.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_PASSING_THRESHOLD = 70
DEFAULT_WORKER_POOL_SIZE = 4

NAMESPACE_PREFIX = "instance:"
