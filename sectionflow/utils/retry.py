from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass

from ..config import GenerationConfig
from ..constants import DEFAULT_MAX_RETRIES


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for failed generation attempts."""

    max_retries: int = DEFAULT_MAX_RETRIES
    base: float = 1.5
    jitter: float = 0.5

    @classmethod
    def from_config(cls, config: GenerationConfig) -> "RetryPolicy":
        return cls(
            max_retries=config.max_retries,
            base=config.retry_backoff_base,
            jitter=config.retry_jitter,
        )

    def should_retry(self, attempts: int) -> bool:
        """``attempts`` counts the first try, so ``max_retries`` extra tries are allowed."""
        return attempts <= self.max_retries

    def delay(self, attempt: int) -> float:
        """Compute exponential backoff with jitter."""
        if self.base <= 0:
            return random.uniform(0, self.jitter) if self.jitter > 0 else 0.0
        return self.base ** attempt + (random.uniform(0, self.jitter) if self.jitter > 0 else 0.0)

    async def wait(self, attempt: int) -> None:
        """Sleep for the computed backoff delay before retrying."""
        delay = self.delay(attempt)
        if delay > 0:
            await asyncio.sleep(delay)
