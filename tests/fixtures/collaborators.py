"""Stand-in generation and evaluation collaborators for driver tests."""

import asyncio

from sectionflow.models import EvaluationResult


class FakeGenerator:
    """Returns deterministic drafts; can be slowed down or made to fail."""

    def __init__(self, delay: float = 0.0, fail_times: int = 0):
        self.delay = delay
        self.fail_times = fail_times
        self.calls = []

    async def generate(self, section_id, context, deadline):
        self.calls.append((section_id, context))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise RuntimeError("backend unavailable")
        return f"{section_id} draft {len(self.calls)}"


class FakeEvaluator:
    """Scores every section with a fixed score."""

    def __init__(self, score: float = 85.0):
        self.score = score
        self.calls = []

    async def evaluate(self, section_id, content, criteria):
        self.calls.append((section_id, content, criteria))
        passed = self.score >= criteria["passing_threshold"]
        return EvaluationResult(
            passed=passed,
            score=self.score,
            feedback="meets criteria" if passed else "below threshold",
        )
