import pytest

import sectionflow.checkpoint as checkpoint
from sectionflow.checkpoint import InMemoryCheckpointStore
from sectionflow.driver import PipelineDriver
from sectionflow.graph import DependencyGraph
from sectionflow.orchestrator import SuspensionController
from sectionflow.utils.retry import RetryPolicy
from tests.fixtures.collaborators import FakeEvaluator, FakeGenerator

PROPOSAL_MAP = {
    "problem_statement": [],
    "solution": ["problem_statement"],
    "implementation_plan": ["solution"],
    "budget": ["solution", "implementation_plan"],
    "executive_summary": ["problem_statement", "solution", "budget"],
}


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("SECTIONFLOW_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("SECTIONFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("SECTIONFLOW_DEPENDENCY_MAP", raising=False)
    checkpoint._store_instance = None
    yield
    checkpoint._store_instance = None


@pytest.fixture
def graph():
    return DependencyGraph(PROPOSAL_MAP)


@pytest.fixture
def store():
    return InMemoryCheckpointStore()


@pytest.fixture
def controller(store, graph):
    return SuspensionController(store, graph)


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def evaluator():
    return FakeEvaluator()


@pytest.fixture
def driver(controller, generator, evaluator):
    driver = PipelineDriver(
        controller,
        generator,
        evaluator,
        deadline=1.0,
        retry_policy=RetryPolicy(max_retries=1, base=0, jitter=0),
    )
    controller.driver = driver
    return driver
